from datetime import datetime, timezone
from typing import Iterable

from agromet.models import CalibratedMeasurement, Measurement, SensorSetting

TEMP_SENSOR_KEY = "temp_air"
HUMIDITY_SENSOR_KEY = "humidity"
HUMIDITY_MIN = 0.0
HUMIDITY_MAX = 100.0

DEFAULT_SENSORS = [
    SensorSetting(TEMP_SENSOR_KEY, "Air temperature", 0.0),
    SensorSetting(HUMIDITY_SENSOR_KEY, "Relative humidity", 0.0),
]
NEW_SENSOR_NAME = "New sensor"


def _to_offset(value) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        offset = float(value)
    except (TypeError, ValueError):
        return 0.0
    if offset != offset:  # NaN
        return 0.0
    return offset


def sensor_offset(sensors_config: dict | None, key: str) -> float:
    """Offset configured for a sensor key; anything missing or malformed counts as 0."""
    if not sensors_config:
        return 0.0
    entry = sensors_config.get(key)
    if not isinstance(entry, dict):
        return 0.0
    return _to_offset(entry.get("offset"))


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def calibrate(measurement: Measurement, sensors_config: dict | None) -> CalibratedMeasurement:
    temp_offset = sensor_offset(sensors_config, TEMP_SENSOR_KEY)
    hum_offset = sensor_offset(sensors_config, HUMIDITY_SENSOR_KEY)
    return CalibratedMeasurement(
        station_id=measurement.station_id,
        created_at=measurement.created_at,
        temperature=measurement.temperature + temp_offset,
        humidity=clamp(measurement.humidity + hum_offset, HUMIDITY_MIN, HUMIDITY_MAX),
        raw_temperature=measurement.temperature,
        raw_humidity=measurement.humidity,
        battery_voltage=measurement.battery_voltage,
        signal_strength=measurement.signal_strength,
    )


def calibrate_series(measurements: Iterable[Measurement], sensors_config: dict | None) -> list[CalibratedMeasurement]:
    return [calibrate(m, sensors_config) for m in measurements]


# ------------------------
# Sensor config editing
# ------------------------
def config_to_rows(sensors_config: dict | None) -> list[SensorSetting]:
    """
    Expand a stored sensors_config into editable rows.

    An empty or missing config yields the default air temperature and humidity pair.
    """
    if not sensors_config:
        return [SensorSetting(s.key, s.name, s.offset) for s in DEFAULT_SENSORS]
    rows = []
    for key, entry in sensors_config.items():
        entry = entry if isinstance(entry, dict) else {}
        rows.append(
            SensorSetting(
                key=str(key),
                name=str(entry.get("name") or key),
                offset=_to_offset(entry.get("offset")),
            )
        )
    return rows


def rows_to_config(rows: Iterable[SensorSetting]) -> dict[str, dict]:
    config: dict[str, dict] = {}
    for row in rows:
        key = (row.key or "").strip()
        if not key:
            continue
        config[key] = {"name": row.name, "offset": _to_offset(row.offset)}
    return config


def new_sensor_key(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"sensor_{int(now.timestamp() * 1000)}"


def add_sensor(rows: list[SensorSetting], now: datetime | None = None) -> list[SensorSetting]:
    key = new_sensor_key(now)
    existing = {row.key for row in rows}
    suffix = 1
    candidate = key
    while candidate in existing:
        candidate = f"{key}_{suffix}"
        suffix += 1
    return [*rows, SensorSetting(candidate, NEW_SENSOR_NAME, 0.0)]


def remove_sensor(rows: list[SensorSetting], key: str) -> list[SensorSetting]:
    return [row for row in rows if row.key != key]


def update_sensor(rows: list[SensorSetting], key: str, field: str, value) -> list[SensorSetting]:
    if field not in ("name", "offset"):
        raise ValueError(f"unknown sensor field: {field}")
    updated = []
    for row in rows:
        if row.key != key:
            updated.append(row)
            continue
        if field == "name":
            updated.append(SensorSetting(row.key, str(value), row.offset))
        else:
            updated.append(SensorSetting(row.key, row.name, _to_offset(value)))
    return updated
