from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import pandas as pd


def parse_timestamp(value: Any) -> datetime:
    """
    Normalize a backend timestamp (ISO string, epoch seconds or datetime) to an aware UTC datetime.

    Raises ValueError when the value cannot be interpreted.
    """
    if value is None or value == "":
        raise ValueError("timestamp is missing")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        ts = pd.to_datetime(value, unit="s", utc=True)
    else:
        try:
            ts = pd.Timestamp(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"unparseable timestamp: {value!r}") from exc
        if pd.isna(ts):
            raise ValueError(f"unparseable timestamp: {value!r}")
        ts = ts.tz_localize("UTC") if ts.tzinfo is None else ts.tz_convert("UTC")
    return ts.to_pydatetime()


def _optional_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if pd.isna(number):
        return None
    return number


def _optional_int(value: Any) -> int | None:
    number = _optional_float(value)
    if number is None:
        return None
    return int(number)


def _required_float(row: dict, key: str) -> float:
    number = _optional_float(row.get(key))
    if number is None:
        raise ValueError(f"measurement field {key!r} is missing or not numeric")
    return number


@dataclass(frozen=True)
class Measurement:
    """One raw sensor reading as stored by the backend."""

    station_id: str
    created_at: datetime
    temperature: float
    humidity: float
    battery_voltage: float | None = None
    signal_strength: int | None = None

    @property
    def key(self) -> tuple[str, datetime]:
        return (self.station_id, self.created_at)

    @classmethod
    def from_row(cls, row: dict) -> "Measurement":
        if not isinstance(row, dict):
            raise ValueError("measurement row must be a mapping")
        station_id = row.get("station_id")
        if station_id is None or str(station_id) == "":
            raise ValueError("measurement row has no station_id")
        return cls(
            station_id=str(station_id),
            created_at=parse_timestamp(row.get("created_at")),
            temperature=_required_float(row, "temperature"),
            humidity=_required_float(row, "humidity"),
            battery_voltage=_optional_float(row.get("battery_voltage")),
            signal_strength=_optional_int(row.get("signal_strength")),
        )


@dataclass(frozen=True)
class CalibratedMeasurement:
    station_id: str
    created_at: datetime
    temperature: float
    humidity: float
    raw_temperature: float
    raw_humidity: float
    battery_voltage: float | None = None
    signal_strength: int | None = None


@dataclass
class SensorSetting:
    """Editable form of one sensors_config entry."""

    key: str
    name: str
    offset: float = 0.0


@dataclass
class Station:
    id: str
    name: str
    sensors_config: dict[str, dict] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: dict) -> "Station":
        station_id = row.get("id")
        if station_id is None or str(station_id) == "":
            raise ValueError("station row has no id")
        config = row.get("sensors_config")
        if not isinstance(config, dict):
            config = {}
        return cls(
            id=str(station_id),
            name=str(row.get("name") or station_id),
            sensors_config=config,
        )
