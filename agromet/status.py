import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from agromet.calibration import clamp
from agromet.models import CalibratedMeasurement

OFFLINE_AFTER = timedelta(minutes=30)

FROST_WARNING_C = 2.5
FUNGUS_HUMIDITY_PCT = 85.0
FUNGUS_TEMP_C = 10.0

BATTERY_EMPTY_V = 3.2
BATTERY_FULL_V = 4.2
# (voltage above, label); evaluated top-down
BATTERY_TIERS = [
    (3.8, "good"),
    (3.5, "ok"),
    (3.3, "warning"),
]
BATTERY_CRITICAL = "critical"
BATTERY_UNKNOWN = "unknown"

# (csq at least, label); evaluated top-down after the no-signal check
SIGNAL_TIERS = [
    (20, "excellent"),
    (12, "good"),
]
SIGNAL_NONE = "no signal"
SIGNAL_WEAK = "weak"

STATUS_CLASSES = {
    "good": "ok",
    "excellent": "ok",
    "ok": "ok",
    "warning": "warn",
    "weak": "warn",
    "critical": "bad",
    "no signal": "bad",
    "unknown": "idle",
}


def is_offline(latest: CalibratedMeasurement | None, now: datetime) -> bool:
    if latest is None:
        return True
    # naive datetimes are taken as local time
    return (now.astimezone(timezone.utc) - latest.created_at) > OFFLINE_AFTER


def frost_warning(latest: CalibratedMeasurement | None) -> bool:
    return latest is not None and latest.temperature <= FROST_WARNING_C


def fungus_warning(latest: CalibratedMeasurement | None) -> bool:
    if latest is None:
        return False
    return latest.humidity >= FUNGUS_HUMIDITY_PCT and latest.temperature >= FUNGUS_TEMP_C


def battery_percentage(voltage: float | None) -> int | None:
    if voltage is None:
        return None
    pct = (voltage - BATTERY_EMPTY_V) / (BATTERY_FULL_V - BATTERY_EMPTY_V) * 100
    # half-up, not banker's rounding
    return int(math.floor(clamp(pct, 0, 100) + 0.5))


def battery_status(voltage: float | None) -> str:
    if voltage is None:
        return BATTERY_UNKNOWN
    for threshold, label in BATTERY_TIERS:
        if voltage > threshold:
            return label
    return BATTERY_CRITICAL


def signal_label(csq: int | None) -> str:
    if csq is None or csq == 0:
        return SIGNAL_NONE
    for threshold, label in SIGNAL_TIERS:
        if csq >= threshold:
            return label
    return SIGNAL_WEAK


def status_class(label: str) -> str:
    return STATUS_CLASSES.get(label, "idle")


def format_age(latest: CalibratedMeasurement | None, now: datetime) -> str:
    if latest is None:
        return "--"
    seconds = max(0.0, (now.astimezone(timezone.utc) - latest.created_at).total_seconds())
    if seconds < 60:
        return f"{seconds:.0f}s ago"
    if seconds < 3600:
        return f"{seconds/60:.0f}m ago"
    if seconds < 86400:
        return f"{seconds/3600:.1f}h ago"
    return f"{seconds/86400:.1f}d ago"


@dataclass(frozen=True)
class StationStatus:
    offline: bool
    frost: bool
    fungus: bool
    battery_pct: int | None
    battery_label: str
    signal_label: str
    last_seen: datetime | None


def derive_status(latest: CalibratedMeasurement | None, now: datetime | None = None) -> StationStatus:
    now = now or datetime.now(timezone.utc)
    voltage = latest.battery_voltage if latest is not None else None
    csq = latest.signal_strength if latest is not None else None
    return StationStatus(
        offline=is_offline(latest, now),
        frost=frost_warning(latest),
        fungus=fungus_warning(latest),
        battery_pct=battery_percentage(voltage),
        battery_label=battery_status(voltage),
        signal_label=signal_label(csq),
        last_seen=latest.created_at if latest is not None else None,
    )
