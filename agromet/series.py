from dataclasses import dataclass, field
from typing import Sequence

import pandas as pd

from agromet.models import CalibratedMeasurement

FRAME_COLUMNS = [
    "time",
    "temperature",
    "humidity",
    "raw_temperature",
    "raw_humidity",
    "battery_voltage",
    "signal_strength",
]


@dataclass
class SeriesSummary:
    min_temperature: float | None
    max_temperature: float | None
    points: list[CalibratedMeasurement] = field(default_factory=list)


def aggregate(series: Sequence[CalibratedMeasurement]) -> SeriesSummary:
    """
    Min/max calibrated temperature over an already time-ordered series.

    The points are passed through untouched for charting; an empty series has no min/max.
    """
    points = list(series)
    if not points:
        return SeriesSummary(None, None, points)
    temps = [p.temperature for p in points]
    return SeriesSummary(min(temps), max(temps), points)


def latest(series: Sequence[CalibratedMeasurement]) -> CalibratedMeasurement | None:
    return series[-1] if series else None


def to_frame(series: Sequence[CalibratedMeasurement], tz_name: str | None = None) -> pd.DataFrame:
    if not series:
        return pd.DataFrame(columns=FRAME_COLUMNS)
    df = pd.DataFrame(
        [
            {
                "time": p.created_at,
                "temperature": p.temperature,
                "humidity": p.humidity,
                "raw_temperature": p.raw_temperature,
                "raw_humidity": p.raw_humidity,
                "battery_voltage": p.battery_voltage,
                "signal_strength": p.signal_strength,
            }
            for p in series
        ],
        columns=FRAME_COLUMNS,
    )
    df["time"] = pd.to_datetime(df["time"], utc=True)
    if tz_name:
        df["time"] = df["time"].dt.tz_convert(tz_name)
    return df
