import math
import os
import random
from datetime import datetime, timedelta, timezone

from agromet.applog import log
from agromet.local_store import SqliteBackend, create_account
from agromet.models import Measurement, Station
from agromet.settings import resolve_db_path

DEMO_EMAIL = os.getenv("AGROMET_DEMO_EMAIL", "grower@example.com")
DEMO_PASSWORD = os.getenv("AGROMET_DEMO_PASSWORD", "orchard")
DEMO_DAYS = int(os.getenv("AGROMET_DEMO_DAYS", "7"))
STEP = timedelta(minutes=10)

STATIONS = [
    Station(
        id="orchard-north",
        name="Orchard north",
        sensors_config={
            "temp_air": {"name": "Air temperature", "offset": -0.4},
            "humidity": {"name": "Relative humidity", "offset": 2.0},
        },
    ),
    Station(id="orchard-south", name="Orchard south", sensors_config={}),
]


def synthetic_reading(station_id: str, at: datetime, rng: random.Random, phase: float) -> Measurement:
    hour = at.hour + at.minute / 60
    daily = math.sin((hour - 9) / 24 * 2 * math.pi)
    temperature = 9 + 8 * daily + phase + rng.uniform(-0.4, 0.4)
    humidity = 75 - 18 * daily + rng.uniform(-3, 3)
    elapsed_days = (datetime.now(timezone.utc) - at).total_seconds() / 86400
    battery = 3.55 + 0.08 * elapsed_days / max(DEMO_DAYS, 1) + rng.uniform(-0.01, 0.01)
    return Measurement(
        station_id=station_id,
        created_at=at,
        temperature=round(temperature, 2),
        humidity=round(min(100, max(0, humidity)), 1),
        battery_voltage=round(battery, 3),
        signal_strength=rng.randint(8, 26),
    )


def main():
    db_path = resolve_db_path()
    backend = SqliteBackend(db_path)
    rng = random.Random(42)
    now = datetime.now(timezone.utc).replace(second=0, microsecond=0)
    start = now - timedelta(days=DEMO_DAYS)

    for index, station in enumerate(STATIONS):
        backend.upsert_station(station)
        readings = []
        at = start
        while at <= now:
            readings.append(synthetic_reading(station.id, at, rng, phase=index * -1.5))
            at += STEP
        inserted = backend.add_measurements(readings)
        log(f"Seeded station={station.id} readings={inserted}", "seed_demo")

    create_account(db_path, DEMO_EMAIL, DEMO_PASSWORD)
    log(f"Demo account ready: {DEMO_EMAIL} (db={db_path})", "seed_demo")


if __name__ == "__main__":
    main()
