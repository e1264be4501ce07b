"""
SQLite-backed stand-in for the hosted backend.

Used for local development, demos and tests. It exposes the same surface as the
Supabase adapter: station listing, bounded measurement queries, insert
subscriptions (served by a polling thread) and station config writes, plus a
small account table for sign-in and a preference table for dashboard state.
"""
import hashlib
import hmac
import json
import os
import sqlite3
import threading
from contextlib import closing
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from agromet.applog import log
from agromet.backend import AuthError, AuthUser, BackendError, InsertCallback
from agromet.models import Measurement, Station, parse_timestamp

LOG_NAME = "local_store"
PREFS_TABLE = "app_prefs"
PBKDF2_ITERATIONS = 200_000
DEFAULT_POLL_SECONDS = 5.0

SCHEMA_SQL = f"""
CREATE TABLE IF NOT EXISTS stations (
  id TEXT PRIMARY KEY,
  name TEXT NOT NULL,
  sensors_config TEXT NOT NULL DEFAULT '{{}}'
);

CREATE TABLE IF NOT EXISTS measurements (
  station_id TEXT NOT NULL,
  created_at TEXT NOT NULL,
  temperature REAL NOT NULL,
  humidity REAL NOT NULL,
  battery_voltage REAL,
  signal_strength INTEGER,
  PRIMARY KEY (station_id, created_at)
);

CREATE INDEX IF NOT EXISTS idx_measurements_station_time
  ON measurements(station_id, created_at);

CREATE TABLE IF NOT EXISTS accounts (
  email TEXT PRIMARY KEY,
  id TEXT NOT NULL,
  salt TEXT NOT NULL,
  password_hash TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS {PREFS_TABLE} (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL
);
"""


def connect(db_path: str | Path) -> sqlite3.Connection:
    """
    Connect to the SQLite database with basic hardening to avoid lock issues.
    """
    db_file = Path(db_path)
    if not db_file.is_absolute():
        db_file = Path.cwd() / db_file
    db_file.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_file)
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA busy_timeout=5000;")
    conn.executescript(SCHEMA_SQL)
    return conn


def _ts_text(value: datetime) -> str:
    # fixed-width UTC text so lexical order matches time order
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def _measurement_from_db(row: tuple) -> Measurement:
    station_id, created_at, temperature, humidity, battery_voltage, signal_strength = row
    return Measurement(
        station_id=station_id,
        created_at=parse_timestamp(created_at),
        temperature=float(temperature),
        humidity=float(humidity),
        battery_voltage=None if battery_voltage is None else float(battery_voltage),
        signal_strength=None if signal_strength is None else int(signal_strength),
    )


def _decode_config(raw: str | None) -> dict:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


class PollingSubscription:
    """Delivers rows newer than the last seen timestamp from a background thread."""

    def __init__(self, backend: "SqliteBackend", station_id: str, on_insert: InsertCallback, since: datetime):
        self.backend = backend
        self.station_id = station_id
        self.on_insert = on_insert
        self._cursor = since
        self._stop = threading.Event()
        self._delivering = threading.Event()
        self._thread = threading.Thread(
            target=self._run,
            name=f"sqlite-feed-{station_id}",
            daemon=True,
        )
        self._thread.start()

    def _run(self) -> None:
        while not self._stop.wait(self.backend.poll_seconds):
            try:
                rows = self.backend.measurements_after(self.station_id, self._cursor)
            except BackendError as exc:
                log(f"Feed poll for station={self.station_id} failed: {exc}", LOG_NAME)
                continue
            for measurement in rows:
                # mark before checking _stop so release() never joins a pending delivery
                self._delivering.set()
                try:
                    if self._stop.is_set():
                        return
                    self._cursor = measurement.created_at
                    self.on_insert(measurement)
                finally:
                    self._delivering.clear()

    @property
    def active(self) -> bool:
        return not self._stop.is_set()

    def release(self) -> None:
        self._stop.set()
        if self._thread is threading.current_thread():
            return
        # a delivery may be blocked on a lock the caller holds; it exits on its own after _stop
        if not self._delivering.is_set():
            self._thread.join(timeout=self.backend.poll_seconds + 5)


class SqliteBackend:
    def __init__(self, db_path: str | Path, poll_seconds: float = DEFAULT_POLL_SECONDS):
        self.db_path = db_path
        self.poll_seconds = poll_seconds

    def _connect(self) -> sqlite3.Connection:
        try:
            return connect(self.db_path)
        except sqlite3.Error as exc:
            raise BackendError(f"cannot open {self.db_path}: {exc}") from exc

    def list_stations(self) -> list[Station]:
        try:
            with closing(self._connect()) as conn:
                rows = conn.execute("SELECT id, name, sensors_config FROM stations ORDER BY id").fetchall()
        except sqlite3.Error as exc:
            raise BackendError(f"listing stations failed: {exc}") from exc
        return [Station(id=r[0], name=r[1], sensors_config=_decode_config(r[2])) for r in rows]

    def _select_measurements(self, station_id: str, since: datetime, op: str) -> list[Measurement]:
        try:
            with closing(self._connect()) as conn:
                rows = conn.execute(
                    f"""
                    SELECT station_id, created_at, temperature, humidity, battery_voltage, signal_strength
                    FROM measurements
                    WHERE station_id = ? AND created_at {op} ?
                    ORDER BY created_at ASC
                    """,
                    (str(station_id), _ts_text(since)),
                ).fetchall()
        except sqlite3.Error as exc:
            raise BackendError(f"measurement query failed: {exc}") from exc
        return [_measurement_from_db(row) for row in rows]

    def query_measurements(self, station_id: str, since: datetime) -> list[Measurement]:
        return self._select_measurements(station_id, since, ">=")

    def measurements_after(self, station_id: str, since: datetime) -> list[Measurement]:
        return self._select_measurements(station_id, since, ">")

    def subscribe_inserts(self, station_id: str, on_insert: InsertCallback) -> PollingSubscription:
        return PollingSubscription(self, str(station_id), on_insert, datetime.now(timezone.utc))

    def update_station_config(self, station_id: str, sensors_config: dict) -> None:
        try:
            with closing(self._connect()) as conn:
                cur = conn.execute(
                    "UPDATE stations SET sensors_config = ? WHERE id = ?",
                    (json.dumps(sensors_config), str(station_id)),
                )
                conn.commit()
        except sqlite3.Error as exc:
            raise BackendError(f"saving config for station {station_id} failed: {exc}") from exc
        if cur.rowcount == 0:
            raise BackendError(f"station {station_id} does not exist")

    # ------------------------
    # Seeding helpers
    # ------------------------
    def upsert_station(self, station: Station) -> None:
        with closing(self._connect()) as conn:
            conn.execute(
                """
                INSERT INTO stations (id, name, sensors_config)
                VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                  name=excluded.name,
                  sensors_config=excluded.sensors_config
                """,
                (station.id, station.name, json.dumps(station.sensors_config or {})),
            )
            conn.commit()

    def add_measurements(self, measurements: list[Measurement]) -> int:
        with closing(self._connect()) as conn:
            cur = conn.executemany(
                """
                INSERT OR IGNORE INTO measurements (
                  station_id, created_at, temperature, humidity, battery_voltage, signal_strength
                ) VALUES (?,?,?,?,?,?)
                """,
                [
                    (
                        m.station_id,
                        _ts_text(m.created_at),
                        m.temperature,
                        m.humidity,
                        m.battery_voltage,
                        m.signal_strength,
                    )
                    for m in measurements
                ],
            )
            conn.commit()
            return cur.rowcount

    def add_measurement(self, measurement: Measurement) -> None:
        self.add_measurements([measurement])


# ------------------------
# Local accounts
# ------------------------
def hash_password(password: str, salt: bytes) -> str:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, PBKDF2_ITERATIONS).hex()


def create_account(db_path: str | Path, email: str, password: str) -> AuthUser:
    email = email.strip().lower()
    salt = os.urandom(16)
    user_id = hashlib.sha256(email.encode("utf-8")).hexdigest()[:16]
    with closing(connect(db_path)) as conn:
        conn.execute(
            """
            INSERT INTO accounts (email, id, salt, password_hash)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(email) DO UPDATE SET
              salt=excluded.salt,
              password_hash=excluded.password_hash
            """,
            (email, user_id, salt.hex(), hash_password(password, salt)),
        )
        conn.commit()
    return AuthUser(id=user_id, email=email)


class LocalAuth:
    def __init__(self, db_path: str | Path):
        self.db_path = db_path
        self._user: AuthUser | None = None

    def sign_in(self, email: str, password: str) -> AuthUser:
        email = (email or "").strip().lower()
        try:
            with closing(connect(self.db_path)) as conn:
                row = conn.execute(
                    "SELECT id, salt, password_hash FROM accounts WHERE email = ?",
                    (email,),
                ).fetchone()
        except sqlite3.Error as exc:
            raise AuthError(f"account lookup failed: {exc}") from exc
        if not row:
            raise AuthError("invalid credentials")
        user_id, salt_hex, expected = row
        actual = hash_password(password or "", bytes.fromhex(salt_hex))
        if not hmac.compare_digest(actual, expected):
            raise AuthError("invalid credentials")
        self._user = AuthUser(id=user_id, email=email)
        log(f"Signed in {email}", LOG_NAME)
        return self._user

    def sign_out(self) -> None:
        self._user = None

    def current_user(self) -> AuthUser | None:
        return self._user


# ------------------------
# Dashboard preferences
# ------------------------
def get_pref(conn: sqlite3.Connection, key: str, default: Any = None) -> Any:
    row = conn.execute(
        f"SELECT value FROM {PREFS_TABLE} WHERE key = ?",
        (key,),
    ).fetchone()
    if not row:
        return default
    try:
        return json.loads(row[0])
    except json.JSONDecodeError:
        return default


def set_pref(conn: sqlite3.Connection, key: str, value: Any) -> None:
    conn.execute(
        f"""
        INSERT INTO {PREFS_TABLE} (key, value)
        VALUES (?, ?)
        ON CONFLICT(key) DO UPDATE SET
          value=excluded.value
        """,
        (key, json.dumps(value)),
    )
    conn.commit()


def load_prefs(db_path: str | Path, user_id: str) -> dict:
    try:
        with closing(connect(db_path)) as conn:
            prefs = get_pref(conn, f"dashboard:{user_id}", {})
    except sqlite3.Error:
        return {}
    return prefs if isinstance(prefs, dict) else {}


def save_prefs(db_path: str | Path, user_id: str, prefs: dict) -> None:
    try:
        with closing(connect(db_path)) as conn:
            set_pref(conn, f"dashboard:{user_id}", prefs)
    except sqlite3.Error as exc:
        log(f"Saving preferences failed: {exc}", LOG_NAME)
