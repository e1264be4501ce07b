import os
from datetime import timedelta
from pathlib import Path

from agromet.live_feed import REFRESH_POLL, REFRESH_PUSH, RefreshPolicy

PROJECT_ROOT = Path(__file__).resolve().parents[1]

SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY", "")
BACKEND_KIND = os.getenv("AGROMET_BACKEND", "supabase" if SUPABASE_URL else "sqlite").lower()
HTTP_TIMEOUT = float(os.getenv("AGROMET_HTTP_TIMEOUT", "10"))
REFRESH_MODE = os.getenv("AGROMET_REFRESH_MODE", REFRESH_PUSH).lower()
POLL_SECONDS = int(os.getenv("AGROMET_POLL_SECONDS", "60"))
LOCAL_FEED_POLL_SECONDS = float(os.getenv("AGROMET_LOCAL_FEED_POLL_SECONDS", "5"))
CONTROL_REFRESH_SECONDS = int(os.getenv("CONTROL_REFRESH_SECONDS", "30"))
LOCAL_TZ = os.getenv("LOCAL_TZ", "Europe/Warsaw")

TIME_RANGES = [
    ("12h", timedelta(hours=12)),
    ("24h", timedelta(hours=24)),
    ("48h", timedelta(hours=48)),
    ("7 days", timedelta(days=7)),
]
DEFAULT_RANGE = "24h"


def resolve_db_path() -> Path:
    raw_path = os.getenv("AGROMET_DB_PATH")
    if raw_path:
        path = Path(raw_path)
        return path if path.is_absolute() else PROJECT_ROOT / path
    return PROJECT_ROOT / "data" / "agromet.db"


def range_window(label: str) -> timedelta:
    for name, window in TIME_RANGES:
        if name == label:
            return window
    return dict(TIME_RANGES)[DEFAULT_RANGE]


def refresh_policy() -> RefreshPolicy:
    mode = REFRESH_MODE if REFRESH_MODE in (REFRESH_PUSH, REFRESH_POLL) else REFRESH_PUSH
    return RefreshPolicy(mode=mode, interval_seconds=max(1, POLL_SECONDS))


def build_clients(kind: str | None = None):
    """
    Build a (backend, auth) pair for one user session.

    Each call returns fresh objects so sessions never share a signed-in token.
    """
    kind = (kind or BACKEND_KIND).lower()
    if kind == "supabase":
        from agromet.supabase_client import SupabaseAuth, SupabaseBackend, SupabaseSession

        session = SupabaseSession(SUPABASE_URL, SUPABASE_ANON_KEY, timeout=HTTP_TIMEOUT)
        return SupabaseBackend(session), SupabaseAuth(session)
    if kind == "sqlite":
        from agromet.local_store import LocalAuth, SqliteBackend

        db_path = resolve_db_path()
        return SqliteBackend(db_path, poll_seconds=LOCAL_FEED_POLL_SECONDS), LocalAuth(db_path)
    raise ValueError(f"unknown AGROMET_BACKEND: {kind}")
