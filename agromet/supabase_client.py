"""
Thin adapter over the hosted Supabase project.

Data goes through PostgREST (``/rest/v1``), sign-in through GoTrue (``/auth/v1``)
and live inserts through the Realtime websocket (Phoenix channel protocol).
"""
import itertools
import json
import threading
import time
from datetime import datetime, timezone
from urllib.parse import urlencode

import requests
import websocket
from websocket._exceptions import WebSocketTimeoutException

from agromet.applog import log
from agromet.backend import AuthError, AuthUser, BackendError, InsertCallback
from agromet.models import Measurement, Station

LOG_NAME = "supabase"

STATIONS_TABLE = "stations"
MEASUREMENTS_TABLE = "measurements"

HEARTBEAT_SEC = 25
SOCKET_TIMEOUT_SEC = 5
RECONNECT_BASE_SEC = 5
RECONNECT_MAX_SEC = 300


class SupabaseSession:
    """Holds the project URL, anon key and the signed-in user's access token."""

    def __init__(self, url: str, anon_key: str, timeout: float = 10, http: requests.Session | None = None):
        if not url or not anon_key:
            raise ValueError("SUPABASE_URL and SUPABASE_ANON_KEY are required")
        self.url = url.rstrip("/")
        self.anon_key = anon_key
        self.timeout = timeout
        self.http = http or requests.Session()
        self.access_token: str | None = None

    def headers(self, extra: dict | None = None) -> dict:
        headers = {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {self.access_token or self.anon_key}",
            "Accept": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    def request(self, method: str, path: str, **kwargs) -> requests.Response:
        extra = kwargs.pop("headers", None)
        return self.http.request(
            method,
            f"{self.url}{path}",
            headers=self.headers(extra),
            timeout=self.timeout,
            **kwargs,
        )

    def realtime_url(self) -> str:
        base = self.url.replace("https://", "wss://", 1).replace("http://", "ws://", 1)
        query = urlencode({"apikey": self.anon_key, "vsn": "1.0.0"})
        return f"{base}/realtime/v1/websocket?{query}"


def _iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


def _parse_measurements(rows, source: str) -> list[Measurement]:
    measurements = []
    for row in rows or []:
        try:
            measurements.append(Measurement.from_row(row))
        except ValueError as exc:
            log(f"Skipping malformed {source} row: {exc}", LOG_NAME)
    return measurements


class SupabaseBackend:
    def __init__(self, session: SupabaseSession):
        self.session = session

    def _get(self, path: str, params: dict) -> list:
        try:
            resp = self.session.request("GET", path, params=params)
            resp.raise_for_status()
            payload = resp.json()
        except (requests.RequestException, ValueError) as exc:
            log(f"GET {path} failed: {exc!r}", LOG_NAME)
            raise BackendError(f"request to {path} failed") from exc
        if not isinstance(payload, list):
            raise BackendError(f"unexpected payload from {path}")
        return payload

    def list_stations(self) -> list[Station]:
        rows = self._get(f"/rest/v1/{STATIONS_TABLE}", {"select": "*"})
        stations = []
        for row in rows:
            try:
                stations.append(Station.from_row(row))
            except ValueError as exc:
                log(f"Skipping malformed station row: {exc}", LOG_NAME)
        return stations

    def query_measurements(self, station_id: str, since: datetime) -> list[Measurement]:
        rows = self._get(
            f"/rest/v1/{MEASUREMENTS_TABLE}",
            {
                "select": "*",
                "station_id": f"eq.{station_id}",
                "created_at": f"gte.{_iso(since)}",
                "order": "created_at.asc",
            },
        )
        return _parse_measurements(rows, "measurement")

    def update_station_config(self, station_id: str, sensors_config: dict) -> None:
        path = f"/rest/v1/{STATIONS_TABLE}"
        try:
            resp = self.session.request(
                "PATCH",
                path,
                params={"id": f"eq.{station_id}"},
                json={"sensors_config": sensors_config},
                headers={"Prefer": "return=minimal", "Content-Type": "application/json"},
            )
            resp.raise_for_status()
        except requests.RequestException as exc:
            log(f"PATCH {path} id={station_id} failed: {exc!r}", LOG_NAME)
            raise BackendError(f"saving config for station {station_id} failed") from exc

    def subscribe_inserts(self, station_id: str, on_insert: InsertCallback) -> "RealtimeSubscription":
        subscription = RealtimeSubscription(self.session, str(station_id), on_insert)
        subscription.start()
        return subscription


class SupabaseAuth:
    def __init__(self, session: SupabaseSession):
        self.session = session
        self._user: AuthUser | None = None

    def sign_in(self, email: str, password: str) -> AuthUser:
        try:
            resp = self.session.request(
                "POST",
                "/auth/v1/token",
                params={"grant_type": "password"},
                json={"email": email, "password": password},
            )
        except requests.RequestException as exc:
            log(f"Sign-in request failed: {exc!r}", LOG_NAME)
            raise AuthError("auth service unreachable") from exc
        if resp.status_code != 200:
            raise AuthError(f"sign-in rejected ({resp.status_code})")
        try:
            payload = resp.json()
        except ValueError as exc:
            raise AuthError("malformed sign-in response") from exc
        token = payload.get("access_token")
        user = payload.get("user") or {}
        if not token or not user.get("id"):
            raise AuthError("malformed sign-in response")
        self.session.access_token = token
        self._user = AuthUser(id=str(user["id"]), email=str(user.get("email") or email), access_token=token)
        log(f"Signed in {self._user.email}", LOG_NAME)
        return self._user

    def sign_out(self) -> None:
        if self.session.access_token:
            try:
                self.session.request("POST", "/auth/v1/logout")
            except requests.RequestException as exc:
                log(f"Sign-out request failed: {exc!r}", LOG_NAME)
        self.session.access_token = None
        self._user = None

    def current_user(self) -> AuthUser | None:
        if self._user is None or not self.session.access_token:
            return None
        try:
            resp = self.session.request("GET", "/auth/v1/user")
        except requests.RequestException as exc:
            log(f"User lookup failed: {exc!r}", LOG_NAME)
            return self._user
        if resp.status_code in (401, 403):
            self.session.access_token = None
            self._user = None
            return None
        return self._user


# =====================
# Realtime
# =====================
def join_message(topic: str, station_id: str, ref: str, access_token: str | None) -> dict:
    payload = {
        "config": {
            "broadcast": {"self": False},
            "presence": {"key": ""},
            "postgres_changes": [
                {
                    "event": "INSERT",
                    "schema": "public",
                    "table": MEASUREMENTS_TABLE,
                    "filter": f"station_id=eq.{station_id}",
                }
            ],
        }
    }
    if access_token:
        payload["access_token"] = access_token
    return {"topic": topic, "event": "phx_join", "payload": payload, "ref": ref}


def extract_insert(message: dict) -> dict | None:
    """Return the inserted row from a postgres_changes frame, or None for anything else."""
    if not isinstance(message, dict) or message.get("event") != "postgres_changes":
        return None
    data = (message.get("payload") or {}).get("data") or {}
    if data.get("type") != "INSERT":
        return None
    record = data.get("record")
    return record if isinstance(record, dict) else None


class RealtimeSubscription:
    """
    One Realtime channel for a station's measurement inserts.

    Runs a websocket loop on a daemon thread; reconnects with exponential backoff
    until released.
    """

    def __init__(self, session: SupabaseSession, station_id: str, on_insert: InsertCallback):
        self.session = session
        self.station_id = station_id
        self.on_insert = on_insert
        self.topic = f"realtime:live-{station_id}"
        self._refs = itertools.count(1)
        self._stop = threading.Event()
        self._ws: websocket.WebSocket | None = None
        self._thread = threading.Thread(target=self._run, name=f"realtime-{station_id}", daemon=True)

    def start(self) -> None:
        self._thread.start()

    @property
    def active(self) -> bool:
        return not self._stop.is_set()

    def _send(self, ws: websocket.WebSocket, message: dict) -> None:
        ws.send(json.dumps(message))

    def handle_frame(self, text: str) -> bool:
        try:
            message = json.loads(text)
        except json.JSONDecodeError:
            log(f"Ignoring non-JSON realtime frame on {self.topic}", LOG_NAME)
            return False
        if not isinstance(message, dict):
            return False
        if message.get("event") == "phx_reply" and (message.get("payload") or {}).get("status") == "error":
            log(f"Realtime join rejected on {self.topic}: {message.get('payload')}", LOG_NAME)
            return False
        record = extract_insert(message)
        if record is None:
            return False
        try:
            measurement = Measurement.from_row(record)
        except ValueError as exc:
            log(f"Skipping malformed realtime row: {exc}", LOG_NAME)
            return False
        if measurement.station_id != self.station_id:
            return False
        if self._stop.is_set():
            return False
        self.on_insert(measurement)
        return True

    def _listen(self, ws: websocket.WebSocket) -> None:
        ws.connect(self.session.realtime_url(), timeout=SOCKET_TIMEOUT_SEC)
        ws.settimeout(SOCKET_TIMEOUT_SEC)
        self._send(ws, join_message(self.topic, self.station_id, str(next(self._refs)), self.session.access_token))
        log(f"Realtime connected; joined {self.topic}", LOG_NAME)

        last_heartbeat = time.time()
        while not self._stop.is_set():
            now = time.time()
            if now - last_heartbeat >= HEARTBEAT_SEC:
                self._send(ws, {"topic": "phoenix", "event": "heartbeat", "payload": {}, "ref": str(next(self._refs))})
                last_heartbeat = now
            try:
                text = ws.recv()
            except WebSocketTimeoutException:
                continue
            if text:
                self.handle_frame(text)

    def _run(self) -> None:
        reconnect_delay = RECONNECT_BASE_SEC
        while not self._stop.is_set():
            ws = websocket.WebSocket()
            self._ws = ws
            try:
                self._listen(ws)
                reconnect_delay = RECONNECT_BASE_SEC
            except Exception as exc:
                if self._stop.is_set():
                    break
                log(f"Realtime error on {self.topic}: {exc!r}; reconnecting in {reconnect_delay}s", LOG_NAME)
                self._stop.wait(reconnect_delay)
                reconnect_delay = min(RECONNECT_MAX_SEC, reconnect_delay * 2)
            finally:
                try:
                    ws.close()
                except Exception:
                    pass
                self._ws = None

    def release(self) -> None:
        if self._stop.is_set():
            return
        self._stop.set()
        ws = self._ws
        if ws is not None and ws.connected:
            try:
                self._send(ws, {"topic": self.topic, "event": "phx_leave", "payload": {}, "ref": str(next(self._refs))})
            except Exception as exc:
                log(f"Realtime leave on {self.topic} failed: {exc!r}", LOG_NAME)
        log(f"Realtime released {self.topic}", LOG_NAME)
