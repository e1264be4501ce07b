import json
import unittest
from datetime import datetime, timezone
from unittest import mock

import requests

from agromet.backend import AuthError, BackendError
from agromet.supabase_client import (
    RealtimeSubscription,
    SupabaseAuth,
    SupabaseBackend,
    SupabaseSession,
    extract_insert,
    join_message,
)

URL = "https://demo.supabase.co"
KEY = "anon-key"


def response(status=200, payload=None):
    resp = mock.Mock()
    resp.status_code = status
    resp.json.return_value = payload
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"{status} error")
    else:
        resp.raise_for_status.return_value = None
    return resp


def make_session(*responses):
    http = mock.Mock(spec=requests.Session)
    http.request.side_effect = list(responses)
    return SupabaseSession(URL + "/", KEY, timeout=3, http=http), http


class SupabaseBackendTest(unittest.TestCase):
    def test_list_stations(self):
        session, http = make_session(
            response(
                payload=[
                    {"id": 1, "name": "North", "sensors_config": {"temp_air": {"name": "Air", "offset": 0.5}}},
                    {"id": 2, "name": "South", "sensors_config": None},
                    {"name": "no id"},
                ]
            )
        )
        stations = SupabaseBackend(session).list_stations()
        self.assertEqual([s.id for s in stations], ["1", "2"])
        self.assertEqual(stations[1].sensors_config, {})
        method, url = http.request.call_args.args
        self.assertEqual((method, url), ("GET", f"{URL}/rest/v1/stations"))
        headers = http.request.call_args.kwargs["headers"]
        self.assertEqual(headers["apikey"], KEY)
        self.assertEqual(headers["Authorization"], f"Bearer {KEY}")

    def test_query_measurements_filters_and_orders(self):
        rows = [
            {"station_id": "1", "created_at": "2026-10-19T10:00:00+00:00", "temperature": 4.5, "humidity": 88},
            {"station_id": "1", "created_at": None, "temperature": 4.5, "humidity": 88},
            {"station_id": "1", "created_at": "2026-10-19T10:10:00+00:00", "temperature": 4.7, "humidity": 87},
        ]
        session, http = make_session(response(payload=rows))
        since = datetime(2026, 10, 18, 10, 0, tzinfo=timezone.utc)
        result = SupabaseBackend(session).query_measurements("1", since)

        self.assertEqual([m.temperature for m in result], [4.5, 4.7])
        params = http.request.call_args.kwargs["params"]
        self.assertEqual(params["station_id"], "eq.1")
        self.assertEqual(params["created_at"], "gte.2026-10-18T10:00:00+00:00")
        self.assertEqual(params["order"], "created_at.asc")
        self.assertEqual(http.request.call_args.kwargs["timeout"], 3)

    def test_query_failure_raises_backend_error(self):
        session, _ = make_session(response(status=500))
        with self.assertRaises(BackendError):
            SupabaseBackend(session).query_measurements("1", datetime.now(timezone.utc))

    def test_network_error_raises_backend_error(self):
        session, http = make_session()
        http.request.side_effect = requests.ConnectionError("down")
        with self.assertRaises(BackendError):
            SupabaseBackend(session).list_stations()

    def test_update_station_config(self):
        session, http = make_session(response(status=204))
        config = {"humidity": {"name": "RH", "offset": -2.0}}
        SupabaseBackend(session).update_station_config("7", config)
        method, url = http.request.call_args.args
        kwargs = http.request.call_args.kwargs
        self.assertEqual((method, url), ("PATCH", f"{URL}/rest/v1/stations"))
        self.assertEqual(kwargs["params"], {"id": "eq.7"})
        self.assertEqual(kwargs["json"], {"sensors_config": config})
        self.assertEqual(kwargs["headers"]["Prefer"], "return=minimal")

    def test_update_failure_raises(self):
        session, _ = make_session(response(status=401))
        with self.assertRaises(BackendError):
            SupabaseBackend(session).update_station_config("7", {})


class SupabaseAuthTest(unittest.TestCase):
    def test_sign_in_sets_token(self):
        session, http = make_session(
            response(payload={"access_token": "jwt-1", "user": {"id": "u-1", "email": "a@b.c"}}),
            response(payload={"id": "u-1"}),
        )
        auth = SupabaseAuth(session)
        user = auth.sign_in("a@b.c", "pw")
        self.assertEqual(user.id, "u-1")
        self.assertEqual(session.access_token, "jwt-1")
        self.assertEqual(session.headers()["Authorization"], "Bearer jwt-1")
        self.assertEqual(http.request.call_args.kwargs["params"], {"grant_type": "password"})
        self.assertEqual(auth.current_user(), user)

    def test_rejected_sign_in(self):
        session, _ = make_session(response(status=400, payload={"error": "invalid_grant"}))
        auth = SupabaseAuth(session)
        with self.assertRaises(AuthError):
            auth.sign_in("a@b.c", "wrong")
        self.assertIsNone(auth.current_user())
        self.assertIsNone(session.access_token)

    def test_unreachable_auth_service(self):
        session, http = make_session()
        http.request.side_effect = requests.Timeout("slow")
        with self.assertRaises(AuthError):
            SupabaseAuth(session).sign_in("a@b.c", "pw")

    def test_expired_token_clears_user(self):
        session, _ = make_session(
            response(payload={"access_token": "jwt-1", "user": {"id": "u-1", "email": "a@b.c"}}),
            response(status=401),
        )
        auth = SupabaseAuth(session)
        auth.sign_in("a@b.c", "pw")
        self.assertIsNone(auth.current_user())
        self.assertIsNone(session.access_token)

    def test_sign_out(self):
        session, http = make_session(
            response(payload={"access_token": "jwt-1", "user": {"id": "u-1", "email": "a@b.c"}}),
            response(status=204),
        )
        auth = SupabaseAuth(session)
        auth.sign_in("a@b.c", "pw")
        auth.sign_out()
        self.assertEqual(http.request.call_args.args, ("POST", f"{URL}/auth/v1/logout"))
        self.assertIsNone(auth.current_user())


def test_session_requires_credentials():
    try:
        SupabaseSession("", "")
    except ValueError:
        return
    raise AssertionError("expected ValueError")


def test_realtime_url():
    session = SupabaseSession(URL, KEY)
    assert session.realtime_url() == "wss://demo.supabase.co/realtime/v1/websocket?apikey=anon-key&vsn=1.0.0"


def test_join_message_filters_station_inserts():
    message = join_message("realtime:live-9", "9", "1", "jwt")
    change = message["payload"]["config"]["postgres_changes"][0]
    assert message["event"] == "phx_join"
    assert change == {"event": "INSERT", "schema": "public", "table": "measurements", "filter": "station_id=eq.9"}
    assert message["payload"]["access_token"] == "jwt"
    assert "access_token" not in join_message("realtime:live-9", "9", "1", None)["payload"]


def test_extract_insert():
    record = {"station_id": "9", "created_at": "2026-10-19T10:00:00Z", "temperature": 1, "humidity": 2}
    frame = {"event": "postgres_changes", "payload": {"data": {"type": "INSERT", "record": record}}}
    assert extract_insert(frame) == record
    assert extract_insert({"event": "phx_reply", "payload": {"status": "ok"}}) is None
    assert extract_insert({"event": "postgres_changes", "payload": {"data": {"type": "UPDATE", "record": record}}}) is None


class RealtimeFrameTest(unittest.TestCase):
    def setUp(self):
        self.received = []
        self.sub = RealtimeSubscription(SupabaseSession(URL, KEY), "9", self.received.append)

    def frame(self, station_id="9"):
        record = {"station_id": station_id, "created_at": "2026-10-19T10:00:00Z", "temperature": 3.5, "humidity": 90}
        return json.dumps({"topic": "realtime:live-9", "event": "postgres_changes", "payload": {"data": {"type": "INSERT", "record": record}}})

    def test_insert_frame_is_delivered(self):
        self.assertTrue(self.sub.handle_frame(self.frame()))
        self.assertEqual(len(self.received), 1)
        self.assertEqual(self.received[0].temperature, 3.5)

    def test_other_frames_are_ignored(self):
        self.assertFalse(self.sub.handle_frame("not json"))
        self.assertFalse(self.sub.handle_frame(json.dumps({"event": "phx_reply", "payload": {"status": "ok"}})))
        self.assertFalse(self.sub.handle_frame(self.frame(station_id="10")))
        self.assertEqual(self.received, [])

    def test_released_subscription_drops_frames(self):
        self.sub.release()
        self.assertFalse(self.sub.active)
        self.assertFalse(self.sub.handle_frame(self.frame()))
        self.assertEqual(self.received, [])


if __name__ == "__main__":
    unittest.main()
