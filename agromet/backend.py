from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Protocol

from agromet.models import Measurement, Station


class BackendError(Exception):
    """A query or write against the data backend failed."""


class AuthError(Exception):
    """Sign-in was rejected or the auth service could not be reached."""


@dataclass(frozen=True)
class AuthUser:
    id: str
    email: str
    access_token: str | None = None


class Subscription(Protocol):
    def release(self) -> None: ...


InsertCallback = Callable[[Measurement], None]


class Backend(Protocol):
    def list_stations(self) -> list[Station]: ...

    def query_measurements(self, station_id: str, since: datetime) -> list[Measurement]: ...

    def subscribe_inserts(self, station_id: str, on_insert: InsertCallback) -> Subscription: ...

    def update_station_config(self, station_id: str, sensors_config: dict) -> None: ...


class Auth(Protocol):
    def sign_in(self, email: str, password: str) -> AuthUser: ...

    def sign_out(self) -> None: ...

    def current_user(self) -> AuthUser | None: ...
