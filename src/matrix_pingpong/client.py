"""Minimal Matrix client-server API transport for one participant.

Only the handful of endpoints needed to bounce messages between two accounts
are implemented: password login/logout, room creation, join/leave, sending a
text message, and long-poll ``/sync`` for receiving messages.
"""

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from threading import Event
from typing import Any
from urllib.parse import quote

import requests

logger = logging.getLogger("matrix_pingpong")

API_PREFIX = "/_matrix/client/v3"
REQUEST_TIMEOUT_SECONDS = 30.0


class TransportError(RuntimeError):
    """A request to the homeserver failed or returned an unusable payload."""


class CredentialsError(ValueError):
    """A credential string is not of the form ``@user:homeserver:password``."""


class PingPongError(RuntimeError):
    """An unrecoverable error that terminates the run."""


@dataclass(frozen=True)
class Credentials:
    username: str
    homeserver: str
    password: str

    @property
    def user_id(self) -> str:
        return f"@{self.username}:{self.homeserver}"

    @property
    def base_url(self) -> str:
        if "://" in self.homeserver:
            return self.homeserver.rstrip("/")
        return f"https://{self.homeserver}"

    @classmethod
    def parse(cls, text: str) -> "Credentials":
        """Parse ``@user:homeserver.org:password``.

        The password is everything after the second colon and may itself
        contain colons.

        Raises:
            CredentialsError: If *text* does not have the expected form.
        """
        parts = text.split(":", 2)
        if len(parts) != 3 or not parts[0].startswith("@"):
            raise CredentialsError(
                "user credentials must be of the form @user:homeserver.org:password"
            )
        return cls(username=parts[0][1:], homeserver=parts[1], password=parts[2])

    def __repr__(self) -> str:
        return f"Credentials(user_id={self.user_id!r})"


@dataclass(frozen=True)
class MatrixEvent:
    """The fields of a received ``m.room.message`` event used for correlation."""

    event_id: str
    sender: str
    room_id: str
    origin_server_ts: int  # ms since the epoch
    age: int  # ms


class ParticipantLogger(logging.LoggerAdapter):
    """Prefix every log line with the participant's user id."""

    def process(self, msg, kwargs):
        return f"[{self.extra['user_id']}] {msg}", kwargs


class MatrixClient:
    """One logged-in (or not yet logged-in) Matrix account.

    Attributes:
        credentials (Credentials): Parsed account credentials.
        access_token (str | None): Token obtained by :meth:`login`.
        log (ParticipantLogger): Logger prefixed with this account's user id.
    """

    def __init__(self, credentials: Credentials, session: requests.Session | None = None):
        self.credentials = credentials
        self.session = session if session is not None else requests.Session()
        self.access_token: str | None = None
        self.next_batch: str | None = None
        self.log = ParticipantLogger(logger, {"user_id": credentials.user_id})

    @property
    def user_id(self) -> str:
        return self.credentials.user_id

    def fatal(self, message: str) -> PingPongError:
        return PingPongError(f"[{self.user_id}] [FATAL] {message}")

    def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ) -> dict[str, Any]:
        url = f"{self.credentials.base_url}{API_PREFIX}{path}"
        headers = {}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        try:
            resp = self.session.request(
                method, url, json=json, params=params, headers=headers, timeout=timeout
            )
            resp.raise_for_status()
            payload = resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise TransportError(f"{method} {path} failed: {exc}") from exc
        if not isinstance(payload, dict):
            raise TransportError(f"{method} {path} returned a non-object payload")
        return payload

    def login(self) -> None:
        payload = self._request(
            "POST",
            "/login",
            json={
                "type": "m.login.password",
                "identifier": {"type": "m.id.user", "user": self.credentials.username},
                "password": self.credentials.password,
            },
        )
        token = payload.get("access_token")
        if not token:
            raise TransportError("login response did not contain an access token")
        self.access_token = token

    def logout(self) -> None:
        self._request("POST", "/logout", json={})
        self.access_token = None

    def create_room(self, preset: str = "public_chat") -> str:
        payload = self._request("POST", "/createRoom", json={"preset": preset})
        room_id = payload.get("room_id")
        if not room_id:
            raise TransportError("createRoom response did not contain a room id")
        return room_id

    def join_room(self, room_id: str) -> None:
        self._request("POST", f"/join/{quote(room_id, safe='')}", json={})

    def leave_room(self, room_id: str) -> None:
        self._request("POST", f"/rooms/{quote(room_id, safe='')}/leave", json={})

    def send_text(self, room_id: str, text: str) -> str:
        """Send a plain-text message and return the event id assigned to it."""
        txn_id = uuid.uuid4().hex
        payload = self._request(
            "PUT",
            f"/rooms/{quote(room_id, safe='')}/send/m.room.message/{txn_id}",
            json={"msgtype": "m.text", "body": text},
        )
        event_id = payload.get("event_id")
        if not event_id:
            raise TransportError("send response did not contain an event id")
        return event_id

    def sync(self, timeout_seconds: float) -> list[dict[str, Any]]:
        """Long-poll ``/sync`` once and return the timeline events per room.

        Returns:
            A list of raw event dicts, each with ``room_id`` filled in.
        """
        params: dict[str, Any] = {"timeout": int(timeout_seconds * 1000)}
        if self.next_batch:
            params["since"] = self.next_batch
        payload = self._request(
            "GET", "/sync", params=params, timeout=timeout_seconds + REQUEST_TIMEOUT_SECONDS
        )
        self.next_batch = payload.get("next_batch", self.next_batch)

        events = []
        joined = payload.get("rooms", {}).get("join", {})
        for room_id, room in joined.items():
            for raw in room.get("timeline", {}).get("events", []):
                events.append({**raw, "room_id": room_id})
        return events

    def listen(
        self,
        sender_id: str,
        room_id: str,
        callback: Callable[[MatrixEvent, int], None],
        stop: Event,
        timeout_seconds: float,
        clock: Callable[[], int],
    ) -> None:
        """Deliver messages from ``sender_id`` in ``room_id`` until ``stop`` is set.

        ``callback`` receives each event along with the local clock reading
        taken when the sync response arrived.

        Raises:
            TransportError: If a sync request fails.
        """
        while not stop.is_set():
            events = self.sync(timeout_seconds)
            receive_time = clock()
            for raw in events:
                if raw.get("type") != "m.room.message":
                    continue
                if raw.get("sender") != sender_id or raw.get("room_id") != room_id:
                    continue
                event = parse_event(raw)
                if event is not None:
                    callback(event, receive_time)


def parse_event(raw: dict[str, Any]) -> MatrixEvent | None:
    """Build a :class:`MatrixEvent` from a raw timeline event, if complete."""
    try:
        return MatrixEvent(
            event_id=str(raw["event_id"]),
            sender=str(raw["sender"]),
            room_id=str(raw["room_id"]),
            origin_server_ts=int(raw["origin_server_ts"]),
            age=int(raw.get("unsigned", {}).get("age", 0)),
        )
    except (KeyError, TypeError, ValueError):
        return None
