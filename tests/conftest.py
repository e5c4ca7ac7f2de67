"""Shared fakes for driver and session tests.

``FakeHomeserver`` stands in for the Matrix transport: a message sent by one
participant is queued for the other participant's listener, stamped with the
current wall clock as its origin timestamp.
"""

import queue
import time

import pytest

from matrix_pingpong.client import Credentials, MatrixClient, MatrixEvent, TransportError
from matrix_pingpong.settings import PingPongSettings


class FakeHomeserver:
    def __init__(self):
        self.calls = []
        self.inboxes = {}
        self.counter = 0

    def client(self, user):
        client = FakeClient(self, Credentials.parse(f"@{user}:example.org:pw"))
        self.inboxes[client.user_id] = queue.Queue()
        return client


class FakeClient(MatrixClient):
    """A participant whose requests are answered by a :class:`FakeHomeserver`."""

    def __init__(self, server, credentials):
        super().__init__(credentials)
        self.server = server
        self.failures = {}
        self.sent = []

    def _maybe_fail(self, name):
        self.server.calls.append((self.user_id, name))
        remaining = self.failures.get(name, 0)
        if remaining:
            self.failures[name] = remaining - 1
            raise TransportError(f"{name} failed")

    def login(self):
        self._maybe_fail("login")

    def logout(self):
        self._maybe_fail("logout")

    def create_room(self, preset="public_chat"):
        self._maybe_fail("create_room")
        return "!room:example.org"

    def join_room(self, room_id):
        self._maybe_fail("join_room")

    def leave_room(self, room_id):
        self._maybe_fail("leave_room")

    def send_text(self, room_id, text):
        self._maybe_fail("send_text")
        self.server.counter += 1
        event_id = f"$event{self.server.counter}"
        self.sent.append(event_id)
        event = MatrixEvent(
            event_id=event_id,
            sender=self.user_id,
            room_id=room_id,
            origin_server_ts=time.time_ns() // 1_000_000,
            age=1,
        )
        for user_id, inbox in self.server.inboxes.items():
            if user_id != self.user_id:
                inbox.put(event)
        return event_id

    def listen(self, sender_id, room_id, callback, stop, timeout_seconds, clock):
        inbox = self.server.inboxes[self.user_id]
        while not stop.is_set():
            try:
                event = inbox.get(timeout=0.01)
            except queue.Empty:
                continue
            if event.sender == sender_id and event.room_id == room_id:
                callback(event, clock())


@pytest.fixture
def homeserver():
    return FakeHomeserver()


@pytest.fixture
def fast_settings():
    return PingPongSettings(
        interval_seconds=0.0, retry_interval_seconds=0.0, sync_timeout_seconds=0.01
    )
