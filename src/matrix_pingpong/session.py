"""Setup, background threads and teardown of a monitoring run.

A session logs both participants in, creates a room with the first
participant and joins it with the second, then runs one listener thread per
participant plus the aggregator thread of :class:`PingPongDriver`. Teardown
undoes the setup in reverse order.
"""

import threading
import time
import warnings
from collections.abc import Callable, Mapping

from .client import MatrixClient, MatrixEvent, TransportError
from .driver import Echo, LatencyCallback, PingPongDriver
from .latency import Direction
from .settings import PingPongSettings
from .stats import LatencyWindow


class PingPongSession:
    """Owns the shared room and the threads of one run.

    Attributes:
        one (MatrixClient): First participant; creates the room.
        two (MatrixClient): Second participant; joins the room.
        room_id (str | None): The shared room, once created.
        driver (PingPongDriver | None): The exchange driver, once started.
        _JOIN_TIMEOUT (float): Timeout in seconds for the aggregator join.
    """

    def __init__(
        self,
        one: MatrixClient,
        two: MatrixClient,
        settings: PingPongSettings,
        windows: Mapping[Direction, LatencyWindow],
        *,
        on_latency: LatencyCallback | None = None,
        clock: Callable[[], int] = time.time_ns,
    ):
        self.one = one
        self.two = two
        self.settings = settings
        self.windows = windows
        self.on_latency = on_latency
        self.clock = clock
        self.room_id: str | None = None
        self.driver: PingPongDriver | None = None
        self._stop = threading.Event()
        self._aggregator: threading.Thread | None = None
        self._listeners: list[threading.Thread] = []
        self._cleanups: list[Callable[[], None]] = []
        self._JOIN_TIMEOUT = 5.0  # seconds

    @property
    def breakdown_valid(self) -> bool:
        return self.driver is None or self.driver.engine.breakdown_valid

    def open(self) -> None:
        """Log both participants in and set up the shared room.

        Once :meth:`cancel` has been called no further step is started; the
        steps already done are still undone by :meth:`close`.

        Raises:
            PingPongError: If any step fails.
        """
        for client in (self.one, self.two):
            if self._stop.is_set():
                return
            self._login(client)

        if self._stop.is_set():
            return
        try:
            self.room_id = self.one.create_room(preset="public_chat")
        except TransportError as exc:
            raise self.one.fatal(f"unable to create room: {exc}") from exc
        self.one.log.info("created room %s", self.room_id)
        self._cleanups.append(lambda: self._leave(self.one))

        if self._stop.is_set():
            return
        try:
            self.two.join_room(self.room_id)
        except TransportError as exc:
            raise self.two.fatal(f"unable to join room {self.room_id}: {exc}") from exc
        self.two.log.info("joined room %s", self.room_id)
        self._cleanups.append(lambda: self._leave(self.two))

    def start(self) -> None:
        """Start the listener threads and the aggregator thread.

        Does nothing once the session has been cancelled.
        """
        if self._stop.is_set():
            return
        if self.room_id is None:
            raise RuntimeError("session must be opened before it is started")
        self.driver = PingPongDriver(
            self.one,
            self.two,
            self.room_id,
            self.windows,
            self.settings,
            on_latency=self.on_latency,
            stop=self._stop,
            clock=self.clock,
        )
        self._listeners = [
            threading.Thread(
                target=self._listen,
                args=(self.two, self.one, Direction.FORWARD),
                daemon=True,
            ),
            threading.Thread(
                target=self._listen,
                args=(self.one, self.two, Direction.BACKWARD),
                daemon=True,
            ),
        ]
        for thread in self._listeners:
            thread.start()
        self._aggregator = threading.Thread(target=self.driver.run, daemon=True)
        self._aggregator.start()

    def _listen(self, receiver: MatrixClient, sender: MatrixClient, direction: Direction):
        """Forward messages from ``sender`` to the driver, resyncing on failure."""

        def deliver(event: MatrixEvent, receive_time: int) -> None:
            self.driver.deliver(Echo(direction, event, receive_time))

        while not self._stop.is_set():
            try:
                receiver.listen(
                    sender.user_id,
                    self.room_id,
                    deliver,
                    self._stop,
                    self.settings.sync_timeout_seconds,
                    self.clock,
                )
            except TransportError as exc:
                receiver.log.warning("unable to sync: %s", exc)
            self._stop.wait(self.settings.retry_interval_seconds)

    def cancel(self) -> None:
        """Stop setup between steps and signal all threads to stop.

        Safe to call from any thread.
        """
        self._stop.set()

    def stop(self) -> None:
        """Signal all threads to stop and wait for the aggregator to exit.

        Listener threads may be parked in a long-poll ``/sync``; they are
        daemons and exit once their current request returns.
        """
        self.cancel()

        if self._aggregator:
            self._aggregator.join(self._JOIN_TIMEOUT)
            if self._aggregator.is_alive():
                warnings.warn(
                    "Aggregator thread did not stop gracefully within the timeout "
                    f"({self._JOIN_TIMEOUT} seconds).",
                    stacklevel=2,
                )
            self._aggregator = None

    def close(self) -> None:
        """Undo the setup in reverse order.

        Raises:
            PingPongError: On the first failing step; the remaining steps are
                abandoned.
        """
        while self._cleanups:
            cleanup = self._cleanups.pop()
            cleanup()

    def _login(self, client: MatrixClient) -> None:
        try:
            client.login()
        except TransportError as exc:
            raise client.fatal(f"unable to log in: {exc}") from exc
        client.log.info("logged in")
        self._cleanups.append(lambda: self._logout(client))

    def _logout(self, client: MatrixClient) -> None:
        try:
            client.logout()
        except TransportError as exc:
            raise client.fatal(f"unable to log out: {exc}") from exc
        client.log.info("logged out")

    def _leave(self, client: MatrixClient) -> None:
        try:
            client.leave_room(self.room_id)
        except TransportError as exc:
            raise client.fatal(f"unable to leave room {self.room_id}: {exc}") from exc
        client.log.info("left room %s", self.room_id)


__all__ = ["PingPongSession"]
