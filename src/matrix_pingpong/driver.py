"""The alternating ping-pong exchange and its single-consumer aggregator loop.

Exactly one probe is in flight at any time. The first participant sends the
initial probe; whichever participant receives an echo from its counterpart
sends the next one after the configured interval. Listener threads only hand
received messages to :meth:`PingPongDriver.deliver`; the aggregator loop in
:meth:`PingPongDriver.run` is the only code that touches the correlation
engine and updates the latency windows.
"""

import enum
import queue
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from .client import MatrixClient, MatrixEvent, TransportError
from .latency import NS_PER_MS, CorrelationEngine, Direction, LatencyRecord, round_ms
from .settings import PingPongSettings
from .stats import LatencyWindow

LatencyCallback = Callable[[Direction, LatencyRecord], None]


class DriverState(enum.Enum):
    IDLE = "idle"
    AWAITING_ECHO = "awaiting_echo"


@dataclass(frozen=True)
class Echo:
    """A message received by one participant from its counterpart.

    Attributes:
        direction (Direction): Direction the message travelled in.
        event (MatrixEvent): The received event.
        receive_time (int): Local clock reading (ns) when it was observed.
    """

    direction: Direction
    event: MatrixEvent
    receive_time: int


class PingPongDriver:
    """Two-state machine driving the exchange between two participants.

    Attributes:
        one (MatrixClient): First participant; sends the initial probe.
        two (MatrixClient): Second participant.
        room_id (str): The shared room.
        windows (Mapping[Direction, LatencyWindow]): Per-direction statistics.
        engine (CorrelationEngine): Pending sends and the validity latch.
        state (DriverState): ``AWAITING_ECHO`` while a probe is in flight.
        inbox (queue.Queue): Echoes handed over by the listener threads.
    """

    POLL_TIMEOUT = 0.1  # seconds

    def __init__(
        self,
        one: MatrixClient,
        two: MatrixClient,
        room_id: str,
        windows: Mapping[Direction, LatencyWindow],
        settings: PingPongSettings,
        *,
        engine: CorrelationEngine | None = None,
        on_latency: LatencyCallback | None = None,
        stop: threading.Event | None = None,
        clock: Callable[[], int] = time.time_ns,
    ):
        self.one = one
        self.two = two
        self.room_id = room_id
        self.windows = windows
        self.settings = settings
        self.engine = engine if engine is not None else CorrelationEngine()
        self.on_latency = on_latency
        self.stop_event = stop if stop is not None else threading.Event()
        self.clock = clock
        self.state = DriverState.IDLE
        self.inbox: queue.Queue[Echo] = queue.Queue()

    def receiver(self, direction: Direction) -> MatrixClient:
        return self.two if direction is Direction.FORWARD else self.one

    def deliver(self, echo: Echo) -> None:
        """Queue an echo for the aggregator loop. Safe to call from any thread."""
        self.inbox.put(echo)

    def send_probe(self, sender: MatrixClient) -> bool:
        """Send the next probe from ``sender``, retrying until it succeeds.

        The send time is read from the local clock before the request goes
        out and is recorded under the event id the homeserver assigns.

        Returns:
            ``True`` once the probe is sent, ``False`` if another probe is
            still in flight or the driver was stopped first.
        """
        if self.state is not DriverState.IDLE:
            sender.log.warning("not sending a message while another one is in flight")
            return False
        while not self.stop_event.is_set():
            send_time = self.clock()
            try:
                event_id = sender.send_text(self.room_id, self.settings.message_text)
            except TransportError as exc:
                sender.log.warning("unable to send message: %s", exc)
                self.stop_event.wait(self.settings.retry_interval_seconds)
                continue
            self.engine.record_send(event_id, send_time)
            self.state = DriverState.AWAITING_ECHO
            sender.log.info("sent message %s", event_id)
            return True
        return False

    def handle_echo(self, echo: Echo) -> LatencyRecord | None:
        """Correlate an echo and, unless it is an orphan, send the reply.

        Echoes arriving while no probe is in flight are orphans.

        Returns:
            The computed latency record, or ``None`` for an orphan echo.
        """
        if self.state is not DriverState.AWAITING_ECHO:
            return None
        event = echo.event
        record = self.engine.record_receive(
            event.event_id,
            echo.receive_time,
            event.origin_server_ts * NS_PER_MS,
            event.age * NS_PER_MS,
        )
        if record is None:
            return None

        self.state = DriverState.IDLE
        receiver = self.receiver(echo.direction)
        receiver.log.info(
            "received message %s, time: %sms total, %sms client->server, "
            "%sms server->server, %sms server->client%s",
            event.event_id,
            round_ms(record.total),
            round_ms(record.client_server),
            round_ms(record.server_server),
            round_ms(record.server_client),
            "" if self.engine.breakdown_valid else " (BREAKDOWN INVALID)",
        )

        self.windows[echo.direction].update(record)
        if self.on_latency is not None:
            self.on_latency(echo.direction, record)

        if not self.stop_event.wait(self.settings.interval_seconds):
            self.send_probe(receiver)
        return record

    def run(self) -> None:
        """Send the initial probe, then consume echoes until stopped."""
        if not self.send_probe(self.one):
            return
        while not self.stop_event.is_set():
            try:
                echo = self.inbox.get(timeout=self.POLL_TIMEOUT)
            except queue.Empty:
                continue
            self.handle_echo(echo)

    def stop(self) -> None:
        self.stop_event.set()


__all__ = ["DriverState", "Echo", "PingPongDriver"]
