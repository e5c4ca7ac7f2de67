"""Correlation of sent probes with their echoes.

All durations and timestamps handled here are integer nanoseconds. A round
trip is decomposed into the segment from the sending client to its homeserver,
the server-to-server relay delay reported by the receiving homeserver (the
event ``age``), and the remaining segment from the server to the receiving
client.
"""

import enum
from dataclasses import dataclass

import numpy as np

NS_PER_MS = 1_000_000


def round_ms(duration: int) -> int:
    """Round a nanosecond duration to whole milliseconds, halves away from zero."""
    quotient, remainder = divmod(abs(duration), NS_PER_MS)
    if remainder * 2 >= NS_PER_MS:
        quotient += 1
    return quotient if duration >= 0 else -quotient


class Direction(enum.Enum):
    """Propagation direction of a probe.

    ``FORWARD`` probes travel from the first participant to the second (and are
    received by the second); ``BACKWARD`` probes travel the other way.
    """

    FORWARD = "->"
    BACKWARD = "<-"


@dataclass(frozen=True, slots=True)
class LatencyRecord:
    """Latency decomposition of a single round trip.

    Attributes:
        total (int): Local send to local receive, in nanoseconds.
        client_server (int): Sending client to its homeserver.
        server_server (int): Relay delay reported by the receiving homeserver.
        server_client (int): Receiving homeserver to the receiving client.
    """

    total: int = 0
    client_server: int = 0
    server_server: int = 0
    server_client: int = 0

    def as_array(self) -> np.ndarray:
        return np.array(
            [self.total, self.client_server, self.server_server, self.server_client],
            dtype=np.int64,
        )

    @classmethod
    def from_array(cls, values: np.ndarray) -> "LatencyRecord":
        total, client_server, server_server, server_client = (int(v) for v in values)
        return cls(total, client_server, server_server, server_client)

    def is_breakdown_valid(self) -> bool:
        """Return whether every segment of the breakdown is strictly positive."""
        return (
            self.client_server > 0 and self.server_server > 0 and self.server_client > 0
        )


class CorrelationEngine:
    """Match sent message ids to their echoes and compute latency records.

    The engine owns the pending-send table and the breakdown validity latch.
    It is not thread-safe; a single consumer loop is expected to own it.

    Attributes:
        breakdown_valid (bool): Starts ``True`` and flips to ``False``
            permanently the first time any computed segment is non-positive.
            A single anomalous measurement casts doubt on the clock
            synchronization of the whole system, so the latch covers both
            directions.
    """

    def __init__(self) -> None:
        self._pending: dict[str, int] = {}
        self.breakdown_valid = True

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def record_send(self, event_id: str, send_time: int) -> None:
        """Remember the local send time of ``event_id``.

        Args:
            event_id: Identifier assigned to the message by the homeserver.
            send_time: Local clock reading taken just before sending.
        """
        if event_id in self._pending:
            return
        self._pending[event_id] = send_time

    def record_receive(
        self,
        event_id: str,
        receive_time: int,
        origin_timestamp: int,
        server_age: int,
    ) -> LatencyRecord | None:
        """Correlate an echo with its pending send and decompose the latency.

        Args:
            event_id: Identifier of the received message.
            receive_time: Local clock reading when the echo was observed.
            origin_timestamp: Creation time recorded by the sender's homeserver.
            server_age: Relay delay reported by the receiving homeserver.

        Returns:
            The latency record, or ``None`` if ``event_id`` is not pending
            (an orphan echo). Orphans leave the engine untouched.
        """
        send_time = self._pending.pop(event_id, None)
        if send_time is None:
            return None

        total = receive_time - send_time
        origin_server_client = receive_time - origin_timestamp

        record = LatencyRecord(
            total=total,
            client_server=total - origin_server_client,
            server_server=server_age,
            server_client=origin_server_client - server_age,
        )

        if not record.is_breakdown_valid():
            self.breakdown_valid = False

        return record


__all__ = ["NS_PER_MS", "CorrelationEngine", "Direction", "LatencyRecord", "round_ms"]
