"""End-to-end latency monitoring for the Matrix messaging protocol.

This package bounces a message between two Matrix accounts and breaks the
round-trip latency down into client-to-server, server-to-server and
server-to-client segments, shown on a live terminal dashboard.
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
