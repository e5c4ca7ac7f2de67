"""Live terminal dashboard built on Textual.

The whole frame is one widget that redraws from scratch whenever a new
latency record arrives, the terminal is resized, or the app first mounts.
Pressing Esc exits the app, which restores the previous screen contents.
"""

import threading
from collections.abc import Callable, Mapping

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.events import Resize
from textual.message import Message
from textual.widget import Widget

from .latency import Direction
from .render import render_frame
from .stats import LatencyWindow


class LatencyRecorded(Message):
    """Posted (from any thread) when a latency window gained a record."""


class LatencyView(Widget):
    DEFAULT_CSS = """
    LatencyView {
        width: 100%;
        height: 100%;
    }
    """

    def __init__(
        self,
        one_id: str,
        two_id: str,
        windows: Mapping[Direction, LatencyWindow],
        breakdown_valid: Callable[[], bool],
    ) -> None:
        super().__init__()
        self.one_id = one_id
        self.two_id = two_id
        self.windows = windows
        self.breakdown_valid = breakdown_valid

    def render(self):
        return render_frame(
            self.size.width,
            self.size.height,
            self.one_id,
            self.two_id,
            self.windows[Direction.FORWARD].snapshot(),
            self.windows[Direction.BACKWARD].snapshot(),
            self.breakdown_valid(),
        )

    def on_resize(self, event: Resize) -> None:
        self.refresh()


class Dashboard(App):
    """Full-screen latency dashboard.

    ``startup`` runs on a background thread once the app is mounted, so the
    frame is visible while the participants log in. If it raises, the error
    is kept in ``fatal_error`` and the app exits with return code 1; callers
    report the error only after :meth:`run` has returned and the terminal has
    been restored.

    Attributes:
        fatal_error (BaseException | None): Error that forced the app to exit.
    """

    CSS = """
    Screen {
        overflow: hidden;
    }
    """

    BINDINGS = [Binding("escape", "quit", "Quit", priority=True)]

    def __init__(
        self,
        one_id: str,
        two_id: str,
        windows: Mapping[Direction, LatencyWindow],
        breakdown_valid: Callable[[], bool],
        startup: Callable[[], None] | None = None,
    ) -> None:
        super().__init__()
        self.one_id = one_id
        self.two_id = two_id
        self.windows = windows
        self.breakdown_valid = breakdown_valid
        self.startup = startup
        self.startup_thread: threading.Thread | None = None
        self.fatal_error: BaseException | None = None

    def compose(self) -> ComposeResult:
        yield LatencyView(self.one_id, self.two_id, self.windows, self.breakdown_valid)

    def on_mount(self) -> None:
        if self.startup is not None:
            self.startup_thread = threading.Thread(target=self._run_startup, daemon=True)
            self.startup_thread.start()

    def _run_startup(self) -> None:
        try:
            self.startup()
        except Exception as exc:
            self.fail(exc)

    def fail(self, error: BaseException) -> None:
        """Record a fatal error and exit the app from a background thread."""
        self.fatal_error = error
        if self.is_running:
            self.call_from_thread(self.exit, None, 1)

    def notify_latency(self, *_args) -> None:
        """Trigger a redraw. Safe to call from any thread.

        Accepts the arguments of the session latency callback and ignores them;
        the view reads every window on each redraw.
        """
        self.post_message(LatencyRecorded())

    def on_latency_recorded(self, message: LatencyRecorded) -> None:
        self.query_one(LatencyView).refresh()
