"""Frame rendering for the latency dashboard.

Everything here is pure: a frame is drawn cell by cell onto a :class:`Canvas`
sized to the terminal, then converted to a :class:`rich.text.Text` for
display. The layout, top to bottom, is a header line, the bar graph, and a
footer with the latest and average breakdown for both directions.
"""

from typing import NamedTuple

import numpy as np
from rich.style import Style
from rich.text import Text

from .latency import Direction, LatencyRecord, round_ms
from .stats import WindowSnapshot

BAR_GLYPHS = " ▁▂▃▄▅▆▇█"
PLACEHOLDER = "·" * 5
TOKEN_WIDTH = 5
AXIS_WIDTH = 7

FRAME_STYLE = Style.parse("color(250) on color(234)")
FRAME_BRIGHT_STYLE = FRAME_STYLE + Style.parse("color(231)")
ONE_USER_STYLE = FRAME_STYLE + Style.parse("color(197)")
TWO_USER_STYLE = FRAME_STYLE + Style.parse("color(106)")
GRAPH_STYLE = Style.parse("color(240) on color(16)")
GRAPH_BRIGHT_STYLE = GRAPH_STYLE + Style.parse("color(250)")
AXIS_STYLE = GRAPH_STYLE + Style(underline=True)
# Bars take the colour family of the participant that sent the probe.
FORWARD_BAR_STYLE = GRAPH_STYLE + Style.parse("color(161)")
BACKWARD_BAR_STYLE = GRAPH_STYLE + Style.parse("color(64)")

FOOTER_CAPTION = (
    "         total time          client -> server       server -> server"
    "       server -> client"
)
FOOTER_PLACEHOLDER_LINE = f"now {PLACEHOLDER}  avg {PLACEHOLDER}   " * 4
# Columns of the (last, mean) token pairs: total, then the three segments.
TOTAL_COLUMNS = (8, 19)
BREAKDOWN_COLUMNS = ((31, 42), (54, 65), (77, 88))


class Bar(NamedTuple):
    direction: Direction
    record: LatencyRecord


class Canvas:
    """A fixed-size grid of styled character cells.

    Writes outside the grid are silently clipped.
    """

    def __init__(self, width: int, height: int, style: Style = Style()):
        self.width = max(width, 0)
        self.height = max(height, 0)
        self.cells = [[(" ", style)] * self.width for _ in range(self.height)]

    def set_content(self, x: int, y: int, char: str, style: Style) -> None:
        if 0 <= x < self.width and 0 <= y < self.height:
            self.cells[y][x] = (char, style)

    def draw_text(self, x: int, y: int, style: Style, text: str) -> None:
        for char in text:
            self.set_content(x, y, char, style)
            x += 1

    def draw_segments(
        self, x: int, y: int, *segments: tuple[str, Style], align_right: bool = False
    ) -> None:
        """Draw consecutive differently styled strings.

        With ``align_right`` the last segment ends just before column ``x``.
        """
        if align_right:
            x -= sum(len(text) for text, _ in segments)
        for text, style in segments:
            self.draw_text(x, y, style, text)
            x += len(text)

    def row(self, y: int) -> str:
        return "".join(char for char, _ in self.cells[y])

    def style_at(self, x: int, y: int) -> Style:
        return self.cells[y][x][1]

    def to_text(self) -> Text:
        text = Text(no_wrap=True, overflow="crop", end="")
        for y, cells in enumerate(self.cells):
            if y:
                text.append("\n")
            run: list[str] = []
            run_style = None
            for char, style in cells:
                if run and style != run_style:
                    text.append("".join(run), run_style)
                    run = []
                run_style = style
                run.append(char)
            if run:
                text.append("".join(run), run_style)
        return text


def format_latency(latency: int, align_right: bool = False) -> str:
    """Format a nanosecond duration as a five-character token.

    Sub-second values render as whole milliseconds (``"150ms"``), longer ones
    with three significant digits in seconds (``"1.5s"``). Short tokens are
    padded and long ones truncated.
    """
    milliseconds = round_ms(latency)
    if milliseconds < 1000:
        text = f"{milliseconds}ms"
    else:
        text = f"{milliseconds / 1000:.3g}s"
    if align_right:
        text = text.rjust(TOKEN_WIDTH)
    else:
        text = text.ljust(TOKEN_WIDTH)
    return text[:TOKEN_WIDTH]


def layout_bars(width: int, forward: WindowSnapshot, backward: WindowSnapshot) -> list[Bar]:
    """Lay out one bar per column, alternating between the two directions.

    Bars are returned left to right, the rightmost being the most recent. The
    most recent bar belongs to the direction with the larger count, and to
    the backward direction when the counts are level. Columns beyond a
    direction's history get an empty record.
    """
    backward_turn = backward.count >= forward.count
    bars = []
    for i in range(width):
        position = i // 2
        if backward_turn:
            direction, history = Direction.BACKWARD, backward.history
        else:
            direction, history = Direction.FORWARD, forward.history
        if position < len(history):
            record = history[-1 - position]
        else:
            record = LatencyRecord()
        bars.append(Bar(direction, record))
        backward_turn = not backward_turn
    bars.reverse()
    return bars


def cell_unit(max_total: int, rows: int) -> int:
    """Latency represented by one full character row, rounded up."""
    if max_total <= 0 or rows <= 0:
        return 0
    return -(-max_total // rows)


def bar_levels(total: int, unit: int, rows: int) -> np.ndarray:
    """Fill level (0-8) of each row of a bar, bottom row first."""
    top = len(BAR_GLYPHS) - 1
    if unit <= 0:
        return np.zeros(rows, dtype=np.int64)
    fraction = (total - np.arange(rows, dtype=np.float64) * unit) / unit
    levels = np.floor(fraction * top + 0.5)
    return np.clip(levels, 0, top).astype(np.int64)


def draw_graph(
    canvas: Canvas,
    x: int,
    y: int,
    width: int,
    height: int,
    forward: WindowSnapshot,
    backward: WindowSnapshot,
) -> None:
    if width < AXIS_WIDTH + 1 or height < 1:
        return

    x += AXIS_WIDTH
    width -= AXIS_WIDTH
    bottom = y + height - 1

    canvas.draw_segments(
        x - 3,
        bottom,
        ("0 ", GRAPH_BRIGHT_STYLE),
        ("┃", AXIS_STYLE),
        ("▁" * width, GRAPH_STYLE),
    )
    for i in range(1, height):
        if i % 2 == 0:
            canvas.draw_text(
                x - AXIS_WIDTH, bottom - i, GRAPH_STYLE, f"{PLACEHOLDER} ╂{'╌' * width}"
            )
        else:
            canvas.set_content(x - 1, bottom - i, "┃", GRAPH_STYLE)

    if forward.count + backward.count < 1:
        return

    bars = layout_bars(width, forward, backward)
    max_total = max(0, max(bar.record.total for bar in bars))
    unit = cell_unit(max_total, height)

    for i in range(2, height, 2):
        label = format_latency(i * unit + unit // 2, align_right=True)
        canvas.draw_text(x - AXIS_WIDTH, bottom - i, GRAPH_BRIGHT_STYLE, label)

    for i, bar in enumerate(bars):
        if bar.direction is Direction.BACKWARD:
            style = BACKWARD_BAR_STYLE
        else:
            style = FORWARD_BAR_STYLE
        for j, level in enumerate(bar_levels(bar.record.total, unit, height)):
            # Level 0 leaves the gridline underneath visible.
            if level > 0:
                canvas.set_content(x + i, bottom - j, BAR_GLYPHS[level], style)


def draw_footer_values(
    canvas: Canvas, y: int, snapshot: WindowSnapshot, breakdown_valid: bool
) -> None:
    if snapshot.count == 0:
        return
    last, mean = snapshot.last, snapshot.mean
    pairs = [(TOTAL_COLUMNS, last.total, mean.total)]
    if breakdown_valid:
        pairs += [
            (BREAKDOWN_COLUMNS[0], last.client_server, mean.client_server),
            (BREAKDOWN_COLUMNS[1], last.server_server, mean.server_server),
            (BREAKDOWN_COLUMNS[2], last.server_client, mean.server_client),
        ]
    for (last_x, mean_x), last_value, mean_value in pairs:
        canvas.draw_text(last_x, y, FRAME_BRIGHT_STYLE, format_latency(last_value))
        canvas.draw_text(mean_x, y, FRAME_BRIGHT_STYLE, format_latency(mean_value))


def draw_dashboard(
    canvas: Canvas,
    one_id: str,
    two_id: str,
    forward: WindowSnapshot,
    backward: WindowSnapshot,
    breakdown_valid: bool,
) -> Canvas:
    """Draw a full frame: header, graph and footer."""
    width, height = canvas.width, canvas.height
    blank_line = " " * width

    canvas.draw_text(0, 0, FRAME_STYLE, blank_line)
    canvas.draw_segments(
        0,
        0,
        (one_id, ONE_USER_STYLE),
        (" <-", TWO_USER_STYLE),
        ("-> ", ONE_USER_STYLE),
        (two_id, TWO_USER_STYLE),
    )
    canvas.draw_segments(
        width,
        0,
        ("press ", FRAME_STYLE),
        ("Esc", FRAME_BRIGHT_STYLE),
        (" to quit", FRAME_STYLE),
        align_right=True,
    )
    canvas.draw_text(0, 1, GRAPH_STYLE, "▔" * width)

    for y in range(2, height - 4):
        canvas.draw_text(0, y, GRAPH_STYLE, blank_line)

    draw_graph(canvas, 0, 2, width, height - 6, forward, backward)

    canvas.draw_text(0, height - 4, GRAPH_STYLE, "▁" * width)
    for y in range(height - 3, height):
        canvas.draw_text(0, y, FRAME_STYLE, blank_line)

    canvas.draw_text(0, height - 3, FRAME_STYLE, FOOTER_CAPTION)
    canvas.draw_segments(
        0, height - 2, ("->  ", ONE_USER_STYLE), (FOOTER_PLACEHOLDER_LINE, FRAME_STYLE)
    )
    canvas.draw_segments(
        0, height - 1, ("<-  ", TWO_USER_STYLE), (FOOTER_PLACEHOLDER_LINE, FRAME_STYLE)
    )

    draw_footer_values(canvas, height - 2, forward, breakdown_valid)
    draw_footer_values(canvas, height - 1, backward, breakdown_valid)
    return canvas


def render_frame(
    width: int,
    height: int,
    one_id: str,
    two_id: str,
    forward: WindowSnapshot,
    backward: WindowSnapshot,
    breakdown_valid: bool,
) -> Text:
    canvas = Canvas(width, height)
    draw_dashboard(canvas, one_id, two_id, forward, backward, breakdown_valid)
    return canvas.to_text()
