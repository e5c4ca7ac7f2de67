"""Command-line entry point for the Matrix ping-pong latency monitor.

Two accounts bounce a message back and forth in a freshly created room while
the round-trip latency and its breakdown are shown on a live dashboard, or,
with ``--debug``, logged line by line. Configuration follows the precedence
CLI > environment > settings file > defaults (see
:class:`~matrix_pingpong.settings.PingPongSettings`).
"""

import logging
import os
import signal
import sys
import threading
import time
from pathlib import Path
from typing import Annotated, NoReturn

import typer
from rich.console import Console
from rich.logging import RichHandler

from .client import Credentials, CredentialsError, MatrixClient, PingPongError
from .latency import Direction
from .session import PingPongSession
from .settings import PingPongSettings
from .stats import LatencyWindow

LOGGER_NAME = "matrix_pingpong"

logger = logging.getLogger(LOGGER_NAME)

app = typer.Typer(add_completion=False, no_args_is_help=True)


def configure_logging(debug: bool) -> None:
    """Send package logs to stderr through rich.

    Without ``debug`` only critical records get through, so nothing is
    written over the dashboard.
    """
    handler = RichHandler(
        console=Console(stderr=True),
        show_path=False,
        markup=False,
        log_time_format="[%Y-%m-%d %H:%M:%S]",
    )
    logger.handlers = [handler]
    logger.propagate = False
    logger.setLevel(logging.INFO if debug else logging.CRITICAL)


def fatal(error: BaseException | str) -> NoReturn:
    """Report an unrecoverable error and terminate with exit code 1.

    Must only be called once the dashboard (if any) has fully exited.
    """
    logger.critical("%s", error)
    raise typer.Exit(code=1)


def parse_credentials(value: str, param_hint: str) -> Credentials:
    try:
        return Credentials.parse(value)
    except CredentialsError as exc:
        raise typer.BadParameter(str(exc), param_hint=param_hint) from exc


def stdout_is_terminal() -> bool:
    return sys.stdout.isatty()


def wait_for_interrupt(interrupted: threading.Event) -> None:
    """Block until the interrupt handler sets ``interrupted``."""
    while not interrupted.is_set():
        time.sleep(0.1)


def run_plain(session: PingPongSession) -> None:
    """Run with plain log output until interrupted (Ctrl+C).

    An interrupt during setup cancels the remaining setup steps. Teardown
    always runs once setup has succeeded and ignores further interrupts.
    """
    interrupted = threading.Event()

    def on_interrupt(signum, frame):
        if not interrupted.is_set():
            interrupted.set()
            session.cancel()

    previous_handler = signal.signal(signal.SIGINT, on_interrupt)
    try:
        try:
            session.open()
            session.start()
        except PingPongError as exc:
            fatal(exc)

        wait_for_interrupt(interrupted)
        signal.signal(signal.SIGINT, signal.SIG_IGN)
        session.stop()

        try:
            session.close()
        except PingPongError as exc:
            fatal(exc)
    finally:
        signal.signal(signal.SIGINT, previous_handler)


def run_dashboard(session: PingPongSession) -> None:
    """Run with the live dashboard until Esc is pressed."""
    from .dashboard import Dashboard

    if not stdout_is_terminal():
        fatal("unable to initialize terminal UI: standard output is not a terminal")

    def startup() -> None:
        session.open()
        session.start()

    dashboard = Dashboard(
        session.one.user_id,
        session.two.user_id,
        session.windows,
        lambda: session.breakdown_valid,
        startup=startup,
    )
    session.on_latency = dashboard.notify_latency

    dashboard.run()

    # The terminal is restored once run() returns. Setup may still be running
    # on the startup thread; it stops at the next step and must finish before
    # teardown starts.
    session.cancel()
    if dashboard.startup_thread is not None:
        dashboard.startup_thread.join()
    session.stop()
    if dashboard.fatal_error is not None:
        fatal(dashboard.fatal_error)

    try:
        session.close()
    except PingPongError as exc:
        fatal(exc)


@app.command()
def run(
    user1: Annotated[
        str,
        typer.Argument(
            help="Credentials for the first user, of the form @user:homeserver.org:password."
        ),
    ],
    user2: Annotated[
        str,
        typer.Argument(
            help="Credentials for the second user, of the form @user:homeserver.org:password."
        ),
    ],
    message_text: Annotated[
        str | None,
        typer.Option("--message-text", "-m", help="Content of the messages sent back and forth."),
    ] = None,
    interval: Annotated[
        str | None,
        typer.Option(
            "--interval", "-i", help="Time to wait before responding to a message (e.g. 3s)."
        ),
    ] = None,
    retry_interval: Annotated[
        str | None,
        typer.Option(
            "--retry-interval",
            "-r",
            help="Time to wait before retrying an operation if an error occurs (e.g. 5s).",
        ),
    ] = None,
    debug: Annotated[
        bool | None,
        typer.Option(
            "--debug/--no-debug",
            "-d/-D",
            help="Print a detailed log of every operation, instead of the dashboard.",
        ),
    ] = None,
    settings_file: Annotated[
        Path | None,
        typer.Option(
            help=(
                "Path to a TOML or JSON settings file. CLI arguments override"
                " environment variables, which override file values."
            )
        ),
    ] = None,
):
    """Measure end-to-end message latency between two Matrix accounts.

    Raises:
        typer.BadParameter: If the credentials are malformed.
        FileNotFoundError: If the provided settings file does not exist.
        ValueError: If configuration sources contain invalid data.
    """
    one_credentials = parse_credentials(user1, "USER1")
    two_credentials = parse_credentials(user2, "USER2")

    settings = PingPongSettings.from_sources(
        cli_overrides={
            "message_text": message_text,
            "interval_seconds": interval,
            "retry_interval_seconds": retry_interval,
            "debug": debug,
        },
        env=os.environ,
        settings_file=settings_file,
    )
    configure_logging(settings.debug)

    windows = {
        Direction.FORWARD: LatencyWindow(),
        Direction.BACKWARD: LatencyWindow(),
    }
    session = PingPongSession(
        MatrixClient(one_credentials),
        MatrixClient(two_credentials),
        settings,
        windows,
    )

    if settings.debug:
        run_plain(session)
    else:
        run_dashboard(session)


if __name__ == "__main__":
    app()
