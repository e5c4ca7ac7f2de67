"""CLI tests for matrix-pingpong.

The session and dashboard are replaced by mocks so only the wiring is
exercised: credential validation, settings precedence, both run modes, and
the fatal-error exit path.
"""

import logging
import signal
import threading
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from matrix_pingpong.cli import app
from matrix_pingpong.client import PingPongError

runner = CliRunner()

USER1 = "@alice:example.org:pw1"
USER2 = "@bob:example.net:pw2"


@pytest.fixture(autouse=True)
def restore_logger():
    """``configure_logging`` replaces handlers on the package logger."""
    logger = logging.getLogger("matrix_pingpong")
    saved = (list(logger.handlers), logger.propagate, logger.level)
    yield
    logger.handlers, logger.propagate, logger.level = saved[0], saved[1], saved[2]


@pytest.fixture
def mock_session():
    with patch("matrix_pingpong.cli.PingPongSession") as mock:
        yield mock


@pytest.fixture
def no_wait():
    with patch("matrix_pingpong.cli.wait_for_interrupt") as mock:
        yield mock


def test_malformed_credentials(mock_session):
    result = runner.invoke(app, ["alice:example.org:pw", USER2])
    assert result.exit_code == 2
    mock_session.assert_not_called()


def test_debug_mode_runs_and_cleans_up(mock_session, no_wait):
    result = runner.invoke(app, ["--debug", "-m", "hello", "-i", "1s", USER1, USER2])

    assert result.exit_code == 0, result.output
    one, two, settings, windows = mock_session.call_args.args
    assert one.user_id == "@alice:example.org"
    assert two.user_id == "@bob:example.net"
    assert settings.message_text == "hello"
    assert settings.interval_seconds == 1.0
    assert settings.debug is True
    assert len(windows) == 2

    session = mock_session.return_value
    assert [c[0] for c in session.method_calls] == ["open", "start", "stop", "close"]
    no_wait.assert_called_once()


def test_env_enables_debug(mock_session, no_wait):
    result = runner.invoke(app, [USER1, USER2], env={"PINGPONG_DEBUG": "1"})
    assert result.exit_code == 0, result.output
    assert mock_session.call_args.args[2].debug is True


def test_setup_failure_is_fatal(mock_session, no_wait):
    mock_session.return_value.open.side_effect = PingPongError("[@alice:example.org] [FATAL] nope")

    result = runner.invoke(app, ["-d", USER1, USER2])

    assert result.exit_code == 1
    mock_session.return_value.start.assert_not_called()
    no_wait.assert_not_called()


def test_cleanup_failure_is_fatal(mock_session, no_wait):
    mock_session.return_value.close.side_effect = PingPongError("unable to log out")
    result = runner.invoke(app, ["-d", USER1, USER2])
    assert result.exit_code == 1


def test_dashboard_requires_terminal(mock_session):
    with patch("matrix_pingpong.cli.stdout_is_terminal", return_value=False):
        result = runner.invoke(app, [USER1, USER2])
    assert result.exit_code == 1
    mock_session.return_value.open.assert_not_called()


def test_dashboard_mode(mock_session):
    dashboard = MagicMock(fatal_error=None, startup_thread=None)
    with (
        patch("matrix_pingpong.cli.stdout_is_terminal", return_value=True),
        patch("matrix_pingpong.dashboard.Dashboard", return_value=dashboard) as cls,
    ):
        result = runner.invoke(app, [USER1, USER2])

    assert result.exit_code == 0, result.output
    session = mock_session.return_value
    assert cls.call_args.args[2] is session.windows
    dashboard.run.assert_called_once()
    assert session.on_latency == dashboard.notify_latency
    session.stop.assert_called_once()
    session.close.assert_called_once()


def test_dashboard_fatal_error_skips_cleanup(mock_session):
    dashboard = MagicMock(fatal_error=PingPongError("boom"), startup_thread=None)
    with (
        patch("matrix_pingpong.cli.stdout_is_terminal", return_value=True),
        patch("matrix_pingpong.dashboard.Dashboard", return_value=dashboard),
    ):
        result = runner.invoke(app, [USER1, USER2])

    assert result.exit_code == 1
    dashboard.run.assert_called_once()
    mock_session.return_value.close.assert_not_called()


def test_interrupt_during_setup_still_cleans_up(mock_session):
    """Ctrl+C while logging in cancels setup but still runs the teardown."""
    session = mock_session.return_value
    previous_handler = signal.getsignal(signal.SIGINT)

    def interrupted_open():
        signal.getsignal(signal.SIGINT)(signal.SIGINT, None)

    session.open.side_effect = interrupted_open

    result = runner.invoke(app, ["-d", USER1, USER2])

    assert result.exit_code == 0, result.output
    assert [c[0] for c in session.method_calls] == ["open", "cancel", "start", "stop", "close"]
    assert signal.getsignal(signal.SIGINT) is previous_handler


def test_dashboard_quit_waits_for_startup(mock_session):
    """Teardown starts only after setup on the startup thread has finished."""
    session = mock_session.return_value
    events = []
    opening = threading.Event()
    cancelled = threading.Event()

    def slow_open():
        events.append("open")
        opening.set()
        assert cancelled.wait(timeout=5)
        events.append("open done")

    def cancel():
        events.append("cancel")
        cancelled.set()

    session.open.side_effect = slow_open
    session.cancel.side_effect = cancel
    session.start.side_effect = lambda: events.append("start")
    session.stop.side_effect = lambda: events.append("stop")
    session.close.side_effect = lambda: events.append("close")

    dashboard = MagicMock(fatal_error=None)

    def run():
        # quit as soon as setup has begun
        dashboard.startup_thread = threading.Thread(target=cls.call_args.kwargs["startup"])
        dashboard.startup_thread.start()
        assert opening.wait(timeout=5)

    dashboard.run.side_effect = run
    with (
        patch("matrix_pingpong.cli.stdout_is_terminal", return_value=True),
        patch("matrix_pingpong.dashboard.Dashboard", return_value=dashboard) as cls,
    ):
        result = runner.invoke(app, [USER1, USER2])

    assert result.exit_code == 0, result.output
    assert events == ["open", "cancel", "open done", "start", "stop", "close"]
