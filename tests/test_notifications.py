import io
import logging

import pytest
from rich.console import Console

from browser_oracle.browser.base import is_connection_closed_error, is_stale_element_error
from browser_oracle.factory import build_notifier
from browser_oracle.models import NotificationEvent, NotificationLevel
from browser_oracle.notifications.base import (
    ConsoleNotifier,
    LoggingNotifier,
    Notifier,
    emit,
)


class RecordingNotifier(Notifier):
    def __init__(self) -> None:
        self.events: list[NotificationEvent] = []

    def notify(self, event: NotificationEvent) -> None:
        self.events.append(event)


def test_sink_wraps_lines_as_events() -> None:
    notifier = RecordingNotifier()
    sink = notifier.sink("progress")

    sink("Uploading attachment: a.txt")

    assert len(notifier.events) == 1
    assert notifier.events[0].type == "progress"
    assert notifier.events[0].message == "Uploading attachment: a.txt"


def test_console_notifier_prints_brackets_verbatim() -> None:
    buffer = io.StringIO()
    notifier = ConsoleNotifier(Console(file=buffer, width=200, color_system=None))

    notifier.sink()("[1m02s / ~10m] ░░░░░░░░░░  10% — Thinking")

    assert "[1m02s / ~10m]" in buffer.getvalue()


def test_logging_notifier_maps_levels(caplog) -> None:
    notifier = LoggingNotifier(logging.getLogger("oracle-test"))

    with caplog.at_level(logging.INFO, logger="oracle-test"):
        notifier.notify(
            NotificationEvent(type="lock", message="waiting", level=NotificationLevel.WARNING)
        )

    assert caplog.records[0].levelno == logging.WARNING
    assert caplog.records[0].getMessage() == "waiting"


def test_emit_without_sink_logs_debug(caplog) -> None:
    with caplog.at_level(logging.DEBUG, logger="browser_oracle.notifications.base"):
        emit(None, "quiet line")

    assert "quiet line" in caplog.text


def test_build_notifier_rejects_unknown_channel() -> None:
    assert isinstance(build_notifier("LOGGING"), LoggingNotifier)
    with pytest.raises(ValueError):
        build_notifier("pager")


def test_error_classification() -> None:
    assert is_connection_closed_error(RuntimeError("Target page, context or browser has been closed"))
    assert is_connection_closed_error(RuntimeError("WebSocket is closed"))
    assert not is_connection_closed_error(RuntimeError("Timeout 30000ms exceeded"))
    assert is_stale_element_error(RuntimeError("Element is not attached to the DOM"))
    assert not is_stale_element_error(RuntimeError("target closed"))


def test_console_notifier_lists_event_data() -> None:
    buffer = io.StringIO()
    notifier = ConsoleNotifier(Console(file=buffer, width=200, color_system=None))

    notifier.notify(
        NotificationEvent(
            type="lock",
            message="Waiting for browser lock",
            level=NotificationLevel.WARNING,
            data={"pid": 4242},
        )
    )

    assert buffer.getvalue().splitlines() == ["Waiting for browser lock", "  pid: 4242"]
