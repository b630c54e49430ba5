"""Notification channels that receive human-readable run progress."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional

from rich.console import Console
from rich.text import Text

from ..models import NotificationEvent, NotificationLevel

LOGGER = logging.getLogger(__name__)

LogSink = Callable[[str], None]


class Notifier(ABC):
    """Interface for sending notifications about run events."""

    @abstractmethod
    def notify(self, event: NotificationEvent) -> None:
        """Send a notification event."""

    def sink(self, event_type: str = "progress") -> LogSink:
        """Return a plain-string sink that forwards lines as events."""

        def _emit(message: str) -> None:
            self.notify(NotificationEvent(type=event_type, message=message))

        return _emit


class ConsoleNotifier(Notifier):
    """Print run events to stderr with Rich, one line per event.

    Messages are rendered as plain :class:`~rich.text.Text` since progress
    lines contain square brackets that Rich would otherwise parse as markup.
    """

    _STYLES = {
        NotificationLevel.INFO: "",
        NotificationLevel.SUCCESS: "green",
        NotificationLevel.WARNING: "yellow",
        NotificationLevel.ERROR: "bold red",
    }

    def __init__(self, console: Optional[Console] = None) -> None:
        self._console = console or Console(stderr=True)

    def notify(self, event: NotificationEvent) -> None:
        line = Text(event.message, style=self._STYLES.get(event.level, ""))
        if event.message.startswith("[") and "]" in event.message:
            # Elapsed-time prefix of thinking progress lines.
            line.stylize("cyan", 0, event.message.index("]") + 1)
        self._console.print(line, highlight=False)
        for key, value in event.data.items():
            self._console.print(Text(f"  {key}: {value}", style="dim"), highlight=False)


class LoggingNotifier(Notifier):
    """Notifier that forwards events to the standard logging tree."""

    _LEVELS = {
        NotificationLevel.INFO: logging.INFO,
        NotificationLevel.SUCCESS: logging.INFO,
        NotificationLevel.WARNING: logging.WARNING,
        NotificationLevel.ERROR: logging.ERROR,
    }

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or LOGGER

    def notify(self, event: NotificationEvent) -> None:
        self._logger.log(self._LEVELS[event.level], "%s", event.message)


def emit(sink: Optional[LogSink], message: str) -> None:
    """Send ``message`` to ``sink`` when one is configured, else to debug logs."""

    if sink is None:
        LOGGER.debug("%s", message)
        return
    sink(message)
