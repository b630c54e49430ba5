"""Factories for constructing components from configuration."""

from __future__ import annotations

from .config import OracleConfig
from .notifications.base import ConsoleNotifier, LoggingNotifier, Notifier
from .orchestrator.runner import BrowserRunner


def build_notifier(channel: str = "console") -> Notifier:
    channel = channel.lower()
    if channel == "console":
        return ConsoleNotifier()
    if channel == "logging":
        return LoggingNotifier()
    raise ValueError(f"Unsupported notification channel: {channel}")


def build_runner(config: OracleConfig, notifier: Notifier, *, verbose: bool = False) -> BrowserRunner:
    return BrowserRunner(config, log=notifier.sink(), verbose=verbose)
