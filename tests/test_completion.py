import asyncio
from pathlib import Path
from typing import Any, Optional, Sequence

import pytest

from browser_oracle.browser.base import PageChannel
from browser_oracle.browser.completion import CompletionDetector, build_probe_expression
from browser_oracle.browser.recovery import save_session_state
from browser_oracle.errors import CompletionTimeout, ConnectionLost

URL = "https://chat.example/c/abc123"


def ready(url: str = URL) -> dict:
    return {"state": "ready", "busy": False, "url": url}


def busy(url: str = URL) -> dict:
    return {"state": "ready", "busy": True, "url": url}


def disabled(url: str = URL) -> dict:
    return {"state": "disabled", "busy": False, "url": url}


class ProbePage(PageChannel):
    """Answers composer probes from a script and tracks navigation."""

    def __init__(self, probes: Sequence[Any], *, url: str = URL) -> None:
        self.probes = list(probes)
        self.probe_calls = 0
        self.url = url
        self.navigations: list[str] = []

    async def navigate(self, url: str) -> None:
        self.navigations.append(url)
        self.url = url

    async def evaluate(self, expression: str) -> Any:
        if expression == "window.location.href":
            return self.url
        if expression == "document.readyState":
            return "complete"
        if "bodyTail" in expression:
            return {"url": self.url, "readyState": "complete", "bodyTail": "..."}
        self.probe_calls += 1
        item = self.probes.pop(0) if len(self.probes) > 1 else self.probes[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def query_selector(self, selector: str) -> Optional[Any]:
        return None

    async def set_input_files(self, element: Any, files: Sequence[str]) -> None:
        raise AssertionError("uploads not expected")


def build_detector(page: PageChannel, **kwargs) -> CompletionDetector:
    options = dict(
        poll_interval=0.001,
        confirm_delays=(0.001, 0.001),
        navigation_settle=0.001,
        recovery_settle=0.001,
        error_backoff=0.001,
    )
    options.update(kwargs)
    return CompletionDetector(page, **options)


def test_single_ready_observation_is_not_trusted() -> None:
    page = ProbePage([ready(), busy(), ready(), ready(), ready()])
    detector = build_detector(page)

    result = asyncio.run(detector.await_steady_ready(1))

    assert result.idle_ready
    assert page.probe_calls == 5


def test_requires_three_consecutive_ready_checks() -> None:
    page = ProbePage([disabled(), ready(), ready(), ready()])
    detector = build_detector(page)

    asyncio.run(detector.await_steady_ready(1))

    assert page.probe_calls == 4


def test_navigation_without_saved_session_rebaselines() -> None:
    messages: list[str] = []
    other = "https://chat.example/c/other"
    page = ProbePage([ready(), ready(other), ready(other), ready(other), ready(other)])
    detector = build_detector(page, log=messages.append)

    result = asyncio.run(detector.await_steady_ready(1))

    assert result.url == other
    assert any("Page refreshed or navigated" in message for message in messages)
    assert page.navigations == []


def test_navigation_triggers_session_recovery(tmp_path: Path) -> None:
    save_session_state(tmp_path, URL, "prompt")
    page = ProbePage([disabled(), ready("https://chat.example/"), ready(), ready(), ready()])
    detector = build_detector(page, session_dir=tmp_path)

    result = asyncio.run(detector.await_steady_ready(1))

    assert page.navigations == [URL]
    assert result.url == URL


def test_failed_recovery_is_not_fatal(tmp_path: Path) -> None:
    save_session_state(tmp_path, URL, "prompt")
    elsewhere = "https://chat.example/"

    class RedirectingPage(ProbePage):
        async def navigate(self, url: str) -> None:
            self.navigations.append(url)
            self.url = elsewhere

    page = RedirectingPage([ready(), ready(elsewhere), ready(elsewhere), ready(elsewhere), ready(elsewhere)])
    detector = build_detector(page, session_dir=tmp_path)

    result = asyncio.run(detector.await_steady_ready(1))

    assert result.url == elsewhere
    assert detector.last_recovery_error is not None


def test_evaluation_errors_are_retried() -> None:
    messages: list[str] = []
    page = ProbePage([RuntimeError("Execution context was destroyed"), ready(), ready(), ready()])
    detector = build_detector(page, log=messages.append)

    asyncio.run(detector.await_steady_ready(1))

    assert any("Execution context was destroyed" in message for message in messages)


def test_connection_loss_propagates() -> None:
    page = ProbePage([ConnectionLost("Target closed")])
    detector = build_detector(page)

    with pytest.raises(ConnectionLost):
        asyncio.run(detector.await_steady_ready(1))


def test_timeout_includes_diagnostic_snapshot() -> None:
    page = ProbePage([disabled()])
    detector = build_detector(page)

    with pytest.raises(CompletionTimeout) as excinfo:
        asyncio.run(detector.await_steady_ready(0.02))

    assert excinfo.value.snapshot["url"] == URL


def test_probe_maps_non_dict_to_missing() -> None:
    page = ProbePage([None])
    result = asyncio.run(build_detector(page).probe())
    assert result.state.value == "missing"


def test_probe_expression_embeds_turn_threshold() -> None:
    expression = build_probe_expression(min_assistant_turns=3)
    assert "const minTurns = 3;" in expression
    assert "const minTurns = null;" in build_probe_expression()
