import asyncio
from typing import Any, Optional, Sequence

import pytest

from browser_oracle.browser.base import PageChannel
from browser_oracle.errors import CompletionTimeout, LocateFailure
from browser_oracle.gemini.actions import (
    is_gemini_url,
    submit_gemini_prompt,
    wait_for_gemini_response,
)


class ScriptedPage(PageChannel):
    """Returns scripted values for every evaluated expression."""

    def __init__(self, values: Sequence[Any]) -> None:
        self.values = list(values)
        self.calls = 0

    async def navigate(self, url: str) -> None:
        return None

    async def evaluate(self, expression: str) -> Any:
        self.calls += 1
        return self.values.pop(0) if len(self.values) > 1 else self.values[0]

    async def query_selector(self, selector: str) -> Optional[Any]:
        return None

    async def set_input_files(self, element: Any, files: Sequence[str]) -> None:
        return None


def test_is_gemini_url() -> None:
    assert is_gemini_url("https://gemini.google.com/app")
    assert not is_gemini_url("https://chatgpt.com/")
    assert not is_gemini_url("")


def test_response_returned_after_stable_cycles() -> None:
    page = ScriptedPage(["", "Hel", "Hello", "Hello", "Hello", "Hello"])

    text = asyncio.run(
        wait_for_gemini_response(page, 5.0, interval=0.001, required_stable_cycles=3)
    )

    assert text == "Hello"
    # Empty, two growing samples, then the first sighting plus three repeats.
    assert page.calls == 6


def test_response_timeout_returns_latest_text() -> None:
    page = ScriptedPage(["a", "ab", "abc", "abcd", "abcde", "abcdef", "abcdefg"] * 50)
    messages: list[str] = []

    text = asyncio.run(
        wait_for_gemini_response(page, 0.05, messages.append, interval=0.001, required_stable_cycles=3)
    )

    assert text.startswith("a")
    assert any("watchdog timeout" in message for message in messages)


def test_response_timeout_without_text_raises() -> None:
    page = ScriptedPage([""])

    with pytest.raises(CompletionTimeout):
        asyncio.run(wait_for_gemini_response(page, 0.02, interval=0.001))


def test_submit_reports_missing_input() -> None:
    page = ScriptedPage([{"success": False, "status": "input-missing"}])
    messages: list[str] = []

    with pytest.raises(LocateFailure):
        asyncio.run(submit_gemini_prompt(page, "hi", messages.append))

    assert messages == ["Gemini prompt submission status: input-missing"]


def test_submit_via_button() -> None:
    page = ScriptedPage([{"success": True, "status": "clicked"}])
    messages: list[str] = []

    status = asyncio.run(submit_gemini_prompt(page, "hi", messages.append))

    assert status == "clicked"
    assert messages == ["Submitted Gemini prompt via send button"]
