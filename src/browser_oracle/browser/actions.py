"""Page actions for the ChatGPT composer."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..errors import LocateFailure, OracleError
from ..notifications.base import LogSink, emit
from .base import PageChannel
from .completion import CompletionDetector, build_probe_expression
from .constants import (
    ASSISTANT_ROLE_SELECTOR,
    COMPOSER_READY_SELECTORS,
    PROMPT_SELECTORS,
    SEND_BUTTON_SELECTOR,
)
from .polling import poll_until
from .recovery import wait_for_document_ready

LOGGER = logging.getLogger(__name__)

_BLOCKED_MARKERS = ("just a moment", "verify you are human", "checking your browser")


@dataclass
class AssistantAnswer:
    """Text captured from the latest assistant turn."""

    text: str
    html: Optional[str] = None


async def navigate_to_chat(page: PageChannel, url: str, log: Optional[LogSink] = None) -> None:
    emit(log, f"Navigating to {url}")
    await page.navigate(url)
    await wait_for_document_ready(page, 45.0)


async def ensure_not_blocked(page: PageChannel, headless: bool, log: Optional[LogSink] = None) -> None:
    """Fail early when the site shows an interstitial challenge instead of the app."""

    title = str(await page.evaluate("document.title") or "").lower()
    if any(marker in title for marker in _BLOCKED_MARKERS):
        hint = " Retry with --headed to solve it manually." if headless else ""
        emit(log, f"Challenge page detected: {title!r}")
        raise OracleError(f"The chat site is showing a verification challenge.{hint}")


async def ensure_prompt_ready(page: PageChannel, timeout: float, log: Optional[LogSink] = None) -> str:
    """Wait for the prompt composer and return the selector that matched."""

    script = f"""(() => {{
    const selectors = {json.dumps(list(PROMPT_SELECTORS))};
    for (const selector of selectors) {{
      if (document.querySelector(selector)) return selector;
    }}
    return null;
  }})()"""
    try:
        selector = await poll_until(
            lambda: page.evaluate(script),
            interval=0.2,
            timeout=timeout,
            description="prompt composer",
        )
    except TimeoutError as exc:
        emit(log, "Prompt textarea did not appear before timeout")
        raise LocateFailure("Prompt composer did not appear before timeout.") from exc
    return str(selector)


async def count_assistant_turns(page: PageChannel) -> int:
    value = await page.evaluate(
        f"document.querySelectorAll({json.dumps(ASSISTANT_ROLE_SELECTOR)}).length"
    )
    return int(value or 0)


async def submit_prompt(page: PageChannel, prompt: str, log: Optional[LogSink] = None) -> str:
    """Type ``prompt`` into the composer and press send; returns how it was sent."""

    fill = f"""(() => {{
    const selectors = {json.dumps(list(PROMPT_SELECTORS))};
    const text = {json.dumps(prompt)};
    for (const selector of selectors) {{
      const node = document.querySelector(selector);
      if (!node) continue;
      node.focus();
      if (node instanceof HTMLTextAreaElement) {{
        node.value = text;
      }} else {{
        node.textContent = text;
      }}
      node.dispatchEvent(new Event('input', {{ bubbles: true }}));
      return true;
    }}
    return false;
  }})()"""
    if not await page.evaluate(fill):
        raise LocateFailure("Unable to locate the prompt composer to type into.")

    click = f"""(() => {{
    const button = document.querySelector({json.dumps(SEND_BUTTON_SELECTOR)});
    if (!button || button.disabled || button.getAttribute('aria-disabled') === 'true') return null;
    button.click();
    return 'clicked';
  }})()"""
    try:
        status = await poll_until(
            lambda: page.evaluate(click),
            interval=0.2,
            timeout=10.0,
            description="send button",
        )
    except TimeoutError:
        enter = """(() => {
    const active = document.activeElement;
    if (!active || active === document.body) return null;
    const init = { bubbles: true, cancelable: true, key: 'Enter', code: 'Enter' };
    active.dispatchEvent(new KeyboardEvent('keydown', init));
    active.dispatchEvent(new KeyboardEvent('keyup', init));
    return 'enter';
  })()"""
        status = await page.evaluate(enter)
        if not status:
            raise LocateFailure("Send button never became available.")
    emit(log, f"Submitted prompt via {'send button' if status == 'clicked' else 'Enter key'}")
    return str(status)


async def read_assistant_answer(page: PageChannel) -> Optional[AssistantAnswer]:
    script = f"""(() => {{
    const turns = document.querySelectorAll({json.dumps(ASSISTANT_ROLE_SELECTOR)});
    const last = turns[turns.length - 1];
    if (!last) return null;
    return {{ text: (last.innerText || last.textContent || '').trim(), html: last.innerHTML }};
  }})()"""
    value = await page.evaluate(script)
    if not isinstance(value, dict) or not value.get("text"):
        return None
    return AssistantAnswer(text=str(value["text"]), html=value.get("html"))


async def wait_for_assistant_response(
    page: PageChannel,
    timeout: float,
    log: Optional[LogSink] = None,
    *,
    baseline_turns: int = 0,
    session_dir: Optional[Path] = None,
    detector: Optional[CompletionDetector] = None,
) -> AssistantAnswer:
    """Wait for the composer to settle after a new assistant turn, then read it."""

    emit(log, "Waiting for assistant response")
    detector = detector or CompletionDetector(
        page,
        log,
        expression=build_probe_expression(
            COMPOSER_READY_SELECTORS,
            min_assistant_turns=baseline_turns + 1,
        ),
        session_dir=session_dir,
        poll_interval=0.5,
    )
    await detector.await_steady_ready(timeout)
    try:
        return await poll_until(
            lambda: read_assistant_answer(page),
            interval=0.35,
            timeout=10.0,
            description="assistant answer text",
        )
    except TimeoutError as exc:
        raise LocateFailure("Assistant turn finished but no answer text was found.") from exc
