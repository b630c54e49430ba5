"""Page actions for the Gemini web app."""

from __future__ import annotations

import json
import logging
from typing import Optional

from ..browser.base import PageChannel
from ..browser.polling import poll_until, wait_for_stable
from ..browser.recovery import wait_for_document_ready
from ..errors import CompletionTimeout, LocateFailure, OracleError, PollTimeout
from ..notifications.base import LogSink, emit
from .constants import GEMINI_HOST, GEMINI_INPUT_SELECTORS, GEMINI_SEND_BUTTON_SELECTORS

LOGGER = logging.getLogger(__name__)

REQUIRED_STABLE_CYCLES = 6


def is_gemini_url(url: str) -> bool:
    return GEMINI_HOST in (url or "")


async def navigate_to_gemini(page: PageChannel, url: str, log: Optional[LogSink] = None) -> None:
    emit(log, f"Navigating to Gemini at {url}")
    await page.navigate(url)
    try:
        await wait_for_document_ready(page, 45.0)
    except TimeoutError as exc:
        raise OracleError("Gemini page did not reach ready state in time") from exc


async def ensure_gemini_prompt_ready(page: PageChannel, timeout: float, log: Optional[LogSink] = None) -> None:
    script = f"""(() => {{
    const selectors = {json.dumps(list(GEMINI_INPUT_SELECTORS))};
    return selectors.some((selector) => Boolean(document.querySelector(selector)));
  }})()"""
    try:
        await poll_until(lambda: page.evaluate(script), interval=0.2, timeout=timeout, description="Gemini prompt")
    except TimeoutError as exc:
        emit(log, "Gemini prompt textarea did not appear before timeout")
        raise LocateFailure("Gemini prompt input did not appear before timeout") from exc
    emit(log, "Gemini prompt ready")


async def submit_gemini_prompt(page: PageChannel, prompt: str, log: Optional[LogSink] = None) -> str:
    expression = f"""(() => {{
    const inputSelectors = {json.dumps(list(GEMINI_INPUT_SELECTORS))};
    const buttonSelectors = {json.dumps(list(GEMINI_SEND_BUTTON_SELECTORS))};
    const text = {json.dumps(prompt)};
    let inputNode = null;
    for (const selector of inputSelectors) {{
      const candidate = document.querySelector(selector);
      if (!candidate) continue;
      if (candidate instanceof HTMLTextAreaElement) {{
        candidate.value = text;
      }} else {{
        candidate.textContent = text;
      }}
      candidate.dispatchEvent(new Event('input', {{ bubbles: true }}));
      inputNode = candidate;
      break;
    }}
    if (!inputNode) return {{ success: false, status: 'input-missing' }};
    for (const selector of buttonSelectors) {{
      const button = document.querySelector(selector);
      if (button instanceof HTMLButtonElement && !button.disabled) {{
        button.click();
        return {{ success: true, status: 'clicked' }};
      }}
    }}
    const active = document.activeElement;
    if (active && active !== document.body) {{
      const init = {{ bubbles: true, cancelable: true, key: 'Enter', code: 'Enter' }};
      active.dispatchEvent(new KeyboardEvent('keydown', init));
      active.dispatchEvent(new KeyboardEvent('keyup', init));
      return {{ success: true, status: 'enter' }};
    }}
    return {{ success: false, status: 'send-missing' }};
  }})()"""
    result = await page.evaluate(expression) or {}
    status = result.get("status", "unknown")
    if not result.get("success"):
        emit(log, f"Gemini prompt submission status: {status}")
        raise LocateFailure("Failed to submit prompt to Gemini.")
    emit(log, f"Submitted Gemini prompt via {'send button' if status == 'clicked' else 'Enter key'}")
    return status


_RESPONSE_EXPRESSION = """(() => {
    const host = document.querySelector('chat-app') || document;
    const candidates = [];
    const push = (node) => {
      if (!node) return;
      const text = (node.innerText || node.textContent || '').trim();
      if (text.length > 0) candidates.push(text);
    };
    host.querySelectorAll('[data-message-author-role], main article, main div[role="article"], main section')
      .forEach(push);
    if (candidates.length === 0) push(host.querySelector('main'));
    return candidates[candidates.length - 1] || '';
  })()"""


async def wait_for_gemini_response(
    page: PageChannel,
    timeout: float,
    log: Optional[LogSink] = None,
    *,
    interval: float = 0.4,
    required_stable_cycles: int = REQUIRED_STABLE_CYCLES,
) -> str:
    """Return the latest response once its text is unchanged over several polls.

    On timeout the latest captured text is returned when there is any.
    """

    emit(log, "Waiting for Gemini response")
    last_text = ""

    async def _sample() -> str:
        nonlocal last_text
        value = await page.evaluate(_RESPONSE_EXPRESSION)
        text = value.strip() if isinstance(value, str) else ""
        if text:
            last_text = text
        return text

    try:
        # One extra observation: the first sighting of a text starts the count.
        return await wait_for_stable(
            _sample,
            accept=bool,
            required=required_stable_cycles + 1,
            interval=interval,
            timeout=timeout,
            description="Gemini response",
        )
    except PollTimeout:
        pass
    if last_text:
        emit(log, "Gemini response watchdog timeout; returning latest captured text.")
        return last_text
    raise CompletionTimeout("Timed out waiting for Gemini response.")
