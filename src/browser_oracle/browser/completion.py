"""Detect when the composer settles into a steady ready-and-idle state."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Any, Optional, Sequence

from ..errors import CompletionTimeout, ConnectionLost, RecoveryFailed
from ..models import ComposerState, ProbeResult
from ..notifications.base import LogSink, emit
from .base import PageChannel
from .constants import (
    ASSISTANT_ROLE_SELECTOR,
    BUSY_BUTTON_SELECTORS,
    BUSY_STATUS_KEYWORDS,
    SEND_BUTTON_SELECTOR,
    UPLOAD_STATUS_SELECTORS,
)
from .polling import confirm_steady
from .recovery import load_session_state, recover_session

LOGGER = logging.getLogger(__name__)

CONFIRM_DELAYS = (0.5, 1.0)


def build_probe_expression(
    affordance_selectors: Sequence[str] = (SEND_BUTTON_SELECTOR,),
    *,
    busy_button_selectors: Sequence[str] = BUSY_BUTTON_SELECTORS,
    status_selectors: Sequence[str] = UPLOAD_STATUS_SELECTORS,
    busy_keywords: Sequence[str] = BUSY_STATUS_KEYWORDS,
    min_assistant_turns: Optional[int] = None,
) -> str:
    """Return a script reporting ``{state, busy, url}`` for the composer."""

    return f"""(() => {{
    const affordances = {json.dumps(list(affordance_selectors))};
    const busyButtons = {json.dumps(list(busy_button_selectors))};
    const statusSelectors = {json.dumps(list(status_selectors))};
    const keywords = {json.dumps(list(busy_keywords))};
    const minTurns = {json.dumps(min_assistant_turns)};
    const url = window.location.href;
    let button = null;
    for (const selector of affordances) {{
      button = document.querySelector(selector);
      if (button) break;
    }}
    let busy = busyButtons.some((selector) => Boolean(document.querySelector(selector)));
    if (!busy) {{
      busy = statusSelectors.some((selector) =>
        Array.from(document.querySelectorAll(selector)).some((node) => {{
          const text = (node.textContent || '').toLowerCase();
          return keywords.some((keyword) => text.includes(keyword));
        }})
      );
    }}
    if (!busy && minTurns !== null) {{
      busy = document.querySelectorAll({json.dumps(ASSISTANT_ROLE_SELECTOR)}).length < minTurns;
    }}
    if (!button) {{
      return {{ state: 'missing', busy, url }};
    }}
    const disabled = button.hasAttribute('disabled') || button.getAttribute('aria-disabled') === 'true';
    return {{ state: disabled ? 'disabled' : 'ready', busy, url }};
  }})()"""


_SNAPSHOT_EXPRESSION = """(() => {
    const composer = document.querySelector('form');
    const body = document.body ? document.body.innerText || '' : '';
    return {
      url: window.location.href,
      title: document.title,
      readyState: document.readyState,
      composer: composer ? composer.outerHTML.slice(0, 2000) : null,
      bodyTail: body.slice(-1000),
    };
  })()"""


class CompletionDetector:
    """Poll the composer until it is ready and idle on several consecutive checks.

    A location change during the wait is treated as a reload: the last saved
    session is replayed when one exists, and polling continues either way.
    """

    def __init__(
        self,
        page: PageChannel,
        log: Optional[LogSink] = None,
        *,
        expression: Optional[str] = None,
        session_dir: Optional[Path] = None,
        poll_interval: float = 0.25,
        confirm_delays: Sequence[float] = CONFIRM_DELAYS,
        navigation_settle: float = 1.0,
        recovery_settle: float = 2.0,
        error_backoff: float = 0.5,
    ) -> None:
        self._page = page
        self._log = log
        self.expression = expression or build_probe_expression()
        self.session_dir = session_dir
        self.poll_interval = poll_interval
        self.confirm_delays = tuple(confirm_delays)
        self.navigation_settle = navigation_settle
        self.recovery_settle = recovery_settle
        self.error_backoff = error_backoff
        self.last_recovery_error: Optional[RecoveryFailed] = None

    async def probe(self) -> ProbeResult:
        value = await self._page.evaluate(self.expression)
        if not isinstance(value, dict):
            return ProbeResult(state=ComposerState.MISSING, busy=False, url=None)
        return ProbeResult.model_validate(value)

    async def await_steady_ready(self, timeout: float) -> ProbeResult:
        """Return the confirmed probe, or raise :class:`CompletionTimeout`."""

        deadline = time.monotonic() + timeout
        baseline: Optional[str] = None
        while time.monotonic() < deadline:
            try:
                result = await self.probe()
                if baseline and result.url and result.url != baseline:
                    emit(self._log, "Page refreshed or navigated while waiting. Waiting for steady state...")
                    if await self._recover():
                        await asyncio.sleep(self.recovery_settle)
                        baseline = None
                    else:
                        await asyncio.sleep(self.navigation_settle)
                        baseline = result.url
                    continue
                if baseline is None:
                    baseline = result.url
                if result.idle_ready:
                    expected_url = baseline
                    confirmed = await confirm_steady(
                        self.probe,
                        lambda probe: probe.idle_ready and probe.url == expected_url,
                        self.confirm_delays,
                        key=lambda probe: (probe.state, probe.busy, probe.url),
                        first=result,
                    )
                    if confirmed:
                        emit(self._log, "Composer is ready and the page is in a steady state")
                        return result
            except ConnectionLost:
                raise
            except Exception as exc:
                emit(self._log, f"Error during completion wait: {exc}")
                await asyncio.sleep(self.error_backoff)
                continue
            await asyncio.sleep(self.poll_interval)

        snapshot = await self.capture_diagnostics()
        raise CompletionTimeout(
            f"Composer did not reach a steady ready state within {timeout:.0f}s.",
            snapshot=snapshot,
        )

    async def capture_diagnostics(self) -> dict[str, Any]:
        """Log and return a snapshot of the document for postmortems."""

        try:
            snapshot = await self._page.evaluate(_SNAPSHOT_EXPRESSION)
        except Exception as exc:
            LOGGER.debug("Could not capture diagnostics: %s", exc)
            return {"error": str(exc)}
        snapshot = snapshot if isinstance(snapshot, dict) else {"value": snapshot}
        emit(self._log, f"Diagnostic snapshot: url={snapshot.get('url')} readyState={snapshot.get('readyState')}")
        LOGGER.debug("Completion diagnostics: %s", snapshot)
        return snapshot

    async def _recover(self) -> bool:
        if self.session_dir is None:
            return False
        session = load_session_state(self.session_dir)
        if session is None:
            return False
        recovered = await recover_session(self._page, session, self._log)
        if not recovered:
            self.last_recovery_error = RecoveryFailed(
                f"Could not return to conversation {session.conversation_id or session.url}"
            )
            LOGGER.warning("%s", self.last_recovery_error)
        return recovered
