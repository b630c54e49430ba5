"""Background sampler that reports the assistant's transient thinking status."""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from typing import Optional

from ..notifications.base import LogSink, emit
from .base import PageChannel
from .constants import ASSISTANT_ROLE_SELECTOR, THINKING_KEYWORDS, THINKING_STATUS_SELECTORS

LOGGER = logging.getLogger(__name__)

_PREFIX = re.compile(r"^(pro thinking)\s*[•:\-–—]*\s*", re.IGNORECASE)
_SHIMMER_CHILD = "span.flex.items-center.gap-1.truncate.text-start.align-middle.text-token-text-tertiary"


def format_elapsed(seconds: float) -> str:
    total = int(seconds)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}h{minutes:02d}m{secs:02d}s"
    if minutes:
        return f"{minutes}m{secs:02d}s"
    return f"{seconds:.1f}s"


def format_thinking_log(
    elapsed: float,
    message: str,
    *,
    target_seconds: float = 600.0,
    suffix: str = "",
    segments: int = 10,
) -> str:
    """Render ``[elapsed / ~target] bar pct% — message``."""

    progress = min(1.0, max(0.0, elapsed / target_seconds)) if target_seconds > 0 else 1.0
    filled = round(progress * segments)
    bar = ("█" * filled).ljust(segments, "░")
    pct = f"{round(progress * 100):>3}"
    target = f"~{round(target_seconds / 60)}m"
    status = f" — {message}" if message else ""
    return f"[{format_elapsed(elapsed)} / {target}] {bar} {pct}%{status}{suffix}"


def sanitize_thinking_text(raw: Optional[str]) -> str:
    if not raw:
        return ""
    return _PREFIX.sub("", raw.strip()).strip()


def _thinking_expression() -> str:
    return f"""(() => {{
    const selectors = {json.dumps(list(THINKING_STATUS_SELECTORS))};
    const keywords = {json.dumps(list(THINKING_KEYWORDS))};
    const nodes = new Set();
    for (const selector of selectors) {{
      document.querySelectorAll(selector).forEach((node) => nodes.add(node));
    }}
    document.querySelectorAll('[data-testid]').forEach((node) => nodes.add(node));
    for (const node of nodes) {{
      if (!(node instanceof HTMLElement)) continue;
      const text = node.textContent ? node.textContent.trim() : '';
      if (!text) continue;
      const classLabel = String(node.className || '').toLowerCase();
      const dataLabel = ((node.getAttribute('data-testid') || '') + ' ' + (node.getAttribute('aria-label') || '')).toLowerCase();
      const lowered = text.toLowerCase();
      const matches = keywords.some((keyword) =>
        lowered.includes(keyword) || classLabel.includes(keyword) || dataLabel.includes(keyword)
      );
      if (matches) {{
        const child = node.querySelector({json.dumps(_SHIMMER_CHILD)});
        if (child && child.textContent && child.textContent.trim()) {{
          return child.textContent.trim();
        }}
        return text;
      }}
    }}
    return null;
  }})()"""


async def read_thinking_status(page: PageChannel) -> Optional[str]:
    value = await page.evaluate(_thinking_expression())
    return sanitize_thinking_text(value if isinstance(value, str) else "") or None


class ProgressMonitor:
    """Periodically sample the thinking status and log changes.

    Ticks never overlap: a tick that fires while the previous sample is
    still in flight is skipped. ``stop`` may be called any number of times.
    """

    def __init__(
        self,
        page: PageChannel,
        log: Optional[LogSink] = None,
        *,
        interval: float = 1.5,
        target_seconds: float = 600.0,
        include_diagnostics: bool = False,
    ) -> None:
        self._page = page
        self._log = log
        self.interval = interval
        self.target_seconds = target_seconds
        self.include_diagnostics = include_diagnostics
        self._task: Optional[asyncio.Task[None]] = None
        self._stopped = False
        self._pending = False
        self._last_message: Optional[str] = None
        self._started_at = 0.0
        self.skipped_ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> "ProgressMonitor":
        if self._task is not None or self._stopped:
            return self
        self._started_at = time.monotonic()
        self._task = asyncio.get_running_loop().create_task(self._run(), name="progress-monitor")
        return self

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def _run(self) -> None:
        # Samples run as their own tasks so a slow page cannot delay the clock.
        in_flight: set[asyncio.Task[None]] = set()
        try:
            while not self._stopped:
                await asyncio.sleep(self.interval)
                if self._stopped:
                    break
                if self._pending:
                    self.skipped_ticks += 1
                    continue
                self._pending = True
                sample = asyncio.create_task(self._tick())
                in_flight.add(sample)
                sample.add_done_callback(in_flight.discard)
        finally:
            for sample in in_flight:
                sample.cancel()

    async def _tick(self) -> None:
        try:
            message = await read_thinking_status(self._page)
            if not message or message == self._last_message:
                return
            self._last_message = message
            suffix = ""
            if self.include_diagnostics:
                suffix = await self._diagnostics_suffix()
            elapsed = time.monotonic() - self._started_at
            emit(
                self._log,
                format_thinking_log(elapsed, message, target_seconds=self.target_seconds, suffix=suffix),
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            LOGGER.debug("Thinking status sample failed: %s", exc)
        finally:
            self._pending = False

    async def _diagnostics_suffix(self) -> str:
        try:
            count = await self._page.evaluate(
                f"document.querySelectorAll({json.dumps(ASSISTANT_ROLE_SELECTOR)}).length"
            )
        except Exception:
            return " | assistant-turn=error"
        return f" | assistant-turn={'present' if count else 'missing'}"
