"""Upload file attachments and confirm the composer registered them."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING, Awaitable, Callable, Iterable, Optional, Sequence

from pydantic import ValidationError

from ..errors import (
    AttachmentVerificationFailed,
    ConnectionLost,
    LocateFailure,
    OracleError,
    PollTimeout,
    StaleElementError,
)
from ..models import Attachment, AttachmentReport, VisibleAttachment
from ..notifications.base import LogSink, emit
from .base import PageChannel
from .constants import (
    ATTACHMENT_INDICATOR_SELECTORS,
    COMPOSER_SCOPE_SELECTORS,
    CONVERSATION_TURN_SELECTOR,
    FILE_INPUT_SELECTORS,
    GENERIC_FILE_INPUT_SELECTOR,
)
from .polling import poll_until, wait_for_stable

if TYPE_CHECKING:
    from .completion import CompletionDetector

LOGGER = logging.getLogger(__name__)

VisibleSampler = Callable[[PageChannel], Awaitable[list[VisibleAttachment]]]

_QUOTES = "\"'"
_DUPLICATE_SUFFIX = re.compile(r"\s*\(\d+\)(?=(\.[^.\s]*)?$)")
_WHITESPACE = re.compile(r"\s+")


def normalize_filename(filename: str) -> str:
    """Return the comparison key for an attachment name.

    Case is folded, wrapping quotes and surrounding whitespace are stripped,
    inner whitespace is collapsed, and a trailing ``(n)`` duplicate counter
    (before the extension) is dropped.
    """

    value = filename.casefold().strip()
    if len(value) >= 2 and value[0] in _QUOTES and value[-1] in _QUOTES:
        value = value[1:-1]
    value = _WHITESPACE.sub(" ", value.strip(_QUOTES).strip())
    value = _DUPLICATE_SUFFIX.sub("", value)
    return value.strip()


def _unique(values: Iterable[str]) -> list[str]:
    seen: dict[str, None] = {}
    for value in values:
        seen.setdefault(value, None)
    return list(seen)


def compare_attachments(expected: Sequence[str], visible: Sequence[str]) -> AttachmentReport:
    """Compare expected and visible names after normalization.

    Any name present on only one side is reported, so a swapped name fails
    the same way as a missing or an unexpected one.
    """

    expected_keys = _unique(normalize_filename(name) for name in expected)
    visible_keys = _unique(normalize_filename(name) for name in visible)
    return AttachmentReport(
        expected=expected_keys,
        visible=visible_keys,
        missing=[name for name in expected_keys if name not in visible_keys],
        extra=[name for name in visible_keys if name not in expected_keys],
    )


def _selection_expression() -> str:
    return f"""(() => {{
    const input = document.querySelector({json.dumps(GENERIC_FILE_INPUT_SELECTOR)});
    if (!input || !input.files) {{
      return [];
    }}
    return Array.from(input.files).map((file) => (file && file.name) || '');
  }})()"""


def _visible_expression() -> str:
    return f"""(() => {{
    const scopes = {json.dumps(list(COMPOSER_SCOPE_SELECTORS))};
    const selectors = {json.dumps(list(ATTACHMENT_INDICATOR_SELECTORS))};
    const turnSelector = {json.dumps(CONVERSATION_TURN_SELECTOR)};
    const namePattern = /[^\\\\/\\n]+\\.[A-Za-z0-9]{{1,8}}/;
    let root = null;
    for (const scope of scopes) {{
      try {{
        root = document.querySelector(scope);
      }} catch (error) {{
        root = null;
      }}
      if (root) break;
    }}
    if (!root) return [];
    const seen = new Set();
    const results = [];
    for (const selector of selectors) {{
      for (const node of root.querySelectorAll(selector)) {{
        if (seen.has(node) || node.closest(turnSelector)) continue;
        seen.add(node);
        const candidates = [
          node.getAttribute('data-filename'),
          node.getAttribute('title'),
          node.getAttribute('aria-label'),
          node.textContent,
        ];
        let filename = null;
        for (const candidate of candidates) {{
          const match = candidate && candidate.trim().match(namePattern);
          if (match) {{
            filename = match[0].trim();
            break;
          }}
        }}
        if (!filename) continue;
        results.push({{ filename, selector, outerHTML: (node.outerHTML || '').slice(0, 400) }});
      }}
    }}
    return results;
  }})()"""


async def read_selected_filenames(page: PageChannel) -> list[str]:
    """Return the names held by the composer's file input."""

    value = await page.evaluate(_selection_expression())
    if not isinstance(value, list):
        return []
    return [str(name) for name in value]


async def read_visible_attachments(page: PageChannel) -> list[VisibleAttachment]:
    """Sample attachment indicators in the active composer only."""

    value = await page.evaluate(_visible_expression())
    attachments: list[VisibleAttachment] = []
    for item in value or []:
        try:
            attachments.append(VisibleAttachment.model_validate(item))
        except ValidationError:
            LOGGER.debug("Ignoring malformed attachment sample %r", item)
    return attachments


class AttachmentPipeline:
    """Attach files to the composer one at a time and verify the result."""

    def __init__(
        self,
        page: PageChannel,
        log: Optional[LogSink] = None,
        *,
        detector: Optional["CompletionDetector"] = None,
        sampler: VisibleSampler = read_visible_attachments,
        max_attempts: int = 3,
        selection_timeout: float = 10.0,
        settle_delay: float = 1.0,
        verify_timeout: float = 10.0,
        poll_interval: float = 0.15,
        verify_interval: float = 0.5,
        retry_backoff: float = 0.3,
        readiness_timeout: float = 30.0,
    ) -> None:
        self._page = page
        self._log = log
        self._detector = detector
        self._sampler = sampler
        self.max_attempts = max_attempts
        self.selection_timeout = selection_timeout
        self.settle_delay = settle_delay
        self.verify_timeout = verify_timeout
        self.poll_interval = poll_interval
        self.verify_interval = verify_interval
        self.retry_backoff = retry_backoff
        self.readiness_timeout = readiness_timeout

    async def upload(self, attachment: Attachment, max_attempts: Optional[int] = None) -> bool:
        """Assign ``attachment`` to the file input.

        Returns whether the input reported the file before the selection
        timeout. Stale element references restart the whole attempt; every
        other failure propagates immediately.
        """

        attempts = max_attempts or self.max_attempts
        for attempt in range(1, attempts + 1):
            try:
                return await self._upload_once(attachment)
            except StaleElementError as exc:
                if attempt >= attempts:
                    raise LocateFailure(
                        f"File input kept re-rendering while attaching {attachment.display_path}"
                    ) from exc
                LOGGER.debug("Stale file input on attempt %s: %s", attempt, exc)
                emit(self._log, f"[retry] Attachment upload attempt {attempt + 1} for {attachment.display_path}")
                await asyncio.sleep(self.retry_backoff * attempt)
        raise LocateFailure(f"Unable to attach {attachment.display_path}")

    async def _upload_once(self, attachment: Attachment) -> bool:
        element = None
        for selector in FILE_INPUT_SELECTORS:
            element = await self._page.query_selector(selector)
            if element is not None:
                break
        if element is None:
            raise LocateFailure("Unable to locate the composer file attachment input.")
        await self._page.set_input_files(element, [attachment.path])
        registered = await self.wait_for_selection(attachment.filename)
        if registered:
            emit(self._log, f"Attachment queued: {attachment.display_path}")
        else:
            emit(
                self._log,
                f"Attachment {attachment.display_path} did not register with the file input in time; "
                "relying on visible confirmation.",
            )
        return registered

    async def wait_for_selection(self, expected_name: str, timeout: Optional[float] = None) -> bool:
        async def _selected() -> bool:
            return expected_name in await read_selected_filenames(self._page)

        try:
            await poll_until(
                _selected,
                interval=self.poll_interval,
                timeout=self.selection_timeout if timeout is None else timeout,
                description=f"file input to list {expected_name}",
            )
        except TimeoutError:
            return False
        return True

    async def verify_visible(
        self,
        attachments: Sequence[Attachment],
        timeout: Optional[float] = None,
    ) -> AttachmentReport:
        """Wait for a stable set of composer attachments that matches ``attachments``.

        A sample is trusted only after two consecutive identical polls.
        Raises :class:`AttachmentVerificationFailed` when no trusted sample
        matches before the timeout.
        """

        expected = [attachment.filename for attachment in attachments]
        samples: list[VisibleAttachment] = []
        report = compare_attachments(expected, [])

        async def _sample() -> AttachmentReport:
            nonlocal samples, report
            samples = await self._sampler(self._page)
            report = compare_attachments(expected, [sample.filename for sample in samples])
            return report

        try:
            verified = await wait_for_stable(
                _sample,
                key=lambda current: tuple(sorted(current.visible)),
                accept=lambda current: current.ok,
                required=2,
                interval=self.verify_interval,
                timeout=self.verify_timeout if timeout is None else timeout,
                description="composer attachments",
            )
        except PollTimeout:
            pass
        else:
            emit(
                self._log,
                f"Verified {verified.matched}/{len(verified.expected)} attachment(s) visible in composer",
            )
            return verified

        self._log_mismatch(report, samples)
        raise AttachmentVerificationFailed(
            expected=report.expected,
            visible=report.visible,
            missing=report.missing,
            extra=report.extra,
        )

    async def upload_all(self, attachments: Sequence[Attachment]) -> AttachmentReport:
        """Upload every attachment, then confirm they are visible and the composer is ready."""

        registered_all = True
        for attachment in attachments:
            emit(self._log, f"Uploading attachment: {attachment.display_path}")
            registered_all = await self.upload(attachment) and registered_all
        await asyncio.sleep(self.settle_delay)

        readiness_ok = False
        if self._detector is not None:
            try:
                await self._detector.await_steady_ready(max(self.readiness_timeout, 30.0))
                readiness_ok = True
                emit(self._log, "All attachments uploaded")
            except OracleError as exc:
                if isinstance(exc, ConnectionLost):
                    raise
                emit(
                    self._log,
                    f"Attachment readiness check hit an error ({exc}). "
                    "Falling back to verifying visible attachments in the composer before submitting.",
                )

        report = await self.verify_visible(attachments)

        if self._detector is None:
            return report
        if readiness_ok and registered_all:
            emit(self._log, "Double-checking attachment readiness before submission...")
            await self._detector.await_steady_ready(5.0)
            emit(self._log, "Attachments confirmed ready; proceeding to submit")
        else:
            emit(
                self._log,
                "Skipping final attachment readiness double-check due to earlier flakiness; "
                "attachments are visible, proceeding to submit.",
            )
        return report

    def _log_mismatch(self, report: AttachmentReport, samples: Sequence[VisibleAttachment]) -> None:
        emit(self._log, "Attachment verification failed!")
        emit(self._log, f"Expected {len(report.expected)} attachment(s): [{', '.join(report.expected)}]")
        emit(self._log, f"Visible {len(report.visible)} attachment(s): [{', '.join(report.visible)}]")
        if report.missing:
            emit(self._log, f"Missing: [{', '.join(report.missing)}]")
        if report.extra:
            emit(self._log, f"Extra/unexpected: [{', '.join(report.extra)}]")
        if samples:
            emit(self._log, "Visible attachment DOM samples (first 2):")
            for index, sample in enumerate(samples[:2], start=1):
                emit(self._log, f"  [{index}] {sample.filename}")
                emit(self._log, f"      Selector: {sample.selector}")
                if sample.outer_html:
                    emit(self._log, f"      HTML: {sample.outer_html[:200]}...")


def attachments_from_paths(paths: Iterable[str | Path]) -> list[Attachment]:
    return [Attachment.from_path(path) for path in paths]
