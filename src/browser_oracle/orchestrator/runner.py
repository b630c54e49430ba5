"""Run orchestrator: one end-to-end prompt exchange against a browser chat app."""

from __future__ import annotations

import asyncio
import inspect
import logging
import math
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Sequence, Union

from playwright.async_api import async_playwright

from ..browser.actions import (
    count_assistant_turns,
    ensure_not_blocked,
    ensure_prompt_ready,
    navigate_to_chat,
    submit_prompt,
    wait_for_assistant_response,
)
from ..browser.attachments import AttachmentPipeline
from ..browser.base import PageChannel, is_connection_closed_error
from ..browser.completion import CompletionDetector
from ..browser.launcher import (
    connect_to_chrome,
    launch_chrome,
    register_termination_hooks,
    remove_profile_dir,
    resolve_chrome_executable,
)
from ..browser.lock import BrowserLock
from ..browser.progress import ProgressMonitor
from ..browser.recovery import save_session_state, wait_for_conversation_url
from ..config import OracleConfig
from ..errors import ConnectionLost
from ..gemini.actions import (
    ensure_gemini_prompt_ready,
    is_gemini_url,
    navigate_to_gemini,
    submit_gemini_prompt,
    wait_for_gemini_response,
)
from ..models import Attachment, RunResult
from ..notifications.base import LogSink, LoggingNotifier, emit

LOGGER = logging.getLogger(__name__)

CONNECTION_LOST_MESSAGE = (
    "Chrome window closed before Oracle finished. Please keep it open until completion."
)

CleanupStep = Callable[[], Union[None, Awaitable[None]]]


@dataclass
class BrowserHandles:
    """Resources acquired while starting the browser, filled in as they appear."""

    page: Optional[PageChannel] = None
    connection: Any = None
    chrome: Any = None
    playwright: Any = None


def estimate_token_count(text: str) -> int:
    return math.ceil(len(text) / 4) if text else 0


class BrowserRunner:
    """Sequence lock, browser, attachments, prompt and completion for one run.

    Cleanup always runs in the same order and every step is isolated, so a
    failing step never prevents the following ones.
    """

    def __init__(
        self,
        config: OracleConfig,
        *,
        log: Optional[LogSink] = None,
        verbose: bool = False,
    ) -> None:
        self._config = config
        self._log = log or LoggingNotifier().sink()
        self._verbose = verbose or config.progress.verbose
        self._connection_lost = False

    async def run(self, prompt: str, attachments: Sequence[Attachment] = ()) -> RunResult:
        prompt_text = prompt.strip()
        if not prompt_text:
            raise ValueError("Prompt text is required when using browser mode.")

        user_data_dir = Path(tempfile.mkdtemp(prefix="oracle-browser-"))
        emit(self._log, f"Created temporary Chrome profile at {user_data_dir}")

        lock = BrowserLock(
            self._config.lock.path,
            timeout=self._config.lock.timeout,
            retry_interval=self._config.lock.retry_interval,
            log=self._log,
        )
        try:
            await lock.acquire()
        except BaseException:
            remove_profile_dir(user_data_dir)
            raise

        handles = BrowserHandles()
        remove_hooks: Optional[Callable[[], None]] = None
        monitor: Optional[ProgressMonitor] = None
        started_at = time.monotonic()
        status = "attempted"
        self._connection_lost = False
        try:
            page = await self._start_browser(handles, user_data_dir)
            remove_hooks = self._register_hooks(handles)

            if is_gemini_url(self._config.browser.url):
                answer_text = await self._run_gemini(page, prompt_text, attachments)
                answer_html: Optional[str] = None
                conversation_url: Optional[str] = None
            else:
                monitor = ProgressMonitor(
                    page,
                    self._log,
                    interval=self._config.progress.interval,
                    target_seconds=self._config.progress.target_seconds,
                    include_diagnostics=self._verbose,
                )
                answer_text, answer_html, conversation_url = await self._run_chat(
                    page, prompt_text, attachments, user_data_dir, monitor
                )
            status = "complete"
            return RunResult(
                answer_text=answer_text,
                answer_markdown=answer_text,
                answer_html=answer_html or None,
                took_ms=int((time.monotonic() - started_at) * 1000),
                answer_tokens=estimate_token_count(answer_text),
                answer_chars=len(answer_text),
                user_data_dir=str(user_data_dir),
                conversation_url=conversation_url,
            )
        except Exception as exc:
            lost = (
                self._connection_lost
                or isinstance(exc, ConnectionLost)
                or is_connection_closed_error(exc)
            )
            self._connection_lost = lost
            if not lost:
                emit(self._log, f"Failed to complete browser run: {exc}")
                if self._config.browser.debug:
                    LOGGER.exception("Browser run failed")
                raise
            LOGGER.debug("Chrome connection dropped: %s", exc)
            raise ConnectionLost(CONNECTION_LOST_MESSAGE) from exc
        finally:
            if monitor is not None:
                monitor.stop()
            await self._cleanup(lock, handles, remove_hooks, user_data_dir, started_at, status)

    async def _run_chat(
        self,
        page: PageChannel,
        prompt: str,
        attachments: Sequence[Attachment],
        user_data_dir: Path,
        monitor: ProgressMonitor,
    ) -> tuple[str, Optional[str], str]:
        browser_config = self._config.browser
        await navigate_to_chat(page, browser_config.url, self._log)
        await ensure_not_blocked(page, browser_config.headless, self._log)
        await ensure_prompt_ready(page, browser_config.input_timeout, self._log)
        emit(self._log, f"Prompt textarea ready ({len(prompt):,} chars queued)")

        if attachments:
            attachment_config = self._config.attachments
            pipeline = AttachmentPipeline(
                page,
                self._log,
                detector=CompletionDetector(page, self._log, session_dir=user_data_dir),
                max_attempts=attachment_config.max_attempts,
                selection_timeout=attachment_config.selection_timeout,
                settle_delay=attachment_config.settle_delay,
                verify_timeout=attachment_config.verify_timeout,
                readiness_timeout=browser_config.input_timeout,
            )
            await pipeline.upload_all(attachments)

        baseline_turns = await count_assistant_turns(page)
        await submit_prompt(page, prompt, self._log)

        conversation_url = await wait_for_conversation_url(page, 5.0, self._log)
        save_session_state(
            user_data_dir,
            conversation_url,
            prompt,
            [attachment.path for attachment in attachments],
        )
        emit(self._log, f"Session state saved to {user_data_dir}")

        monitor.start()
        answer = await wait_for_assistant_response(
            page,
            browser_config.timeout,
            self._log,
            baseline_turns=baseline_turns,
            session_dir=user_data_dir,
        )
        monitor.stop()
        return answer.text, answer.html, conversation_url

    async def _run_gemini(
        self,
        page: PageChannel,
        prompt: str,
        attachments: Sequence[Attachment],
    ) -> str:
        browser_config = self._config.browser
        await navigate_to_gemini(page, browser_config.url, self._log)
        await ensure_gemini_prompt_ready(page, browser_config.input_timeout, self._log)
        emit(self._log, f"Gemini prompt ready ({len(prompt):,} chars queued)")
        if attachments:
            emit(self._log, "Gemini mode does not support file uploads; attachments were skipped.")
        await submit_gemini_prompt(page, prompt, self._log)
        return await wait_for_gemini_response(page, browser_config.timeout, self._log)

    async def _start_browser(self, handles: BrowserHandles, user_data_dir: Path) -> PageChannel:
        """Launch Chrome, connect to it and return the page.

        Each resource is recorded on ``handles`` as soon as it exists so cleanup
        can release whatever was acquired before a failure.
        """

        handles.playwright = await async_playwright().start()
        executable = resolve_chrome_executable(self._config.browser, handles.playwright)
        handles.chrome = launch_chrome(
            self._config.browser, user_data_dir, self._log, executable=executable
        )
        handles.connection = await connect_to_chrome(
            handles.playwright, handles.chrome.port, self._log
        )
        handles.connection.on_disconnect(self._mark_connection_lost)
        await handles.connection.clear_cookies()
        page = handles.connection.channel
        handles.page = page
        return page

    def _mark_connection_lost(self) -> None:
        self._connection_lost = True

    def _register_hooks(self, handles: BrowserHandles) -> Optional[Callable[[], None]]:
        if handles.chrome is None:
            return None
        try:
            return register_termination_hooks(
                handles.chrome, self._config.browser.keep_browser, self._log
            )
        except ValueError:
            # Signal handlers can only be installed from the main thread.
            LOGGER.debug("Termination hooks unavailable outside the main thread")
            return None

    async def _cleanup(
        self,
        lock: BrowserLock,
        handles: BrowserHandles,
        remove_hooks: Optional[Callable[[], None]],
        user_data_dir: Path,
        started_at: float,
        status: str,
    ) -> None:
        keep_browser = self._config.browser.keep_browser
        lost = self._connection_lost

        await _best_effort("release lock", lock.release)
        if handles.connection is not None and not lost:
            await _best_effort("close connection", handles.connection.close)
        if remove_hooks is not None:
            await _best_effort("remove termination hooks", remove_hooks)
        if not keep_browser:
            if handles.chrome is not None:
                await _best_effort("terminate Chrome", handles.chrome.kill)
            await _best_effort("remove profile", lambda: remove_profile_dir(user_data_dir))
        if handles.playwright is not None:
            await _best_effort("stop Playwright", handles.playwright.stop)

        if lost:
            return
        if keep_browser and handles.chrome is not None:
            emit(
                self._log,
                f"Chrome left running on port {handles.chrome.port} with profile {user_data_dir}",
            )
        else:
            emit(self._log, f"Cleanup {status} • {time.monotonic() - started_at:.1f}s total")


async def _best_effort(label: str, step: CleanupStep) -> None:
    try:
        result = step()
        if inspect.isawaitable(result):
            await result
    except Exception:
        LOGGER.debug("Cleanup step '%s' failed", label, exc_info=True)


def run_browser_mode(
    prompt: str,
    attachments: Sequence[Attachment] = (),
    *,
    config: Optional[OracleConfig] = None,
    log: Optional[LogSink] = None,
    verbose: bool = False,
) -> RunResult:
    """Synchronous entry point running one browser exchange to completion."""

    runner = BrowserRunner(config or OracleConfig(), log=log, verbose=verbose)
    return asyncio.run(runner.run(prompt, attachments))
