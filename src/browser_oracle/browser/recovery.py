"""Persist the last known conversation location and replay it after a reload."""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from pathlib import Path
from typing import Optional, Sequence

from pydantic import ValidationError

from ..errors import ConnectionLost
from ..models import SessionState
from ..notifications.base import LogSink, emit
from .base import PageChannel
from .constants import CONVERSATION_ROUTE_PREFIXES
from .polling import poll_until

LOGGER = logging.getLogger(__name__)

SESSION_FILE = "browser_session.json"
PROMPT_PREVIEW_CHARS = 200

_ID_PATTERNS = tuple(
    re.compile(rf"/{prefix}/([A-Za-z0-9-]+)") for prefix in CONVERSATION_ROUTE_PREFIXES
)


def extract_conversation_id(url: str) -> Optional[str]:
    """Return the conversation token embedded in ``url``, if any."""

    for pattern in _ID_PATTERNS:
        match = pattern.search(url or "")
        if match:
            return match.group(1)
    return None


def save_session_state(
    session_dir: Path | str,
    url: str,
    prompt_text: str,
    attachment_paths: Optional[Sequence[str]] = None,
) -> SessionState:
    """Write the session state for ``session_dir``, replacing any earlier file."""

    state = SessionState(
        url=url,
        timestamp=time.time() * 1000,
        prompt_text=prompt_text[:PROMPT_PREVIEW_CHARS],
        attachment_paths=list(attachment_paths) if attachment_paths is not None else None,
        conversation_id=extract_conversation_id(url),
        session_dir=str(session_dir),
    )
    path = Path(session_dir) / SESSION_FILE
    path.write_text(
        state.model_dump_json(by_alias=True, exclude_none=True, indent=2),
        encoding="utf-8",
    )
    return state


def load_session_state(session_dir: Path | str) -> Optional[SessionState]:
    path = Path(session_dir) / SESSION_FILE
    try:
        return SessionState.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except (OSError, ValueError, ValidationError):
        return None


async def wait_for_conversation_url(
    page: PageChannel,
    timeout: float,
    log: Optional[LogSink] = None,
    *,
    interval: float = 0.2,
    settle: float = 0.5,
) -> str:
    """Wait for the location to name a conversation and hold still for ``settle`` seconds.

    Falls back to the current location when no conversation appears in time.
    """

    last_url = ""

    async def _stable_conversation_url() -> Optional[str]:
        nonlocal last_url
        url = await page.current_url()
        if extract_conversation_id(url) is None or url == last_url:
            return None
        emit(log, f"Conversation URL established: {url}")
        last_url = url
        await asyncio.sleep(settle)
        if await page.current_url() == url:
            return url
        return None

    try:
        return await poll_until(
            _stable_conversation_url,
            interval=interval,
            timeout=timeout,
            description="conversation URL",
        )
    except TimeoutError:
        final_url = await page.current_url()
        emit(log, f"Using current URL (no conversation ID detected): {final_url}")
        return final_url


async def wait_for_document_ready(
    page: PageChannel,
    timeout: float,
    *,
    interval: float = 0.1,
) -> str:
    """Wait until ``document.readyState`` is interactive or complete."""

    async def _ready() -> Optional[str]:
        state = await page.ready_state()
        return state if state in ("interactive", "complete") else None

    return await poll_until(_ready, interval=interval, timeout=timeout, description="document ready")


async def recover_session(
    page: PageChannel,
    session: SessionState,
    log: Optional[LogSink] = None,
    *,
    load_timeout: float = 30.0,
) -> bool:
    """Navigate back to ``session.url`` and report whether the same conversation loaded.

    Never raises for ordinary failures; a dropped connection still propagates.
    """

    try:
        emit(log, f"Recovering session: navigating to {session.url}")
        await page.navigate(session.url)
        try:
            await wait_for_document_ready(page, load_timeout)
        except TimeoutError:
            LOGGER.debug("Document did not reach a ready state during recovery")
        current_url = await page.current_url()
    except ConnectionLost:
        raise
    except Exception as exc:
        emit(log, f"Failed to recover session: {exc}")
        return False

    current_id = extract_conversation_id(current_url)
    if session.conversation_id:
        if current_id == session.conversation_id:
            emit(log, f"Successfully recovered session (conversation {session.conversation_id})")
            return True
    elif current_url == session.url:
        emit(log, "Successfully navigated to saved URL")
        return True
    emit(log, f"Warning: navigated to {current_url}, expected {session.url}")
    return False
