"""Cross-process lock so only one run drives a browser at a time on a host."""

from __future__ import annotations

import asyncio
import errno
import json
import logging
import os
import time
from pathlib import Path
from typing import Awaitable, Callable, Optional

from pydantic import ValidationError

from ..config import default_lock_path
from ..errors import LockTimeout
from ..models import LockRecord
from ..notifications.base import LogSink, emit

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30 * 60.0
DEFAULT_RETRY_INTERVAL = 0.75

_CONTENDED_ERRNOS = {errno.EEXIST, errno.EACCES, errno.EPERM}


def read_lock_record(path: Path) -> Optional[LockRecord]:
    """Return the record stored at ``path``, or ``None`` when missing or corrupt."""

    try:
        raw = path.read_text(encoding="utf-8")
        return LockRecord.model_validate(json.loads(raw), strict=True)
    except (OSError, ValueError, ValidationError):
        return None


def is_process_alive(pid: object) -> bool:
    """Probe whether ``pid`` names a running process without signalling it."""

    if isinstance(pid, bool) or not isinstance(pid, int) or pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # The process exists but belongs to another user.
        return True
    except (OSError, OverflowError):
        return False
    return True


class BrowserLock:
    """File-backed mutual exclusion between independent processes.

    The lock file holds a :class:`LockRecord` naming the owning process.
    A record whose owner is no longer alive is considered stale and is
    reclaimed by the next contender.
    """

    def __init__(
        self,
        path: Optional[Path] = None,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        retry_interval: float = DEFAULT_RETRY_INTERVAL,
        log: Optional[LogSink] = None,
    ) -> None:
        self.path = Path(path) if path else default_lock_path()
        self.timeout = timeout
        self.retry_interval = retry_interval
        self._log = log
        self._held = False
        self._pid = os.getpid()

    async def acquire(self) -> None:
        """Wait until the lock file can be created for this process."""

        self.path.parent.mkdir(parents=True, exist_ok=True)
        deadline = time.monotonic() + self.timeout
        logged_waiting = False
        while True:
            if self._try_create():
                self._held = True
                emit(self._log, "Acquired global Oracle browser lock")
                return

            existing = read_lock_record(self.path)
            if existing is None:
                # Corrupt payload or a write still in flight; never delete it here.
                LOGGER.debug("Lock file %s unreadable; retrying", self.path)
                self._check_deadline(deadline)
                await asyncio.sleep(self.retry_interval)
                continue

            if not is_process_alive(existing.pid):
                if self._remove_stale(existing):
                    continue
                await asyncio.sleep(self.retry_interval)
                continue

            if not logged_waiting:
                emit(
                    self._log,
                    f"Another Oracle browser run (pid {existing.pid}) is active; "
                    "waiting for it to finish before launching a new browser.",
                )
                logged_waiting = True

            self._check_deadline(deadline)
            await asyncio.sleep(self.retry_interval)

    async def release(self) -> None:
        """Delete the lock file if it still names this process. Safe to repeat."""

        if not self._held:
            return
        self._held = False
        try:
            existing = read_lock_record(self.path)
            if existing is not None and existing.pid == self._pid:
                self.path.unlink(missing_ok=True)
                emit(self._log, "Released global Oracle browser lock")
        except OSError:
            # A future acquirer reclaims the record through the liveness check.
            LOGGER.debug("Failed to release browser lock %s", self.path, exc_info=True)

    async def __aenter__(self) -> "BrowserLock":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.release()

    def _check_deadline(self, deadline: float) -> None:
        if self.timeout > 0 and time.monotonic() > deadline:
            raise LockTimeout(
                "Timed out waiting for another Oracle browser run to finish. "
                f"If this keeps happening, remove {self.path}."
            )

    def _try_create(self) -> bool:
        record = LockRecord(pid=self._pid, created_at=time.time() * 1000)
        payload = record.model_dump_json(by_alias=True)
        try:
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except OSError as exc:
            if exc.errno in _CONTENDED_ERRNOS:
                return False
            raise
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
        except BaseException:
            # An empty record would read as corrupt and block every contender.
            self.path.unlink(missing_ok=True)
            raise
        return True

    def _remove_stale(self, existing: LockRecord) -> bool:
        try:
            self.path.unlink(missing_ok=True)
        except OSError:
            LOGGER.debug("Could not remove stale lock %s", self.path, exc_info=True)
            return False
        emit(
            self._log,
            f"Removed stale Oracle browser lock held by pid {existing.pid}; resuming browser launch.",
        )
        return True


async def acquire_browser_lock(
    path: Optional[Path] = None,
    *,
    timeout: float = DEFAULT_TIMEOUT,
    retry_interval: float = DEFAULT_RETRY_INTERVAL,
    log: Optional[LogSink] = None,
) -> Callable[[], Awaitable[None]]:
    """Acquire the browser lock and return its idempotent release coroutine function."""

    lock = BrowserLock(path, timeout=timeout, retry_interval=retry_interval, log=log)
    await lock.acquire()
    return lock.release
