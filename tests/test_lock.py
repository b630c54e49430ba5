import asyncio
import errno
import io
import json
import os
import subprocess
import sys
from pathlib import Path

import pytest

from browser_oracle.browser import lock as lock_module
from browser_oracle.browser.lock import (
    BrowserLock,
    acquire_browser_lock,
    is_process_alive,
    read_lock_record,
)
from browser_oracle.errors import LockTimeout


def _dead_pid() -> int:
    process = subprocess.Popen([sys.executable, "-c", "pass"])
    process.wait()
    return process.pid


def test_acquire_and_release_lock_file(tmp_path: Path) -> None:
    lock_path = tmp_path / "browser.lock"
    messages: list[str] = []

    async def scenario() -> None:
        release = await acquire_browser_lock(lock_path, log=messages.append)
        record = read_lock_record(lock_path)
        assert record is not None
        assert record.pid == os.getpid()
        await release()

    asyncio.run(scenario())

    assert not lock_path.exists()
    assert any("Acquired global Oracle browser lock" in message for message in messages)
    assert any("Released global Oracle browser lock" in message for message in messages)


def test_lock_file_uses_camel_case_payload(tmp_path: Path) -> None:
    lock_path = tmp_path / "browser.lock"

    async def scenario() -> None:
        lock = BrowserLock(lock_path)
        await lock.acquire()
        payload = json.loads(lock_path.read_text())
        assert set(payload) == {"pid", "createdAt"}
        await lock.release()

    asyncio.run(scenario())


def test_second_waiter_acquires_after_first_release(tmp_path: Path) -> None:
    lock_path = tmp_path / "browser.lock"
    messages: list[str] = []

    async def scenario() -> None:
        release_first = await acquire_browser_lock(lock_path, retry_interval=0.01, log=messages.append)
        second = asyncio.create_task(
            acquire_browser_lock(lock_path, retry_interval=0.01, log=messages.append)
        )
        await asyncio.sleep(0.1)
        assert not second.done()

        await release_first()
        release_second = await asyncio.wait_for(second, timeout=2)
        assert lock_path.exists()
        await release_second()

    asyncio.run(scenario())

    assert not lock_path.exists()
    waiting = [message for message in messages if "is active; waiting" in message]
    assert len(waiting) == 1


def test_stale_lock_from_dead_process_is_reclaimed(tmp_path: Path) -> None:
    lock_path = tmp_path / "browser.lock"
    dead_pid = _dead_pid()
    lock_path.write_text(json.dumps({"pid": dead_pid, "createdAt": 1}))
    messages: list[str] = []

    async def scenario() -> None:
        release = await acquire_browser_lock(
            lock_path, timeout=60, retry_interval=5, log=messages.append
        )
        assert read_lock_record(lock_path).pid == os.getpid()
        await release()

    asyncio.run(asyncio.wait_for(scenario(), timeout=2))

    assert any(f"pid {dead_pid}" in message for message in messages)


def test_live_holder_times_out(tmp_path: Path) -> None:
    lock_path = tmp_path / "browser.lock"

    async def scenario() -> None:
        holder = BrowserLock(lock_path)
        await holder.acquire()
        try:
            with pytest.raises(LockTimeout):
                await BrowserLock(lock_path, timeout=0.05, retry_interval=0.01).acquire()
        finally:
            await holder.release()

    asyncio.run(scenario())


def test_corrupt_lock_is_not_deleted(tmp_path: Path) -> None:
    lock_path = tmp_path / "browser.lock"
    lock_path.write_text("{not json")

    async def scenario() -> None:
        with pytest.raises(LockTimeout):
            await BrowserLock(lock_path, timeout=0.05, retry_interval=0.01).acquire()

    asyncio.run(scenario())

    assert lock_path.read_text() == "{not json"


def test_release_is_idempotent(tmp_path: Path) -> None:
    lock_path = tmp_path / "browser.lock"

    async def scenario() -> None:
        release = await acquire_browser_lock(lock_path)
        await release()
        await release()

    asyncio.run(scenario())

    assert not lock_path.exists()


def test_release_keeps_record_owned_by_another_process(tmp_path: Path) -> None:
    lock_path = tmp_path / "browser.lock"

    async def scenario() -> None:
        lock = BrowserLock(lock_path)
        await lock.acquire()
        lock_path.write_text(json.dumps({"pid": os.getppid(), "createdAt": 1}))
        await lock.release()

    asyncio.run(scenario())

    assert read_lock_record(lock_path).pid == os.getppid()


def test_context_manager_releases_on_error(tmp_path: Path) -> None:
    lock_path = tmp_path / "browser.lock"

    async def scenario() -> None:
        async with BrowserLock(lock_path):
            assert lock_path.exists()
            raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        asyncio.run(scenario())

    assert not lock_path.exists()


@pytest.mark.parametrize("pid", [0, -1, "123", 1.5, True, None])
def test_invalid_pids_are_dead(pid) -> None:
    assert is_process_alive(pid) is False


def test_current_process_is_alive() -> None:
    assert is_process_alive(os.getpid()) is True
    assert is_process_alive(_dead_pid()) is False


def test_read_lock_record_rejects_wrong_types(tmp_path: Path) -> None:
    lock_path = tmp_path / "browser.lock"
    lock_path.write_text(json.dumps({"pid": "12", "createdAt": 1}))
    assert read_lock_record(lock_path) is None
    lock_path.write_text(json.dumps({"pid": 12}))
    assert read_lock_record(lock_path) is None
    assert read_lock_record(tmp_path / "missing.lock") is None


_HOLDER_SCRIPT = """
import asyncio
import sys
from pathlib import Path

from browser_oracle.browser.lock import BrowserLock


async def main():
    lock = BrowserLock(Path(sys.argv[1]))
    await lock.acquire()
    print("locked", flush=True)
    sys.stdin.readline()
    await lock.release()


asyncio.run(main())
"""


def test_waits_for_lock_held_by_another_process(tmp_path: Path) -> None:
    lock_path = tmp_path / "browser.lock"
    holder = subprocess.Popen(
        [sys.executable, "-c", _HOLDER_SCRIPT, str(lock_path)],
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        text=True,
    )
    messages: list[str] = []
    try:
        assert holder.stdout.readline().strip() == "locked"
        assert read_lock_record(lock_path).pid == holder.pid

        async def scenario() -> int:
            lock = BrowserLock(lock_path, timeout=10, retry_interval=0.01, log=messages.append)
            waiter = asyncio.create_task(lock.acquire())
            await asyncio.sleep(0.3)
            assert not waiter.done()

            holder.stdin.write("\n")
            holder.stdin.flush()
            await asyncio.wait_for(waiter, 10)
            owner = read_lock_record(lock_path).pid
            await lock.release()
            return owner

        owner = asyncio.run(scenario())
    finally:
        if holder.poll() is None:
            holder.kill()
        holder.wait()

    assert owner == os.getpid()
    assert f"Another Oracle browser run (pid {holder.pid}) is active" in messages[0]
    assert messages[-1] == "Released global Oracle browser lock"
    assert not lock_path.exists()


def test_failed_record_write_leaves_no_lock_file(tmp_path: Path, monkeypatch) -> None:
    lock_path = tmp_path / "browser.lock"

    class FullDisk(io.StringIO):
        def write(self, text: str) -> int:
            raise OSError(errno.ENOSPC, "No space left on device")

    def fdopen(fd, *args, **kwargs):
        os.close(fd)
        return FullDisk()

    monkeypatch.setattr(lock_module.os, "fdopen", fdopen)
    with pytest.raises(OSError):
        asyncio.run(BrowserLock(lock_path, timeout=0.1).acquire())
    monkeypatch.undo()

    assert not lock_path.exists()

    async def scenario() -> None:
        async with BrowserLock(lock_path, timeout=0.1, retry_interval=0.01):
            assert read_lock_record(lock_path).pid == os.getpid()

    asyncio.run(scenario())
