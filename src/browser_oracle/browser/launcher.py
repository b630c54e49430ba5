"""Launch a local Chrome and connect to it over the DevTools protocol."""

from __future__ import annotations

import atexit
import logging
import shutil
import signal
import socket
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

from playwright.async_api import Browser, Page, Playwright

from ..config import BrowserConfig
from ..errors import OracleError
from ..notifications.base import LogSink, emit
from .playwright_page import PlaywrightPage
from .polling import poll_until

LOGGER = logging.getLogger(__name__)

_CHROME_FLAGS = (
    "--no-first-run",
    "--no-default-browser-check",
    "--disable-dev-shm-usage",
    "--disable-background-networking",
    "--disable-popup-blocking",
)


def _free_port(host: str = "127.0.0.1") -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return int(sock.getsockname()[1])


@dataclass
class ChromeProcess:
    """A Chrome instance started for one run."""

    process: subprocess.Popen[bytes]
    port: int
    user_data_dir: Path

    @property
    def pid(self) -> int:
        return self.process.pid

    def kill(self, timeout: float = 5.0) -> None:
        if self.process.poll() is not None:
            return
        LOGGER.debug("Terminating Chrome pid %s", self.pid)
        self.process.terminate()
        try:
            self.process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            self.process.kill()


def resolve_chrome_executable(config: BrowserConfig, playwright: Optional[Playwright] = None) -> str:
    if config.executable_path:
        return str(config.executable_path)
    for name in ("google-chrome", "google-chrome-stable", "chromium", "chromium-browser"):
        found = shutil.which(name)
        if found:
            return found
    if playwright is not None:
        return playwright.chromium.executable_path
    raise OracleError("No Chrome executable found; set browser.executable_path.")


def launch_chrome(
    config: BrowserConfig,
    user_data_dir: Path,
    log: Optional[LogSink] = None,
    *,
    executable: Optional[str] = None,
) -> ChromeProcess:
    port = _free_port()
    args = [
        executable or resolve_chrome_executable(config),
        f"--remote-debugging-port={port}",
        f"--user-data-dir={user_data_dir}",
        f"--window-size={config.viewport_width},{config.viewport_height}",
        *_CHROME_FLAGS,
    ]
    if config.headless:
        args.append("--headless=new")
    args.append("about:blank")
    LOGGER.debug("Launching Chrome: %s", args)
    process = subprocess.Popen(args, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
    emit(log, f"Launched Chrome (pid {process.pid}) on port {port}")
    return ChromeProcess(process=process, port=port, user_data_dir=user_data_dir)


@dataclass
class BrowserConnection:
    """Playwright connection to a running Chrome over CDP."""

    browser: Browser
    page: Page
    disconnected: bool = False
    _listeners: list[Callable[[], None]] = field(default_factory=list)

    @property
    def channel(self) -> PlaywrightPage:
        return PlaywrightPage(self.page)

    def on_disconnect(self, callback: Callable[[], None]) -> None:
        self._listeners.append(callback)

    def _handle_disconnect(self, *_: Any) -> None:
        self.disconnected = True
        for callback in list(self._listeners):
            callback()

    async def clear_cookies(self) -> None:
        await self.page.context.clear_cookies()

    async def close(self) -> None:
        if not self.disconnected:
            await self.browser.close()


async def connect_to_chrome(
    playwright: Playwright,
    port: int,
    log: Optional[LogSink] = None,
    *,
    timeout: float = 30.0,
) -> BrowserConnection:
    """Attach to Chrome's DevTools endpoint, retrying while it starts up."""

    endpoint = f"http://127.0.0.1:{port}"
    try:
        browser = await poll_until(
            lambda: playwright.chromium.connect_over_cdp(endpoint),
            interval=0.25,
            timeout=timeout,
            description=f"DevTools endpoint {endpoint}",
        )
    except TimeoutError as exc:
        raise OracleError(f"Could not connect to Chrome at {endpoint}") from exc
    context = browser.contexts[0] if browser.contexts else await browser.new_context()
    page = context.pages[0] if context.pages else await context.new_page()
    connection = BrowserConnection(browser=browser, page=page)
    browser.on("disconnected", connection._handle_disconnect)
    emit(log, f"Connected to Chrome DevTools on port {port}")
    return connection


def remove_profile_dir(path: Path) -> None:
    shutil.rmtree(path, ignore_errors=True)


def register_termination_hooks(
    chrome: ChromeProcess,
    keep_browser: bool,
    log: Optional[LogSink] = None,
) -> Callable[[], None]:
    """Kill Chrome and drop its profile if the process is interrupted.

    Returns a callable that unregisters the hooks.
    """

    def _cleanup() -> None:
        if keep_browser:
            return
        try:
            chrome.kill()
        finally:
            remove_profile_dir(chrome.user_data_dir)

    previous: dict[int, Any] = {}

    def _handler(signum: int, frame: Any) -> None:
        emit(log, f"Received signal {signum}; cleaning up Chrome")
        _cleanup()
        handler = previous.get(signum)
        if callable(handler):
            handler(signum, frame)
        else:
            raise SystemExit(128 + signum)

    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.signal(signum, _handler)
    atexit.register(_cleanup)

    def _remove() -> None:
        atexit.unregister(_cleanup)
        for signum, handler in previous.items():
            signal.signal(signum, handler)

    return _remove
