"""Playwright-backed implementation of the page channel."""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

from playwright.async_api import ElementHandle, Error, Page

from ..errors import ConnectionLost, StaleElementError
from .base import PageChannel, is_connection_closed_error, is_stale_element_error

LOGGER = logging.getLogger(__name__)


class PlaywrightPage(PageChannel):
    """Page channel that forwards calls to a Playwright :class:`Page`."""

    def __init__(self, page: Page, *, navigation_timeout: float = 45.0) -> None:
        self._page = page
        self._navigation_timeout = navigation_timeout

    @property
    def page(self) -> Page:
        return self._page

    async def navigate(self, url: str) -> None:
        LOGGER.debug("Navigating to %s", url)
        try:
            await self._page.goto(
                url,
                wait_until="commit",
                timeout=self._navigation_timeout * 1000,
            )
        except Error as exc:
            raise _translate(exc) from exc

    async def evaluate(self, expression: str) -> Any:
        try:
            return await self._page.evaluate(expression)
        except Error as exc:
            raise _translate(exc) from exc

    async def query_selector(self, selector: str) -> Optional[ElementHandle]:
        try:
            return await self._page.query_selector(selector)
        except Error as exc:
            raise _translate(exc) from exc

    async def set_input_files(self, element: Any, files: Sequence[str]) -> None:
        try:
            await element.set_input_files(list(files))
        except Error as exc:
            raise _translate(exc) from exc

    async def current_url(self) -> str:
        try:
            return await super().current_url()
        except ConnectionLost:
            raise
        except Exception:
            # The document may be mid-navigation; the page object still knows its URL.
            return self._page.url


def _translate(exc: Error) -> Exception:
    if is_connection_closed_error(exc):
        return ConnectionLost(str(exc))
    if is_stale_element_error(exc):
        return StaleElementError(str(exc))
    return exc
