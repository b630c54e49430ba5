"""Remote page channel abstraction consumed by the automation core."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

_CLOSED_MARKERS = (
    "websocket connection closed",
    "websocket is closed",
    "websocket error",
    "target closed",
    "target page, context or browser has been closed",
    "browser has been closed",
    "connection closed",
)

_STALE_MARKERS = (
    "not attached to the dom",
    "element is detached",
    "node is detached",
    "could not find node with given id",
    "no node with given id",
)


def is_connection_closed_error(error: BaseException) -> bool:
    """Return True when ``error`` reports that the browser connection dropped."""

    message = str(error).lower()
    return any(marker in message for marker in _CLOSED_MARKERS)


def is_stale_element_error(error: BaseException) -> bool:
    """Return True when ``error`` reports a reference to a re-rendered element."""

    message = str(error).lower()
    return any(marker in message for marker in _STALE_MARKERS)


class PageChannel(ABC):
    """Unreliable RPC view of a remote page.

    Implementations may raise :class:`~browser_oracle.errors.StaleElementError`
    when an element reference no longer resolves and
    :class:`~browser_oracle.errors.ConnectionLost` when the browser went away.
    """

    @abstractmethod
    async def navigate(self, url: str) -> None:
        """Load ``url`` in the page."""

    @abstractmethod
    async def evaluate(self, expression: str) -> Any:
        """Evaluate a script expression and return its JSON-compatible value."""

    @abstractmethod
    async def query_selector(self, selector: str) -> Optional[Any]:
        """Return an opaque element reference for ``selector`` or ``None``."""

    @abstractmethod
    async def set_input_files(self, element: Any, files: Sequence[str]) -> None:
        """Assign local ``files`` to a file-input element reference."""

    async def current_url(self) -> str:
        return str(await self.evaluate("window.location.href") or "")

    async def ready_state(self) -> str:
        return str(await self.evaluate("document.readyState") or "")
