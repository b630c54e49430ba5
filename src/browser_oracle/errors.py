"""Typed failures raised by the browser automation core."""

from __future__ import annotations

from typing import Optional, Sequence


class OracleError(RuntimeError):
    """Base class for browser automation failures."""


class LockTimeout(OracleError):
    """Raised when another run holds the browser lock past the deadline."""


class LocateFailure(OracleError):
    """Raised when a required page element cannot be found."""


class StaleElementError(OracleError):
    """Raised when a located element no longer resolves after a re-render."""


class PollTimeout(OracleError, TimeoutError):
    """Raised when a polled condition does not hold before the deadline."""

    def __init__(self, message: str, last_error: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.last_error = last_error


class AttachmentVerificationFailed(OracleError):
    """Raised when the composer does not show the expected attachments."""

    def __init__(
        self,
        *,
        expected: Sequence[str],
        visible: Sequence[str],
        missing: Sequence[str],
        extra: Sequence[str],
    ) -> None:
        self.expected = list(expected)
        self.visible = list(visible)
        self.missing = list(missing)
        self.extra = list(extra)
        super().__init__(
            f"Expected {len(self.expected)} attachment(s) but {len(self.visible)} visible in composer. "
            f"Missing: [{', '.join(self.missing) or 'none'}]. "
            f"Extra: [{', '.join(self.extra) or 'none'}]. "
            f"Visible: [{', '.join(self.visible) or 'none'}]"
        )


class CompletionTimeout(OracleError):
    """Raised when the page never settles into a steady ready state."""

    def __init__(self, message: str, snapshot: Optional[dict] = None) -> None:
        super().__init__(message)
        self.snapshot = snapshot or {}


class ConnectionLost(OracleError):
    """Raised when the browser connection drops before the run finished."""


class RecoveryFailed(OracleError):
    """Describes a failed session recovery; logged rather than raised by the core."""
