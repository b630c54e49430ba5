"""Shared models used across the browser automation core."""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    """Base model persisted with camelCase keys."""

    model_config = ConfigDict(populate_by_name=True)


class LockRecord(_CamelModel):
    """Payload stored in the browser lock file."""

    pid: int
    created_at: float = Field(alias="createdAt")


class SessionState(_CamelModel):
    """Last known conversation location of a run, used for recovery."""

    url: str
    timestamp: float
    prompt_text: str = Field(alias="promptText")
    attachment_paths: Optional[list[str]] = Field(default=None, alias="attachmentPaths")
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    session_dir: str = Field(alias="sessionDir")


class Attachment(BaseModel):
    """A local file the caller wants attached to the prompt."""

    model_config = ConfigDict(frozen=True)

    path: str
    display_path: str

    @classmethod
    def from_path(cls, path: str | Path) -> "Attachment":
        resolved = Path(path).expanduser().resolve()
        return cls(path=str(resolved), display_path=str(path))

    @property
    def filename(self) -> str:
        return Path(self.path).name


class VisibleAttachment(BaseModel):
    """An attachment indicator observed in the composer."""

    filename: str
    selector: str
    outer_html: Optional[str] = Field(default=None, alias="outerHTML")

    model_config = ConfigDict(populate_by_name=True)


class AttachmentReport(BaseModel):
    """Outcome of comparing expected and visible attachments."""

    expected: list[str] = Field(default_factory=list)
    visible: list[str] = Field(default_factory=list)
    missing: list[str] = Field(default_factory=list)
    extra: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.missing and not self.extra

    @property
    def matched(self) -> int:
        return len(self.expected) - len(self.missing)


class ComposerState(str, enum.Enum):
    """Observed state of the composer send affordance."""

    MISSING = "missing"
    DISABLED = "disabled"
    READY = "ready"


class ProbeResult(BaseModel):
    """One observation of the composer made by the completion detector."""

    state: ComposerState
    busy: bool = False
    url: Optional[str] = None

    @property
    def idle_ready(self) -> bool:
        return self.state == ComposerState.READY and not self.busy


class RunResult(BaseModel):
    """Answer captured from a completed browser run."""

    answer_text: str
    answer_markdown: str
    answer_html: Optional[str] = None
    took_ms: int
    answer_tokens: int
    answer_chars: int
    user_data_dir: str
    conversation_url: Optional[str] = None


class NotificationLevel(str, enum.Enum):
    """Severity of notification events."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


class NotificationEvent(BaseModel):
    """Event emitted to notify users."""

    type: str
    message: str
    level: NotificationLevel = NotificationLevel.INFO
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
