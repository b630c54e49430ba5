"""Configuration models for browser-oracle."""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

CHATGPT_URL = "https://chatgpt.com/"


def default_home_dir() -> Path:
    """Return the directory holding the lock file and other run state."""

    override = os.environ.get("ORACLE_HOME_DIR")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".oracle"


class BrowserConfig(BaseModel):
    """Settings for the browser backend and the target site."""

    url: str = CHATGPT_URL
    headless: bool = False
    keep_browser: bool = False
    executable_path: Optional[Path] = None
    viewport_width: int = 1280
    viewport_height: int = 720
    timeout: float = Field(
        default=900.0,
        description="Seconds to wait for the assistant response to complete.",
    )
    input_timeout: float = Field(
        default=30.0,
        description="Seconds to wait for the prompt composer to become ready.",
    )
    debug: bool = False


class LockConfig(BaseModel):
    """Settings for the cross-process browser lock."""

    path: Optional[Path] = None
    timeout: float = Field(default=30 * 60.0, description="Seconds to wait; 0 waits forever.")
    retry_interval: float = 0.75


class AttachmentConfig(BaseModel):
    """Settings for uploading and verifying attachments."""

    max_attempts: int = 3
    selection_timeout: float = 10.0
    settle_delay: float = 1.0
    verify_timeout: float = 10.0


class ProgressConfig(BaseModel):
    """Settings for the thinking-status progress monitor."""

    interval: float = 1.5
    target_seconds: float = 600.0
    verbose: bool = False


class OracleConfig(BaseSettings):
    """Top-level configuration for a browser run."""

    model_config = SettingsConfigDict(
        env_prefix="BROWSER_ORACLE_",
        env_file=(".env",),
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    lock: LockConfig = Field(default_factory=LockConfig)
    attachments: AttachmentConfig = Field(default_factory=AttachmentConfig)
    progress: ProgressConfig = Field(default_factory=ProgressConfig)


def default_lock_path() -> Path:
    return default_home_dir() / "browser.lock"


def load_config(
    path: Path | None = None,
    *,
    env_file: Path | None = None,
    **overrides: object,
) -> OracleConfig:
    """Build the run configuration.

    Sources apply in this order, later ones winning key by key: defaults,
    ``BROWSER_ORACLE_*`` environment and ``.env`` values, the YAML file at
    ``path``, then ``overrides``. Paths are expanded and an unset lock path
    resolves under :func:`default_home_dir`.
    """

    explicit = _merged(_read_yaml(path) if path else {}, overrides)
    settings_kwargs: dict[str, object] = {}
    if env_file is not None:
        settings_kwargs["_env_file"] = env_file
    config = OracleConfig(**settings_kwargs)
    if explicit:
        config = OracleConfig.model_validate(_merged(config.model_dump(), explicit))
    return _resolve_paths(config)


def _read_yaml(path: Path) -> dict[str, Any]:
    import yaml

    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, Mapping):
        raise ValueError(f"Configuration file {path} must contain a mapping at the top level")
    return dict(data)


def _merged(base: Mapping[str, Any], updates: Mapping[str, Any]) -> dict[str, Any]:
    """Return ``base`` with ``updates`` layered on top, merging nested mappings."""

    result = dict(base)
    for key, value in updates.items():
        current = result.get(key)
        if isinstance(value, Mapping) and isinstance(current, Mapping):
            result[key] = _merged(current, value)
        else:
            result[key] = value
    return result


def _resolve_paths(config: OracleConfig) -> OracleConfig:
    lock_path = config.lock.path.expanduser() if config.lock.path else default_lock_path()
    config.lock = config.lock.model_copy(update={"path": lock_path})
    if config.browser.executable_path is not None:
        config.browser = config.browser.model_copy(
            update={"executable_path": config.browser.executable_path.expanduser()}
        )
    return config
