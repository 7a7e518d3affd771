"""Unified configuration schema for github_sync_mcp.

Defines Pydantic models for the YAML config structure with dedicated
sections for the GitHub connection, sync behaviour and logging.
``to_fallbacks()`` flattens it for ``load_config()``.

Usage:
    from github_sync_mcp.config_schema import (
        UnifiedConfig, build_config, to_fallbacks,
    )

    raw = load_hierarchical_config()
    unified = build_config(raw)
    config = load_config(yaml_fallbacks=to_fallbacks(unified))
"""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class GitHubConfig(BaseModel):
    """GitHub connection settings.

    All fields are optional to support zero-config: env vars and CLI args
    can supply them at runtime instead.
    """

    owner: str | None = Field(default=None, description="Repository owner")
    repo: str | None = Field(default=None, description="Repository name")
    branch: str | None = Field(default=None, description="Branch to sync")
    token: str | None = Field(
        default=None, description="Personal access token"
    )
    api_url: str | None = Field(
        default=None, description="REST API base URL"
    )
    debug: bool = Field(default=False, description="Enable debug mode")
    max_parallel_requests: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Maximum concurrent requests to the GitHub API (1-100)",
    )
    max_retries: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Retries for transient API errors (0-10)",
    )

    model_config = {"frozen": True}


class SyncConfig(BaseModel):
    """Vault sync behaviour.

    Attributes:
        vault: Local vault directory.
        config_dir: Host config directory inside the vault.
        sync_config_dir: Whether files in ``config_dir`` are synced.
        conflict_handling: Policy applied to conflicting paths.
        strategy: ``manual`` or ``interval``.
        interval_minutes: Minutes between interval syncs.
        sync_on_startup: Run one sync when the server starts.
        commit_message: Message used for sync commits.
        watch: Track local edits with a file-system watcher.
    """

    vault: str | None = Field(default=None, description="Vault directory")
    config_dir: str | None = Field(
        default=None, description="Host config directory"
    )
    sync_config_dir: bool = True
    conflict_handling: Literal[
        "ask", "overwriteLocal", "overwriteRemote"
    ] = "ask"
    strategy: Literal["manual", "interval"] = "manual"
    interval_minutes: int = Field(default=1, ge=1, le=1440)
    sync_on_startup: bool = False
    commit_message: str = "Sync"
    watch: bool = True

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has sensible defaults, so ``UnifiedConfig()``
    (zero-config) is always valid.
    """

    github: GitHubConfig = Field(default_factory=GitHubConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Missing sections get defaults.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)


def to_fallbacks(unified: UnifiedConfig) -> dict:
    """Flatten the ``github`` and ``sync`` sections for ``load_config()``.

    ``None`` values are dropped so they never shadow built-in defaults.
    """
    merged = {
        **unified.github.model_dump(),
        **unified.sync.model_dump(),
    }
    return {k: v for k, v in merged.items() if v is not None}

