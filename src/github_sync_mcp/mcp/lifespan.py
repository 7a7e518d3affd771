"""Lifespan management for MCP server startup and shutdown."""

import asyncio
import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from dotenv import load_dotenv

from ..config import Config, load_config
from ..config_loader import (
    discover_config_files,
    load_hierarchical_config,
)
from ..config_schema import build_config, to_fallbacks
from ..core.async_utils import init_semaphore, run_sync
from ..core.client import GitHubClient
from ..sync.channel import ConflictChannel
from ..sync.engine import SyncEngine
from ..sync.listener import ChangeListener
from ..sync.resolver import create_resolver
from ..sync.scheduler import SyncScheduler
from ..sync.state import MetadataStore
from ..sync.watcher import VaultWatcher
from ..vault import Vault

logger = logging.getLogger(__name__)


def _stderr_print(msg: str) -> None:
    """Print message to stderr for user feedback (safe in MCP mode)."""
    print(msg, file=sys.stderr, flush=True)


@dataclass
class ServerContext:
    """Everything a tool handler needs, built once per server run."""

    config: Config
    client: GitHubClient
    vault: Vault
    store: MetadataStore
    channel: ConflictChannel
    engine: SyncEngine
    listener: ChangeListener
    scheduler: SyncScheduler
    watcher: VaultWatcher | None = None
    # Pass started by a tool call, kept so a later call can pick it up
    sync_task: asyncio.Task | None = None
    tasks: list[asyncio.Task] = field(default_factory=list)


def build_context(config: Config, client: GitHubClient) -> ServerContext:
    """Wire the sync components together for *config*."""
    vault = Vault(config.vault_root, config.config_dir)
    store = MetadataStore(vault.root, config.config_dir)
    channel = ConflictChannel()
    resolver = create_resolver(config.conflict_handling, channel.request)
    engine = SyncEngine(client, vault, store, config, resolver)
    listener = ChangeListener(store, config)
    watcher = VaultWatcher(vault, listener) if config.watch else None
    return ServerContext(
        config=config,
        client=client,
        vault=vault,
        store=store,
        channel=channel,
        engine=engine,
        listener=listener,
        scheduler=SyncScheduler(engine),
        watcher=watcher,
    )


async def start_background(ctx: ServerContext) -> None:
    """Load the manifest and start the listener, watcher and scheduler."""
    await ctx.engine.load_metadata()
    ctx.tasks.append(asyncio.create_task(ctx.listener.run()))
    if ctx.watcher is not None:
        ctx.watcher.start()
    if ctx.config.sync_strategy == "interval":
        ctx.scheduler.start_interval(ctx.config.sync_interval)
    if ctx.config.sync_on_startup:
        ctx.tasks.append(asyncio.create_task(ctx.scheduler.sync_on_startup()))


async def stop_background(ctx: ServerContext) -> None:
    """Undo ``start_background()``.  Safe to call more than once."""
    await ctx.scheduler.stop_interval()
    if ctx.watcher is not None and ctx.watcher.running:
        await ctx.watcher.stop()
    # A pass suspended on conflicts would otherwise never finish
    ctx.channel.cancel("Server is shutting down")
    if ctx.sync_task is not None:
        ctx.tasks.append(ctx.sync_task)
        ctx.sync_task = None
    tasks, ctx.tasks = ctx.tasks, []
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    await ctx.store.save()


@asynccontextmanager
async def server_lifespan(
    config_overrides: dict[str, Any] | None = None,
) -> AsyncIterator[ServerContext]:
    """
    Manage server startup and shutdown lifecycle.

    On startup:
    - Load .env file (so values are available for env var lookups and YAML interpolation)
    - Load YAML config file if present (as fallback values)
    - Merge all sources via load_config(): CLI > env vars > .env > YAML > defaults
    - Create GitHubClient and validate the repository is reachable
    - Build the vault, manifest store and sync engine, load the manifest
    - Start the change listener, the file watcher and the sync scheduler

    On shutdown:
    - Stop the scheduler and the watcher, cancel pending conflict requests
    - Flush the manifest to disk

    Args:
        config_overrides: Optional dict with config values from CLI
            (token, owner, repo, branch, vault, debug)

    Yields:
        ServerContext with every initialized component

    Raises:
        RuntimeError: If configuration is invalid or GitHub is unreachable.
    """
    logger.info("MCP server starting...")
    _stderr_print("GitHub Sync MCP Server starting...")

    # CLI args > env vars (.env loaded first) > YAML config > defaults
    try:
        # .env first, so ${VAR} interpolation in YAML can use its values
        load_dotenv()

        yaml_fallbacks: dict[str, Any] | None = None
        config_files = discover_config_files()
        sources = []

        if config_files:
            config_path = config_files[0]
            raw = load_hierarchical_config()
            yaml_fallbacks = to_fallbacks(build_config(raw))
            sources.append(f"config file: {config_path}")

        overrides = config_overrides or {}
        config = load_config(
            token=overrides.get("token"),
            owner=overrides.get("owner"),
            repo=overrides.get("repo"),
            branch=overrides.get("branch"),
            vault=overrides.get("vault"),
            debug=overrides.get("debug", False),
            yaml_fallbacks=yaml_fallbacks,
        )

        if overrides:
            sources.append("CLI arguments")
        sources.append("environment variables")
        source_desc = ", ".join(sources)
        logger.info("Configuration loaded from: %s", source_desc)
        _stderr_print(f"  Configuration loaded from: {source_desc}")
        logger.info(
            "Repository: %s/%s@%s", config.owner, config.repo, config.branch
        )
        _stderr_print(
            f"  Repository: {config.owner}/{config.repo}@{config.branch}"
        )
        _stderr_print(f"  Vault: {config.vault_root}")
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        _stderr_print(f"ERROR: Configuration error: {e}")
        _stderr_print("  Ensure GITHUB_TOKEN, GITHUB_OWNER, GITHUB_REPO are set.")
        raise RuntimeError(
            f"Configuration error: {e}. Ensure GITHUB_TOKEN, GITHUB_OWNER, GITHUB_REPO are set."
        ) from e

    logger.info("Validating GitHub connection...")
    _stderr_print("  Validating GitHub connection...")
    try:
        client = GitHubClient(config)
        full_name = await run_sync(client.validate_connection)
        logger.info("Connected to repository %s", full_name)
        _stderr_print(f"  Connected to {full_name}")
        init_semaphore(config.max_parallel_requests)
        _stderr_print(
            f"  Parallel requests: {config.max_parallel_requests}"
        )
    except Exception as e:
        logger.error("Failed to connect to GitHub: %s", e)
        _stderr_print("ERROR: GitHub connection failed.")
        _stderr_print(f"  {e}")
        _stderr_print("  Check GITHUB_TOKEN, GITHUB_OWNER, GITHUB_REPO.")
        raise RuntimeError(
            f"GitHub connection failed: {e}. Check GITHUB_TOKEN, GITHUB_OWNER, GITHUB_REPO."
        ) from e

    ctx = build_context(config, client)
    try:
        await start_background(ctx)
    except Exception as e:
        logger.error("Failed to start sync components: %s", e)
        _stderr_print(f"ERROR: Failed to start sync: {e}")
        await stop_background(ctx)
        raise RuntimeError(f"Failed to start sync: {e}") from e

    _stderr_print(
        f"  Tracking {len(ctx.store.data.files)} file(s), "
        f"conflicts: {config.conflict_handling}, strategy: {config.sync_strategy}"
    )
    _stderr_print("Server ready. Waiting for MCP client connection...")

    try:
        yield ctx
    finally:
        logger.info("MCP server shutting down")
        await stop_background(ctx)
        _stderr_print("GitHub Sync MCP Server shutting down.")
