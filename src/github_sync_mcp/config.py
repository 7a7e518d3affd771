"""Runtime configuration for the vault sync server.

Reads GitHub and sync settings from CLI args, environment variables,
.env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    GITHUB_TOKEN: Personal access token with contents read/write (required)
    GITHUB_OWNER: Repository owner (required)
    GITHUB_REPO: Repository name (required)
    GITHUB_BRANCH: Branch to sync (optional, default: main)
    GITHUB_API_URL: REST API base URL (optional, default: https://api.github.com)
    GITHUB_MAX_PARALLEL_REQUESTS: Max concurrent API requests (optional, default: 5)
    GITHUB_MAX_RETRIES: Retries for transient API errors (optional, default: 3)
    GITHUB_SYNC_VAULT: Local vault directory (optional, default: CWD)
    GITHUB_SYNC_CONFIG_DIR: Host config directory inside the vault (optional, default: .obsidian)
    GITHUB_SYNC_CONFIG_DIR_ENABLED: Sync the config directory too (optional, default: true)
    GITHUB_SYNC_CONFLICT_HANDLING: ask | overwriteLocal | overwriteRemote (optional, default: ask)
    GITHUB_SYNC_STRATEGY: manual | interval (optional, default: manual)
    GITHUB_SYNC_INTERVAL: Minutes between interval syncs (optional, default: 1)
    GITHUB_SYNC_ON_STARTUP: Sync once when the server starts (optional, default: false)
"""

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

CONFLICT_POLICIES = ("ask", "overwriteLocal", "overwriteRemote")
SYNC_STRATEGIES = ("manual", "interval")

_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


@dataclass
class Config:
    token: str
    owner: str
    repo: str
    branch: str = "main"
    api_url: str = "https://api.github.com"
    vault_path: str = "."
    config_dir: str = ".obsidian"
    sync_config_dir: bool = True
    conflict_handling: str = "ask"
    sync_strategy: str = "manual"
    sync_interval: int = 1
    sync_on_startup: bool = False
    commit_message: str = "Sync"
    watch: bool = True
    debug: bool = False
    max_parallel_requests: int = 5
    max_retries: int = 3

    @property
    def vault_root(self) -> Path:
        return Path(self.vault_path).expanduser().resolve()


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Args:
        config: Config instance to validate.

    Raises:
        ValueError: If a credential is empty or a value is out of range.
    """
    if not config.token.strip():
        raise ValueError(
            "GitHub token cannot be empty. Set GITHUB_TOKEN environment variable."
        )

    for label, value in (("owner", config.owner), ("repo", config.repo)):
        if not _NAME_PATTERN.match(value):
            raise ValueError(
                f"Invalid repository {label} '{value}': use letters, digits, '-', '_' or '.'"
            )

    branch = config.branch.strip()
    if (
        not branch
        or ".." in branch
        or branch.startswith("/")
        or branch.endswith("/")
        or any(c.isspace() for c in branch)
    ):
        raise ValueError(f"Invalid branch name '{config.branch}'")
    config.branch = branch

    config.api_url = config.api_url.strip()
    parsed = urlparse(config.api_url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise ValueError(
            f"Invalid GitHub API URL '{config.api_url}': must be an http(s) URL with a hostname"
        )
    config.api_url = config.api_url.removesuffix("/")

    if config.conflict_handling not in CONFLICT_POLICIES:
        raise ValueError(
            f"Invalid conflict handling '{config.conflict_handling}': "
            f"must be one of {', '.join(CONFLICT_POLICIES)}"
        )

    if config.sync_strategy not in SYNC_STRATEGIES:
        raise ValueError(
            f"Invalid sync strategy '{config.sync_strategy}': "
            f"must be one of {', '.join(SYNC_STRATEGIES)}"
        )

    if config.sync_interval < 1:
        raise ValueError(
            f"Invalid sync interval {config.sync_interval}: must be at least 1 minute"
        )

    config_dir = PurePosixPath(config.config_dir)
    if (
        not config.config_dir
        or config_dir.is_absolute()
        or ".." in config_dir.parts
    ):
        raise ValueError(
            f"Invalid config dir '{config.config_dir}': must be a relative path inside the vault"
        )

    if not config.vault_root.is_dir():
        raise ValueError(
            f"Vault directory not found: {config.vault_root}"
        )


def load_config(
    token: str | None = None,
    owner: str | None = None,
    repo: str | None = None,
    branch: str | None = None,
    vault: str | None = None,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        token: Override GitHub token.
        owner: Override repository owner.
        repo: Override repository name.
        branch: Override branch.
        vault: Override vault directory.
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Flattened ``github`` and ``sync`` sections of the
            YAML config.  Used when CLI arg and env var are both unset.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If required config (token, owner, repo) is missing or
            any value is invalid.
    """
    fb = yaml_fallbacks or {}

    # --- Required string fields: CLI > env > YAML > error ---

    gh_token = token or os.getenv("GITHUB_TOKEN") or fb.get("token")
    if not gh_token:
        raise ValueError(
            "GitHub token not found. Set GITHUB_TOKEN environment variable, "
            "pass --token CLI argument, or add 'token' to config.yml."
        )

    gh_owner = owner or os.getenv("GITHUB_OWNER") or fb.get("owner")
    if not gh_owner:
        raise ValueError(
            "Repository owner not found. Set GITHUB_OWNER environment variable, "
            "pass --owner CLI argument, or add 'owner' to config.yml."
        )

    gh_repo = repo or os.getenv("GITHUB_REPO") or fb.get("repo")
    if not gh_repo:
        raise ValueError(
            "Repository name not found. Set GITHUB_REPO environment variable, "
            "pass --repo CLI argument, or add 'repo' to config.yml."
        )

    # --- Optional string fields: CLI > env > YAML > default ---

    def get_str(cli: str | None, key: str, fb_key: str, default: str) -> str:
        return cli or os.getenv(key) or fb.get(fb_key) or default

    # --- Boolean fields: CLI > env > YAML > default ---

    def get_bool_env(key: str) -> bool | None:
        """Return True/False from env var, or None if unset."""
        val = os.getenv(key)
        if val is None:
            return None
        return val.lower() in ("true", "1", "yes", "on")

    def get_bool(key: str, fb_key: str, default: bool) -> bool:
        env_val = get_bool_env(key)
        if env_val is not None:
            return env_val
        return bool(fb.get(fb_key, default))

    # --- Numeric fields: env > YAML > default ---

    def get_int(key: str, fb_key: str, default: int, lo: int, hi: int) -> int:
        raw = os.getenv(key)
        if raw is not None:
            try:
                value = int(raw)
            except ValueError:
                raise ValueError(
                    f"Invalid {key} '{raw}': must be a number between {lo} and {hi}"
                ) from None
            if not (lo <= value <= hi):
                raise ValueError(
                    f"Invalid {key} '{raw}': must be a number between {lo} and {hi}"
                )
            return value
        if fb_key in fb:
            return int(fb[fb_key])
        return default

    config = Config(
        token=gh_token.strip(),
        owner=gh_owner.strip(),
        repo=gh_repo.strip(),
        branch=get_str(branch, "GITHUB_BRANCH", "branch", "main"),
        api_url=get_str(
            None, "GITHUB_API_URL", "api_url", "https://api.github.com"
        ),
        vault_path=get_str(vault, "GITHUB_SYNC_VAULT", "vault", "."),
        config_dir=get_str(
            None, "GITHUB_SYNC_CONFIG_DIR", "config_dir", ".obsidian"
        ),
        sync_config_dir=get_bool(
            "GITHUB_SYNC_CONFIG_DIR_ENABLED", "sync_config_dir", True
        ),
        conflict_handling=get_str(
            None, "GITHUB_SYNC_CONFLICT_HANDLING", "conflict_handling", "ask"
        ),
        sync_strategy=get_str(
            None, "GITHUB_SYNC_STRATEGY", "strategy", "manual"
        ),
        sync_interval=get_int(
            "GITHUB_SYNC_INTERVAL", "interval_minutes", 1, 1, 1440
        ),
        sync_on_startup=get_bool(
            "GITHUB_SYNC_ON_STARTUP", "sync_on_startup", False
        ),
        commit_message=fb.get("commit_message") or "Sync",
        watch=bool(fb.get("watch", True)),
        debug=debug or get_bool("GITHUB_SYNC_DEBUG", "debug", False),
        max_parallel_requests=get_int(
            "GITHUB_MAX_PARALLEL_REQUESTS",
            "max_parallel_requests",
            5,
            1,
            100,
        ),
        max_retries=get_int("GITHUB_MAX_RETRIES", "max_retries", 3, 0, 10),
    )

    validate_config(config)

    return config
