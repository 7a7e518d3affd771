import base64
import logging
import threading
import time
from typing import Any
from urllib.parse import quote

import requests

from ..config import Config
from ..sync.models import NewTreeItem, RepoContent, TreeItem

logger = logging.getLogger(__name__)

API_VERSION = "2022-11-28"
BACKOFF_BASE = 1.0
BACKOFF_MAX = 60.0
TRANSIENT_STATUSES = frozenset({500, 502, 503, 504})


class GitHubAPIError(Exception):
    """A GitHub REST call failed.

    Attributes:
        status: HTTP status, or 0 when no response was received.
        message: Error message from the API (or the transport).
        transient: Whether the failure is worth retrying.
    """

    def __init__(self, status: int, message: str, transient: bool = False):
        super().__init__(f"GitHub API error {status}: {message}")
        self.status = status
        self.message = message
        self.transient = transient


class RateLimitError(GitHubAPIError):
    """Primary or secondary rate limit hit."""

    def __init__(self, status: int, message: str, retry_after: float | None = None):
        super().__init__(status, message, transient=True)
        self.retry_after = retry_after


class EmptyRepositoryError(GitHubAPIError):
    """The branch has no commits, so it has no tree."""


class GitHubClient:
    """Blocking client for the Git Data API of one repository and branch.

    Idempotent calls (reads, blob and tree creation, which are content
    addressed) are retried with exponential backoff on rate limits,
    server errors and transport failures.  File creation, commit creation
    and ref updates are sent exactly once: after an ambiguous failure the
    caller has to re-read remote state instead.
    """

    def __init__(self, config: Config):
        self.config = config
        self._thread_local = threading.local()
        self.repo_url = (
            f"{config.api_url}/repos/{config.owner}/{config.repo}"
        )

    @property
    def session(self) -> requests.Session:
        """The current thread's session."""
        return self._get_session()

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers.update(
            {
                "Accept": "application/vnd.github+json",
                "Authorization": f"Bearer {self.config.token}",
                "X-GitHub-Api-Version": API_VERSION,
            }
        )
        return session

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict | None = None,
        params: dict | None = None,
        idempotent: bool = True,
    ) -> Any:
        """Send one API request, retrying transient failures if allowed."""
        url = f"{self.repo_url}{path}"
        attempts = self.config.max_retries + 1 if idempotent else 1

        for attempt in range(attempts):
            last_attempt = attempt + 1 >= attempts
            try:
                response = self._get_session().request(
                    method, url, json=json, params=params, timeout=(10, 60)
                )
            except (requests.ConnectionError, requests.Timeout) as exc:
                if not last_attempt:
                    logger.warning(
                        "%s %s failed (%s), retrying", method, path, exc
                    )
                    self._backoff(attempt, None)
                    continue
                raise GitHubAPIError(0, str(exc), transient=True) from exc

            if response.ok:
                return response.json() if response.content else None

            error = _error_from_response(response)
            if error.transient and not last_attempt:
                logger.warning(
                    "%s %s returned %d, retrying (attempt %d of %d)",
                    method,
                    path,
                    error.status,
                    attempt + 1,
                    attempts,
                )
                self._backoff(attempt, error)
                continue
            raise error

        raise AssertionError("unreachable")  # pragma: no cover

    def _backoff(self, attempt: int, error: GitHubAPIError | None) -> None:
        delay = min(BACKOFF_BASE * 2**attempt, BACKOFF_MAX)
        if isinstance(error, RateLimitError) and error.retry_after is not None:
            delay = min(max(error.retry_after, delay), BACKOFF_MAX)
        time.sleep(delay)

    # ------------------------------------------------------------------
    # Git Data API
    # ------------------------------------------------------------------

    def validate_connection(self) -> str:
        """Fetch the repository and return its full name."""
        data = self._request("GET", "")
        return str(data.get("full_name", ""))

    def get_repo_content(self) -> RepoContent:
        """List every blob on the branch, recursively.

        Raises:
            EmptyRepositoryError: The branch has no commits yet (409) or
                no tree (404).
        """
        try:
            data = self._request(
                "GET",
                f"/git/trees/{quote(self.config.branch, safe='')}",
                params={"recursive": "1"},
            )
        except GitHubAPIError as e:
            if e.status in (404, 409):
                raise EmptyRepositoryError(e.status, e.message) from e
            raise
        if data.get("truncated"):
            logger.warning(
                "Tree listing for %s is truncated; some files are not visible",
                self.config.branch,
            )
        files = {
            item["path"]: TreeItem(
                path=item["path"],
                mode=item.get("mode", "100644"),
                type=item["type"],
                sha=item["sha"],
                url=item.get("url"),
                size=item.get("size"),
            )
            for item in data.get("tree", [])
            if item.get("type") == "blob"
        }
        return RepoContent(sha=data["sha"], files=files)

    def get_blob(self, sha: str) -> bytes:
        """Fetch a blob and return its decoded bytes."""
        data = self._request("GET", f"/git/blobs/{sha}")
        if data.get("encoding", "base64") != "base64":
            return str(data.get("content", "")).encode("utf-8")
        return base64.b64decode(data.get("content", ""))

    def create_blob(self, content_b64: str) -> str:
        """Upload base64 content as a blob and return its SHA."""
        data = self._request(
            "POST",
            "/git/blobs",
            json={"content": content_b64, "encoding": "base64"},
        )
        return data["sha"]

    def create_file(self, path: str, content: str, message: str) -> None:
        """Commit a single file through the contents API.

        Only used to give an empty repository its first commit.
        """
        self._request(
            "PUT",
            f"/contents/{quote(path)}",
            json={
                "message": message,
                "content": base64.b64encode(content.encode("utf-8")).decode(
                    "ascii"
                ),
                "branch": self.config.branch,
            },
            idempotent=False,
        )

    def create_tree(self, items: list[NewTreeItem], base_tree: str) -> str:
        """Create a tree on top of *base_tree* and return its SHA."""
        data = self._request(
            "POST",
            "/git/trees",
            json={
                "base_tree": base_tree,
                "tree": [item.to_request() for item in items],
            },
        )
        return data["sha"]

    def get_branch_head_sha(self) -> str:
        """Return the SHA of the commit the branch points at."""
        data = self._request(
            "GET", f"/git/ref/heads/{quote(self.config.branch)}"
        )
        return data["object"]["sha"]

    def create_commit(
        self, message: str, tree_sha: str, parent_sha: str
    ) -> str:
        """Create a commit object and return its SHA."""
        data = self._request(
            "POST",
            "/git/commits",
            json={
                "message": message,
                "tree": tree_sha,
                "parents": [parent_sha],
            },
            idempotent=False,
        )
        return data["sha"]

    def update_branch_head(self, sha: str) -> None:
        """Fast-forward the branch to *sha*."""
        self._request(
            "PATCH",
            f"/git/refs/heads/{quote(self.config.branch)}",
            json={"sha": sha, "force": False},
            idempotent=False,
        )


def _error_from_response(response: requests.Response) -> GitHubAPIError:
    """Classify a non-2xx response."""
    try:
        message = response.json().get("message", response.reason)
    except ValueError:
        message = response.text or response.reason or ""

    status = response.status_code
    headers = response.headers
    retry_after = _retry_after(headers)

    if status == 429:
        return RateLimitError(status, message, retry_after)
    if status == 403 and (
        headers.get("X-RateLimit-Remaining") == "0"
        or "rate limit" in str(message).lower()
    ):
        return RateLimitError(status, message, retry_after)
    if status in TRANSIENT_STATUSES:
        return GitHubAPIError(status, message, transient=True)
    return GitHubAPIError(status, message)


def _retry_after(headers) -> float | None:
    """Seconds to wait according to Retry-After or X-RateLimit-Reset."""
    raw = headers.get("Retry-After")
    if raw is not None:
        try:
            return float(raw)
        except ValueError:
            return None
    reset = headers.get("X-RateLimit-Reset")
    if reset is not None:
        try:
            return max(float(reset) - time.time(), 0.0)
        except ValueError:
            return None
    return None
