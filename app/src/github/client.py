"""
GitHub REST client used by the translation pipeline.

Wraps a ``requests.Session`` and funnels every call through ``_request``,
which applies the rate-limit policy: primary limits are retried a bounded
number of times after waiting for the reset window, secondary limits are
never retried. Errors surface as ``GitHubAPIError`` with the HTTP status;
a 404 on a content read means "does not exist" and returns ``None``.
"""

import base64
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional
from urllib.parse import quote

import requests
from jose import jwt

from configs.config import get_config

logger = logging.getLogger(__name__)

cfg = get_config()

GITHUB_ACCEPT = "application/vnd.github+json"
GITHUB_API_VERSION = "2022-11-28"


class GitHubAPIError(Exception):
    """Non-success response from the GitHub API."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"GitHub API error {status_code}: {message}")
        self.status_code = status_code
        self.message = message


class GitHubAuthError(Exception):
    """No usable credentials for a repository."""


@dataclass(frozen=True)
class RepoFile:
    path: str
    content: str
    sha: str


def _error_message(response: requests.Response) -> str:
    try:
        return response.json().get("message", response.text)
    except ValueError:
        return response.text


class GitHubClient:
    """Thin, rate-limit aware wrapper over the GitHub REST API."""

    def __init__(
        self,
        token: str,
        api_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
        max_rate_limit_retries: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._api_url = (api_url or cfg.GITHUB_API_URL).rstrip("/")
        self._timeout = timeout or cfg.GITHUB_REQUEST_TIMEOUT_SECONDS
        self._max_retries = (
            cfg.GITHUB_RATE_LIMIT_MAX_RETRIES
            if max_rate_limit_retries is None else max_rate_limit_retries
        )
        self._sleep = sleep
        self._session = session or requests.Session()
        self._session.headers.update({
            "Authorization": f"Bearer {token}",
            "Accept": GITHUB_ACCEPT,
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
        })

    # ── Transport ────────────────────────────────────────────────────────

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = path if path.startswith("http") else f"{self._api_url}{path}"
        retries = 0
        while True:
            response = self._session.request(
                method, url, timeout=self._timeout, **kwargs
            )
            if response.status_code in (403, 429):
                kind = self._rate_limit_kind(response)
                if kind == "primary" and retries < self._max_retries:
                    retries += 1
                    wait = self._primary_wait(response)
                    logger.warning(
                        "Rate limit hit on %s %s, retrying after %.0fs (%d/%d)",
                        method, path, wait, retries, self._max_retries,
                    )
                    self._sleep(wait)
                    continue
                if kind == "secondary":
                    logger.warning("Secondary rate limit hit on %s %s", method, path)

            if response.status_code >= 400:
                raise GitHubAPIError(response.status_code, _error_message(response))
            return response

    @staticmethod
    def _rate_limit_kind(response: requests.Response) -> Optional[str]:
        message = _error_message(response).lower()
        if "secondary rate limit" in message or "retry-after" in response.headers:
            return "secondary"
        if response.headers.get("x-ratelimit-remaining") == "0":
            return "primary"
        return None

    @staticmethod
    def _primary_wait(response: requests.Response) -> float:
        reset = response.headers.get("x-ratelimit-reset")
        try:
            wait = float(reset) - time.time()
        except (TypeError, ValueError):
            wait = 1.0
        return min(max(wait, 1.0), cfg.GITHUB_RATE_LIMIT_MAX_WAIT_SECONDS)

    # ── Contents ─────────────────────────────────────────────────────────

    def _contents_path(self, owner: str, repo: str, path: str) -> str:
        return f"/repos/{owner}/{repo}/contents/{quote(path)}"

    def get_file(
        self, owner: str, repo: str, path: str, ref: Optional[str] = None
    ) -> Optional[RepoFile]:
        """Return the decoded file, or None if it does not exist."""
        params = {"ref": ref} if ref else None
        try:
            data = self._request(
                "GET", self._contents_path(owner, repo, path), params=params
            ).json()
        except GitHubAPIError as exc:
            if exc.status_code == 404:
                return None
            raise

        if isinstance(data, list) or data.get("type") != "file":
            raise GitHubAPIError(422, f"{path} is not a file")

        if data.get("encoding") == "base64" and data.get("content") is not None:
            raw = base64.b64decode(data["content"])
        else:
            # Files over 1 MB come back without inline content
            blob = self._request(
                "GET", f"/repos/{owner}/{repo}/git/blobs/{data['sha']}"
            ).json()
            raw = base64.b64decode(blob["content"])
        return RepoFile(path=path, content=raw.decode("utf-8"), sha=data["sha"])

    def get_file_sha(
        self, owner: str, repo: str, path: str, ref: Optional[str] = None
    ) -> Optional[str]:
        """SHA of an existing file on ``ref``, or None."""
        params = {"ref": ref} if ref else None
        try:
            data = self._request(
                "GET", self._contents_path(owner, repo, path), params=params
            ).json()
        except GitHubAPIError as exc:
            if exc.status_code == 404:
                return None
            raise
        if isinstance(data, list) or data.get("type") != "file":
            return None
        return data["sha"]

    def list_directory(
        self, owner: str, repo: str, path: str = "", ref: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        params = {"ref": ref} if ref else None
        data = self._request(
            "GET", self._contents_path(owner, repo, path), params=params
        ).json()
        return data if isinstance(data, list) else [data]

    def walk_markdown_files(
        self,
        owner: str,
        repo: str,
        ref: Optional[str] = None,
        skip_directories: Optional[Iterable[str]] = None,
        path: str = "",
    ) -> List[str]:
        """Recursively collect Markdown paths, skipping named directories."""
        skip = set(cfg.SKIP_DIRECTORIES if skip_directories is None else skip_directories)
        found: List[str] = []
        for item in self.list_directory(owner, repo, path, ref):
            if item["type"] == "dir":
                if item["name"] in skip:
                    continue
                found.extend(
                    self.walk_markdown_files(owner, repo, ref, skip, item["path"])
                )
            elif item["type"] == "file" and item["name"].endswith(
                tuple(cfg.MARKDOWN_EXTENSIONS)
            ):
                found.append(item["path"])
        return sorted(found)

    def create_or_update_file(
        self,
        owner: str,
        repo: str,
        path: str,
        content: str,
        message: str,
        branch: str,
        sha: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create ``path`` or, when ``sha`` is given, update it in place."""
        body = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "branch": branch,
        }
        if sha:
            body["sha"] = sha
        return self._request(
            "PUT", self._contents_path(owner, repo, path), json=body
        ).json()

    # ── Branches, pull requests, commits ─────────────────────────────────

    def get_branch_sha(self, owner: str, repo: str, branch: str) -> str:
        data = self._request(
            "GET", f"/repos/{owner}/{repo}/git/ref/heads/{quote(branch)}"
        ).json()
        return data["object"]["sha"]

    def create_branch(
        self, owner: str, repo: str, branch: str, base_branch: str
    ) -> Dict[str, Any]:
        """Create ``branch`` pointing at the tip of ``base_branch``."""
        base_sha = self.get_branch_sha(owner, repo, base_branch)
        return self._request(
            "POST",
            f"/repos/{owner}/{repo}/git/refs",
            json={"ref": f"refs/heads/{branch}", "sha": base_sha},
        ).json()

    def create_pull_request(
        self, owner: str, repo: str, title: str, body: str, head: str, base: str
    ) -> Dict[str, Any]:
        return self._request(
            "POST",
            f"/repos/{owner}/{repo}/pulls",
            json={"title": title, "body": body, "head": head, "base": base},
        ).json()

    def compare_commits(
        self, owner: str, repo: str, base: str, head: str
    ) -> Dict[str, Any]:
        return self._request(
            "GET", f"/repos/{owner}/{repo}/compare/{base}...{head}"
        ).json()

    def create_installation_token(self, installation_id: int) -> str:
        """Exchange an App JWT (this client's token) for an installation token."""
        data = self._request(
            "POST", f"/app/installations/{installation_id}/access_tokens"
        ).json()
        return data["token"]

    # ── Webhooks ─────────────────────────────────────────────────────────

    def create_webhook(
        self, owner: str, repo: str, url: str, secret: str, events: List[str]
    ) -> int:
        data = self._request(
            "POST",
            f"/repos/{owner}/{repo}/hooks",
            json={
                "name": "web",
                "config": {
                    "url": url,
                    "content_type": "json",
                    "secret": secret,
                    "insecure_ssl": "0",
                },
                "events": events,
                "active": True,
            },
        ).json()
        logger.info("Created webhook %s for %s/%s", data["id"], owner, repo)
        return data["id"]

    def delete_webhook(self, owner: str, repo: str, hook_id: int) -> None:
        try:
            self._request("DELETE", f"/repos/{owner}/{repo}/hooks/{hook_id}")
            logger.info("Deleted webhook %s for %s/%s", hook_id, owner, repo)
        except GitHubAPIError as exc:
            if exc.status_code == 404:
                logger.info("Webhook %s not found, skipping delete", hook_id)
                return
            raise


# ── Authentication ───────────────────────────────────────────────────────


def load_app_private_key() -> str:
    """Read the GitHub App key from the environment or a key file."""
    if cfg.GITHUB_APP_PRIVATE_KEY:
        return cfg.GITHUB_APP_PRIVATE_KEY.replace("\\n", "\n")
    if cfg.GITHUB_APP_PRIVATE_KEY_PATH:
        try:
            with open(os.path.expanduser(cfg.GITHUB_APP_PRIVATE_KEY_PATH),
                      encoding="utf-8") as key_file:
                return key_file.read()
        except OSError as exc:
            raise GitHubAuthError(
                f"Failed to read private key from "
                f"{cfg.GITHUB_APP_PRIVATE_KEY_PATH}: {exc}"
            ) from exc
    raise GitHubAuthError(
        "GitHub App private key not configured. Set GITHUB_APP_PRIVATE_KEY "
        "or GITHUB_APP_PRIVATE_KEY_PATH"
    )


def create_app_jwt(app_id: str, private_key: str, now: Optional[int] = None) -> str:
    """Short-lived RS256 JWT identifying the GitHub App."""
    now = int(time.time()) if now is None else now
    payload = {"iat": now - 60, "exp": now + 540, "iss": str(app_id)}
    return jwt.encode(payload, private_key, algorithm="RS256")


def get_installation_token(
    installation_id: int, session: Optional[requests.Session] = None
) -> str:
    if not cfg.GITHUB_APP_ID:
        raise GitHubAuthError("GITHUB_APP_ID not configured")
    app_token = create_app_jwt(cfg.GITHUB_APP_ID, load_app_private_key())
    app_client = GitHubClient(app_token, session=session)
    return app_client.create_installation_token(installation_id)


def client_for_repository(repository: Dict[str, Any]) -> GitHubClient:
    """
    Build a client for a stored repository document.

    The App installation is preferred; a stored user access token is the
    fallback when the installation is missing or cannot be exchanged.
    """
    installation_id = repository.get("installation_id")
    access_token = repository.get("access_token")

    if installation_id:
        try:
            return GitHubClient(get_installation_token(installation_id))
        except (GitHubAPIError, GitHubAuthError, requests.RequestException) as exc:
            if not access_token:
                raise GitHubAuthError(
                    f"GitHub App authentication failed for "
                    f"{repository.get('full_name')}: {exc}"
                ) from exc
            logger.warning(
                "Installation token failed for %s, using user token: %s",
                repository.get("full_name"), exc,
            )

    if access_token:
        return GitHubClient(access_token)

    raise GitHubAuthError(
        f"No GitHub authentication available for {repository.get('full_name')}"
    )
