"""Source-control host client, clone URLs and branch naming."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from .errors import PermanentProviderError, ProviderError, TransientProviderError

logger = logging.getLogger(__name__)

_REPO_RE = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")
BRANCH_PREFIX = "council"
MAX_SLUG_LENGTH = 40


def validate_repo_full_name(repo_full_name: str) -> str:
    if not isinstance(repo_full_name, str) or not _REPO_RE.match(repo_full_name) or ".." in repo_full_name:
        raise ValueError(f"Invalid repository name: {repo_full_name!r}")
    return repo_full_name


def generate_branch_name(issue_number: int | str, title: str) -> str:
    """Deterministic, ref-safe branch name for an issue.

    Lower-cases the title and collapses every run of non-alphanumerics into ``-``.
    """
    slug = re.sub(r"[^a-z0-9]+", "-", (title or "").lower()).strip("-")
    slug = slug[:MAX_SLUG_LENGTH].rstrip("-")
    number = re.sub(r"[^0-9A-Za-z]+", "-", str(issue_number)).strip("-").lower() or "0"
    if not slug:
        return f"{BRANCH_PREFIX}/issue-{number}"
    return f"{BRANCH_PREFIX}/issue-{number}-{slug}"


def build_authenticated_git_url(repo_full_name: str, token: str) -> str:
    repo = validate_repo_full_name(repo_full_name)
    return f"https://x-access-token:{quote(token, safe='')}@github.com/{repo}.git"


def anonymous_git_url(repo_full_name: str) -> str:
    return f"https://github.com/{validate_repo_full_name(repo_full_name)}.git"


def redact_token(text: str, token: str | None) -> str:
    """Strip a credential from command output before it is logged or stored."""
    if not token or not text:
        return text
    return text.replace(quote(token, safe=""), "***").replace(token, "***")


@dataclass(frozen=True)
class CreatedPullRequest:
    number: int
    html_url: str
    draft: bool
    title: str


class VCSHost(Protocol):
    async def create_pull_request(
        self,
        *,
        repo: str,
        title: str,
        head: str,
        base: str,
        body: str,
        draft: bool,
        token: str,
    ) -> CreatedPullRequest: ...


class GitHubClient:
    """Async client for the GitHub REST API."""

    def __init__(
        self,
        *,
        base_url: str = "https://api.github.com",
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds),
            headers={"Accept": "application/vnd.github+json", "X-GitHub-Api-Version": "2022-11-28"},
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, *, token: str, body: Any | None = None) -> Any:
        try:
            resp = await self._client.request(
                method, path, json=body, headers={"Authorization": f"Bearer {token}"}
            )
            resp.raise_for_status()
            return resp.json()
        except httpx.RequestError as e:
            raise TransientProviderError(f"GitHub request failed ({method} {path}): {e}") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            message = f"GitHub API error {status} ({method} {path}): {e.response.text}"
            error_cls: type[ProviderError] = (
                TransientProviderError if status >= 500 or status == 429 else PermanentProviderError
            )
            raise error_cls(message) from e

    async def create_pull_request(
        self,
        *,
        repo: str,
        title: str,
        head: str,
        base: str,
        body: str,
        draft: bool,
        token: str,
    ) -> CreatedPullRequest:
        repo = validate_repo_full_name(repo)
        data = await self._request(
            "POST",
            f"/repos/{repo}/pulls",
            token=token,
            body={"title": title, "head": head, "base": base, "body": body, "draft": draft},
        )
        logger.info("Created pull request #%s on %s", data.get("number"), repo)
        return CreatedPullRequest(
            number=int(data["number"]),
            html_url=str(data["html_url"]),
            draft=bool(data.get("draft", False)),
            title=str(data.get("title") or title),
        )
