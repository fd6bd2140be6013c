from __future__ import annotations

import logging
import re
from typing import Any

import httpx

from sitepanel.vcs.base import ReviewLookup, ReviewLookupError

logger = logging.getLogger(__name__)

GITHUB_REMOTE_PATTERN = re.compile(
    r"github\.com[:/](?P<owner>[A-Za-z0-9_.-]+)/(?P<repo>[A-Za-z0-9_.-]+?)(?:\.git)?/?$"
)


def parse_github_repository(remote_url: str) -> str | None:
    """Return ``owner/repo`` for a GitHub remote URL (https, ssh or scp-like)."""
    match = GITHUB_REMOTE_PATTERN.search(remote_url.strip())
    if not match:
        return None
    return f"{match.group('owner')}/{match.group('repo')}"


class GitHubReviewLookup(ReviewLookup):
    """Finds the open pull request whose head is a given branch."""

    def __init__(
        self,
        repository: str,
        *,
        token: str | None = None,
        api_url: str = "https://api.github.com",
        timeout_seconds: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        owner, _, name = repository.partition("/")
        if not owner or not name:
            raise ValueError(f"Expected 'owner/repo', got {repository!r}")
        self.repository = repository
        self.owner = owner
        self.token = token
        self.api_url = api_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def find_open_review(self, branch: str) -> str | None:
        params = {"state": "open", "head": f"{self.owner}:{branch}", "per_page": "1"}
        async with httpx.AsyncClient(
            base_url=self.api_url,
            headers=self._headers(),
            timeout=httpx.Timeout(self.timeout_seconds),
            transport=self.transport,
        ) as client:
            try:
                response = await client.get(f"/repos/{self.repository}/pulls", params=params)
            except httpx.HTTPError as exc:
                raise ReviewLookupError(f"GitHub request failed: {exc}") from exc

        if response.status_code != 200:
            raise ReviewLookupError(
                f"GitHub returned {response.status_code} for {self.repository} pulls"
            )
        try:
            payload: Any = response.json()
        except ValueError as exc:
            raise ReviewLookupError("GitHub returned a non-JSON body") from exc
        if not isinstance(payload, list):
            raise ReviewLookupError("Unexpected GitHub pulls payload")

        for item in payload:
            if not isinstance(item, dict) or item.get("state") != "open":
                continue
            url = item.get("html_url")
            if isinstance(url, str) and url:
                return url
        logger.debug("No open pull request for %s:%s", self.owner, branch)
        return None
