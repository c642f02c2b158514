"""GitHub pull-request review provider over the REST API (httpx).

Change requests are referenced as ``owner/repo#number``. Each method makes
a single attempt and maps failures onto the two provider errors:
ProviderUnavailableError for transient ones (connection problems, 429,
5xx) so callers can retry, ProviderError for everything else.
"""

from __future__ import annotations

import logging
import os
import re
from datetime import datetime, timezone
from typing import Any

import httpx

from hupasiya.exceptions import (
    ConfigurationError,
    ProviderError,
    ProviderUnavailableError,
)
from hupasiya.models.review import ReviewComment
from hupasiya.models.session import ChangeRequestStatus

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
_REF_RE = re.compile(r"^(?P<owner>[\w.-]+)/(?P<repo>[\w.-]+)#(?P<number>\d+)$")


def parse_ref(change_request_ref: str) -> tuple[str, str, int]:
    """Split ``owner/repo#123`` into its parts.

    Raises:
        ConfigurationError: If the reference is malformed.
    """
    match = _REF_RE.match(change_request_ref.strip())
    if match is None:
        raise ConfigurationError(
            f"Invalid change request '{change_request_ref}' (expected owner/repo#number)"
        )
    return match["owner"], match["repo"], int(match["number"])


def _parse_time(value: str | None) -> datetime:
    if not value:
        return datetime.now(timezone.utc).replace(tzinfo=None)
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return parsed.astimezone(timezone.utc).replace(tzinfo=None)


class GitHubReviewProvider:
    """Implements the ReviewProvider protocol for GitHub pull requests.

    Usage::

        with GitHubReviewProvider(token="ghp_...") as provider:
            comments = provider.fetch_comments("octo/repo#42")
    """

    def __init__(
        self,
        token: str | None = None,
        base_url: str = "https://api.github.com",
        timeout: float = 30.0,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the provider.

        Args:
            token: API token. Falls back to the GITHUB_TOKEN env var.
            base_url: API root (override for GitHub Enterprise).
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (tests use MockTransport).

        Raises:
            ConfigurationError: If no token is provided or found in environment.
        """
        self._token = token or os.environ.get("GITHUB_TOKEN", "")
        if not self._token:
            raise ConfigurationError(
                "No GitHub token provided. Pass token= or set GITHUB_TOKEN."
            )
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={
                "Accept": "application/vnd.github+json",
                "Authorization": f"Bearer {self._token}",
                "X-GitHub-Api-Version": "2022-11-28",
            },
        )

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send one request and translate failures into provider errors."""
        try:
            response = self._client.request(method, url, **kwargs)
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            raise ProviderUnavailableError(f"GitHub unreachable: {exc}") from exc

        if response.status_code in _RETRYABLE_STATUS_CODES:
            raise ProviderUnavailableError(
                f"GitHub returned HTTP {response.status_code} for {method} {url}"
            )
        if response.is_error:
            raise ProviderError(
                f"GitHub returned HTTP {response.status_code} for {method} {url}: "
                f"{response.text[:200]}"
            )
        return response

    def fetch_comments(self, change_request_ref: str) -> list[ReviewComment]:
        """Fetch every review comment on the pull request (all pages).

        Replies (comments with ``in_reply_to_id``) are reported as resolved.
        """
        owner, repo, number = parse_ref(change_request_ref)
        url: str | None = f"/repos/{owner}/{repo}/pulls/{number}/comments"
        params: dict[str, Any] | None = {"per_page": 100}
        comments: list[ReviewComment] = []
        while url is not None:
            response = self._request("GET", url, params=params)
            for item in response.json():
                comments.append(
                    ReviewComment(
                        id=str(item["id"]),
                        path=item.get("path") or "",
                        body=item.get("body") or "",
                        author=(item.get("user") or {}).get("login", "unknown"),
                        created_at=_parse_time(item.get("created_at")),
                        line=item.get("line") or item.get("original_line"),
                        resolved=item.get("in_reply_to_id") is not None,
                        diff_hunk=item.get("diff_hunk"),
                    )
                )
            url = response.links.get("next", {}).get("url")
            params = None  # the next link already carries the query
        logger.debug("Fetched %d comment(s) from %s", len(comments), change_request_ref)
        return comments

    def get_status(self, change_request_ref: str) -> ChangeRequestStatus:
        owner, repo, number = parse_ref(change_request_ref)
        data = self._request("GET", f"/repos/{owner}/{repo}/pulls/{number}").json()
        if data.get("merged") or data.get("merged_at"):
            return ChangeRequestStatus.MERGED
        if data.get("state") == "closed":
            return ChangeRequestStatus.CLOSED
        if data.get("draft"):
            return ChangeRequestStatus.DRAFT
        return ChangeRequestStatus.OPEN

    def post_response(self, change_request_ref: str, comment_id: str, body: str) -> None:
        owner, repo, number = parse_ref(change_request_ref)
        self._request(
            "POST",
            f"/repos/{owner}/{repo}/pulls/{number}/comments/{comment_id}/replies",
            json={"body": body},
        )

    def close(self) -> None:
        """Close the underlying httpx client."""
        self._client.close()

    def __enter__(self) -> GitHubReviewProvider:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
