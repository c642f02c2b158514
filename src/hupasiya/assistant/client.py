"""OpenAI-compatible assistant backed by httpx with tenacity retry.

Implements the Assistant protocol: ``analyze`` asks the model for a JSON
analysis of one review comment, ``propose_change`` asks it for a unified
diff. Reads configuration from constructor arguments or environment
variables (HP_OPENAI_API_KEY, HP_OPENAI_BASE_URL, HP_OPENAI_MODEL).
"""

from __future__ import annotations

import json
import logging
import os
import re
from typing import Any

import httpx
import tenacity
from pydantic import ValidationError as PydanticValidationError

from hupasiya.exceptions import AssistantConfigError, AssistantResponseError
from hupasiya.models.review import ReviewComment, ShepherdAnalysis
from hupasiya.models.session import SessionInfo

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
_AUTH_ERROR_STATUS_CODES = {401, 403}
_FENCE_RE = re.compile(r"```(?:json|diff|patch)?\s*\n(.*?)```", re.DOTALL)

ANALYZE_SYSTEM_PROMPT = """\
You triage code review comments for an engineer. For the comment given,
reply with a single JSON object and nothing else:

{"action": "FIX" | "CLARIFY" | "ACKNOWLEDGE" | "DEFER" | "DISAGREE",
 "confidence": "high" | "medium" | "low",
 "summary": "<one line>",
 "assessment": "<why this action>",
 "changes": "<unified diff, only when action is FIX and you are sure>" | null,
 "response": "<reply to post on the comment>"}

Use CLARIFY when the request is ambiguous and put the question in "response".
"""

PROPOSE_SYSTEM_PROMPT = """\
You write minimal unified diffs (git format, paths relative to the repository
root) that address one code review comment. Reply with the diff only.
"""


def _is_retryable(exc: BaseException) -> bool:
    """Retry 429/5xx responses and connection failures, nothing else."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in _RETRYABLE_STATUS_CODES
    return isinstance(exc, (httpx.ConnectError, httpx.ConnectTimeout))


def _strip_fence(text: str) -> str:
    match = _FENCE_RE.search(text)
    return (match.group(1) if match else text).strip()


def _describe(comment: ReviewComment, session: SessionInfo) -> str:
    lines = [
        f"Session: {session.name} ({session.agent_type}) on branch {session.branch}",
        f"Comment #{comment.id} by {comment.author} at {comment.location}:",
        comment.body,
    ]
    if comment.diff_hunk:
        lines += ["", "Diff hunk:", comment.diff_hunk]
    return "\n".join(lines)


class OpenAIAssistant:
    """Sync httpx client for OpenAI-compatible chat completions.

    Usage::

        with OpenAIAssistant(api_key="sk-...") as assistant:
            analysis = assistant.analyze(comment, session)
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        timeout: float = 120.0,
        max_retries: int = 3,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the assistant.

        Args:
            api_key: API key. Falls back to HP_OPENAI_API_KEY env var.
            base_url: API base URL. Falls back to HP_OPENAI_BASE_URL env var,
                then to https://api.openai.com/v1.
            model: Model name. Falls back to HP_OPENAI_MODEL, then gpt-4o-mini.
            timeout: Request timeout in seconds.
            max_retries: Maximum attempts for retryable errors.
            transport: Optional httpx transport (tests use MockTransport).

        Raises:
            AssistantConfigError: If no API key is provided or found in environment.
        """
        self._api_key = api_key or os.environ.get("HP_OPENAI_API_KEY", "")
        if not self._api_key:
            raise AssistantConfigError(
                "No API key provided. Pass api_key= or set HP_OPENAI_API_KEY "
                "environment variable."
            )
        self._base_url = (
            base_url or os.environ.get("HP_OPENAI_BASE_URL", "https://api.openai.com/v1")
        ).rstrip("/")
        self._model = model or os.environ.get("HP_OPENAI_MODEL", "gpt-4o-mini")
        self._max_retries = max_retries
        self._client = httpx.Client(
            timeout=timeout,
            transport=transport,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self._api_key}",
            },
        )

    # ------------------------------------------------------------------
    # Assistant protocol
    # ------------------------------------------------------------------

    def analyze(self, comment: ReviewComment, session: SessionInfo) -> ShepherdAnalysis:
        """Ask the model for an analysis of ``comment``.

        Raises:
            AssistantResponseError: If the reply is not a valid analysis.
        """
        text = self._complete(ANALYZE_SYSTEM_PROMPT, _describe(comment, session))
        try:
            data = json.loads(_strip_fence(text))
        except json.JSONDecodeError as exc:
            raise AssistantResponseError(
                f"Analysis for comment {comment.id} is not JSON: {text[:200]}"
            ) from exc
        if not isinstance(data, dict):
            raise AssistantResponseError(
                f"Analysis for comment {comment.id} is not a JSON object"
            )
        data["comment_id"] = comment.id
        try:
            return ShepherdAnalysis.model_validate(data)
        except PydanticValidationError as exc:
            raise AssistantResponseError(
                f"Analysis for comment {comment.id} is malformed: {exc}"
            ) from exc

    def propose_change(
        self,
        comment: ReviewComment,
        analysis: ShepherdAnalysis,
        session: SessionInfo,
    ) -> str:
        """Ask the model for a unified diff implementing a FIX."""
        prompt = (
            f"{_describe(comment, session)}\n\n"
            f"Planned fix: {analysis.summary}\n{analysis.assessment}"
        )
        diff = _strip_fence(self._complete(PROPOSE_SYSTEM_PROMPT, prompt))
        if not diff:
            raise AssistantResponseError(f"Empty change proposed for comment {comment.id}")
        return diff + "\n"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _complete(self, system: str, user: str) -> str:
        messages = [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ]
        retryer = tenacity.Retrying(
            retry=tenacity.retry_if_exception(_is_retryable),
            wait=(
                tenacity.wait_exponential(multiplier=1, min=1, max=30)
                + tenacity.wait_random(0, 2)
            ),
            stop=tenacity.stop_after_attempt(self._max_retries),
            before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        data = retryer(self._do_chat, messages)
        try:
            return data["choices"][0]["message"].get("content") or ""
        except (KeyError, IndexError, TypeError) as exc:
            raise AssistantResponseError(
                f"Cannot extract content from response: {exc}. Response: {data}"
            ) from exc

    def _do_chat(self, messages: list[dict[str, str]]) -> dict:
        """Execute a single chat completion request (no retry)."""
        payload: dict[str, Any] = {
            "model": self._model,
            "messages": messages,
            "temperature": 0,
        }
        response = self._client.post(f"{self._base_url}/chat/completions", json=payload)

        if response.status_code in _AUTH_ERROR_STATUS_CODES:
            raise AssistantConfigError(
                f"Authentication failed: HTTP {response.status_code} - {response.text}"
            )
        response.raise_for_status()

        data = response.json()
        if "choices" not in data:
            raise AssistantResponseError(
                f"Unexpected response format: missing 'choices' key. Response: {data}"
            )
        return data

    def close(self) -> None:
        """Close the underlying httpx client."""
        self._client.close()

    def __enter__(self) -> OpenAIAssistant:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
