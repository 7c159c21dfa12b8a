"""GitHub REST API connector for workflow run lookups."""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

import requests

from flowboard.server.github_auth import DEFAULT_GITHUB_API_URL, GITHUB_API_HEADERS, TokenProvider
from flowboard.server.github_connector import GitHubAPIError, WorkflowRun


class GitHubActionsConnector:
    def __init__(
        self,
        token_provider: TokenProvider,
        base_url: str = DEFAULT_GITHUB_API_URL,
        session: requests.Session | None = None,
        timeout_s: float = 5.0,
    ) -> None:
        self.token_provider = token_provider
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout_s = timeout_s

    def latest_run(self, owner: str, repo: str, workflow: str) -> WorkflowRun | None:
        """Return the newest run of a workflow file, or None when it never ran.

        GitHub lists workflow runs newest first, so the first row of a
        single-item page is the latest run.
        """
        path = (
            f"/repos/{quote(owner, safe='')}/{quote(repo, safe='')}"
            f"/actions/workflows/{quote(workflow, safe='')}/runs"
        )
        payload = self._request("GET", path, params={"per_page": "1", "page": "1"})
        runs = payload.get("workflow_runs") if isinstance(payload, dict) else None
        if not isinstance(runs, list):
            raise GitHubAPIError(
                "GitHub returned a malformed workflow runs payload",
                reason_code="github_malformed_payload",
            )
        if not runs:
            return None

        run = runs[0]
        if not isinstance(run, dict):
            raise GitHubAPIError(
                "GitHub returned a malformed workflow run",
                reason_code="github_malformed_payload",
            )
        return WorkflowRun(
            status=_optional_str(run.get("status")),
            conclusion=_optional_str(run.get("conclusion")),
            html_url=_optional_str(run.get("html_url")),
            updated_at=_optional_str(run.get("updated_at") or run.get("created_at")),
        )

    def _request(
        self,
        method: str,
        path: str,
        params: dict[str, str] | None = None,
    ) -> Any:
        token = self.token_provider.get_access_token()
        headers = dict(GITHUB_API_HEADERS)
        headers["Authorization"] = f"Bearer {token.value}"

        try:
            response = self.session.request(
                method=method,
                url=f"{self.base_url}{path}",
                headers=headers,
                params=params,
                timeout=self.timeout_s,
            )
        except requests.Timeout as exc:
            raise GitHubAPIError("GitHub API request timed out", reason_code="github_timeout") from exc
        except requests.RequestException as exc:
            raise GitHubAPIError(
                f"GitHub API request failed: {exc}", reason_code="github_network_error"
            ) from exc

        if response.status_code == 401:
            # Revoked or expired token; the next lookup exchanges a fresh one.
            self.token_provider.invalidate()
        if response.status_code in {429, 403} and _looks_like_rate_limit(response):
            raise GitHubAPIError(
                "GitHub API rate limit exceeded",
                reason_code=_reason_code_for_status(response.status_code),
                retry_after_s=_parse_retry_after((response.headers or {}).get("Retry-After")),
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise GitHubAPIError(
                f"GitHub API returned HTTP {response.status_code}",
                reason_code=f"github_{response.status_code}",
                status_code=response.status_code,
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise GitHubAPIError(
                "GitHub API returned a non-JSON body", reason_code="github_malformed_payload"
            ) from exc


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text or None


def _looks_like_rate_limit(response: requests.Response) -> bool:
    if response.status_code == 429:
        return True
    if response.status_code != 403:
        return False
    if str((response.headers or {}).get("X-RateLimit-Remaining", "")) == "0":
        return True
    try:
        payload = response.json()
    except ValueError:
        return False
    if not isinstance(payload, dict):
        return False
    message = str(payload.get("message", "")).lower()
    return "rate limit" in message


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        parsed = float(value)
    except ValueError:
        return None
    return parsed if parsed >= 0 else None


def _reason_code_for_status(status: int) -> str:
    if status in {429, 403}:
        return "github_rate_limited"
    return f"github_{status}"
