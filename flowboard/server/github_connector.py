"""GitHub Actions connector contracts, errors, and factory helpers."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Protocol

from flowboard.server.github_auth import (
    StaticTokenProvider,
    TokenProvider,
    load_github_app_identity_from_env,
    load_static_token_from_env,
    shared_token_provider,
)
from flowboard.shared.settings import FlowboardSettings


@dataclass(frozen=True)
class WorkflowRun:
    """The fields of a workflow run the dashboard reports."""

    status: str | None
    conclusion: str | None
    html_url: str | None
    updated_at: str | None


class GitHubAPIError(RuntimeError):
    def __init__(
        self,
        message: str,
        reason_code: str,
        retry_after_s: float | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.reason_code = reason_code
        self.retry_after_s = retry_after_s
        self.status_code = status_code


class ActionsConnector(Protocol):
    """Connector contract for latest-run lookups."""

    def latest_run(self, owner: str, repo: str, workflow: str) -> WorkflowRun | None: ...


def workflow_page_url(owner: str, repo: str, workflow: str) -> str:
    return f"https://github.com/{owner}/{repo}/actions/workflows/{workflow}"


def build_token_provider_from_env(
    settings: FlowboardSettings,
    env: dict[str, str] | None = None,
) -> TokenProvider:
    env_map = os.environ if env is None else env
    if settings.connector != "api":
        return StaticTokenProvider("in-memory")

    identity = load_github_app_identity_from_env(env_map)
    static_token = load_static_token_from_env(env_map)
    if not identity.is_configured and static_token:
        return StaticTokenProvider(static_token)
    # An unconfigured identity still yields a provider; it raises AuthError on first use.
    return shared_token_provider(
        identity, base_url=settings.github_api_url, timeout_s=settings.http_timeout_s
    )


def build_connector_from_env(
    settings: FlowboardSettings,
    token_provider: TokenProvider,
) -> ActionsConnector:
    if settings.connector == "api":
        from flowboard.server.github_connector_api import GitHubActionsConnector

        return GitHubActionsConnector(
            token_provider=token_provider,
            base_url=settings.github_api_url,
            timeout_s=settings.http_timeout_s,
        )

    from flowboard.server.github_connector_inmemory import InMemoryActionsConnector

    return InMemoryActionsConnector()


__all__ = [
    "ActionsConnector",
    "GitHubAPIError",
    "WorkflowRun",
    "build_connector_from_env",
    "build_token_provider_from_env",
    "workflow_page_url",
]
