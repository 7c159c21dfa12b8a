from __future__ import annotations

import json
import threading
import time
from datetime import datetime, timezone

import pytest

from flowboard.server.aggregator import StatusAggregator
from flowboard.server.blob_store import InMemoryBlobStore
from flowboard.server.config_store import ConfigStore
from flowboard.server.errors import AuthError, StoreUnavailable
from flowboard.server.github_auth import StaticTokenProvider
from flowboard.server.github_connector import GitHubAPIError, WorkflowRun
from flowboard.server.github_connector_inmemory import InMemoryActionsConnector
from flowboard.server.models import InstallationToken

WORKFLOWS = [
    {"id": "1", "owner": "acme", "repo": "api", "workflow": "ci.yml", "label": "API CI"},
    {"id": "2", "owner": "acme", "repo": "web", "workflow": "deploy.yaml", "label": "Web deploy"},
    {"id": "3", "owner": "acme", "repo": "docs", "workflow": "pages.yml", "label": "Docs"},
]


class FailingTokenProvider:
    def __init__(self) -> None:
        self.calls = 0

    def get_access_token(self) -> InstallationToken:
        self.calls += 1
        raise AuthError("GitHub rejected the GitHub App credentials (HTTP 401)")


class SlowConnector(InMemoryActionsConnector):
    """Earlier workflows answer last so completion order differs from tracked order."""

    def __init__(self, delays: dict[str, float]) -> None:
        super().__init__()
        self.delays = delays
        self.active = 0
        self.max_active = 0
        self._active_lock = threading.Lock()

    def latest_run(self, owner: str, repo: str, workflow: str) -> WorkflowRun | None:
        with self._active_lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            time.sleep(self.delays.get(workflow, 0.0))
            return super().latest_run(owner, repo, workflow)
        finally:
            with self._active_lock:
                self.active -= 1


class ExplodingConnector(InMemoryActionsConnector):
    def latest_run(self, owner: str, repo: str, workflow: str) -> WorkflowRun | None:
        if workflow == "deploy.yaml":
            raise KeyError("workflow_runs")
        return super().latest_run(owner, repo, workflow)


def _store(workflows: list[dict] | None = None) -> ConfigStore:
    blob_store = InMemoryBlobStore()
    blob_store.put(
        "workflows.json",
        json.dumps(WORKFLOWS if workflows is None else workflows).encode(),
        expected_version=None,
    )
    return ConfigStore(blob_store)


def _record_all(connector: InMemoryActionsConnector) -> None:
    for entry in WORKFLOWS:
        connector.record_run(
            entry["owner"],
            entry["repo"],
            entry["workflow"],
            conclusion="success",
            updated_at="2026-02-01T12:00:00Z",
        )


def test_one_failing_lookup_is_reported_inline() -> None:
    connector = InMemoryActionsConnector()
    _record_all(connector)
    connector.fail("acme", "web", "deploy.yaml")
    aggregator = StatusAggregator(StaticTokenProvider("t"), _store(), connector)

    report = aggregator.get_statuses()

    assert report.count == 3
    assert [result.record.id for result in report.workflows] == ["1", "2", "3"]
    failed = [result for result in report.workflows if result.error]
    assert len(failed) == 1
    assert failed[0].record.workflow == "deploy.yaml"
    assert failed[0].error.startswith("github_404")
    assert (failed[0].status, failed[0].conclusion, failed[0].url, failed[0].updated_at) == (
        None,
        None,
        None,
        None,
    )
    for result in report.workflows:
        if result.error is None:
            assert result.status == "completed"
            assert result.conclusion == "success"
            assert result.url
            assert result.updated_at == datetime(2026, 2, 1, 12, tzinfo=timezone.utc)


def test_unexpected_connector_failure_stays_isolated() -> None:
    connector = ExplodingConnector()
    _record_all(connector)
    report = StatusAggregator(StaticTokenProvider("t"), _store(), connector).get_statuses()

    errors = [result.error for result in report.workflows]
    assert errors[0] is None
    assert errors[1].startswith("unexpected_error")
    assert errors[2] is None


def test_results_keep_tracked_order_not_completion_order() -> None:
    connector = SlowConnector({"ci.yml": 0.3, "deploy.yaml": 0.15, "pages.yml": 0.0})
    _record_all(connector)
    aggregator = StatusAggregator(StaticTokenProvider("t"), _store(), connector, max_workers=3)

    report = aggregator.get_statuses()

    assert [result.record.workflow for result in report.workflows] == [
        "ci.yml",
        "deploy.yaml",
        "pages.yml",
    ]
    assert connector.max_active > 1


def test_workflow_without_runs_links_to_workflow_page() -> None:
    connector = InMemoryActionsConnector()
    report = StatusAggregator(
        StaticTokenProvider("t"), _store(WORKFLOWS[:1]), connector
    ).get_statuses()

    result = report.workflows[0]
    assert result.error is None
    assert result.status is None
    assert result.conclusion is None
    assert result.url == "https://github.com/acme/api/actions/workflows/ci.yml"


def test_latest_run_wins_when_several_recorded() -> None:
    connector = InMemoryActionsConnector()
    connector.record_run("acme", "api", "ci.yml", conclusion="failure", updated_at="2026-02-01T00:00:00Z")
    connector.record_run(
        "acme",
        "api",
        "ci.yml",
        status="in_progress",
        conclusion=None,
        updated_at="2026-02-02T00:00:00Z",
    )

    report = StatusAggregator(
        StaticTokenProvider("t"), _store(WORKFLOWS[:1]), connector
    ).get_statuses()

    assert report.workflows[0].status == "in_progress"
    assert report.workflows[0].conclusion is None


def test_empty_tracked_set_produces_empty_report() -> None:
    connector = InMemoryActionsConnector()
    report = StatusAggregator(
        StaticTokenProvider("t"), ConfigStore(InMemoryBlobStore()), connector
    ).get_statuses()

    assert report.count == 0
    assert report.workflows == []
    assert report.timestamp.tzinfo is not None
    assert connector.calls == []


def test_credential_failure_is_fatal_and_skips_lookups() -> None:
    connector = InMemoryActionsConnector()
    provider = FailingTokenProvider()

    with pytest.raises(AuthError):
        StatusAggregator(provider, _store(), connector).get_statuses()

    assert provider.calls == 1
    assert connector.calls == []


def test_store_failure_is_fatal() -> None:
    blob_store = InMemoryBlobStore()
    blob_store.unavailable = True
    connector = InMemoryActionsConnector()

    with pytest.raises(StoreUnavailable):
        StatusAggregator(StaticTokenProvider("t"), ConfigStore(blob_store), connector).get_statuses()
    assert connector.calls == []


def test_report_payload_uses_wire_names() -> None:
    connector = InMemoryActionsConnector()
    _record_all(connector)
    payload = StatusAggregator(
        StaticTokenProvider("t"), _store(WORKFLOWS[:1]), connector
    ).get_statuses().to_payload()

    assert payload["count"] == 1
    assert isinstance(payload["timestamp"], str)
    entry = payload["workflows"][0]
    assert entry["record"] == WORKFLOWS[0]
    assert entry["updatedAt"] == "2026-02-01T12:00:00Z"
    assert entry["error"] is None


def test_rate_limited_lookup_reports_retry_after() -> None:
    connector = InMemoryActionsConnector()
    connector.failures[("acme", "api", "ci.yml")] = GitHubAPIError(
        "GitHub API rate limit exceeded",
        reason_code="github_rate_limited",
        retry_after_s=30.0,
        status_code=429,
    )

    report = StatusAggregator(
        StaticTokenProvider("t"), _store(WORKFLOWS[:1]), connector
    ).get_statuses()

    assert report.workflows[0].error == (
        "github_rate_limited: GitHub API rate limit exceeded (retry after 30s)"
    )
