"""In-memory GitHub Actions connector for deterministic tests and dry runs."""

from __future__ import annotations

import threading

from flowboard.server.github_connector import GitHubAPIError, WorkflowRun


class InMemoryActionsConnector:
    """Holds recorded runs per workflow and injectable per-workflow failures."""

    def __init__(self) -> None:
        self.runs: dict[tuple[str, str, str], list[WorkflowRun]] = {}
        self.failures: dict[tuple[str, str, str], GitHubAPIError] = {}
        self.calls: list[tuple[str, str, str]] = []
        self._lock = threading.Lock()

    def record_run(
        self,
        owner: str,
        repo: str,
        workflow: str,
        status: str = "completed",
        conclusion: str | None = "success",
        updated_at: str = "2026-01-01T00:00:00Z",
        html_url: str | None = None,
    ) -> WorkflowRun:
        run = WorkflowRun(
            status=status,
            conclusion=conclusion,
            html_url=html_url
            or f"https://github.com/{owner}/{repo}/actions/runs/{len(self.runs) + 1}",
            updated_at=updated_at,
        )
        with self._lock:
            self.runs.setdefault((owner, repo, workflow), []).append(run)
        return run

    def fail(
        self,
        owner: str,
        repo: str,
        workflow: str,
        reason_code: str = "github_404",
        status_code: int | None = 404,
    ) -> None:
        with self._lock:
            self.failures[(owner, repo, workflow)] = GitHubAPIError(
                f"GitHub API returned HTTP {status_code}",
                reason_code=reason_code,
                status_code=status_code,
            )

    def latest_run(self, owner: str, repo: str, workflow: str) -> WorkflowRun | None:
        key = (owner, repo, workflow)
        with self._lock:
            self.calls.append(key)
            failure = self.failures.get(key)
            runs = list(self.runs.get(key, []))
        if failure is not None:
            raise failure
        if not runs:
            return None
        return max(runs, key=lambda run: run.updated_at or "")
