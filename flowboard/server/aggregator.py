"""Fan-out/fan-in latest-run lookups merged into one status report."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from typing import Sequence

from flowboard.server.config_store import ConfigStore
from flowboard.server.errors import FlowboardError
from flowboard.server.github_auth import TokenProvider
from flowboard.server.github_connector import ActionsConnector, GitHubAPIError, workflow_page_url
from flowboard.server.models import StatusReport, StatusResult, WorkflowRecord

logger = logging.getLogger(__name__)


class StatusAggregator:
    """Builds one StatusResult per tracked workflow, in tracked-set order.

    Credential and config-store failures abort the whole request. Failures of a
    single workflow lookup are reported inline on that workflow's result.
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        store: ConfigStore,
        connector: ActionsConnector,
        max_workers: int = 8,
    ) -> None:
        self.token_provider = token_provider
        self.store = store
        self.connector = connector
        self.max_workers = max(1, int(max_workers))

    def get_statuses(self) -> StatusReport:
        self.token_provider.get_access_token()
        tracked = self.store.read()
        results = self._collect(tracked.records)
        failed = sum(1 for result in results if result.error)
        logger.info("Aggregated %d workflow statuses (%d failed)", len(results), failed)
        return StatusReport(
            workflows=results,
            timestamp=datetime.now(timezone.utc),
            count=len(results),
        )

    def _collect(self, records: Sequence[WorkflowRecord]) -> list[StatusResult]:
        if not records:
            return []

        slots: list[StatusResult | None] = [None] * len(records)
        workers = min(self.max_workers, len(records))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="flowboard-status") as pool:
            futures = {
                pool.submit(self.status_for, record): index for index, record in enumerate(records)
            }
            for future in as_completed(futures):
                slots[futures[future]] = future.result()
        return [result for result in slots if result is not None]

    def status_for(self, record: WorkflowRecord) -> StatusResult:
        fallback_url = workflow_page_url(record.owner, record.repo, record.workflow)
        try:
            run = self.connector.latest_run(record.owner, record.repo, record.workflow)
            if run is None:
                return StatusResult(record=record, url=fallback_url)
            return StatusResult(
                record=record,
                conclusion=run.conclusion,
                status=run.status,
                url=run.html_url or fallback_url,
                updated_at=run.updated_at,
            )
        except GitHubAPIError as exc:
            error = f"{exc.reason_code}: {exc}"
            if exc.retry_after_s is not None:
                error += f" (retry after {exc.retry_after_s:g}s)"
        except FlowboardError as exc:
            error = f"{exc.code}: {exc.message}"
        except Exception as exc:  # isolated per workflow; reported inline below
            logger.exception("Unexpected failure looking up %s", record.full_name)
            error = f"unexpected_error: {exc}"

        logger.warning("Status lookup failed for %s: %s", record.full_name, error)
        return StatusResult.failed(record, error)
