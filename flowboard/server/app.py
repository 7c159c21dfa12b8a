"""Request surface for HTTP hosts and the CLI: payload in, status code and JSON body out."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from flowboard.server.aggregator import StatusAggregator
from flowboard.server.blob_store import VersionedBlobStore, build_blob_store_from_env
from flowboard.server.config_store import ConfigStore
from flowboard.server.errors import FlowboardError, ValidationError
from flowboard.server.github_auth import TokenProvider
from flowboard.server.github_connector import (
    ActionsConnector,
    build_connector_from_env,
    build_token_provider_from_env,
)
from flowboard.server.mutations import MutationService
from flowboard.shared.settings import FlowboardSettings, get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceResponse:
    status_code: int
    body: dict[str, Any]

    @property
    def ok(self) -> bool:
        return self.status_code < 400


class ServerApp:
    """Thin callable facade mirroring the dashboard's API endpoints."""

    def __init__(
        self,
        store: ConfigStore,
        mutations: MutationService,
        aggregator: StatusAggregator,
    ) -> None:
        self.store = store
        self.mutations = mutations
        self.aggregator = aggregator

    def get_workflow_statuses(self) -> ServiceResponse:
        return self._handle(
            "get-workflow-statuses",
            lambda: ServiceResponse(200, self.aggregator.get_statuses().to_payload()),
        )

    def list_workflows(self) -> ServiceResponse:
        def run() -> ServiceResponse:
            records = self.mutations.list_workflows()
            return ServiceResponse(
                200,
                {"workflows": [record.to_document() for record in records], "count": len(records)},
            )

        return self._handle("list-workflows", run)

    def add_workflow(self, payload: Any) -> ServiceResponse:
        def run() -> ServiceResponse:
            body = _require_object(payload)
            record = self.mutations.add_workflow(
                body.get("repo"), body.get("workflow"), body.get("label")
            )
            return ServiceResponse(
                201,
                {"message": "Workflow added successfully", "workflow": record.to_document()},
            )

        return self._handle("add-workflow", run)

    def remove_workflow(self, payload: Any) -> ServiceResponse:
        def run() -> ServiceResponse:
            body = _require_object(payload)
            record = self.mutations.remove_workflow(body.get("repo"), body.get("workflow"))
            return ServiceResponse(
                200,
                {"message": "Workflow removed successfully", "workflow": record.to_document()},
            )

        return self._handle("remove-workflow", run)

    def reorder_workflows(self, payload: Any) -> ServiceResponse:
        def run() -> ServiceResponse:
            body = _require_object(payload)
            records = self.mutations.reorder_workflows(body.get("workflows"))
            return ServiceResponse(
                200,
                {
                    "message": f"Reordered {len(records)} workflows",
                    "workflows": [record.to_document() for record in records],
                },
            )

        return self._handle("reorder-workflows", run)

    def _handle(self, operation: str, run: Callable[[], ServiceResponse]) -> ServiceResponse:
        try:
            return run()
        except FlowboardError as exc:
            log = logger.error if exc.http_status >= 500 else logger.info
            log("%s failed with %s: %s", operation, exc.code, exc.message)
            return ServiceResponse(exc.http_status, exc.to_payload())


def _require_object(payload: Any) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def create_app(
    env: dict[str, str] | None = None,
    blob_store: VersionedBlobStore | None = None,
    connector: ActionsConnector | None = None,
    token_provider: TokenProvider | None = None,
    settings: FlowboardSettings | None = None,
) -> ServerApp:
    resolved = settings or get_settings(env)
    provider = token_provider or build_token_provider_from_env(resolved, env)
    store = ConfigStore(
        blob_store or build_blob_store_from_env(resolved), blob_name=resolved.blob_name
    )
    return ServerApp(
        store=store,
        mutations=MutationService(store, max_attempts=resolved.max_attempts),
        aggregator=StatusAggregator(
            token_provider=provider,
            store=store,
            connector=connector or build_connector_from_env(resolved, provider),
            max_workers=resolved.max_workers,
        ),
    )
