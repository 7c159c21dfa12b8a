"""Add/remove/reorder of tracked workflows with optimistic-concurrency retry."""

from __future__ import annotations

import logging
from typing import Any, Callable, TypeVar

from flowboard.server.config_store import ConfigStore
from flowboard.server.errors import (
    ConflictExhausted,
    DuplicateError,
    NotFoundError,
    ValidationError,
    VersionConflict,
)
from flowboard.server.models import TrackedSet, WorkflowRecord, new_record_id

logger = logging.getLogger(__name__)

WORKFLOW_FILE_SUFFIXES = (".yml", ".yaml")

T = TypeVar("T")


def parse_owner_repo(owner_repo: Any) -> tuple[str, str]:
    if not isinstance(owner_repo, str) or not owner_repo.strip():
        raise ValidationError("repo field is required and must be a string")
    parts = owner_repo.strip().split("/")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise ValidationError('repo must be in the format "owner/repo"')
    return parts[0], parts[1]


def require_text(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field_name} field is required and must be a non-empty string")
    return value.strip()


class MutationService:
    def __init__(self, store: ConfigStore, max_attempts: int = 3) -> None:
        self.store = store
        self.max_attempts = max(1, int(max_attempts))

    def list_workflows(self) -> list[WorkflowRecord]:
        return list(self.store.read().records)

    def add_workflow(self, owner_repo: str, workflow_file: str, label: str) -> WorkflowRecord:
        owner, repo = parse_owner_repo(owner_repo)
        workflow = require_text(workflow_file, "workflow")
        if not workflow.endswith(WORKFLOW_FILE_SUFFIXES):
            raise ValidationError("workflow must be a .yml or .yaml file")
        label = require_text(label, "label")
        key = (owner, repo, workflow)

        def apply(tracked: TrackedSet) -> tuple[list[WorkflowRecord], WorkflowRecord]:
            if tracked.index_of(key) is not None:
                raise DuplicateError(f"Workflow {owner}/{repo}/{workflow} is already tracked")
            used_ids = {existing.id for existing in tracked.records}
            record_id = new_record_id()
            while record_id in used_ids:
                record_id = new_record_id()
            record = WorkflowRecord(
                id=record_id, owner=owner, repo=repo, workflow=workflow, label=label
            )
            return [*tracked.records, record], record

        created = self._read_modify_write("add", apply)
        logger.info("Added workflow %s as %s", created.full_name, created.id)
        return created

    def remove_workflow(self, owner_repo: str, workflow_file: str) -> WorkflowRecord:
        owner, repo = parse_owner_repo(owner_repo)
        workflow = require_text(workflow_file, "workflow")
        key = (owner, repo, workflow)

        def apply(tracked: TrackedSet) -> tuple[list[WorkflowRecord], WorkflowRecord]:
            index = tracked.index_of(key)
            if index is None:
                raise NotFoundError(f"Workflow {owner}/{repo}/{workflow} is not tracked")
            remaining = list(tracked.records)
            removed = remaining.pop(index)
            return remaining, removed

        removed = self._read_modify_write("remove", apply)
        logger.info("Removed workflow %s (%s)", removed.full_name, removed.id)
        return removed

    def reorder_workflows(self, order: Any) -> list[WorkflowRecord]:
        """Rewrite the tracked set in the order given; every record must be listed once."""
        keys = _parse_order(order)

        def apply(tracked: TrackedSet) -> tuple[list[WorkflowRecord], list[WorkflowRecord]]:
            if len(keys) != len(tracked.records):
                raise ValidationError(
                    "Workflow count mismatch. Reorder must include all tracked workflows."
                )
            by_key = {record.key: record for record in tracked.records}
            reordered: list[WorkflowRecord] = []
            for key in keys:
                record = by_key.get(key)
                if record is None:
                    raise NotFoundError(f"Workflow {'/'.join(key)} is not tracked")
                reordered.append(record)
            return reordered, reordered

        reordered = self._read_modify_write("reorder", apply)
        logger.info("Reordered %d workflows", len(reordered))
        return reordered

    def _read_modify_write(
        self,
        operation: str,
        apply: Callable[[TrackedSet], tuple[list[WorkflowRecord], T]],
    ) -> T:
        attempts = 0
        while attempts < self.max_attempts:
            attempts += 1
            tracked = self.store.read()
            records, result = apply(tracked)
            try:
                self.store.write(
                    records, expected_version=tracked.version, unparsed=tracked.unparsed
                )
            except VersionConflict as exc:
                logger.info(
                    "Version conflict on %s (attempt %d/%d): %s",
                    operation,
                    attempts,
                    self.max_attempts,
                    exc,
                )
                continue
            return result

        raise ConflictExhausted(
            f"Could not {operation} workflow after {attempts} conflicting attempts",
            attempts=attempts,
        )


def _parse_order(order: Any) -> list[tuple[str, str, str]]:
    if not isinstance(order, list):
        raise ValidationError("workflows array is required")
    keys: list[tuple[str, str, str]] = []
    for entry in order:
        if not isinstance(entry, dict):
            raise ValidationError("Each workflow must have owner, repo, and workflow fields")
        key = (
            require_text(entry.get("owner"), "owner"),
            require_text(entry.get("repo"), "repo"),
            require_text(entry.get("workflow"), "workflow"),
        )
        keys.append(key)
    if len(set(keys)) != len(keys):
        raise ValidationError("Reorder lists the same workflow more than once")
    return keys
