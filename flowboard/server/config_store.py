"""Tracked-workflow document access with id backfill and conditional writes."""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable

from pydantic import ValidationError as PydanticValidationError

from flowboard.server.blob_store import VersionedBlobStore
from flowboard.server.errors import FlowboardError, StoreUnavailable
from flowboard.server.models import TrackedSet, WorkflowRecord
from flowboard.shared.settings import DEFAULT_BLOB_NAME

logger = logging.getLogger(__name__)


class ConfigStore:
    """Owns the tracked set; callers change it only through ``read`` then ``write``."""

    def __init__(self, blob_store: VersionedBlobStore, blob_name: str = DEFAULT_BLOB_NAME) -> None:
        self.blob_store = blob_store
        self.blob_name = blob_name

    def read(self) -> TrackedSet:
        data, version = self.blob_store.get(self.blob_name)
        if data is None:
            return TrackedSet(records=(), version=None)

        records, unparsed = _decode_records(data, self.blob_name)
        repaired = tuple(
            record if record.id else record.with_generated_id() for record in records
        )
        if repaired == records:
            return TrackedSet(records=records, version=version, unparsed=unparsed)

        backfilled = sum(1 for record in records if not record.id)
        try:
            new_version = self.write(repaired, expected_version=version, unparsed=unparsed)
        except FlowboardError as exc:
            logger.warning(
                "Could not persist %d backfilled workflow ids to %s: %s",
                backfilled,
                self.blob_name,
                exc,
            )
            return TrackedSet(records=repaired, version=version, unparsed=unparsed)

        logger.info("Backfilled %d workflow ids in %s", backfilled, self.blob_name)
        return TrackedSet(records=repaired, version=new_version, unparsed=unparsed)

    def write(
        self,
        records: Iterable[WorkflowRecord],
        expected_version: str | None,
        unparsed: Iterable[tuple[int, Any]] = (),
    ) -> str:
        document: list[Any] = [record.to_document() for record in records]
        # Ascending inserts restore the original layout when records kept their slots.
        for position, entry in sorted(unparsed, key=lambda item: item[0]):
            document.insert(min(position, len(document)), entry)
        payload = json.dumps(document, indent=2)
        return self.blob_store.put(self.blob_name, payload.encode("utf-8"), expected_version)


def _decode_records(
    data: bytes, blob_name: str
) -> tuple[tuple[WorkflowRecord, ...], tuple[tuple[int, Any], ...]]:
    try:
        document: Any = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise StoreUnavailable(f"{blob_name} is not valid JSON") from exc
    if not isinstance(document, list):
        raise StoreUnavailable(f"{blob_name} must hold a JSON array of workflows")

    records: list[WorkflowRecord] = []
    unparsed: list[tuple[int, Any]] = []
    for position, entry in enumerate(document):
        if not isinstance(entry, dict):
            logger.warning("Ignoring non-object entry %d in %s", position, blob_name)
            unparsed.append((position, entry))
            continue
        try:
            records.append(WorkflowRecord.model_validate(entry))
        except PydanticValidationError as exc:
            logger.warning(
                "Ignoring invalid workflow entry %d in %s: %s",
                position,
                blob_name,
                exc.errors(include_url=False),
            )
            unparsed.append((position, entry))
    return tuple(records), tuple(unparsed)
