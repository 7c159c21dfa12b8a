"""Pydantic and dataclass contracts for tracked workflows, tokens, and status results."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class WorkflowRecord(BaseModel):
    """One tracked GitHub Actions workflow, unique by ``(owner, repo, workflow)``."""

    # Unknown keys written by other tools survive a read-modify-write cycle.
    model_config = ConfigDict(extra="allow", frozen=True)

    id: str | None = None
    owner: str = Field(min_length=1)
    repo: str = Field(min_length=1)
    workflow: str = Field(min_length=1)
    label: str = ""

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.owner, self.repo, self.workflow)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}/{self.workflow}"

    def with_generated_id(self) -> "WorkflowRecord":
        return self.model_copy(update={"id": new_record_id()})

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


def new_record_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class TrackedSet:
    """Ordered records plus the opaque version token they were read at.

    ``unparsed`` holds stored entries that are not valid records, keyed by their
    position in the document, so a write-back re-emits them untouched.
    """

    records: tuple[WorkflowRecord, ...] = field(default_factory=tuple)
    version: str | None = None
    unparsed: tuple[tuple[int, Any], ...] = field(default_factory=tuple)

    def index_of(self, key: tuple[str, str, str]) -> int | None:
        for index, record in enumerate(self.records):
            if record.key == key:
                return index
        return None

    def __len__(self) -> int:
        return len(self.records)


@dataclass(frozen=True)
class InstallationToken:
    value: str
    expires_at: datetime

    def is_valid(self, now: datetime, margin_s: float = 60.0) -> bool:
        return self.expires_at - timedelta(seconds=margin_s) > now


class StatusResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    record: WorkflowRecord
    conclusion: str | None = None
    status: str | None = None
    url: str | None = None
    updated_at: datetime | None = Field(default=None, alias="updatedAt")
    error: str | None = None

    @classmethod
    def failed(cls, record: WorkflowRecord, error: str) -> "StatusResult":
        return cls(record=record, error=error)


class StatusReport(BaseModel):
    workflows: list[StatusResult] = Field(default_factory=list)
    timestamp: datetime
    count: int = Field(ge=0)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
