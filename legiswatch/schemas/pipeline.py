# legiswatch/schemas/pipeline.py
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, field_validator

from ..models.normalized_update import JurisdictionLevel, TopicTag
from ..models.release_batch import BatchStatus, BatchType
from ..models.source_run import SourceRunStatus
from ..models.template_review_queue import ReviewStatus


# ---------------------------------------------------------------------------
# Job results
# ---------------------------------------------------------------------------

class SourceIngestResult(BaseModel):
    source_key: str
    status: SourceRunStatus
    items_fetched: int = 0
    new_items: int = 0
    duplicates_skipped: int = 0
    error: str | None = None


class IngestRunResult(BaseModel):
    run_id: UUID
    status: SourceRunStatus
    sources_processed: int = 0
    total_items_fetched: int = 0
    new_items_stored: int = 0
    duplicates_skipped: int = 0
    errors: list[str] = []
    source_results: list[SourceIngestResult] = []


class PublishRunResult(BaseModel):
    batch_id: UUID | None = None
    period: str
    status: BatchStatus
    updates_processed: int = 0
    templates_queued: int = 0
    errors: list[str] = []


# ---------------------------------------------------------------------------
# Admin API
# ---------------------------------------------------------------------------

class SourceOut(BaseModel):
    id: str
    name: str
    enabled: bool
    state_filter: list[str] | None = None
    topic_filter: list[str] | None = None
    last_cursor: str | None = None
    last_run_at: datetime | None = None
    last_run_status: str | None = None
    last_run_error: str | None = None

    model_config = ConfigDict(from_attributes=True)


class SourceUpdate(BaseModel):
    enabled: bool | None = None
    state_filter: list[str] | None = None
    topic_filter: list[TopicTag] | None = None

    @field_validator("state_filter")
    @classmethod
    def _normalize_states(cls, v: list[str] | None) -> list[str] | None:
        if v is None:
            return None
        states = [s.strip().upper() for s in v if s and s.strip()]
        for s in states:
            if len(s) != 2:
                raise ValueError(f"invalid state code: {s!r}")
        return states


class SourceRunOut(BaseModel):
    id: UUID
    source_key: str
    status: SourceRunStatus
    cursor_before: str | None = None
    cursor_after: str | None = None
    items_fetched: int
    new_items_count: int
    duplicates_skipped: int
    error_message: str | None = None
    started_at: datetime
    finished_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class ReleaseBatchOut(BaseModel):
    id: UUID
    batch_type: BatchType
    period: str
    status: BatchStatus
    updates_processed: int
    templates_queued: int
    started_at: datetime
    published_at: datetime | None = None
    summary_report: str | None = None
    error_message: str | None = None

    model_config = ConfigDict(from_attributes=True)


class ReviewQueueEntryOut(BaseModel):
    id: UUID
    template_id: UUID
    normalized_update_id: UUID
    release_batch_id: UUID | None = None
    jurisdiction: str | None = None
    status: ReviewStatus
    priority: int
    reason: str
    assigned_to: str | None = None
    approval_notes: str | None = None
    queued_at: datetime
    review_started_at: datetime | None = None
    review_completed_at: datetime | None = None
    published_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class ReviewStartRequest(BaseModel):
    reviewer: str


class ReviewDecisionRequest(BaseModel):
    notes: str | None = None
    approved_changes: dict[str, Any] | None = None


class ReviewPublishRequest(BaseModel):
    published_by: str


class RoutingCreate(BaseModel):
    template_id: UUID
    topic: TopicTag
    jurisdiction_level: JurisdictionLevel | None = None
    jurisdiction_state: str | None = None

    @field_validator("jurisdiction_state", mode="before")
    @classmethod
    def _upper_state(cls, v):
        if isinstance(v, str):
            stripped = v.strip().upper()
            return stripped or None
        return v


class RoutingOut(BaseModel):
    id: UUID
    template_id: UUID
    topic: str
    jurisdiction_level: JurisdictionLevel | None = None
    jurisdiction_state: str | None = None
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SeedRoutingsOut(BaseModel):
    rules_version: str
    routings_created: int


class TaskAcceptedOut(BaseModel):
    task_id: str
    task: str
