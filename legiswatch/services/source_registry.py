from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy.orm import Session

from ..models.legislation_source import LegislationSource
from ..models.normalized_update import TRIBAL_TOPICS, TopicTag
from ..models.source_run import SourceRun, SourceRunStatus
from .sources import AdapterRegistry

logger = logging.getLogger(__name__)

LANDLORD_TENANT_STATES = [
    "UT", "TX", "ND", "SD", "NC", "OH", "MI", "ID", "WY", "CA", "VA", "NV", "AZ", "FL",
]

# Filters applied the first time a source row is created for a registered adapter.
DEFAULT_SOURCE_FILTERS: Dict[str, Dict[str, Any]] = {
    "legiscan": {
        "state_filter": LANDLORD_TENANT_STATES,
        "topic_filter": [
            TopicTag.LANDLORD_TENANT.value,
            TopicTag.FAIR_HOUSING.value,
            TopicTag.SECURITY_DEPOSIT.value,
            TopicTag.EVICTION.value,
        ],
    },
}


def ensure_sources(db: Session, registry: AdapterRegistry) -> int:
    """
    Create a LegislationSource row for every registered adapter that has none.
    Existing rows (including disabled ones) are left untouched.
    """
    existing = {row.id for row in db.query(LegislationSource.id).all()}
    created = 0
    for adapter in registry.all():
        if adapter.id in existing:
            continue
        defaults = DEFAULT_SOURCE_FILTERS.get(adapter.id, {})
        db.add(
            LegislationSource(
                id=adapter.id,
                name=adapter.name,
                enabled=True,
                state_filter=defaults.get("state_filter"),
                topic_filter=defaults.get("topic_filter"),
            )
        )
        created += 1
    if created:
        db.commit()
        logger.info("Registered %d new legislation sources", created, extra={"step": "sources"})
    return created


def list_enabled_sources(db: Session) -> List[LegislationSource]:
    return (
        db.query(LegislationSource)
        .filter(LegislationSource.enabled.is_(True))
        .order_by(LegislationSource.id)
        .all()
    )


def update_source(
    db: Session,
    source_id: str,
    *,
    enabled: Optional[bool] = None,
    state_filter: Optional[List[str]] = None,
    topic_filter: Optional[List[str]] = None,
) -> LegislationSource | None:
    """Partial update; ``None`` leaves a field as is, an empty list clears a filter."""
    source = db.query(LegislationSource).filter(LegislationSource.id == source_id).first()
    if not source:
        return None
    if enabled is not None:
        source.enabled = enabled
    if state_filter is not None:
        source.state_filter = state_filter or None
    if topic_filter is not None:
        source.topic_filter = topic_filter or None
    source.updated_at = datetime.utcnow()
    db.commit()
    logger.info(
        "Updated source %s (enabled=%s)",
        source_id,
        source.enabled,
        extra={"source": source_id, "step": "update_source"},
    )
    return source


def wants_tribal_content(source: LegislationSource) -> bool:
    return any(t in TRIBAL_TOPICS for t in (source.topic_filter or []))


def get_last_successful_cursor(db: Session, source_key: str) -> Optional[str]:
    """Cursor of the latest SUCCESS run; partial and failed runs are not trusted."""
    row = (
        db.query(SourceRun.cursor_after)
        .filter(
            SourceRun.source_key == source_key,
            SourceRun.status == SourceRunStatus.SUCCESS,
        )
        .order_by(SourceRun.finished_at.desc())
        .first()
    )
    return row.cursor_after if row else None


def start_source_run(db: Session, source_key: str, cursor_before: Optional[str]) -> SourceRun:
    run = SourceRun(
        source_key=source_key,
        cursor_before=cursor_before,
        status=SourceRunStatus.RUNNING,
        started_at=datetime.utcnow(),
    )
    db.add(run)
    db.commit()
    db.refresh(run)
    return run


def finalize_source_run(
    run: SourceRun,
    status: SourceRunStatus,
    *,
    items_fetched: int = 0,
    new_items: int = 0,
    duplicates_skipped: int = 0,
    cursor_after: Optional[str] = None,
    error: Optional[str] = None,
) -> None:
    """Stamp the terminal state on a run. The caller commits."""
    if run.status is not SourceRunStatus.RUNNING:
        raise ValueError(f"SourceRun {run.id} already finalized as {run.status.value}")
    if not status.is_terminal:
        raise ValueError("A source run must be finalized with a terminal status")

    run.status = status
    run.items_fetched = items_fetched
    run.new_items_count = new_items
    run.duplicates_skipped = duplicates_skipped
    run.cursor_after = cursor_after
    run.error_message = error[:2000] if error else None
    run.finished_at = datetime.utcnow()


def record_source_outcome(
    source: LegislationSource,
    status: SourceRunStatus,
    *,
    cursor: Optional[str] = None,
    error: Optional[str] = None,
) -> None:
    """Update the source's last-run bookkeeping. The caller commits."""
    now = datetime.utcnow()
    source.last_run_at = now
    source.last_run_status = status.value
    source.updated_at = now

    if status in (SourceRunStatus.SUCCESS, SourceRunStatus.PARTIAL):
        source.last_run_error = error
        source.last_seen_date = now
        if cursor is not None:
            source.last_cursor = cursor
    elif status is SourceRunStatus.FAILED:
        source.last_run_error = error[:2000] if error else None
    else:
        raise ValueError(f"{status.value} is not a run outcome")
