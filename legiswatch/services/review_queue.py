"""
Template review queue.

Entries are created by the publish engine and moved by attorneys through the
admin API. Every transition is checked against ``ALLOWED_TRANSITIONS``.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Optional
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from ..core.errors import InvalidReviewTransition
from ..models.normalized_update import NormalizedUpdate, Severity
from ..models.release_batch import BatchStatus, ReleaseBatch
from ..models.template_review_queue import ReviewStatus, TemplateReviewQueue

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[ReviewStatus, FrozenSet[ReviewStatus]] = {
    ReviewStatus.PENDING: frozenset(
        {ReviewStatus.IN_REVIEW, ReviewStatus.APPROVED, ReviewStatus.REJECTED}
    ),
    ReviewStatus.IN_REVIEW: frozenset(
        {ReviewStatus.APPROVED, ReviewStatus.REJECTED, ReviewStatus.PENDING}
    ),
    ReviewStatus.APPROVED: frozenset({ReviewStatus.PUBLISHED}),
    ReviewStatus.REJECTED: frozenset(),
    ReviewStatus.PUBLISHED: frozenset(),
}

RESOLVED_STATUSES = frozenset({ReviewStatus.REJECTED, ReviewStatus.PUBLISHED})

SEVERITY_PRIORITY: Dict[Severity, int] = {
    Severity.CRITICAL: 9,
    Severity.HIGH: 7,
    Severity.MEDIUM: 5,
    Severity.LOW: 3,
}
DEFAULT_PRIORITY = 5

REASON_TITLE_LIMIT = 100


def priority_for(severity: Optional[Severity]) -> int:
    if severity is None:
        return DEFAULT_PRIORITY
    return SEVERITY_PRIORITY.get(Severity(severity), DEFAULT_PRIORITY)


def reason_for(update: NormalizedUpdate) -> str:
    title = update.title or ""
    if len(title) > REASON_TITLE_LIMIT:
        title = title[:REASON_TITLE_LIMIT] + "..."
    return f"Legislative update: {title}"


def enqueue(
    db: Session,
    template_id: UUID,
    update: NormalizedUpdate,
    reason: str,
    release_batch_id: Optional[UUID] = None,
) -> bool:
    """
    Queue (template, update) for review. Returns False when the pair is
    already queued, whatever that entry's status. The caller commits.
    """
    existing = (
        db.query(TemplateReviewQueue.id)
        .filter(
            TemplateReviewQueue.template_id == template_id,
            TemplateReviewQueue.normalized_update_id == update.id,
        )
        .first()
    )
    if existing is not None:
        return False

    db.add(
        TemplateReviewQueue(
            template_id=template_id,
            normalized_update_id=update.id,
            release_batch_id=release_batch_id,
            jurisdiction=update.jurisdiction_state,
            status=ReviewStatus.PENDING,
            priority=priority_for(update.severity),
            reason=reason,
            queued_at=datetime.utcnow(),
        )
    )
    db.flush()
    return True


def _transition(entry: TemplateReviewQueue, target: ReviewStatus) -> None:
    current = ReviewStatus(entry.status)
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidReviewTransition(
            f"Review entry {entry.id} cannot move from {current.value} to {target.value}"
        )
    entry.status = target
    entry.updated_at = datetime.utcnow()


def start_review(db: Session, entry: TemplateReviewQueue, reviewer: str) -> TemplateReviewQueue:
    _transition(entry, ReviewStatus.IN_REVIEW)
    entry.assigned_to = reviewer
    entry.review_started_at = datetime.utcnow()
    db.commit()
    return entry


def return_to_queue(db: Session, entry: TemplateReviewQueue) -> TemplateReviewQueue:
    _transition(entry, ReviewStatus.PENDING)
    entry.assigned_to = None
    entry.review_started_at = None
    db.commit()
    return entry


def approve(
    db: Session,
    entry: TemplateReviewQueue,
    notes: Optional[str] = None,
    approved_changes: Optional[Dict[str, Any]] = None,
) -> TemplateReviewQueue:
    _transition(entry, ReviewStatus.APPROVED)
    entry.review_completed_at = datetime.utcnow()
    entry.approval_notes = notes
    entry.approved_changes = approved_changes
    db.commit()
    return entry


def reject(db: Session, entry: TemplateReviewQueue, notes: Optional[str] = None) -> TemplateReviewQueue:
    _transition(entry, ReviewStatus.REJECTED)
    entry.review_completed_at = datetime.utcnow()
    entry.approval_notes = notes
    db.commit()
    if entry.release_batch_id:
        close_resolved_batch(db, entry.release_batch_id)
    return entry


def mark_published(db: Session, entry: TemplateReviewQueue, published_by: str) -> TemplateReviewQueue:
    _transition(entry, ReviewStatus.PUBLISHED)
    entry.published_at = datetime.utcnow()
    entry.published_by = published_by
    db.commit()
    if entry.release_batch_id:
        close_resolved_batch(db, entry.release_batch_id)
    return entry


def close_resolved_batch(db: Session, batch_id: UUID) -> bool:
    """
    Flip a pending_review batch to published once every one of its entries is
    rejected or published. Returns True when the batch was closed.
    """
    batch = db.get(ReleaseBatch, batch_id)
    if batch is None or batch.status is not BatchStatus.PENDING_REVIEW:
        return False

    statuses = [
        row.status
        for row in db.query(TemplateReviewQueue.status)
        .filter(TemplateReviewQueue.release_batch_id == batch_id)
        .all()
    ]
    if not statuses or any(ReviewStatus(s) not in RESOLVED_STATUSES for s in statuses):
        return False

    batch.status = BatchStatus.PUBLISHED
    batch.published_at = datetime.utcnow()
    db.commit()
    logger.info(
        "Release batch resolved; marked published",
        extra={"batch_id": str(batch_id), "period": batch.period, "step": "close_batch"},
    )
    return True


def list_entries(
    db: Session,
    status: Optional[ReviewStatus] = None,
    release_batch_id: Optional[UUID] = None,
    limit: int = 100,
) -> List[TemplateReviewQueue]:
    query = db.query(TemplateReviewQueue)
    if status is not None:
        query = query.filter(TemplateReviewQueue.status == status)
    if release_batch_id is not None:
        query = query.filter(TemplateReviewQueue.release_batch_id == release_batch_id)
    return (
        query.order_by(TemplateReviewQueue.priority.desc(), TemplateReviewQueue.queued_at)
        .limit(limit)
        .all()
    )
