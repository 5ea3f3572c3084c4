from typing import List
from uuid import UUID
import logging

from fastapi import APIRouter, Depends, HTTPException, Security
from fastapi.security.api_key import APIKeyHeader
from sqlalchemy.orm import Session

from ..core.config import get_settings
from ..core.db import get_db
from ..core.errors import InvalidReviewTransition
from ..models.legislation_source import LegislationSource
from ..models.release_batch import ReleaseBatch
from ..models.source_run import SourceRun
from ..models.template import Template
from ..models.template_review_queue import ReviewStatus, TemplateReviewQueue
from ..models.template_topic_routing import TemplateTopicRouting
from ..schemas.pipeline import (
    ReleaseBatchOut,
    ReviewDecisionRequest,
    ReviewPublishRequest,
    ReviewQueueEntryOut,
    ReviewStartRequest,
    RoutingCreate,
    RoutingOut,
    SeedRoutingsOut,
    SourceOut,
    SourceRunOut,
    SourceUpdate,
)
from ..services import review_queue
from ..services.source_registry import update_source
from ..services.topic_router import (
    ROUTING_RULES_VERSION,
    add_routing,
    deactivate_routing,
    seed_routings,
)

router = APIRouter(prefix="/admin", tags=["admin"])

settings = get_settings()
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)
logger = logging.getLogger(__name__)


def verify_api_key(api_key: str | None = Security(api_key_header)) -> None:
    """
    Simple header-based API key authentication.

    - In dev, if API_AUTH_KEY is not set, auth is skipped.
    - Otherwise, require X-API-Key == API_AUTH_KEY.
    """
    expected = settings.API_AUTH_KEY

    # In dev with no configured key, skip auth for convenience
    if settings.ENV == "dev" and not expected:
        return

    if not expected:
        # In non-dev environments, missing config is treated as misconfiguration
        raise HTTPException(status_code=401, detail="API key not configured")

    if api_key != expected:
        raise HTTPException(status_code=401, detail="Invalid API key")


def _safe_limit(limit: int) -> int:
    # Hard cap to avoid unbounded scans
    return max(1, min(limit, 200))


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------

@router.get("/sources", response_model=List[SourceOut])
def list_sources(
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    return db.query(LegislationSource).order_by(LegislationSource.id).all()


@router.patch("/sources/{source_id}", response_model=SourceOut)
def patch_source(
    source_id: str,
    payload: SourceUpdate,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    source = update_source(
        db,
        source_id,
        enabled=payload.enabled,
        state_filter=payload.state_filter,
        topic_filter=(
            [t.value for t in payload.topic_filter] if payload.topic_filter is not None else None
        ),
    )
    if not source:
        raise HTTPException(status_code=404, detail="Source not found")
    return source


@router.get("/sources/{source_id}/runs", response_model=List[SourceRunOut])
def list_source_runs(
    source_id: str,
    limit: int = 50,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    return (
        db.query(SourceRun)
        .filter(SourceRun.source_key == source_id)
        .order_by(SourceRun.started_at.desc())
        .limit(_safe_limit(limit))
        .all()
    )


@router.get("/runs", response_model=List[SourceRunOut])
def list_runs(
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    return (
        db.query(SourceRun)
        .order_by(SourceRun.started_at.desc())
        .offset(offset)
        .limit(_safe_limit(limit))
        .all()
    )


# ---------------------------------------------------------------------------
# Release batches
# ---------------------------------------------------------------------------

@router.get("/batches", response_model=List[ReleaseBatchOut])
def list_batches(
    limit: int = 24,
    offset: int = 0,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    return (
        db.query(ReleaseBatch)
        .order_by(ReleaseBatch.started_at.desc())
        .offset(offset)
        .limit(_safe_limit(limit))
        .all()
    )


@router.get("/batches/{batch_id}", response_model=ReleaseBatchOut)
def get_batch(
    batch_id: UUID,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    batch = db.get(ReleaseBatch, batch_id)
    if not batch:
        raise HTTPException(status_code=404, detail="Batch not found")
    return batch


# ---------------------------------------------------------------------------
# Review queue
# ---------------------------------------------------------------------------

def _get_entry(db: Session, entry_id: UUID) -> TemplateReviewQueue:
    entry = db.get(TemplateReviewQueue, entry_id)
    if not entry:
        raise HTTPException(status_code=404, detail="Review entry not found")
    return entry


@router.get("/review-queue", response_model=List[ReviewQueueEntryOut])
def list_review_queue(
    status: ReviewStatus | None = None,
    batch_id: UUID | None = None,
    limit: int = 100,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    return review_queue.list_entries(
        db, status=status, release_batch_id=batch_id, limit=_safe_limit(limit)
    )


@router.post("/review-queue/{entry_id}/start", response_model=ReviewQueueEntryOut)
def start_review(
    entry_id: UUID,
    payload: ReviewStartRequest,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    entry = _get_entry(db, entry_id)
    try:
        return review_queue.start_review(db, entry, payload.reviewer)
    except InvalidReviewTransition as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/review-queue/{entry_id}/return", response_model=ReviewQueueEntryOut)
def return_review(
    entry_id: UUID,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    entry = _get_entry(db, entry_id)
    try:
        return review_queue.return_to_queue(db, entry)
    except InvalidReviewTransition as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/review-queue/{entry_id}/approve", response_model=ReviewQueueEntryOut)
def approve_review(
    entry_id: UUID,
    payload: ReviewDecisionRequest,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    entry = _get_entry(db, entry_id)
    try:
        return review_queue.approve(db, entry, payload.notes, payload.approved_changes)
    except InvalidReviewTransition as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/review-queue/{entry_id}/reject", response_model=ReviewQueueEntryOut)
def reject_review(
    entry_id: UUID,
    payload: ReviewDecisionRequest,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    entry = _get_entry(db, entry_id)
    try:
        return review_queue.reject(db, entry, payload.notes)
    except InvalidReviewTransition as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/review-queue/{entry_id}/publish", response_model=ReviewQueueEntryOut)
def publish_review(
    entry_id: UUID,
    payload: ReviewPublishRequest,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    entry = _get_entry(db, entry_id)
    try:
        return review_queue.mark_published(db, entry, payload.published_by)
    except InvalidReviewTransition as e:
        raise HTTPException(status_code=409, detail=str(e))


# ---------------------------------------------------------------------------
# Topic routing
# ---------------------------------------------------------------------------

@router.post("/routings/seed", response_model=SeedRoutingsOut)
def seed_topic_routings(
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    created = seed_routings(db)
    return SeedRoutingsOut(rules_version=ROUTING_RULES_VERSION, routings_created=created)


@router.get("/routings", response_model=List[RoutingOut])
def list_routings(
    template_id: UUID | None = None,
    topic: str | None = None,
    include_inactive: bool = False,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    query = db.query(TemplateTopicRouting)
    if template_id is not None:
        query = query.filter(TemplateTopicRouting.template_id == template_id)
    if topic:
        query = query.filter(TemplateTopicRouting.topic == topic)
    if not include_inactive:
        query = query.filter(TemplateTopicRouting.is_active.is_(True))
    return query.order_by(TemplateTopicRouting.created_at).all()


@router.post("/routings", response_model=RoutingOut, status_code=201)
def create_routing(
    payload: RoutingCreate,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    if db.get(Template, payload.template_id) is None:
        raise HTTPException(status_code=404, detail="Template not found")
    return add_routing(
        db,
        payload.template_id,
        payload.topic,
        payload.jurisdiction_level,
        payload.jurisdiction_state,
    )


@router.post("/routings/{routing_id}/deactivate", response_model=RoutingOut)
def deactivate_topic_routing(
    routing_id: UUID,
    db: Session = Depends(get_db),
    _: None = Depends(verify_api_key),
):
    edge = deactivate_routing(db, routing_id)
    if not edge:
        raise HTTPException(status_code=404, detail="Routing not found")
    return edge
