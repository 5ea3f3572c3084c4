"""
Nightly ingest.

Drives every enabled source through its adapter and stores raw + normalized
updates. Never touches templates or the review queue; the monthly publish job
consumes what accumulates here.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, List, Optional, Tuple, TypeVar
from uuid import UUID, uuid4
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.celery_app import celery_app
from ..core.config import get_settings
from ..core.db import SessionLocal
from ..core.errors import AdapterTimeoutError
from ..models.legislation_source import LegislationSource
from ..models.normalized_update import NormalizedUpdate
from ..models.raw_legislation_item import RawLegislationItem
from ..models.source_run import SourceRunStatus
from ..schemas.legislation import NormalizedLegislationItem, SourceFetchParams
from ..schemas.pipeline import IngestRunResult, SourceIngestResult
from .source_registry import (
    ensure_sources,
    finalize_source_run,
    get_last_successful_cursor,
    list_enabled_sources,
    record_source_outcome,
    start_source_run,
    wants_tribal_content,
)
from .sources import AdapterRegistry, BaseSourceAdapter, build_default_registry

logger = logging.getLogger(__name__)
settings = get_settings()

T = TypeVar("T")

SOURCE_NOT_AVAILABLE = "Source not available"


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """ISO date or datetime -> naive UTC datetime; None when unparseable."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def find_original_update_id(db: Session, cross_ref_key: str) -> Optional[UUID]:
    row = (
        db.query(NormalizedUpdate.id)
        .filter(
            NormalizedUpdate.cross_ref_key == cross_ref_key,
            NormalizedUpdate.is_duplicate.is_(False),
        )
        .first()
    )
    return row.id if row else None


class IngestEngine:
    """
    Sequential, per-source-isolated ingestion.

    Each source gets its own SourceRun. The run row is committed as RUNNING
    before the adapter is called; the stored items, the finalized run and the
    source bookkeeping then commit together. A failing source rolls back its
    own items and never affects its siblings.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        registry: AdapterRegistry,
        *,
        fetch_timeout: float | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.registry = registry
        self.fetch_timeout = float(fetch_timeout or settings.SOURCE_FETCH_TIMEOUT_SECONDS)

    # ------------------------------------------------------------------
    # Adapter calls
    # ------------------------------------------------------------------

    def _call_adapter(
        self,
        adapter: BaseSourceAdapter,
        operation: str,
        call: Callable[[], Awaitable[T]],
    ) -> T:
        """Run one adapter coroutine to completion under its own deadline."""
        timeout = self.fetch_timeout

        async def _bounded() -> T:
            try:
                return await asyncio.wait_for(call(), timeout=timeout)
            except asyncio.TimeoutError as e:
                raise AdapterTimeoutError(adapter.id, operation, timeout) from e

        # Celery workers are synchronous; each call gets a fresh event loop
        return asyncio.run(_bounded())

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _store_item(
        self, db: Session, source_id: str, item: NormalizedLegislationItem, cross_ref_key: str
    ) -> None:
        raw = RawLegislationItem(
            source_id=source_id,
            external_id=item.source_key,
            url=item.url,
            published_at=_parse_datetime(item.published_at),
            title=item.title,
            body=item.summary,
            raw_data=item.raw.model_dump(mode="json"),
            content_hash=item.content_hash(),
        )
        db.add(raw)
        db.flush()

        db.add(
            NormalizedUpdate(
                source_id=source_id,
                raw_item_id=raw.id,
                source_key=item.source_key,
                cross_ref_key=cross_ref_key,
                item_type=item.type,
                jurisdiction_level=item.jurisdiction.level,
                jurisdiction_state=item.jurisdiction.state,
                jurisdiction_tribe=item.jurisdiction.tribe,
                title=item.title,
                summary=item.summary,
                status=item.status,
                introduced_date=_parse_datetime(item.introduced_date),
                effective_date=_parse_datetime(item.effective_date),
                published_at=_parse_datetime(item.published_at),
                url=item.url,
                pdf_url=item.pdf_url,
                topics=[t.value for t in item.topics],
                severity=item.severity,
                cfr_references=(
                    [ref.model_dump() for ref in item.cfr_references]
                    if item.cfr_references
                    else None
                ),
                is_duplicate=False,
                is_processed=False,
            )
        )
        db.flush()

    def _store_items(
        self, db: Session, source_id: str, items: List[NormalizedLegislationItem]
    ) -> Tuple[int, int]:
        """Returns (new_items, duplicates_skipped)."""
        new_items = 0
        duplicates = 0

        for item in items:
            cross_ref_key = item.dedup_key(source_id)
            if find_original_update_id(db, cross_ref_key) is not None:
                duplicates += 1
                continue

            try:
                with db.begin_nested():
                    self._store_item(db, source_id, item, cross_ref_key)
            except IntegrityError:
                # Another writer stored the same cross-reference key first
                logger.warning(
                    "Cross-reference key %s inserted concurrently; treating as duplicate",
                    cross_ref_key,
                    extra={"source": source_id, "step": "dedup"},
                )
                duplicates += 1
                continue

            new_items += 1

        return new_items, duplicates

    # ------------------------------------------------------------------
    # Per-source run
    # ------------------------------------------------------------------

    def _ingest_source(
        self, db: Session, source: LegislationSource, run_id: UUID
    ) -> Tuple[SourceIngestResult, List[str]]:
        source_id = source.id
        log_extra = {"run_id": str(run_id), "source": source_id}

        adapter = self.registry.get(source_id)
        if adapter is None:
            err = f"No adapter registered for source: {source_id}"
            logger.warning(err, extra={**log_extra, "step": "resolve_adapter"})
            return (
                SourceIngestResult(source_key=source_id, status=SourceRunStatus.FAILED, error=err),
                [err],
            )

        cursor_before = get_last_successful_cursor(db, source_id)
        source_run = start_source_run(db, source_id, cursor_before)
        items_fetched = 0

        try:
            available = self._call_adapter(adapter, "is_available", adapter.is_available)
            if not available:
                finalize_source_run(
                    source_run, SourceRunStatus.FAILED, error=SOURCE_NOT_AVAILABLE
                )
                record_source_outcome(source, SourceRunStatus.FAILED, error=SOURCE_NOT_AVAILABLE)
                db.commit()
            else:
                params = SourceFetchParams(
                    states=source.state_filter or None,
                    topics=source.topic_filter or None,
                    since=cursor_before,
                    include_tribal=wants_tribal_content(source),
                )
                logger.info(
                    "Fetching %s",
                    source_id,
                    extra={**log_extra, "step": "fetch", "params": params.model_dump(mode="json")},
                )

                result = self._call_adapter(adapter, "fetch", lambda: adapter.fetch(params))
                items_fetched = len(result.items)

                new_items, duplicates = self._store_items(db, source_id, result.items)

                status = SourceRunStatus.PARTIAL if result.errors else SourceRunStatus.SUCCESS
                inline_error = "; ".join(result.errors) if result.errors else None
                cursor_after = result.cursor or source_run.started_at.isoformat()

                finalize_source_run(
                    source_run,
                    status,
                    items_fetched=items_fetched,
                    new_items=new_items,
                    duplicates_skipped=duplicates,
                    cursor_after=cursor_after,
                    error=inline_error,
                )
                record_source_outcome(source, status, cursor=cursor_after, error=inline_error)
                db.commit()

        except Exception as e:
            db.rollback()
            err_text = str(e) or e.__class__.__name__
            logger.exception(
                "Source %s failed",
                source_id,
                extra={**log_extra, "step": "failed"},
            )
            finalize_source_run(
                source_run,
                SourceRunStatus.FAILED,
                items_fetched=items_fetched,
                error=err_text,
            )
            record_source_outcome(source, SourceRunStatus.FAILED, error=err_text)
            db.commit()
            return (
                SourceIngestResult(
                    source_key=source_id,
                    status=SourceRunStatus.FAILED,
                    items_fetched=items_fetched,
                    error=err_text,
                ),
                [f"Source {source_id} failed: {err_text}"],
            )

        # The run is committed and final from here on
        if not available:
            logger.info(
                "Skipping %s: not available",
                source_id,
                extra={**log_extra, "step": "availability"},
            )
            return (
                SourceIngestResult(
                    source_key=source_id,
                    status=SourceRunStatus.FAILED,
                    error=SOURCE_NOT_AVAILABLE,
                ),
                [],
            )

        logger.info(
            "Stored %d new items from %s, skipped %d duplicates",
            new_items,
            source_id,
            duplicates,
            extra={**log_extra, "step": "stored"},
        )
        return (
            SourceIngestResult(
                source_key=source_id,
                status=status,
                items_fetched=items_fetched,
                new_items=new_items,
                duplicates_skipped=duplicates,
                error=inline_error,
            ),
            [f"[{source_id}] {e}" for e in result.errors],
        )

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run_nightly_ingest(self) -> IngestRunResult:
        run_id = uuid4()
        errors: List[str] = []
        source_results: List[SourceIngestResult] = []
        sources_processed = 0
        total_items_fetched = 0
        new_items_stored = 0
        duplicates_skipped = 0

        logger.info("Starting nightly ingest", extra={"run_id": str(run_id), "step": "start"})

        db = self.session_factory()
        try:
            sources = list_enabled_sources(db)
            logger.info(
                "Processing %d enabled sources",
                len(sources),
                extra={"run_id": str(run_id), "step": "sources"},
            )

            for source in sources:
                source_id = source.id
                try:
                    source_result, source_errors = self._ingest_source(db, source, run_id)
                except Exception as e:
                    # Raised outside the source's own transaction; its run row stays as committed
                    db.rollback()
                    logger.exception(
                        "Source %s failed after its run was recorded",
                        source_id,
                        extra={"run_id": str(run_id), "source": source_id, "step": "failed"},
                    )
                    err_text = str(e) or e.__class__.__name__
                    source_result = SourceIngestResult(
                        source_key=source_id,
                        status=SourceRunStatus.FAILED,
                        error=err_text,
                    )
                    source_errors = [f"Source {source_id} failed: {err_text}"]

                source_results.append(source_result)
                errors.extend(source_errors)

                total_items_fetched += source_result.items_fetched
                new_items_stored += source_result.new_items
                duplicates_skipped += source_result.duplicates_skipped
                if source_result.status in (SourceRunStatus.SUCCESS, SourceRunStatus.PARTIAL):
                    sources_processed += 1

        except Exception as e:
            db.rollback()
            logger.exception("Nightly ingest failed", extra={"run_id": str(run_id), "step": "failed"})
            errors.append(f"Ingest error: {e}")
            return IngestRunResult(
                run_id=run_id,
                status=SourceRunStatus.FAILED,
                sources_processed=sources_processed,
                total_items_fetched=total_items_fetched,
                new_items_stored=new_items_stored,
                duplicates_skipped=duplicates_skipped,
                errors=errors,
                source_results=source_results,
            )
        finally:
            db.close()

        if not errors:
            status = SourceRunStatus.SUCCESS
        elif sources_processed > 0:
            status = SourceRunStatus.PARTIAL
        else:
            status = SourceRunStatus.FAILED

        logger.info(
            "Nightly ingest complete: %d sources processed, %d fetched, %d new, %d duplicates, %d errors",
            sources_processed,
            total_items_fetched,
            new_items_stored,
            duplicates_skipped,
            len(errors),
            extra={"run_id": str(run_id), "step": "completed"},
        )

        return IngestRunResult(
            run_id=run_id,
            status=status,
            sources_processed=sources_processed,
            total_items_fetched=total_items_fetched,
            new_items_stored=new_items_stored,
            duplicates_skipped=duplicates_skipped,
            errors=errors,
            source_results=source_results,
        )


@celery_app.task(name="legiswatch.services.ingest.run_nightly_ingest")
def run_nightly_ingest() -> dict[str, Any]:
    registry = build_default_registry(settings)

    db = SessionLocal()
    try:
        ensure_sources(db, registry)
    finally:
        db.close()

    engine = IngestEngine(
        SessionLocal,
        registry,
        fetch_timeout=settings.SOURCE_FETCH_TIMEOUT_SECONDS,
    )
    return engine.run_nightly_ingest().model_dump(mode="json")
