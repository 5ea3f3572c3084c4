"""
Monthly publish.

Opens a release batch, routes every unprocessed update to the templates it
affects, queues those templates for attorney review and tells the admins.
Nothing is published to end users here; documents are only rebuilt after
approval through the review queue.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, List, Sequence
from uuid import UUID
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.celery_app import celery_app
from ..core.config import get_settings
from ..core.db import SessionLocal
from ..core.errors import BatchAlreadyRunningError
from ..models.normalized_update import NormalizedUpdate
from ..models.release_batch import BatchStatus, BatchType, ReleaseBatch
from ..schemas.pipeline import PublishRunResult
from .notifiers import Notifier, build_notifier
from .review_queue import enqueue, reason_for
from .topic_router import get_affected_templates

logger = logging.getLogger(__name__)
settings = get_settings()

EPOCH = datetime(1970, 1, 1)
BATCH_ALREADY_RUNNING = "Batch already running for this period"
NO_UPDATES_SUMMARY = "No new legislative updates found."


def period_label(moment: datetime) -> str:
    return moment.strftime("%Y-%m")


def find_running_batch(db: Session, period: str, batch_type: BatchType) -> ReleaseBatch | None:
    return (
        db.query(ReleaseBatch)
        .filter(
            ReleaseBatch.period == period,
            ReleaseBatch.batch_type == batch_type,
            ReleaseBatch.status == BatchStatus.RUNNING,
        )
        .first()
    )


def last_published_cutoff(db: Session) -> datetime:
    """
    Selection time of the latest published batch that processed every
    update it selected.

    A batch selects right after it starts, so anything created later is
    still ahead of the cutoff however long its review takes. Batches with
    per-update failures do not move the cutoff, which keeps their failed
    updates selectable.
    """
    row = (
        db.query(ReleaseBatch.started_at)
        .filter(
            ReleaseBatch.status == BatchStatus.PUBLISHED,
            ReleaseBatch.error_message.is_(None),
        )
        .order_by(ReleaseBatch.started_at.desc())
        .first()
    )
    return row.started_at if row else EPOCH


def select_pending_updates(db: Session, cutoff: datetime) -> List[NormalizedUpdate]:
    return (
        db.query(NormalizedUpdate)
        .filter(
            NormalizedUpdate.is_processed.is_(False),
            NormalizedUpdate.is_duplicate.is_(False),
            NormalizedUpdate.created_at >= cutoff,
        )
        .order_by(NormalizedUpdate.created_at, NormalizedUpdate.id)
        .all()
    )


class PublishEngine:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        notifier: Notifier,
        recipients: Sequence[str] = (),
        clock: Callable[[], datetime] = datetime.utcnow,
    ) -> None:
        self.session_factory = session_factory
        self.notifier = notifier
        self.recipients = list(recipients)
        self.clock = clock

    def _open_batch(
        self, db: Session, period: str, batch_type: BatchType, now: datetime
    ) -> UUID:
        """
        Insert the running batch.

        Raises BatchAlreadyRunningError when another run holds the period,
        whether found up front or by the running-period index on insert.
        """
        running = find_running_batch(db, period, batch_type)
        if running is not None:
            logger.warning(
                "A %s batch is already running for %s; aborting",
                batch_type.value,
                period,
                extra={"batch_id": str(running.id), "period": period, "step": "guard"},
            )
            raise BatchAlreadyRunningError(BATCH_ALREADY_RUNNING)

        batch = ReleaseBatch(
            batch_type=batch_type,
            period=period,
            status=BatchStatus.RUNNING,
            started_at=now,
        )
        db.add(batch)
        try:
            db.commit()
        except IntegrityError as e:
            db.rollback()
            logger.warning(
                "Concurrent %s batch for %s won the insert; aborting",
                batch_type.value,
                period,
                extra={"period": period, "step": "guard"},
            )
            raise BatchAlreadyRunningError(BATCH_ALREADY_RUNNING) from e
        return batch.id

    def _process_update(
        self, db: Session, update: NormalizedUpdate, batch_id: UUID, now: datetime
    ) -> int:
        """Route one update and queue its templates. Returns entries created."""
        affected = get_affected_templates(
            db,
            update.topics or [],
            update.jurisdiction_state,
            update.jurisdiction_level,
        )
        reason = reason_for(update)
        queued = 0
        for template_id in affected:
            if enqueue(db, template_id, update, reason, batch_id):
                queued += 1

        update.is_processed = True
        update.processed_at = now
        if affected:
            update.is_queued = True
            update.queued_at = now
        update.updated_at = now
        db.flush()

        logger.info(
            "Update affects %d templates, %d newly queued",
            len(affected),
            queued,
            extra={"batch_id": str(batch_id), "update_id": str(update.id), "step": "route"},
        )
        return queued

    def _notify_admins(self, result: PublishRunResult) -> None:
        if not self.recipients:
            logger.info(
                "No admin recipients configured; skipping notification",
                extra={"batch_id": str(result.batch_id), "step": "notify"},
            )
            return

        subject = (
            f"{result.period} Legislative Updates - {result.templates_queued} Templates Queued"
        )
        body = (
            f"Monthly batch processing complete. {result.updates_processed} updates processed, "
            f"{result.templates_queued} templates queued for review. "
            "Please review and approve queued templates in the admin panel."
        )
        for recipient in self.recipients:
            try:
                self.notifier.send_summary(recipient, subject, body, scope="ALL", urgency="high")
            except Exception:
                logger.exception(
                    "Failed to notify %s",
                    recipient,
                    extra={"batch_id": str(result.batch_id), "step": "notify"},
                )

    def run_monthly_publish(self, batch_type: BatchType | str = BatchType.MONTHLY) -> PublishRunResult:
        batch_type = BatchType(batch_type)
        now = self.clock()
        period = period_label(now)

        logger.info(
            "Starting %s publish",
            batch_type.value,
            extra={"period": period, "step": "start"},
        )

        db = self.session_factory()
        try:
            try:
                batch_id = self._open_batch(db, period, batch_type, now)
            except BatchAlreadyRunningError as e:
                return PublishRunResult(
                    period=period,
                    status=BatchStatus.FAILED,
                    errors=[str(e)],
                )

            log_extra = {"batch_id": str(batch_id), "period": period}
            errors: List[str] = []

            try:
                batch = db.get(ReleaseBatch, batch_id)
                updates = select_pending_updates(db, last_published_cutoff(db))

                if not updates:
                    batch.status = BatchStatus.PUBLISHED
                    batch.published_at = now
                    batch.updates_processed = 0
                    batch.templates_queued = 0
                    batch.summary_report = NO_UPDATES_SUMMARY
                    db.commit()
                    logger.info(
                        "No new updates since last published batch",
                        extra={**log_extra, "step": "completed"},
                    )
                    return PublishRunResult(
                        batch_id=batch_id,
                        period=period,
                        status=BatchStatus.NO_CHANGES,
                    )

                logger.info(
                    "Found %d new updates to process",
                    len(updates),
                    extra={**log_extra, "step": "select"},
                )

                templates_queued = 0
                updates_processed = 0
                for update in updates:
                    update_id = update.id
                    try:
                        with db.begin_nested():
                            templates_queued += self._process_update(db, update, batch_id, now)
                    except Exception as e:
                        err = f"Failed to process update {update_id}: {e}"
                        logger.exception(err, extra={**log_extra, "update_id": str(update_id), "step": "route"})
                        errors.append(err)
                        continue
                    updates_processed += 1

                final_status = (
                    BatchStatus.PENDING_REVIEW if templates_queued > 0 else BatchStatus.PUBLISHED
                )
                batch.status = final_status
                if final_status is BatchStatus.PUBLISHED:
                    batch.published_at = now
                batch.updates_processed = updates_processed
                batch.templates_queued = templates_queued
                batch.summary_report = (
                    f"Processed {updates_processed} updates, "
                    f"queued {templates_queued} templates for review."
                )
                batch.error_message = "; ".join(errors) if errors else None
                db.commit()

            except Exception as e:
                db.rollback()
                logger.exception("Publish failed", extra={**log_extra, "step": "failed"})
                failed_batch = db.get(ReleaseBatch, batch_id)
                failed_batch.status = BatchStatus.FAILED
                failed_batch.error_message = str(e)[:2000]
                db.commit()
                return PublishRunResult(
                    batch_id=batch_id,
                    period=period,
                    status=BatchStatus.FAILED,
                    errors=errors + [f"Publish error: {e}"],
                )
        finally:
            db.close()

        result = PublishRunResult(
            batch_id=batch_id,
            period=period,
            status=final_status,
            updates_processed=updates_processed,
            templates_queued=templates_queued,
            errors=errors,
        )

        if templates_queued > 0:
            self._notify_admins(result)

        logger.info(
            "Publish complete: %d updates processed, %d templates queued, status %s",
            updates_processed,
            templates_queued,
            final_status.value,
            extra={**log_extra, "step": "completed"},
        )
        return result


@celery_app.task(name="legiswatch.services.publish.run_monthly_publish")
def run_monthly_publish(batch_type: str = BatchType.MONTHLY.value) -> dict[str, Any]:
    engine = PublishEngine(
        SessionLocal,
        build_notifier(settings),
        recipients=settings.admin_recipients,
    )
    return engine.run_monthly_publish(BatchType(batch_type)).model_dump(mode="json")
