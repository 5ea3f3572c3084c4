from fastapi import APIRouter, Depends, HTTPException, Security
from fastapi.security.api_key import APIKeyHeader
import logging

from ..core.celery_app import celery_app
from ..core.config import get_settings
from ..models.release_batch import BatchType
from ..schemas.pipeline import TaskAcceptedOut

router = APIRouter(prefix="/cron", tags=["cron"])

settings = get_settings()
cron_secret_header = APIKeyHeader(name="X-Cron-Secret", auto_error=False)
logger = logging.getLogger(__name__)

INGEST_TASK = "legiswatch.services.ingest.run_nightly_ingest"
PUBLISH_TASK = "legiswatch.services.publish.run_monthly_publish"


def verify_cron_secret(secret: str | None = Security(cron_secret_header)) -> None:
    """
    Shared-secret check for external schedulers.

    - In dev, if CRON_SECRET is not set, the check is skipped.
    - Otherwise, require X-Cron-Secret == CRON_SECRET.
    """
    expected = settings.CRON_SECRET

    if settings.ENV == "dev" and not expected:
        return

    if not expected:
        raise HTTPException(status_code=401, detail="Cron secret not configured")

    if secret != expected:
        raise HTTPException(status_code=401, detail="Invalid cron secret")


@router.post("/nightly-ingest", response_model=TaskAcceptedOut, status_code=202)
def trigger_nightly_ingest(_: None = Depends(verify_cron_secret)):
    result = celery_app.send_task(INGEST_TASK, queue="pipeline")
    logger.info(
        "Nightly ingest triggered over HTTP",
        extra={"step": "cron_trigger", "task_id": result.id},
    )
    return TaskAcceptedOut(task_id=result.id, task=INGEST_TASK)


@router.post("/monthly-publish", response_model=TaskAcceptedOut, status_code=202)
def trigger_monthly_publish(
    batch_type: BatchType = BatchType.MONTHLY,
    _: None = Depends(verify_cron_secret),
):
    result = celery_app.send_task(
        PUBLISH_TASK,
        kwargs={"batch_type": batch_type.value},
        queue="pipeline",
    )
    logger.info(
        "%s publish triggered over HTTP",
        batch_type.value,
        extra={"step": "cron_trigger", "task_id": result.id},
    )
    return TaskAcceptedOut(task_id=result.id, task=PUBLISH_TASK)
