"""Administrator notification channels."""
import logging

from ...core.config import Settings, get_settings
from .base import NotificationError, Notifier
from .email import EmailNotifier
from .log import LogNotifier

logger = logging.getLogger(__name__)


def build_notifier(settings: Settings | None = None) -> Notifier:
    """SMTP when configured, otherwise log-only."""
    settings = settings or get_settings()
    if not settings.smtp_configured:
        logger.warning(
            "SMTP not configured; notifications will only be logged",
            extra={"step": "notify"},
        )
        return LogNotifier()

    return EmailNotifier(
        host=settings.SMTP_HOST,
        port=settings.SMTP_PORT,
        from_address=settings.EMAIL_FROM_ADDRESS,
        username=settings.SMTP_USERNAME,
        password=settings.SMTP_PASSWORD,
        use_tls=settings.SMTP_USE_TLS,
        subject_prefix=settings.EMAIL_SUBJECT_PREFIX,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
    )


__all__ = ["EmailNotifier", "LogNotifier", "NotificationError", "Notifier", "build_notifier"]
