import logging

from .base import Urgency

logger = logging.getLogger(__name__)


class LogNotifier:
    """Writes summaries to the log. Used when SMTP is not configured."""

    def send_summary(
        self,
        recipient: str,
        subject: str,
        body: str,
        scope: str = "ALL",
        urgency: Urgency = "normal",
    ) -> bool:
        logger.info(
            "Notification for %s: %s",
            recipient,
            subject,
            extra={"step": "notify", "scope": scope, "urgency": urgency, "body": body},
        )
        return True
