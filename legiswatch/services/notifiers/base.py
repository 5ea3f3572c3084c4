"""Notifier interface."""
from typing import Literal, Protocol

from ...core.errors import NotificationError

Urgency = Literal["low", "normal", "high"]


class Notifier(Protocol):
    """Protocol for administrator notification channels."""

    def send_summary(
        self,
        recipient: str,
        subject: str,
        body: str,
        scope: str = "ALL",
        urgency: Urgency = "normal",
    ) -> bool:
        """Deliver one summary message to one recipient.

        Args:
            recipient: Address of the administrator.
            subject: Subject line; implementations may prefix it.
            body: Plain-text message body.
            scope: Jurisdiction scope the summary covers ("ALL" or a state code).
            urgency: Delivery urgency hint.

        Returns:
            True when the message was accepted for delivery.

        Raises:
            NotificationError: If the notification fails to send.
        """
        ...


__all__ = ["Notifier", "NotificationError", "Urgency"]
