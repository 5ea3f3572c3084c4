"""Email notifier implementation using SMTP."""
import smtplib
from email.message import EmailMessage
from typing import Optional

from .base import NotificationError, Urgency

_PRIORITY_HEADERS = {"high": "1", "normal": "3", "low": "5"}


class EmailNotifier:
    """Sends summaries via SMTP email."""

    def __init__(
        self,
        host: str,
        port: int,
        from_address: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        subject_prefix: str = "LegisWatch",
        timeout: int = 30,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_address = from_address
        self.use_tls = use_tls
        self.subject_prefix = subject_prefix or "LegisWatch"
        self.timeout = timeout

    def build_message(
        self,
        recipient: str,
        subject: str,
        body: str,
        scope: str = "ALL",
        urgency: Urgency = "normal",
    ) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = f"{self.subject_prefix} | {subject}"
        message["From"] = self.from_address
        message["To"] = recipient
        message["X-Priority"] = _PRIORITY_HEADERS.get(urgency, "3")
        message["X-LegisWatch-Scope"] = scope
        message.set_content(body or "")
        return message

    def send_summary(
        self,
        recipient: str,
        subject: str,
        body: str,
        scope: str = "ALL",
        urgency: Urgency = "normal",
    ) -> bool:
        """Send one plain-text summary email.

        Raises:
            NotificationError: If the recipient is missing or SMTP fails.
        """
        if not recipient:
            raise NotificationError("Email notification failed: no recipient")

        message = self.build_message(recipient, subject, body, scope, urgency)

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()

                if self.username and self.password:
                    server.login(self.username, self.password)

                server.send_message(message)

        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationError(f"Email notification failed: {exc}") from exc

        return True
