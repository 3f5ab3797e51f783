"""
Notifier module for end-of-run email notifications
"""

import logging
import smtplib
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from enum import Enum
from pathlib import Path
from typing import Optional, Protocol, Sequence

logger = logging.getLogger(__name__)


class NotificationError(Exception):
    """Raised when a notification cannot be delivered"""
    pass


class Severity(Enum):
    NORMAL = "normal"
    HIGH = "high"


class Notifier(Protocol):
    def notify(self, recipients: Sequence[str], subject: str, html_body: str,
               attachments: Sequence[Path] = (), severity: Severity = Severity.NORMAL) -> None: ...


class LoggingNotifier:
    """Writes notifications to the log instead of sending them; used when email is skipped"""

    def notify(self, recipients: Sequence[str], subject: str, html_body: str,
               attachments: Sequence[Path] = (), severity: Severity = Severity.NORMAL) -> None:
        log = logger.warning if severity == Severity.HIGH else logger.info
        log(f"Notification [{severity.value}] to {', '.join(recipients) or 'nobody'}: {subject}")


class SmtpNotifier:
    """Sends HTML email over SMTP with optional attachments"""

    def __init__(self, host: str, port: int = 587, sender: str = "",
                 username: Optional[str] = None, password: Optional[str] = None,
                 use_tls: bool = True, timeout_seconds: float = 60):
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout_seconds = timeout_seconds

    def build_message(self, recipients: Sequence[str], subject: str, html_body: str,
                      attachments: Sequence[Path] = (), severity: Severity = Severity.NORMAL) -> MIMEMultipart:
        msg = MIMEMultipart()
        msg['From'] = self.sender
        msg['To'] = ", ".join(recipients)
        msg['Subject'] = subject
        if severity == Severity.HIGH:
            msg['Importance'] = 'High'
            msg['X-Priority'] = '1'

        msg.attach(MIMEText(html_body, 'html'))

        for attachment in attachments:
            path = Path(attachment)
            if not path.exists():
                logger.warning(f"Attachment not found, skipping: {path}")
                continue
            part = MIMEApplication(path.read_bytes(), Name=path.name)
            part['Content-Disposition'] = f'attachment; filename="{path.name}"'
            msg.attach(part)

        return msg

    def notify(self, recipients: Sequence[str], subject: str, html_body: str,
               attachments: Sequence[Path] = (), severity: Severity = Severity.NORMAL) -> None:
        """
        Send one email to every recipient

        Raises:
            NotificationError: If there are no recipients or the SMTP exchange fails
        """
        if not recipients:
            raise NotificationError(f"No recipients configured for '{subject}'")

        msg = self.build_message(recipients, subject, html_body, attachments, severity)

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout_seconds) as server:
                if self.use_tls:
                    server.starttls()
                if self.username:
                    server.login(self.username, self.password or "")
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"Failed to send email '{subject}': {e}")

        logger.info(f"Email sent successfully to {', '.join(recipients)}")
