"""
Test suite for Notifier components
Following AAA pattern and descriptive naming
"""

import logging
import smtplib
import pytest
import tempfile
from pathlib import Path
from unittest.mock import patch
from erp_sync.notifier import SmtpNotifier, LoggingNotifier, NotificationError, Severity


class TestSmtpNotifier:
    """Test suite for SMTP email delivery"""

    def setup_method(self):
        self.notifier = SmtpNotifier(
            host="smtp.example.com",
            port=587,
            sender="erp-sync@example.com",
            username="mailer",
            password="secret"
        )

    @patch('smtplib.SMTP')
    def test_notify_sends_message_over_tls_with_login(self, mock_smtp):
        # Arrange
        server = mock_smtp.return_value.__enter__.return_value

        # Act
        self.notifier.notify(["ops@example.com", "it@example.com"], "Inbound Process SUCCESS", "<p>ok</p>")

        # Assert
        mock_smtp.assert_called_once_with("smtp.example.com", 587, timeout=60)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("mailer", "secret")
        msg = server.send_message.call_args.args[0]
        assert msg['To'] == "ops@example.com, it@example.com"
        assert msg['Subject'] == "Inbound Process SUCCESS"

    def test_notify_without_recipients_raises(self):
        with pytest.raises(NotificationError):
            self.notifier.notify([], "subject", "<p>body</p>")

    @patch('smtplib.SMTP')
    def test_notify_wraps_smtp_failures(self, mock_smtp):
        # Arrange
        mock_smtp.return_value.__enter__.return_value.send_message.side_effect = \
            smtplib.SMTPRecipientsRefused({"ops@example.com": (550, b"rejected")})

        # Act & Assert
        with pytest.raises(NotificationError) as exc_info:
            self.notifier.notify(["ops@example.com"], "subject", "<p>body</p>")

        assert "subject" in str(exc_info.value)

    @patch('smtplib.SMTP')
    def test_notify_wraps_connection_refused(self, mock_smtp):
        mock_smtp.side_effect = ConnectionRefusedError("refused")

        with pytest.raises(NotificationError):
            self.notifier.notify(["ops@example.com"], "subject", "<p>body</p>")

    def test_build_message_with_high_severity_sets_priority_headers(self):
        # Act
        msg = self.notifier.build_message(["ops@example.com"], "FAILURE", "<p>x</p>", severity=Severity.HIGH)

        # Assert
        assert msg['Importance'] == 'High'
        assert msg['X-Priority'] == '1'

    def test_build_message_attaches_existing_files_and_skips_missing(self):
        # Arrange
        with tempfile.TemporaryDirectory() as temp_dir:
            log_path = Path(temp_dir) / "inbound-DEMO-log-20240506.txt"
            log_path.write_text("run log")

            # Act
            msg = self.notifier.build_message(
                ["ops@example.com"], "subject", "<p>x</p>",
                attachments=[log_path, Path(temp_dir) / "missing.txt"]
            )

        # Assert
        parts = msg.get_payload()
        assert len(parts) == 2
        assert parts[1].get_filename() == "inbound-DEMO-log-20240506.txt"
        assert msg['Importance'] is None


class TestLoggingNotifier:

    def test_high_severity_logs_warning(self, caplog):
        with caplog.at_level(logging.INFO, logger="erp_sync.notifier"):
            LoggingNotifier().notify(["ops@example.com"], "Inbound Process FAILURE", "<p>x</p>",
                                     severity=Severity.HIGH)

        assert caplog.records[-1].levelno == logging.WARNING
        assert "Inbound Process FAILURE" in caplog.text
