"""
Test suite for SFTPTransferClient component
Following AAA pattern and descriptive naming
"""

import stat
import pytest
import paramiko
from pathlib import Path
from unittest.mock import Mock, patch
from erp_sync.sftp_client import SFTPTransferClient, SFTPConnectionError


def file_entry(name: str, mode: int) -> Mock:
    entry = Mock()
    entry.filename = name
    entry.st_mode = mode
    return entry


class TestSFTPTransferClient:
    """Test suite for the paramiko-backed transfer client"""

    @patch('erp_sync.sftp_client.paramiko.SFTPClient.from_transport')
    @patch('erp_sync.sftp_client.paramiko.Transport')
    def test_context_manager_connects_and_closes(self, mock_transport_cls, mock_from_transport):
        # Arrange
        transport = mock_transport_cls.return_value
        sftp = mock_from_transport.return_value

        # Act
        with SFTPTransferClient("sftp.example.com", "cis", "secret", port=2222) as client:
            connected = client.sftp

        # Assert
        mock_transport_cls.assert_called_once_with(("sftp.example.com", 2222))
        transport.connect.assert_called_once_with(username="cis", password="secret")
        assert connected is sftp
        sftp.close.assert_called_once()
        transport.close.assert_called_once()

    @patch('erp_sync.sftp_client.paramiko.Transport')
    def test_connect_with_rejected_login_raises_connection_error(self, mock_transport_cls):
        # Arrange
        transport = mock_transport_cls.return_value
        transport.connect.side_effect = paramiko.AuthenticationException("bad password")
        client = SFTPTransferClient("sftp.example.com", "cis", "wrong")

        # Act & Assert
        with pytest.raises(SFTPConnectionError) as exc_info:
            client.connect()

        assert "sftp.example.com:22" in str(exc_info.value)
        transport.close.assert_called_once()

    @patch('erp_sync.sftp_client.paramiko.Transport')
    def test_connect_with_unreachable_host_raises_connection_error(self, mock_transport_cls):
        mock_transport_cls.side_effect = OSError("Name or service not known")

        with pytest.raises(SFTPConnectionError):
            SFTPTransferClient("nowhere.invalid", "cis", "secret").connect()

    def test_operations_before_connect_raise(self):
        client = SFTPTransferClient("sftp.example.com", "cis", "secret")

        with pytest.raises(SFTPConnectionError):
            client.exists("/erp/ReadyERP")


class TestSFTPFileOperations:
    """Test suite for file operations on a connected session"""

    def setup_method(self):
        self.sftp = Mock()
        self.client = SFTPTransferClient("sftp.example.com", "cis", "secret")
        self.client._sftp = self.sftp

    def test_exists_returns_false_for_missing_file(self):
        # Arrange
        self.sftp.stat.side_effect = FileNotFoundError("no such file")

        # Act & Assert
        assert self.client.exists("/erp/ReadyERP") is False

    def test_exists_returns_true_when_stat_succeeds(self):
        assert self.client.exists("/erp/ReadyERP") is True
        self.sftp.stat.assert_called_once_with("/erp/ReadyERP")

    def test_list_files_excludes_directories(self):
        # Arrange
        self.sftp.listdir_attr.return_value = [
            file_entry("ITEMS.csv", stat.S_IFREG | 0o644),
            file_entry("RouteSettlements", stat.S_IFDIR | 0o755),
            file_entry("ReadyERP", stat.S_IFREG | 0o644),
        ]

        # Act
        names = self.client.list_files("/erp/Outbound/")

        # Assert
        assert names == ["ITEMS.csv", "ReadyERP"]

    def test_upload_download_and_remove_delegate_to_session(self):
        # Act
        self.client.upload(Path("/tmp/WaitCIS"), "/erp/WaitCIS")
        self.client.download("/erp/Outbound/ITEMS.csv", Path("/tmp/ITEMS.csv"))
        self.client.remove("/erp/Outbound/ITEMS.csv")

        # Assert
        self.sftp.put.assert_called_once_with("/tmp/WaitCIS", "/erp/WaitCIS")
        self.sftp.get.assert_called_once_with("/erp/Outbound/ITEMS.csv", "/tmp/ITEMS.csv")
        self.sftp.remove.assert_called_once_with("/erp/Outbound/ITEMS.csv")
