"""
SFTPClient module for remote file operations over paramiko
"""

import logging
import stat
from pathlib import Path
from typing import List, Optional

import paramiko

logger = logging.getLogger(__name__)


class SFTPConnectionError(Exception):
    """Raised when the SFTP session cannot be established"""
    pass


class SFTPTransferClient:
    """
    Password-authenticated SFTP session for one transfer cycle

    Use as a context manager so the transport is always closed.
    """

    def __init__(self, host: str, username: str, password: str, port: int = 22,
                 timeout_seconds: float = 30):
        self.host = host
        self.username = username
        self.password = password
        self.port = port
        self.timeout_seconds = timeout_seconds
        self._transport: Optional[paramiko.Transport] = None
        self._sftp: Optional[paramiko.SFTPClient] = None

    def connect(self) -> 'SFTPTransferClient':
        """
        Open the SSH transport and SFTP channel

        Raises:
            SFTPConnectionError: If the host is unreachable or rejects the login
        """
        try:
            self._transport = paramiko.Transport((self.host, self.port))
            self._transport.banner_timeout = self.timeout_seconds
            self._transport.connect(username=self.username, password=self.password)
            self._sftp = paramiko.SFTPClient.from_transport(self._transport)
            self._sftp.get_channel().settimeout(self.timeout_seconds)
        except (paramiko.SSHException, OSError) as e:
            self.close()
            logger.error(f"SFTP connection to {self.host} failed. Cannot proceed.")
            raise SFTPConnectionError(f"Failed to connect to {self.host}:{self.port}: {e}")

        logger.info(f"Connected to SFTP server at {self.host}")
        return self

    def close(self) -> None:
        if self._sftp is not None:
            self._sftp.close()
            self._sftp = None
        if self._transport is not None:
            self._transport.close()
            self._transport = None

    def __enter__(self) -> 'SFTPTransferClient':
        return self.connect()

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    @property
    def sftp(self) -> paramiko.SFTPClient:
        if self._sftp is None:
            raise SFTPConnectionError("SFTP session is not connected")
        return self._sftp

    def exists(self, remote_path: str) -> bool:
        try:
            self.sftp.stat(remote_path)
        except FileNotFoundError:
            return False
        return True

    def list_files(self, remote_dir: str) -> List[str]:
        """Names of the regular files in ``remote_dir``, directories excluded"""
        return [
            entry.filename for entry in self.sftp.listdir_attr(remote_dir)
            if entry.st_mode is not None and stat.S_ISREG(entry.st_mode)
        ]

    def upload(self, local_path: Path, remote_path: str) -> None:
        self.sftp.put(str(local_path), remote_path)
        logger.debug(f"Uploaded {local_path} to {remote_path}")

    def download(self, remote_path: str, local_path: Path) -> None:
        self.sftp.get(remote_path, str(local_path))
        logger.debug(f"Downloaded {remote_path} to {local_path}")

    def remove(self, remote_path: str) -> None:
        self.sftp.remove(remote_path)
        logger.debug(f"Deleted {remote_path}")
