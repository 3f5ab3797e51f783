"""
FileTransfer module for the marker-file handshake used to exchange CSV batches with the ERP
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Protocol, TypeVar

T = TypeVar('T')

logger = logging.getLogger(__name__)

READY_ERP = "ReadyERP"
WAIT_CIS = "WaitCIS"
READY_CIS = "ReadyCIS"


class HandshakeTimeoutError(Exception):
    """Raised when the peer's ready marker does not appear in time"""
    pass


class TransferClient(Protocol):
    """Remote file operations the handshake needs; paths are full remote paths"""

    def exists(self, remote_path: str) -> bool: ...

    def list_files(self, remote_dir: str) -> List[str]: ...

    def upload(self, local_path: Path, remote_path: str) -> None: ...

    def download(self, remote_path: str, local_path: Path) -> None: ...

    def remove(self, remote_path: str) -> None: ...


@dataclass
class TransferOutcome:
    """Result of one handshake cycle"""
    direction: str
    remote_path: str
    success: bool = False
    files: List[str] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'direction': self.direction,
            'remote_path': self.remote_path,
            'success': self.success,
            'files': list(self.files),
            'error': self.error
        }


def transfer_with_retry(action: Callable[[], T], description: str, attempts: int = 3,
                        delay_seconds: float = 5, sleep: Callable[[float], None] = time.sleep) -> T:
    """
    Run a single file transfer with a fixed delay between attempts

    Args:
        action: Zero-argument callable doing one upload or download
        description: File being transferred, for log messages
        attempts: Total attempts including the first
        delay_seconds: Fixed wait between attempts, no jitter
        sleep: Sleep function

    Returns:
        Whatever the action returns

    Raises:
        Exception: The last fault once every attempt has failed
    """
    attempt = 0
    while True:
        try:
            return action()
        except Exception as e:
            attempt += 1
            logger.warning(f"Transfer failed for {description}. Attempt {attempt}/{attempts}. Error: {e}")
            if attempt >= attempts:
                raise
            sleep(delay_seconds)


class HandshakeTransfer:
    """
    Exchanges files with the ERP using three marker files in the remote root

    1. wait for the peer's ``ReadyERP``
    2. upload ``WaitCIS`` to claim the exchange
    3. move the batch
    4. remove ``WaitCIS`` and upload ``ReadyCIS``

    There is no rollback; a cycle that fails part way leaves whatever was
    already transferred in place.
    """

    def __init__(self, client: TransferClient, local_marker_dir: Path,
                 ready_timeout_seconds: float = 600, poll_interval_seconds: float = 2,
                 retry_attempts: int = 3, retry_delay_seconds: float = 5,
                 file_extension: str = ".csv",
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic):
        self.client = client
        self.local_marker_dir = Path(local_marker_dir)
        self.ready_timeout_seconds = ready_timeout_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self.retry_attempts = retry_attempts
        self.retry_delay_seconds = retry_delay_seconds
        self.file_extension = file_extension
        self._sleep = sleep
        self._clock = clock

    def wait_for_ready(self, remote_path: str) -> None:
        """
        Poll for the peer's ready marker

        Raises:
            HandshakeTimeoutError: If the marker does not appear within the timeout
        """
        marker = remote_path + READY_ERP
        logger.info(f"Waiting for {READY_ERP} file...")
        started = self._clock()

        while self._clock() - started < self.ready_timeout_seconds:
            if self.client.exists(marker):
                return
            self._sleep(self.poll_interval_seconds)

        logger.warning(f"Timeout waiting for {marker} to appear.")
        raise HandshakeTimeoutError(
            f"File {marker} did not appear within {self.ready_timeout_seconds} seconds."
        )

    def download_batch(self, remote_path: str, local_path: Path) -> TransferOutcome:
        """
        Download and remove every matching file in ``remote_path``

        Each remote file is deleted straight after it is downloaded. A failure
        between the two steps leaves the file on the peer, so a later run may
        download it again.

        Args:
            remote_path: Remote directory, ending with '/'
            local_path: Directory the files are written to

        Returns:
            TransferOutcome; failures are reported on it, never raised
        """
        outcome = TransferOutcome(direction="download", remote_path=remote_path)

        def transfer_files() -> None:
            logger.info("Downloading files...")
            local_dir = Path(local_path)
            local_dir.mkdir(parents=True, exist_ok=True)

            for name in self.client.list_files(remote_path):
                if not name.endswith(self.file_extension):
                    continue
                remote_file = remote_path + name
                local_file = local_dir / name

                def fetch_and_remove() -> None:
                    self.client.download(remote_file, local_file)
                    self.client.remove(remote_file)

                self._with_retry(fetch_and_remove, remote_file)
                outcome.files.append(name)
                logger.info(f"{name} downloaded successfully.")

        return self._run_cycle(outcome, transfer_files)

    def upload_batch(self, remote_path: str, local_path: Path,
                     run_date: Optional[datetime] = None) -> TransferOutcome:
        """
        Upload today's outbound files, routing orders and master data separately

        Files are read from ``<local_path>/Outbound/<yyyyMMdd>/``. Names starting
        with ``ORD`` go to ``<remote_path>Inbound/Orders/``; everything else goes
        to ``<remote_path>Inbound/MasterData/``.
        A missing batch directory fails the cycle before ``ReadyCIS`` is uploaded.

        Returns:
            TransferOutcome; failures are reported on it, never raised
        """
        outcome = TransferOutcome(direction="upload", remote_path=remote_path)
        source_dir = Path(local_path) / "Outbound" / (run_date or datetime.now()).strftime("%Y%m%d")

        def transfer_files() -> None:
            logger.info("Uploading files...")
            if not source_dir.is_dir():
                raise FileNotFoundError(f"Outbound directory not found: {source_dir}")

            for local_file in sorted(source_dir.glob(f"*{self.file_extension}")):
                remote_file = self.upload_destination(remote_path, local_file.name)
                self._with_retry(lambda: self.client.upload(local_file, remote_file), str(local_file))
                outcome.files.append(local_file.name)
                logger.info(f"{local_file.name} uploaded successfully.")

        return self._run_cycle(outcome, transfer_files)

    @staticmethod
    def upload_destination(remote_path: str, file_name: str) -> str:
        folder = "Orders" if file_name.startswith("ORD") else "MasterData"
        return f"{remote_path}Inbound/{folder}/{file_name}"

    def _run_cycle(self, outcome: TransferOutcome, transfer_files: Callable[[], None]) -> TransferOutcome:
        remote_path = outcome.remote_path
        try:
            self.wait_for_ready(remote_path)

            logger.info(f"Uploading {WAIT_CIS} handshake file...")
            self._with_retry(
                lambda: self.client.upload(self._local_marker(WAIT_CIS), remote_path + WAIT_CIS),
                WAIT_CIS
            )

            transfer_files()

            logger.info(f"Finalizing {outcome.direction}: removing {WAIT_CIS} and uploading {READY_CIS}...")
            if self.client.exists(remote_path + WAIT_CIS):
                self.client.remove(remote_path + WAIT_CIS)
            self._with_retry(
                lambda: self.client.upload(self._local_marker(READY_CIS), remote_path + READY_CIS),
                READY_CIS
            )

            outcome.success = True
            logger.info(f"{outcome.direction.capitalize()} process completed successfully.")
        except Exception as e:
            outcome.error = f"{type(e).__name__}: {e}"
            logger.error(f"Error occurred during file {outcome.direction} process: {e}")

        return outcome

    def _with_retry(self, action: Callable[[], T], description: str) -> T:
        return transfer_with_retry(
            action,
            description,
            attempts=self.retry_attempts,
            delay_seconds=self.retry_delay_seconds,
            sleep=self._sleep
        )

    def _local_marker(self, name: str) -> Path:
        """Local marker file to upload, created empty if it does not exist yet"""
        marker = self.local_marker_dir / name
        if not marker.exists():
            marker.parent.mkdir(parents=True, exist_ok=True)
            marker.touch()
        return marker
