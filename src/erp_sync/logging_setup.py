"""
Logging setup module for the per-run log file attached to notifications
"""

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
PACKAGE_LOGGER = 'erp_sync'

# Prefect routes get_run_logger() records through these two loggers
RUN_LOGGERS = (PACKAGE_LOGGER, 'prefect.flow_runs', 'prefect.task_runs')


def log_file_path(log_dir: Path, tenant_code: str, direction: str,
                  run_date: Optional[datetime] = None) -> Path:
    """Path of the run log, e.g. ``logs/inbound-DEMO-log-20240101.txt``"""
    safe_tenant = re.sub(r'[^A-Za-z0-9_.-]', '', tenant_code)
    stamp = (run_date or datetime.now()).strftime('%Y%m%d')
    return Path(log_dir) / f"{direction.lower()}-{safe_tenant}-log-{stamp}.txt"


def configure_run_logging(log_dir: Path, tenant_code: str, direction: str,
                          level: str = "INFO", run_date: Optional[datetime] = None) -> logging.FileHandler:
    """
    Send package, flow and task log records to the console and to the run's log file

    Args:
        log_dir: Directory for log files, created if missing
        tenant_code: Tenant the run is for
        direction: ``Inbound`` or ``Outbound``
        level: Logging level name
        run_date: Date stamped into the file name, defaults to today

    Returns:
        The file handler; pass it to ``close_run_logging`` when the run ends
    """
    path = log_file_path(log_dir, tenant_code, direction, run_date)
    path.parent.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler()]
    )

    handler = logging.FileHandler(path, encoding='utf-8')
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    logging.getLogger(PACKAGE_LOGGER).setLevel(level)
    for name in RUN_LOGGERS:
        logging.getLogger(name).addHandler(handler)
    return handler


def close_run_logging(handler: logging.FileHandler) -> None:
    for name in RUN_LOGGERS:
        logging.getLogger(name).removeHandler(handler)
    handler.close()
