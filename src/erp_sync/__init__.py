"""
ERP sync adapter package
Moves business records between a paginated ERP API, per-tenant DuckDB catalogs and an SFTP peer
"""

from .config_loader import ConfigLoader, ConfigurationError, EnvironmentVariableError, SyncSettings
from .deadline import Deadline, RunTimeoutError, CallTimeoutError
from .retry_policy import RetryPolicy, TransientHTTPError, is_transient
from .token_manager import TokenManager, AccessToken, TokenCredentials, AuthenticationError
from .http_client import HTTPClient, APIRequest, APIResponse, PermanentAPIError, UnauthorizedError
from .column_mapping import ColumnMapping, ColumnRule, MappingError
from .payload_normalizer import normalize_payload, PayloadFormatError
from .pagination_strategy import PaginationCursor
from .database_manager import DatabaseManager, DatabaseConnectionError, TenantNotFoundError
from .sync_context import SyncContext, TenantAccess, EndpointDescriptor
from .fetch_engine import FetchLoadEngine, SyncState, EndpointResult
from .file_transfer import HandshakeTransfer, HandshakeTimeoutError, TransferOutcome, transfer_with_retry
from .notifier import Notifier, SmtpNotifier, LoggingNotifier, Severity, NotificationError
from .run_summary import RunSummaryGenerator

__all__ = [
    'ConfigLoader',
    'ConfigurationError',
    'EnvironmentVariableError',
    'SyncSettings',
    'Deadline',
    'RunTimeoutError',
    'CallTimeoutError',
    'RetryPolicy',
    'TransientHTTPError',
    'is_transient',
    'TokenManager',
    'AccessToken',
    'TokenCredentials',
    'AuthenticationError',
    'HTTPClient',
    'APIRequest',
    'APIResponse',
    'PermanentAPIError',
    'UnauthorizedError',
    'ColumnMapping',
    'ColumnRule',
    'MappingError',
    'normalize_payload',
    'PayloadFormatError',
    'PaginationCursor',
    'DatabaseManager',
    'DatabaseConnectionError',
    'TenantNotFoundError',
    'SyncContext',
    'TenantAccess',
    'EndpointDescriptor',
    'FetchLoadEngine',
    'SyncState',
    'EndpointResult',
    'HandshakeTransfer',
    'HandshakeTimeoutError',
    'TransferOutcome',
    'transfer_with_retry',
    'Notifier',
    'SmtpNotifier',
    'LoggingNotifier',
    'Severity',
    'NotificationError',
    'RunSummaryGenerator'
]
