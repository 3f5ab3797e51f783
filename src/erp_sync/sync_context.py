"""
Per-run records shared by the sync components: tenant access, endpoint descriptors and run context
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple

from .config_loader import SyncSettings
from .deadline import Deadline
from .retry_policy import RetryPolicy
from .token_manager import TokenCredentials, TokenManager


@dataclass(frozen=True)
class TenantAccess:
    """Credentials and paths for one tenant, loaded once per run and never mutated"""
    tenant_code: str
    token_url: str
    api_root_url: str
    client_id: str
    client_secret: str
    scope: str
    grant_type: str
    catalog: str
    day_offset: int = 0
    sftp_host: str = ""
    sftp_user: str = ""
    sftp_password: str = ""
    sftp_remote_path: str = ""
    sftp_local_path: str = ""
    email_sender: str = ""
    email_recipients: Tuple[str, ...] = ()

    def token_credentials(self) -> TokenCredentials:
        return TokenCredentials(
            token_url=self.token_url,
            client_id=self.client_id,
            client_secret=self.client_secret,
            scope=self.scope,
            grant_type=self.grant_type
        )

    def __repr__(self) -> str:
        return f"TenantAccess(tenant_code={self.tenant_code!r}, catalog={self.catalog!r})"


@dataclass(frozen=True)
class EndpointDescriptor:
    """One (table, endpoint, filter, batch size) unit of synchronisation work"""
    table_name: str
    endpoint: str
    filter_template: str
    batch_size: int


@dataclass
class SyncContext:
    """
    Everything one tenant run threads through the core components

    The token lives here rather than in a module-level singleton so two
    tenant runs never share credentials.
    """
    tenant: TenantAccess
    deadline: Deadline
    token_manager: TokenManager
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)

    @classmethod
    def start(cls, tenant: TenantAccess, settings: Optional[SyncSettings] = None) -> 'SyncContext':
        """
        Create the context for a new run, starting the run-wide deadline now

        Args:
            tenant: Tenant the run is for
            settings: Run settings; defaults apply when omitted

        Returns:
            Fresh SyncContext with no token held yet
        """
        timeout_minutes = settings.executor.global_timeout_minutes if settings else 30
        token_timeout = settings.executor.token_timeout_seconds if settings else 30

        if settings:
            retry_policy = RetryPolicy(
                max_retries=settings.retries.max_attempts,
                backoff_base=settings.retries.backoff_base,
                max_jitter_ms=settings.retries.max_jitter_ms
            )
        else:
            retry_policy = RetryPolicy()

        return cls(
            tenant=tenant,
            deadline=Deadline(timeout_minutes * 60),
            token_manager=TokenManager(retry_policy=retry_policy, request_timeout_seconds=token_timeout),
            retry_policy=retry_policy
        )

    def ensure_token(self, force: bool = False, deadline: Optional[Deadline] = None) -> str:
        """Make sure a usable token is held and return its value"""
        token = self.token_manager.ensure_token(
            self.tenant.token_credentials(),
            deadline or self.deadline,
            force=force
        )
        return token.value
