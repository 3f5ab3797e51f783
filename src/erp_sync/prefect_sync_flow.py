"""
Prefect Orchestration for the ERP sync pipeline
Runs one tenant through load tenant -> purge -> fetch/load -> CSV export -> file exchange -> CSV load -> notify

python -m erp_sync.prefect_sync_flow --config configs/erp_sync.toml --tenant DEMO --group ALL --direction Inbound --run
"""

import sys
import argparse
import traceback
from pathlib import Path
from typing import Dict, List, Any, Optional
from datetime import datetime, timezone

# Prefect imports
from prefect import flow, task, get_run_logger

from erp_sync.config_loader import ConfigLoader, ConfigurationError, EnvironmentVariableError, SyncSettings
from erp_sync.database_manager import DatabaseManager, DatabaseConnectionError
from erp_sync.fetch_engine import FetchLoadEngine
from erp_sync.file_transfer import HandshakeTransfer, TransferOutcome
from erp_sync.http_client import HTTPClient
from erp_sync.logging_setup import configure_run_logging, close_run_logging
from erp_sync.notifier import LoggingNotifier, Notifier, NotificationError, Severity, SmtpNotifier
from erp_sync.run_summary import RunSummaryGenerator
from erp_sync.sftp_client import SFTPTransferClient
from erp_sync.sync_context import EndpointDescriptor, SyncContext, TenantAccess

DIRECTIONS = ("Inbound", "Outbound")
PURGE_PREFIX = "HFS"

# ===================================================================
# PREFECT TASKS - Individual steps of a tenant run
# ===================================================================

@task(
    name="validate_configuration_and_environment",
    description="Validate TOML configuration and environment variables",
    retries=0  # Configuration validation should not retry
)
def validate_configuration_and_environment(config_path: str) -> SyncSettings:
    """
    Validate TOML configuration and environment variables

    Args:
        config_path: Path to TOML configuration file

    Returns:
        Loaded SyncSettings
    """
    logger = get_run_logger()
    logger.info(f"Validating configuration: {config_path}")

    try:
        settings = ConfigLoader.load_toml_config(Path(config_path))
        if not settings.skip_steps.skip_email:
            ConfigLoader.validate_environment_variables(settings)

        logger.info("Configuration and environment validation passed")
        return settings

    except (ConfigurationError, EnvironmentVariableError, FileNotFoundError) as e:
        logger.error(f"Configuration validation failed: {e}")
        raise


@task(
    name="load_tenant_access",
    description="Read the tenant's credentials and paths from the control database",
    retries=0  # A missing tenant will not appear on retry
)
def load_tenant_access(control_db_path: str, table_prefix: str, tenant_code: str,
                       production: bool = True) -> TenantAccess:
    logger = get_run_logger()
    logger.info(f"Attempting to get tenant access for {tenant_code}")

    db_manager = DatabaseManager(Path(control_db_path), table_prefix)
    return db_manager.get_tenant_access(tenant_code, production)


@task(
    name="load_endpoint_list",
    description="Load the endpoint descriptors for a run group and direction",
    retries=1,
    retry_delay_seconds=10
)
def load_endpoint_list(catalog_db_path: str, table_prefix: str, group: str,
                       direction: str) -> List[EndpointDescriptor]:
    logger = get_run_logger()

    db_manager = DatabaseManager(Path(catalog_db_path), table_prefix)
    endpoints = db_manager.get_api_list(group, direction)

    logger.info(f"Retrieved {len(endpoints)} APIs for execution")
    return endpoints


@task(
    name="purge_stale_records",
    description="Delete previously loaded rows so the run reloads from scratch",
    retries=1,
    retry_delay_seconds=10
)
def purge_stale_records(catalog_db_path: str, table_prefix: str, group: str,
                        direction: str) -> Dict[str, int]:
    """
    Purge target tables before loading

    A group naming a single ``HFS*`` table purges just that table; any other
    group purges every ``HFS*`` table listed for the group in one transaction.

    Returns:
        Rows deleted per table
    """
    logger = get_run_logger()
    db_manager = DatabaseManager(Path(catalog_db_path), table_prefix)

    if group.upper().startswith(PURGE_PREFIX):
        logger.info(f"Purging single table {group}")
        return {group: db_manager.delete_single_table(group)}

    logger.info(f"Purging {PURGE_PREFIX}* tables for {direction} group {group}")
    return db_manager.delete_tables_with_prefix(PURGE_PREFIX, direction, group)


@task(
    name="sync_endpoints",
    description="Run the paginated fetch-transform-load loop over every endpoint",
    retries=0  # Transient faults are retried per request inside the engine
)
def sync_endpoints(tenant: TenantAccess, endpoints: List[EndpointDescriptor],
                   catalog_db_path: str, settings: SyncSettings) -> List[Dict[str, Any]]:
    """
    Synchronise the endpoints under one run-wide deadline

    Args:
        tenant: Tenant being synchronised
        endpoints: Endpoint descriptors in load order
        catalog_db_path: Tenant catalog database
        settings: Run settings

    Returns:
        Endpoint results as dictionaries
    """
    logger = get_run_logger()
    logger.info(f"Synchronising {len(endpoints)} endpoints for {tenant.tenant_code}")

    context = SyncContext.start(tenant, settings)
    http_client = HTTPClient()
    engine = FetchLoadEngine(
        context=context,
        http_client=http_client,
        database_manager=DatabaseManager(Path(catalog_db_path), settings.database.table_prefix),
        max_iterations=settings.executor.max_iterations,
        request_timeout_seconds=settings.executor.request_timeout_seconds
    )

    try:
        results = engine.run_endpoints(endpoints, stop_on_failure=settings.executor.stop_on_failure)
    finally:
        http_client.close_connection()

    succeeded = len([r for r in results if r.succeeded])
    logger.info(f"API execution completed: {succeeded}/{len(results)} endpoints succeeded")
    return [r.to_dict() for r in results]


@task(
    name="exchange_files",
    description="Exchange CSV batches with the ERP using the marker-file handshake",
    retries=0  # Per-file retries happen inside the handshake
)
def exchange_files(tenant: TenantAccess, direction: str, settings: SyncSettings) -> List[Dict[str, Any]]:
    """
    Download the ERP's outbound batches or upload this side's batch

    Inbound runs download from ``<remote>Outbound/`` and
    ``<remote>Outbound/RouteSettlements/`` into ``<local>Inbound/``. Outbound
    runs upload today's batch.

    Returns:
        One transfer outcome dictionary per handshake cycle
    """
    logger = get_run_logger()
    transfer_settings = settings.transfer
    remote_root = tenant.sftp_remote_path

    if direction == "Inbound":
        cycles = [remote_root + "Outbound/", remote_root + "Outbound/RouteSettlements/"]
    else:
        cycles = [remote_root]

    outcomes = []
    try:
        with SFTPTransferClient(tenant.sftp_host, tenant.sftp_user, tenant.sftp_password,
                                port=transfer_settings.port) as client:
            handshake = HandshakeTransfer(
                client,
                local_marker_dir=transfer_settings.local_marker_dir,
                ready_timeout_seconds=transfer_settings.ready_timeout_seconds,
                poll_interval_seconds=transfer_settings.poll_interval_seconds,
                retry_attempts=transfer_settings.retry_attempts,
                retry_delay_seconds=transfer_settings.retry_delay_seconds,
                file_extension=transfer_settings.file_extension
            )

            for remote_path in cycles:
                if direction == "Inbound":
                    outcome = handshake.download_batch(remote_path, Path(tenant.sftp_local_path) / "Inbound")
                else:
                    outcome = handshake.upload_batch(remote_path, Path(tenant.sftp_local_path))
                outcomes.append(outcome)

                if outcome.success:
                    logger.info(f"File {outcome.direction} from {remote_path} completed: {len(outcome.files)} files")
                else:
                    logger.error(f"File {outcome.direction} for {remote_path} failed: {outcome.error}")

    except Exception as e:
        # The session could not be opened; report every remaining cycle as failed
        logger.error(f"File transfer failed before the handshake started: {e}")
        for remote_path in cycles[len(outcomes):]:
            outcomes.append(TransferOutcome(
                direction="download" if direction == "Inbound" else "upload",
                remote_path=remote_path,
                error=f"{type(e).__name__}: {e}"
            ))

    return [outcome.to_dict() for outcome in outcomes]


@task(
    name="export_csv_files",
    description="Write the CIS_* tables as today's pipe-delimited outbound batch",
    retries=0
)
def export_csv_files(catalog_db_path: str, table_prefix: str, local_path: str) -> Dict[str, int]:
    """
    Export the outbound batch that the upload step sends to the ERP

    Returns:
        Rows written per file name
    """
    logger = get_run_logger()
    db_manager = DatabaseManager(Path(catalog_db_path), table_prefix)

    exported = db_manager.export_tables_to_csv(Path(local_path))
    logger.info(f"CSV export completed: {len(exported)} files written")
    return exported


@task(
    name="load_inbound_csv_files",
    description="Load downloaded CSV files into their CISOUT_* tables",
    retries=0
)
def load_inbound_csv_files(catalog_db_path: str, table_prefix: str, local_path: str,
                           extension: str = ".csv") -> Dict[str, int]:
    """
    Load the files sitting in ``<local_path>/Inbound/``

    Files already recorded in their table are skipped, so files left over from
    earlier runs add nothing.

    Returns:
        Rows added per file name
    """
    logger = get_run_logger()
    source_dir = Path(local_path) / "Inbound"

    if not source_dir.is_dir():
        logger.info(f"No inbound directory at {source_dir}; nothing to load")
        return {}

    db_manager = DatabaseManager(Path(catalog_db_path), table_prefix)
    loaded = db_manager.load_csv_files(source_dir, extension)
    logger.info(f"Loaded {sum(loaded.values())} rows from {len(loaded)} inbound files")
    return loaded


@task(
    name="send_run_notification",
    description="Send the success/failure judgement with the run log attached",
    retries=0
)
def send_run_notification(summary: Dict[str, Any], tenant: TenantAccess, settings: SyncSettings,
                          log_path: Optional[str] = None) -> bool:
    """
    Notify the tenant's recipients of the run outcome

    Returns:
        True if the notification was handed to the channel
    """
    logger = get_run_logger()
    generator = RunSummaryGenerator()

    subject = generator.build_subject(
        summary['direction'], summary['tenant_code'], summary['run_succeeded'], datetime.now()
    )
    severity = Severity.NORMAL if summary['run_succeeded'] else Severity.HIGH
    attachments = [Path(log_path)] if log_path and Path(log_path).exists() else []
    if not attachments:
        logger.warning("No log file found for this run; notification sent without attachment")

    notifier = build_notifier(settings, tenant)
    try:
        notifier.notify(list(tenant.email_recipients), subject, generator.render_html(summary),
                        attachments, severity)
    except NotificationError as e:
        logger.error(f"Notification failed: {e}")
        return False

    logger.info(f"Email sent with subject: {subject}")
    return True


def build_notifier(settings: SyncSettings, tenant: TenantAccess) -> Notifier:
    """SMTP notifier from the [notification] settings, or a log-only notifier when email is skipped"""
    notification = settings.notification
    if settings.skip_steps.skip_email or not notification.get('smtp_host'):
        return LoggingNotifier()

    username_env = notification.get('username_env')
    password_env = notification.get('password_env')

    return SmtpNotifier(
        host=notification['smtp_host'],
        port=int(notification.get('smtp_port', 587)),
        sender=notification.get('sender') or tenant.email_sender,
        username=ConfigLoader.get_environment_value(username_env) if username_env else None,
        password=ConfigLoader.get_environment_value(password_env) if password_env else None,
        use_tls=bool(notification.get('use_tls', True))
    )


# ===================================================================
# PREFECT FLOWS - Main workflow orchestration
# ===================================================================

@flow(
    name="erp-sync-pipeline",
    description="Sync one tenant between the ERP API, its catalog database and the SFTP peer",
    version="1.0.0",
    log_prints=True
)
def erp_sync_flow(config_path: str, tenant_code: str = "DEMO", group: str = "ALL",
                  direction: str = "Inbound", exchange_files_enabled: bool = False) -> Dict[str, Any]:
    """
    Complete tenant sync workflow using Prefect orchestration

    Args:
        config_path: Path to TOML configuration file
        tenant_code: Tenant to run
        group: Run group, or a single ``HFS*`` table name
        direction: ``Inbound`` or ``Outbound``
        exchange_files_enabled: Run the SFTP handshake after loading; outbound runs
            also export the CIS_* tables as the batch to upload

    Returns:
        Run summary with ``pipeline_status`` SUCCESS or FAILED
    """
    logger = get_run_logger()
    logger.info(f"Starting {direction} sync for tenant {tenant_code}, group {group}")

    if direction not in DIRECTIONS:
        raise ValueError(f"Direction must be one of {DIRECTIONS}, got {direction!r}")

    run_results: Dict[str, Any] = {
        'tenant_code': tenant_code,
        'direction': direction,
        'endpoints': [],
        'transfers': [],
        'purged': {},
        'csv_exported': {},
        'csv_loaded': {},
        'errors': [],
        'start_time': datetime.now(timezone.utc),
        'end_time': None
    }
    settings = None
    tenant = None
    log_handler = None

    try:
        # Step 1: Settings, run log and tenant
        settings = validate_configuration_and_environment(config_path)
        log_handler = configure_run_logging(settings.log_dir, tenant_code, direction, settings.log_level)

        tenant = load_tenant_access(
            str(settings.database.control_db_path),
            settings.database.table_prefix,
            tenant_code,
            settings.database.production
        )
        catalog_db_path = str(settings.database.catalog_path(tenant.catalog))
        skip = settings.skip_steps

        # Step 2: Endpoint list
        endpoints: List[EndpointDescriptor] = []
        proceed = True
        if not skip.skip_api_list:
            endpoints = load_endpoint_list(catalog_db_path, settings.database.table_prefix, group, direction)
            if not endpoints:
                logger.warning(f"No APIs found for tenant {tenant_code}. Exiting process.")
                proceed = False
        else:
            logger.info("Skipping API list retrieval based on configuration.")

        if proceed:
            # Step 3: Purge
            if not skip.skip_delete_records:
                run_results['purged'] = purge_stale_records(
                    catalog_db_path, settings.database.table_prefix, group, direction
                )
            else:
                logger.info("Skipping record deletion based on configuration.")

            # Step 4: Fetch / transform / load
            if endpoints:
                run_results['endpoints'] = sync_endpoints(tenant, endpoints, catalog_db_path, settings)

            # Step 5: Outbound batch export
            if direction == "Outbound" and exchange_files_enabled:
                if not skip.skip_csv_export:
                    run_results['csv_exported'] = export_csv_files(
                        catalog_db_path, settings.database.table_prefix, tenant.sftp_local_path
                    )
                else:
                    logger.info("Skipping CSV export based on configuration.")

            # Step 6: File exchange
            if exchange_files_enabled and not skip.skip_transfer:
                run_results['transfers'] = exchange_files(tenant, direction, settings)

            # Step 7: Inbound file load
            if direction == "Inbound" and not skip.skip_transfer:
                run_results['csv_loaded'] = load_inbound_csv_files(
                    catalog_db_path, settings.database.table_prefix, tenant.sftp_local_path,
                    settings.transfer.file_extension
                )

    except Exception as e:
        logger.error(f"Error occurred during {direction.lower()} process: {e}")
        run_results['errors'].append(f"{type(e).__name__}: {e}")

    run_results['end_time'] = datetime.now(timezone.utc)
    summary = RunSummaryGenerator().generate_summary(run_results)

    # Step 8: Notify
    notified = False
    if tenant is not None and settings is not None:
        log_path = log_handler.baseFilename if log_handler else None
        notified = send_run_notification(summary, tenant, settings, log_path)
    else:
        logger.warning("Tenant access was not loaded; no notification sent.")

    if log_handler is not None:
        close_run_logging(log_handler)

    status = 'SUCCESS' if summary['run_succeeded'] else 'FAILED'
    logger.info(f"{direction} process finished with status {status}")

    return {
        'pipeline_status': status,
        'tenant_code': tenant_code,
        'direction': direction,
        'group': group,
        'summary': summary,
        'purged': run_results['purged'],
        'csv_exported': run_results['csv_exported'],
        'csv_loaded': run_results['csv_loaded'],
        'notified': notified
    }


# ===================================================================
# COMMAND LINE INTERFACE
# ===================================================================

def main():
    """Main execution function with CLI"""
    parser = argparse.ArgumentParser(
        description="Prefect ERP Sync Pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Load inbound data for a tenant
  erp-sync --config configs/erp_sync.toml --tenant DEMO --run

  # Load outbound data and upload today's batch to the ERP
  erp-sync --config configs/erp_sync.toml --tenant DEMO --direction Outbound --exchange-files --run

  # Reload a single table
  erp-sync --config configs/erp_sync.toml --tenant DEMO --group HFS_ITEMS --run

  # Validate configuration only
  erp-sync --config configs/erp_sync.toml --validate-only
        """
    )

    parser.add_argument("--config", required=True, help="Path to TOML configuration file")
    parser.add_argument("--tenant", default="DEMO", help="Tenant code")
    parser.add_argument("--group", default="ALL", help="Run group or single HFS table name")
    parser.add_argument("--direction", default="Inbound", choices=DIRECTIONS, help="Sync direction")
    parser.add_argument("--exchange-files", action="store_true",
                        help="Run the SFTP handshake after loading; outbound runs export the CIS_* batch first")
    parser.add_argument("--run", action="store_true", help="Run the complete pipeline")
    parser.add_argument("--validate-only", action="store_true", help="Only validate configuration")
    parser.add_argument("--verbose", action="store_true", help="Show tracebacks and endpoint details")

    args = parser.parse_args()

    try:
        if args.validate_only:
            print("Validating configuration and environment...")
            settings = ConfigLoader.load_toml_config(Path(args.config))
            ConfigLoader.validate_environment_variables(settings)
            print("Configuration validation passed!")
            print(f"Control database: {settings.database.control_db_path}")
            print(f"Catalog template: {settings.database.catalog_path_template}")
            print(f"Run timeout: {settings.executor.global_timeout_minutes} minutes")
            return 0

        elif args.run:
            result = erp_sync_flow(
                config_path=args.config,
                tenant_code=args.tenant,
                group=args.group,
                direction=args.direction,
                exchange_files_enabled=args.exchange_files
            )

            summary = result['summary']
            stats = summary['statistics']

            print("\n" + "=" * 70)
            print("PIPELINE EXECUTION SUMMARY")
            print("=" * 70)
            print(f"Status: {result['pipeline_status']}")
            print(f"Tenant: {result['tenant_code']} ({result['direction']}, group {result['group']})")
            print(f"Endpoints: {stats['completed_endpoints'] + stats['aborted_endpoints']}/{stats['total_endpoints']} succeeded")
            print(f"Rows inserted: {stats['total_rows_inserted']}")

            if args.verbose:
                for endpoint in summary['endpoint_details']:
                    print(f"  {endpoint['status'].upper()} {endpoint['table_name']}: {endpoint['rows_inserted']} rows")
                for transfer in summary['transfers']:
                    print(f"  {transfer['direction'].upper()} {transfer['remote_path']}: "
                          f"{'OK' if transfer['success'] else 'FAILED'}")
                for file_name, rows in {**result['csv_exported'], **result['csv_loaded']}.items():
                    print(f"  CSV {file_name}: {rows} rows")

            for error in summary['errors']:
                print(f"Error: {error}")

            print("=" * 70)
            return 0 if result['pipeline_status'] == 'SUCCESS' else 1

        else:
            parser.print_help()
            return 1

    except (ConfigurationError, EnvironmentVariableError, DatabaseConnectionError, FileNotFoundError) as e:
        print(f"\nExecution failed: {e}")
        if args.verbose:
            print(f"Traceback: {traceback.format_exc()}")
        return 1


if __name__ == "__main__":
    exit_code = main()
    sys.exit(exit_code)
