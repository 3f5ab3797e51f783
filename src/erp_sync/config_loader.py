"""
ConfigLoader module for loading and validating the TOML run settings
"""

import os
import tomllib
from pathlib import Path
from dataclasses import dataclass, field
from typing import Dict, Any, List


class ConfigurationError(Exception):
    """Raised when configuration is invalid or incomplete"""
    pass


class EnvironmentVariableError(Exception):
    """Raised when required environment variables are missing"""
    pass


@dataclass
class DatabaseSettings:
    control_db_path: Path
    catalog_path_template: str
    table_prefix: str = "DSD"
    production: bool = True

    def catalog_path(self, catalog: str) -> Path:
        """Resolve the database file for a tenant catalog"""
        return Path(self.catalog_path_template.replace("{catalog}", catalog))


@dataclass
class ExecutorSettings:
    global_timeout_minutes: float = 30
    max_iterations: int = 100
    token_timeout_seconds: float = 30
    request_timeout_seconds: float = 300
    stop_on_failure: bool = False


@dataclass
class RetrySettings:
    max_attempts: int = 3
    backoff_base: float = 2.0
    max_jitter_ms: int = 500


@dataclass
class TransferSettings:
    local_marker_dir: Path = Path("markers")
    ready_timeout_seconds: float = 600
    poll_interval_seconds: float = 2
    retry_attempts: int = 3
    retry_delay_seconds: float = 5
    file_extension: str = ".csv"
    port: int = 22


@dataclass
class SkipSteps:
    skip_api_list: bool = False
    skip_delete_records: bool = False
    skip_transfer: bool = False
    skip_csv_export: bool = False
    skip_email: bool = False


@dataclass
class SyncSettings:
    """Configuration data class for a sync run from TOML file"""
    database: DatabaseSettings
    executor: ExecutorSettings = field(default_factory=ExecutorSettings)
    retries: RetrySettings = field(default_factory=RetrySettings)
    transfer: TransferSettings = field(default_factory=TransferSettings)
    skip_steps: SkipSteps = field(default_factory=SkipSteps)
    logging: Dict[str, Any] = field(default_factory=dict)
    notification: Dict[str, Any] = field(default_factory=dict)

    @property
    def log_dir(self) -> Path:
        return Path(self.logging.get('log_dir', 'logs'))

    @property
    def log_level(self) -> str:
        return str(self.logging.get('level', 'INFO')).upper()


class ConfigLoader:
    """Loads and validates TOML configuration files"""

    # Required configuration sections and their mandatory keys
    REQUIRED_SECTIONS = {
        'database': ['control_db_path', 'catalog_path_template'],
    }

    # Optional sections that fall back to defaults
    OPTIONAL_SECTIONS = [
        'executor',
        'retries',
        'transfer',
        'skip_steps',
        'logging',
        'notification'
    ]

    @staticmethod
    def load_toml_config(config_path: Path) -> SyncSettings:
        """
        Load run settings from TOML file

        Args:
            config_path: Path to the TOML configuration file

        Returns:
            SyncSettings object with all configuration data

        Raises:
            FileNotFoundError: If config file doesn't exist
            ConfigurationError: If the file is not valid TOML or required configuration is missing
        """
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        try:
            with open(config_path, 'rb') as f:
                config_data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(f"Invalid TOML syntax in {config_path}: {e}")

        ConfigLoader._validate_required_sections(config_data)
        return ConfigLoader._build_settings(config_data)

    @staticmethod
    def _validate_required_sections(config_data: Dict[str, Any]) -> None:
        """
        Validate that all required configuration sections and keys are present

        Args:
            config_data: Parsed TOML configuration data

        Raises:
            ConfigurationError: If any required section or key is missing
        """
        missing_items = []

        for section_name, required_keys in ConfigLoader.REQUIRED_SECTIONS.items():
            if section_name not in config_data:
                missing_items.append(f"Section [{section_name}]")
            else:
                section_data = config_data[section_name]
                for key in required_keys:
                    if key not in section_data:
                        missing_items.append(f"Key '{key}' in section [{section_name}]")

        if missing_items:
            raise ConfigurationError(
                f"Missing required configuration items: {', '.join(missing_items)}"
            )

        template = config_data['database']['catalog_path_template']
        if '{catalog}' not in template:
            raise ConfigurationError(
                f"catalog_path_template must contain a {{catalog}} placeholder: {template}"
            )

    @staticmethod
    def _build_settings(config_data: Dict[str, Any]) -> SyncSettings:
        database = dict(config_data['database'])
        database['control_db_path'] = Path(database['control_db_path'])

        transfer = dict(config_data.get('transfer', {}))
        if 'local_marker_dir' in transfer:
            transfer['local_marker_dir'] = Path(transfer['local_marker_dir'])

        try:
            return SyncSettings(
                database=DatabaseSettings(**database),
                executor=ExecutorSettings(**config_data.get('executor', {})),
                retries=RetrySettings(**config_data.get('retries', {})),
                transfer=TransferSettings(**transfer),
                skip_steps=SkipSteps(**config_data.get('skip_steps', {})),
                logging=config_data.get('logging', {}),
                notification=config_data.get('notification', {})
            )
        except TypeError as e:
            raise ConfigurationError(f"Unknown configuration key: {e}")

    @staticmethod
    def referenced_environment_variables(settings: SyncSettings) -> List[str]:
        """Names of environment variables referenced through ``*_env`` keys"""
        return [
            value for key, value in settings.notification.items()
            if key.endswith('_env') and isinstance(value, str)
        ]

    @staticmethod
    def validate_environment_variables(settings: SyncSettings) -> bool:
        """
        Validate that all required environment variables are set

        Args:
            settings: SyncSettings object to validate

        Returns:
            True if all environment variables are present

        Raises:
            EnvironmentVariableError: If any required environment variables are missing
        """
        missing_vars = [
            name for name in ConfigLoader.referenced_environment_variables(settings)
            if not os.getenv(name)
        ]

        if missing_vars:
            raise EnvironmentVariableError(
                f"Missing required environment variables: {', '.join(missing_vars)}"
            )

        return True

    @staticmethod
    def get_environment_value(env_var_name: str) -> str:
        """
        Get environment variable value with proper error handling

        Args:
            env_var_name: Name of the environment variable

        Returns:
            Value of the environment variable

        Raises:
            EnvironmentVariableError: If environment variable is not set
        """
        value = os.getenv(env_var_name)
        if value is None:
            raise EnvironmentVariableError(f"Environment variable '{env_var_name}' is not set")
        return value
