"""
Configuration loading for dbvault.

The configuration is a YAML document describing the database connection,
the databases to include, S3 storage, e-mail notification, retention
windows, logging and the optional schedule. Encrypted secrets
(``enc:...``) are decrypted with the master password from the
environment.
"""

import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from dbvault.utils.crypto import CryptoManager, SecretError, is_encrypted


DEFAULT_CONFIG_PATH = os.environ.get('DBVAULT_CONFIG') or '/etc/dbvault/config.yaml'
MASTER_PASSWORD_ENV = 'DBVAULT_MASTER_PASSWORD'

COMPRESSION_FORMATS = ('zip', 'tar.gz', 'tar.bz2', 'tar.xz')


class ConfigError(Exception):
    """Raised when configuration is missing or malformed."""
    pass


@dataclass
class DatabaseConfig:
    host: str
    user: str
    password: Optional[str] = None
    port: int = 3306
    server: Optional[str] = None


@dataclass
class SSHConfig:
    """Shell access to the database server, used to run the MySQL client tools remotely."""
    host: str
    username: str
    port: int = 22
    password: Optional[str] = None
    private_key: Optional[str] = None
    timeout: int = 30


@dataclass
class BackupConfig:
    root: str = '/var/backups/dbvault'
    compression: str = 'zip'
    local_retention_days: int = 3
    dump_timeout: int = 3600
    mysqldump_path: str = 'mysqldump'
    mysql_path: str = 'mysql'
    extra_dump_args: List[str] = field(default_factory=list)

    @property
    def local_retention(self) -> timedelta:
        return timedelta(days=self.local_retention_days)


@dataclass
class StorageConfig:
    bucket: str
    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    region: str = 'us-east-1'
    prefix: str = 'mysql-backups'
    endpoint_url: Optional[str] = None
    retention_days: int = 35
    timeout: int = 300

    @property
    def retention(self) -> timedelta:
        return timedelta(days=self.retention_days)


@dataclass
class NotificationConfig:
    api_key: str
    sender: str
    recipients: List[str]
    api_url: str = 'https://api.sendgrid.com/v3/mail/send'
    subject_prefix: str = '[dbvault]'
    timeout: int = 30


@dataclass
class LoggingConfig:
    level: str = 'INFO'
    file: Optional[str] = None
    max_bytes: int = 10485760  # 10MB
    backup_count: int = 10


@dataclass
class ScheduleConfig:
    cron: Optional[str] = None
    timezone: str = 'UTC'


@dataclass
class Config:
    database: DatabaseConfig
    include_databases: List[str]
    storage: StorageConfig
    backup: BackupConfig = field(default_factory=BackupConfig)
    notification: Optional[NotificationConfig] = None
    ssh: Optional[SSHConfig] = None
    servers: Dict[str, str] = field(default_factory=dict)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)

    def select_server(self, server_key: str):
        """
        Point the database connection at a host from the servers mapping.

        Args:
            server_key: Key into ``servers``

        Raises:
            ConfigError: If the key is unknown
        """
        if server_key not in self.servers:
            raise ConfigError(
                f"Unknown server key: {server_key}. "
                f"Valid options: {sorted(self.servers)}"
            )
        self.database.server = server_key
        self.database.host = self.servers[server_key]


def load_config(path=None, environ=None) -> Config:
    """
    Load and validate configuration from a YAML file.

    Args:
        path: Path to the YAML file (default: $DBVAULT_CONFIG or /etc/dbvault/config.yaml)
        environ: Environment mapping used for the master password (default: os.environ)

    Returns:
        Validated Config instance

    Raises:
        ConfigError: If the file is missing, unreadable or invalid
    """
    config_path = Path(path or DEFAULT_CONFIG_PATH)

    if not config_path.is_file():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, 'r') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read {config_path}: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"Configuration must be a mapping: {config_path}")

    environ = os.environ if environ is None else environ
    master_password = environ.get(MASTER_PASSWORD_ENV)
    crypto = CryptoManager(master_password) if master_password else None

    return parse_config(data, crypto)


def parse_config(data: Dict[str, Any], crypto: Optional[CryptoManager] = None) -> Config:
    """
    Build a Config from an already parsed mapping.

    Args:
        data: Parsed configuration document
        crypto: CryptoManager for ``enc:`` values, or None if no master password is set

    Returns:
        Validated Config instance

    Raises:
        ConfigError: If required settings are missing or invalid
    """
    data = _decrypt_values(data, crypto)

    include = data.get('include_databases')
    if include is None:
        raise ConfigError("include_databases is required")
    if not isinstance(include, list) or not include:
        raise ConfigError("include_databases must be a non-empty list")
    if not all(isinstance(name, str) and name.strip() for name in include):
        raise ConfigError("include_databases entries must be non-empty strings")

    servers = _section(data, 'servers')
    database_data = _section(data, 'database', required=True)

    try:
        config = Config(
            database=DatabaseConfig(
                host=database_data.get('host', ''),
                user=_required(database_data, 'user', 'database'),
                password=database_data.get('password'),
                port=int(database_data.get('port', 3306)),
                server=database_data.get('server'),
            ),
            include_databases=[name.strip() for name in include],
            storage=_build(StorageConfig, _section(data, 'storage', required=True), 'storage'),
            backup=_build(BackupConfig, _section(data, 'backup'), 'backup'),
            notification=_build_optional(NotificationConfig, data.get('notification'), 'notification'),
            ssh=_build_optional(SSHConfig, data.get('ssh'), 'ssh'),
            servers={str(k): str(v) for k, v in servers.items()},
            logging=_build(LoggingConfig, _section(data, 'logging'), 'logging'),
            schedule=_build(ScheduleConfig, _section(data, 'schedule'), 'schedule'),
        )
    except (TypeError, ValueError, AttributeError) as e:
        raise ConfigError(f"Invalid configuration: {e}")

    if config.database.server:
        config.select_server(str(config.database.server))

    _validate(config)
    return config


def _validate(config: Config):
    """Check cross-field constraints."""
    if not config.database.host:
        raise ConfigError("database.host is required (or database.server with a servers entry)")
    if not config.storage.bucket:
        raise ConfigError("storage.bucket is required")
    if config.backup.compression not in COMPRESSION_FORMATS:
        raise ConfigError(
            f"Invalid compression format: {config.backup.compression}. "
            f"Valid options: {list(COMPRESSION_FORMATS)}"
        )
    config.backup.local_retention_days = _positive_int(
        config.backup.local_retention_days, 'backup.local_retention_days'
    )
    config.backup.dump_timeout = _positive_int(config.backup.dump_timeout, 'backup.dump_timeout')
    config.storage.retention_days = _positive_int(config.storage.retention_days, 'storage.retention_days')
    config.storage.timeout = _positive_int(config.storage.timeout, 'storage.timeout')

    if config.notification:
        recipients = config.notification.recipients
        if not isinstance(recipients, list) or not recipients:
            raise ConfigError("notification.recipients must be a non-empty list")
        if not all(isinstance(r, str) and r.strip() for r in recipients):
            raise ConfigError("notification.recipients entries must be non-empty strings")
    if config.ssh and not (config.ssh.password or config.ssh.private_key):
        raise ConfigError("ssh requires either password or private_key")

    prefix = config.storage.prefix or ''
    if not isinstance(prefix, str):
        raise ConfigError("storage.prefix must be a string")
    config.storage.prefix = prefix.strip('/')


def _positive_int(value, name: str) -> int:
    """Coerce a setting to a positive integer."""
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be a positive integer")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a positive integer, got {value!r}")
    if number <= 0:
        raise ConfigError(f"{name} must be positive")
    return number


def _section(data: Dict[str, Any], name: str, required: bool = False) -> Dict[str, Any]:
    value = data.get(name)
    if value is None:
        if required:
            raise ConfigError(f"{name} section is required")
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{name} section must be a mapping")
    return value


def _required(section: Dict[str, Any], key: str, section_name: str):
    value = section.get(key)
    if value in (None, ''):
        raise ConfigError(f"{section_name}.{key} is required")
    return value


def _build(cls, section: Dict[str, Any], section_name: str):
    try:
        return cls(**section)
    except TypeError as e:
        raise ConfigError(f"Invalid {section_name} section: {e}")


def _build_optional(cls, section, section_name: str):
    if section is None:
        return None
    if not isinstance(section, dict):
        raise ConfigError(f"{section_name} section must be a mapping")
    return _build(cls, section, section_name)


def _decrypt_values(value, crypto: Optional[CryptoManager]):
    """Recursively replace ``enc:`` values with their plaintext."""
    if isinstance(value, dict):
        return {k: _decrypt_values(v, crypto) for k, v in value.items()}
    if isinstance(value, list):
        return [_decrypt_values(v, crypto) for v in value]
    if is_encrypted(value):
        if crypto is None:
            raise ConfigError(
                f"Encrypted secret found but {MASTER_PASSWORD_ENV} is not set"
            )
        try:
            return crypto.decrypt(value)
        except SecretError as e:
            raise ConfigError(str(e))
    return value
