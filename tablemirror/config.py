"""
Replication Configuration
=========================

Settings for replicas, loaded from a JSON task file:

    {
        "source": {
            "connection": {
                "driver": "mssql+pyodbc",
                "host": "localhost",
                "port": 1433,
                "database": "app",
                "username": "reader",
                "password": "secret",
                "query": {"driver": "ODBC Driver 18 for SQL Server"}
            }
        },
        "replication": {
            "version_column": "RowVersion",
            "tombstone_column": "IsDeleted",
            "batch_size": 1000,
            "delay": 0.2,
            "fetch_timeout": 30,
            "retry": {"max_retries": 3, "backoff_base": 2.0}
        },
        "logging": {"level": "INFO", "json_format": false, "log_to_file": false}
    }

The connection may also be given as a plain URL string ("source": {"url": ...}).
"""

import dataclasses
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

from sqlalchemy.engine import URL

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_DRIVER = "mysql+pymysql"


@dataclass
class ReplicationSettings:
    """Options shared by every table of a replica set."""

    version_column: Optional[str] = None
    tombstone_column: Optional[str] = None
    fetch_timeout: float = 30
    batch_size: int = 1000
    delay: float = 0.2
    unique_watermark: bool = True
    max_retries: int = 0
    backoff_base: float = 2.0
    backoff_max: float = 60.0

    def validate(self) -> "ReplicationSettings":
        """
        Check ranges of all options.

        Raises:
            ConfigurationError: on the first out-of-range option
        """
        if not isinstance(self.batch_size, int) or self.batch_size <= 0:
            raise ConfigurationError(f"batch_size must be a positive integer, got {self.batch_size!r}")
        if self.delay is None or self.delay <= 0:
            raise ConfigurationError(f"delay must be positive, got {self.delay!r}")
        if self.fetch_timeout is None or self.fetch_timeout < 0:
            raise ConfigurationError(f"fetch_timeout must not be negative, got {self.fetch_timeout!r}")
        if not isinstance(self.max_retries, int) or self.max_retries < 0:
            raise ConfigurationError(f"max_retries must not be negative, got {self.max_retries!r}")
        for name in ("backoff_base", "backoff_max"):
            value = getattr(self, name)
            if value is None or value <= 0:
                raise ConfigurationError(f"{name} must be positive, got {value!r}")
        return self

    def merged(self, **overrides) -> "ReplicationSettings":
        """
        Copy with per-table overrides applied.

        Every given option replaces the shared value, None included, so a table
        can drop back to scalar watermarks with version_column=None.
        """
        known = {f.name for f in dataclasses.fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ConfigurationError(f"Unknown replication options: {sorted(unknown)}")
        return dataclasses.replace(self, **overrides).validate()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReplicationSettings":
        data = dict(data or {})
        retry = data.pop("retry", None) or {}
        data.update(retry)
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown replication options: {sorted(unknown)}")
        return cls(**data).validate()


@dataclass
class TaskSettings:
    """Parsed task file: source connection, replication options and logging."""

    connection: Union[str, URL]
    replication: ReplicationSettings = field(default_factory=ReplicationSettings)
    logging: Dict[str, Any] = field(default_factory=dict)


def build_connection_url(connection: Dict[str, Any]) -> URL:
    """
    Build a SQLAlchemy URL from a connection dict.

    Args:
        connection: Dict with driver, host, port, database, username, password
            and optional query parameters

    Returns:
        sqlalchemy.engine.URL
    """
    if not connection.get("host") and not connection.get("database"):
        raise ConfigurationError("Connection requires at least a host or a database")
    return URL.create(
        drivername=connection.get("driver", DEFAULT_DRIVER),
        username=connection.get("username") or connection.get("user"),
        password=connection.get("password"),
        host=connection.get("host"),
        port=connection.get("port"),
        database=connection.get("database"),
        query=connection.get("query") or {},
    )


def load_settings(path: Union[str, Path]) -> TaskSettings:
    """
    Load a JSON task file.

    Args:
        path: Path to the task settings file

    Returns:
        TaskSettings

    Raises:
        ConfigurationError: missing source connection or invalid options
    """
    with open(path, 'r') as f:
        data = json.load(f)

    source = data.get("source") or {}
    connection = source.get("url") or source.get("connection")
    if not connection:
        raise ConfigurationError(f"{path}: source.url or source.connection is required")
    if isinstance(connection, dict):
        connection = build_connection_url(connection)

    settings = TaskSettings(
        connection=connection,
        replication=ReplicationSettings.from_dict(data.get("replication")),
        logging=data.get("logging") or {},
    )
    logger.debug(f"Loaded settings from {path}: {settings.replication}")
    return settings
