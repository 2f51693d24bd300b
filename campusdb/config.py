"""
Configuration management for campusdb.

All configuration is done via environment variables. This module provides
typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - The sequence base is never negative, so issued ids are always positive
    - Token length is large enough that collisions are negligible

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Changing SEQUENCE_BASE on an existing database has no effect on
      counters that already exist
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class StoreBackend(Enum):
    """Supported document store backends."""

    MEMORY = "memory"
    SQLITE = "sqlite"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass(frozen=True)
class StorageConfig:
    """Document store configuration.

    Attributes:
        backend: Which store backend to use
        data_dir: Directory for the SQLite database file
        db_name: SQLite database file name
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    backend: StoreBackend = StoreBackend.SQLITE
    data_dir: str = "./data"
    db_name: str = "campus.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        backend_str = os.getenv("STORE_BACKEND", "sqlite").lower()
        try:
            backend = StoreBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid STORE_BACKEND '{backend_str}'. Must be one of: memory, sqlite"
            )

        return cls(
            backend=backend,
            data_dir=os.getenv("DATA_DIR", "./data"),
            db_name=os.getenv("SQLITE_DB_NAME", "campus.db"),
            wal_mode=_env_bool("SQLITE_WAL_MODE", "true"),
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class ConsistencyConfig:
    """Settings for the hand-built consistency layer.

    Attributes:
        sequence_base: Counter starting value; the first id issued is base + 1
        token_bytes: Length of generated concurrency tokens
        validate_enrollment_refs: Check that an enrollment's student and
            course exist before writing it
    """

    sequence_base: int = 0
    token_bytes: int = 8
    validate_enrollment_refs: bool = True

    @classmethod
    def from_env(cls) -> ConsistencyConfig:
        """Load configuration from environment variables."""
        return cls(
            sequence_base=int(os.getenv("SEQUENCE_BASE", "0")),
            token_bytes=int(os.getenv("TOKEN_BYTES", "8")),
            validate_enrollment_refs=_env_bool("VALIDATE_ENROLLMENT_REFS", "true"),
        )


@dataclass(frozen=True)
class HttpConfig:
    """HTTP server configuration.

    Attributes:
        host: Bind host
        port: Bind port
        cors_origins: Allowed CORS origins
        seed_on_start: Insert sample data into an empty database at startup
    """

    host: str = "0.0.0.0"
    port: int = 8080
    cors_origins: tuple[str, ...] = ("http://localhost:3000", "http://localhost:5173")
    seed_on_start: bool = False

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        origins = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173")
        return cls(
            host=os.getenv("HTTP_HOST", "0.0.0.0"),
            port=int(os.getenv("HTTP_PORT", "8080")),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
            seed_on_start=_env_bool("SEED_ON_START", "false"),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    Attributes:
        storage: Document store configuration
        consistency: Consistency layer configuration
        http: HTTP server configuration
        observability: Logging configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    consistency: ConsistencyConfig = field(default_factory=ConsistencyConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            consistency=ConsistencyConfig.from_env(),
            http=HttpConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.consistency.sequence_base < 0:
            raise ValueError("SEQUENCE_BASE must be >= 0")
        if self.consistency.token_bytes < 8:
            raise ValueError("TOKEN_BYTES must be >= 8")
        if self.storage.backend == StoreBackend.SQLITE:
            if not self.storage.db_name:
                raise ValueError("SQLITE_DB_NAME is required when STORE_BACKEND=sqlite")
            if not os.path.exists(self.storage.data_dir):
                logger.warning(
                    f"Data directory does not exist: {self.storage.data_dir}. "
                    "It will be created on first connect."
                )
        if not 0 < self.http.port < 65536:
            raise ValueError(f"HTTP_PORT out of range: {self.http.port}")

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Server configuration loaded",
            extra={
                "store_backend": self.storage.backend.value,
                "data_dir": self.storage.data_dir
                if self.storage.backend == StoreBackend.SQLITE
                else None,
                "sequence_base": self.consistency.sequence_base,
                "validate_enrollment_refs": self.consistency.validate_enrollment_refs,
                "http_bind": f"{self.http.host}:{self.http.port}",
                "seed_on_start": self.http.seed_on_start,
                "log_level": self.observability.log_level,
            },
        )
