"""
Chainworker Configuration System

Pydantic v2-based configuration with YAML/JSON support and environment overrides.

Features:
- Type-safe configuration models
- YAML/JSON file loading
- Environment variable overrides (CHAINWORKER_ prefix, __ nesting)
- .env file loading via python-dotenv
- Validation with defaults

Author: Chainworker Team
License: MIT
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator
from loguru import logger


AMOUNT_PATTERN = re.compile(r"^(\d+)([a-zA-Z]+)$")


# =============================================================================
# Chain Configuration
# =============================================================================


class ChainConfig(BaseModel):
    """Configuration for the network connection."""

    rpc_urls: list[str] = Field(
        default_factory=lambda: ["ws://127.0.0.1:9944"],
        min_length=1,
        description="RPC endpoints, tried in order on node failure",
    )

    ss58_format: int = Field(
        default=42,
        ge=0,
        description="Address format",
    )

    denom: str = Field(
        default="uallo",
        min_length=1,
        description="Smallest token denomination",
    )

    average_block_time_seconds: float = Field(
        default=5.0,
        gt=0.0,
        le=600.0,
        description="Average block time used to derive job cadence",
    )

    max_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per chain write",
    )

    initial_retry_delay: float = Field(
        default=1.0,
        ge=0.0,
        le=60.0,
        description="First backoff delay in seconds (doubles per attempt)",
    )

    rpc_timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        le=600.0,
        description="Timeout for a single RPC call, including waiting for the connection",
    )

    nonce_scan_limit: int = Field(
        default=200,
        ge=1,
        le=10000,
        description="Maximum block heights scanned for an open worker nonce",
    )

    @field_validator("rpc_urls", mode="before")
    @classmethod
    def split_urls(cls, v: Any) -> Any:
        """Accept a comma-separated string as well as a list."""
        if isinstance(v, str):
            return [u.strip() for u in v.split(",") if u.strip()]
        return v


# =============================================================================
# Secrets Configuration
# =============================================================================


class SecretsConfig(BaseModel):
    """Configuration for the secret store."""

    treasury_secret_key: str = Field(
        default="treasury_mnemonic",
        min_length=1,
        description="Secret store key of the treasury mnemonic",
    )

    vault_addr: str | None = Field(
        default=None,
        description="HashiCorp Vault address",
    )

    vault_token: str | None = Field(
        default=None,
        description="HashiCorp Vault token",
    )

    vault_namespace: str | None = Field(
        default=None,
        description="Optional Vault namespace",
    )

    vault_mount: str = Field(
        default="secret",
        description="KV v2 mount point",
    )

    vault_path_prefix: str = Field(
        default="chainworker",
        description="Path prefix under the mount",
    )

    vault_timeout_seconds: float = Field(
        default=5.0,
        gt=0.0,
        le=120.0,
        description="Timeout for every Vault request",
    )

    @property
    def vault_configured(self) -> bool:
        return bool(self.vault_addr and self.vault_token)


# =============================================================================
# Database Configuration
# =============================================================================


class DatabaseConfig(BaseModel):
    """Configuration for PostgreSQL persistence."""

    url: str = Field(
        default="postgresql://localhost:5432/chainworker",
        description="asyncpg connection string",
    )

    min_pool_size: int = Field(default=1, ge=1, le=100)
    max_pool_size: int = Field(default=10, ge=1, le=100)

    command_timeout: float = Field(
        default=10.0,
        gt=0.0,
        le=300.0,
        description="Per-statement timeout in seconds",
    )


# =============================================================================
# Funding Configuration
# =============================================================================


class FundingConfig(BaseModel):
    """Amounts transferred from the treasury to every new model wallet."""

    registration_fee: int = Field(
        default=1000,
        ge=0,
        description="Registration fee in the smallest denomination",
    )

    initial_funding: int = Field(
        default=50000,
        ge=0,
        description="Initial working balance in the smallest denomination",
    )

    @property
    def total(self) -> int:
        return self.registration_fee + self.initial_funding


# =============================================================================
# Submission Configuration
# =============================================================================


class SubmissionConfig(BaseModel):
    """Configuration for the inference submission pipeline."""

    default_gas_price: str = Field(
        default="10uallo",
        description="Gas price used when a model has none configured",
    )

    webhook_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        le=120.0,
        description="Timeout for model webhook calls",
    )

    bounded_exp40dec_precision: int = Field(
        default=18,
        ge=0,
        le=40,
        description="Decimal places used when encoding values",
    )

    invalid_model_output_policy: Literal["throw", "skip", "zero"] = Field(
        default="throw",
        description="What to do with values that cannot be encoded",
    )

    dry_run_transactions: bool = Field(
        default=False,
        description="Log transactions instead of broadcasting them",
    )

    @field_validator("default_gas_price")
    @classmethod
    def validate_gas_price(cls, v: str) -> str:
        if not AMOUNT_PATTERN.match(v):
            raise ValueError(f"gas price must look like '10uallo', got {v!r}")
        return v


# =============================================================================
# Jobs Configuration
# =============================================================================


class JobsConfig(BaseModel):
    """Configuration for the job queue and schedulers."""

    concurrency: int = Field(
        default=5,
        ge=1,
        le=256,
        description="Jobs executed concurrently",
    )

    attempts: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Attempts per job for recoverable failures",
    )

    backoff_seconds: float = Field(
        default=5.0,
        ge=0.0,
        le=3600.0,
        description="First retry delay (doubles per attempt)",
    )

    job_timeout_seconds: float = Field(
        default=120.0,
        gt=0.0,
        le=3600.0,
        description="Hard limit for a single job attempt",
    )

    sync_interval_seconds: float = Field(
        default=300.0,
        gt=0.0,
        description="How often topic loops are synchronised with the database",
    )

    performance_interval_seconds: float = Field(
        default=900.0,
        gt=0.0,
        description="How often performance metrics are collected",
    )


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Configuration for loguru sinks."""

    level: Literal["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Minimum log level",
    )

    log_file: Path | None = Field(
        default=None,
        description="Optional rotating log file",
    )

    serialize: bool = Field(
        default=False,
        description="Emit JSON lines",
    )

    @field_validator("level", mode="before")
    @classmethod
    def upper_level(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


# =============================================================================
# Main Configuration
# =============================================================================


class ChainWorkerConfig(BaseModel):
    """Main chainworker configuration."""

    environment: Literal["development", "staging", "production", "test"] = Field(
        default="development",
        description="Environment",
    )

    chain: ChainConfig = Field(default_factory=ChainConfig)
    secrets: SecretsConfig = Field(default_factory=SecretsConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    funding: FundingConfig = Field(default_factory=FundingConfig)
    submission: SubmissionConfig = Field(default_factory=SubmissionConfig)
    jobs: JobsConfig = Field(default_factory=JobsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> ChainWorkerConfig:
        """
        Load configuration from YAML file.

        Args:
            path: Path to YAML file

        Returns:
            ChainWorkerConfig instance
        """
        import yaml

        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        logger.info(f"Loaded configuration from {path}")
        return cls(**data)

    @classmethod
    def from_json(cls, path: str | Path) -> ChainWorkerConfig:
        """
        Load configuration from JSON file.

        Args:
            path: Path to JSON file

        Returns:
            ChainWorkerConfig instance
        """
        import json

        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, "r") as f:
            data = json.load(f)

        logger.info(f"Loaded configuration from {path}")
        return cls(**data)

    @classmethod
    def from_env(cls, prefix: str = "CHAINWORKER_") -> ChainWorkerConfig:
        """
        Load configuration from environment variables.

        Environment variables should be in the format:
        CHAINWORKER_CHAIN__RPC_URLS=ws://a:9944,ws://b:9944
        CHAINWORKER_JOBS__CONCURRENCY=10

        Args:
            prefix: Environment variable prefix

        Returns:
            ChainWorkerConfig instance
        """
        config_dict: dict[str, Any] = {}

        for key, value in os.environ.items():
            if not key.startswith(prefix):
                continue

            key = key[len(prefix):].lower()
            parts = key.split("__")

            current = config_dict
            for part in parts[:-1]:
                current = current.setdefault(part, {})

            # pydantic coerces numeric and boolean strings itself
            current[parts[-1]] = value

        logger.info(f"Loaded configuration from environment variables (prefix={prefix})")
        return cls(**config_dict)


# =============================================================================
# Configuration Factory
# =============================================================================


def load_config(
    config_path: str | Path | None = None,
    env_prefix: str = "CHAINWORKER_",
    env_file: str | Path | None = ".env",
) -> ChainWorkerConfig:
    """
    Load configuration with automatic format detection.

    Priority:
    1. Explicit config file (YAML or JSON)
    2. Environment variables (after loading the optional .env file)

    Args:
        config_path: Path to config file (YAML or JSON)
        env_prefix: Environment variable prefix
        env_file: dotenv file loaded before reading the environment

    Returns:
        ChainWorkerConfig instance
    """
    if config_path:
        path = Path(config_path)
        if path.suffix in (".yaml", ".yml"):
            return ChainWorkerConfig.from_yaml(path)
        elif path.suffix == ".json":
            return ChainWorkerConfig.from_json(path)
        else:
            raise ValueError(f"Unknown config format: {path.suffix}")

    if env_file and Path(env_file).exists():
        load_dotenv(env_file, override=False)

    return ChainWorkerConfig.from_env(env_prefix)


__all__ = [
    "AMOUNT_PATTERN",
    "ChainConfig",
    "SecretsConfig",
    "DatabaseConfig",
    "FundingConfig",
    "SubmissionConfig",
    "JobsConfig",
    "LoggingConfig",
    "ChainWorkerConfig",
    "load_config",
]
