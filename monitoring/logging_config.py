"""
Logging Configuration for chainworker.

Provides structured logging with loguru integration.

Author: Chainworker Team
License: MIT
"""

from __future__ import annotations

import sys
from pathlib import Path

from loguru import logger


def configure_logging(
    log_level: str = "INFO",
    log_file: Path | None = None,
    rotation: str = "100 MB",
    retention: str = "30 days",
    format_string: str | None = None,
    serialize: bool = False,
) -> None:
    """
    Configure logging for chainworker.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path
        rotation: Log rotation size/time
        retention: Log retention period
        format_string: Custom format string
        serialize: Whether to serialize logs as JSON
    """
    # Remove default handler
    logger.remove()

    # Default format
    if format_string is None:
        if serialize:
            format_string = "{message}"
        else:
            format_string = (
                "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
                "<level>{message}</level> | {extra}"
            )

    # Console handler
    logger.add(
        sys.stderr,
        format=format_string,
        level=log_level.upper(),
        colorize=not serialize,
        serialize=serialize,
    )

    # File handler
    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        logger.add(
            str(log_file),
            format=format_string,
            level=log_level.upper(),
            rotation=rotation,
            retention=retention,
            compression="zip",
            serialize=serialize,
        )

    # Add context
    logger.configure(extra={"component": "chainworker"})


class LogContext:
    """Context manager for structured logging."""

    def __init__(self, **kwargs):
        """
        Initialize log context.

        Args:
            **kwargs: Context key-value pairs
        """
        self.context = kwargs
        self.token = None

    def __enter__(self):
        self.token = logger.contextualize(**self.context)
        self.token.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.token:
            self.token.__exit__(exc_type, exc_val, exc_tb)


def log_chain_transaction(
    tx_type: str,
    success: bool,
    tx_hash: str | None = None,
    block_number: int | None = None,
):
    """Log chain transaction."""
    with LogContext(phase="chain", tx_type=tx_type):
        status = "success" if success else "failed"

        message = f"Transaction {status}: type={tx_type}"
        if tx_hash is not None:
            message += f", tx={tx_hash}"
        if block_number is not None:
            message += f", block={block_number}"

        if success:
            logger.info(message)
        else:
            logger.error(message)


__all__ = [
    "configure_logging",
    "LogContext",
    "log_chain_transaction",
]
