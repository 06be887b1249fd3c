"""
Monitoring and Observability for chainworker.

Provides Prometheus counters for the submission pipeline and structured
logging for production deployments.

Author: Chainworker Team
License: MIT
"""

from .metrics import SubmissionMetrics
from .logging_config import LogContext, configure_logging, log_chain_transaction

__all__ = [
    "SubmissionMetrics",
    "LogContext",
    "configure_logging",
    "log_chain_transaction",
]
