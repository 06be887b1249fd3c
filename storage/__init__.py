"""
chainworker Storage

Relational persistence for wallets, models, performance metrics and
submission history.
"""

from chainworker.storage.records import (
    Model,
    ModelRepository,
    PerformanceMetric,
    SubmissionContext,
    SubmissionRecord,
    SubmissionStatus,
    Wallet,
)
from chainworker.storage.postgres_store import PostgresStore

__all__ = [
    'Model',
    'ModelRepository',
    'PerformanceMetric',
    'SubmissionContext',
    'SubmissionRecord',
    'SubmissionStatus',
    'Wallet',
    'PostgresStore',
]
