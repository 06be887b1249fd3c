"""
Job execution and scheduling for chainworker.
"""

from .queue import JobHandler, JobQueue, JobResult
from .scheduler import (
    InferenceScheduler,
    PerformanceScheduler,
    topic_interval_seconds,
)

__all__ = [
    "JobHandler",
    "JobQueue",
    "JobResult",
    "InferenceScheduler",
    "PerformanceScheduler",
    "topic_interval_seconds",
]
