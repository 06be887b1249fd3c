"""
Command Line Interface for chainworker.

Commands:
- chainworker run: Start schedulers and the job queue
- chainworker register-model: Onboard a model
- chainworker check-window: Evaluate the submission gate for a topic
- chainworker init-db: Bootstrap database tables

Author: Chainworker Team
License: MIT
"""

from .commands import cli, main

__all__ = ["cli", "main"]
__version__ = "0.1.0"
