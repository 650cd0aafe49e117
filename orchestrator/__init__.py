"""Orchestration package for sequencing a wiki migration.

Package Structure:
- migration_orchestrator: pre-flight, parse, validate, publish and local preview runs
- migration_report: end-of-run report for the console and JSON export

Key Features:
- Validation conflicts stop publication and are persisted for the next run
- Outer passes are retried with exponential backoff when rate limited
- One report shape for every command
"""

from .migration_orchestrator import MigrationOrchestrator
from .migration_report import MigrationReport

__all__ = ['MigrationOrchestrator', 'MigrationReport']
