"""
Orchestration package for coordinating import stages.

This package provides the orchestration layer that runs a mapping profile's
import plan in dependency order (Groups -> Users -> Categories -> Topics ->
Posts) and reports on the result.
"""

from .migration_orchestrator import MigrationOrchestrator
from .migration_report import MigrationReport

__all__ = [
    'MigrationOrchestrator',
    'MigrationReport'
]
