"""
Migration orchestrator for coordinating the import stages.

This module provides the central coordinator that runs a mapping profile's
import plan stage by stage in dependency order:
Groups -> Users -> Categories -> Topics -> Posts -> Report.
"""

import logging
import threading
import time
from typing import Any, Dict, Optional

from importers.identity_map import IdentityMap
from importers.import_pipeline import ImportPipeline
from importers.inspection_writer import InspectionWriter
from importers.target_platform import SYSTEM_USER_ID, DryRunTarget, TargetPlatform
from logger import log_section
from mappings.plan import ImportPlan
from models import EntityKind, StageStats
from orchestrator.migration_report import MigrationReport

logger = logging.getLogger('forum_import.orchestrator')


class MigrationOrchestrator:
    """Central coordinator running import stages in dependency order."""

    def __init__(
        self,
        config: Dict[str, Any],
        identity_map: IdentityMap,
        target: Optional[TargetPlatform] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize migration orchestrator.

        Args:
            config: Configuration dictionary
            identity_map: Durable identity map
            target: Target platform; may be omitted for dry runs
            logger: Optional logger instance
        """
        self.config = config
        self.identity_map = identity_map
        self.target = target
        self.logger = logger or logging.getLogger('forum_import.orchestrator')

        migration_config = config.get('migration', {})
        self.dry_run = bool(migration_config.get('dry_run', False))
        self.inspection_directory = migration_config.get('inspection_directory', './inspection')

        self.report_generator = MigrationReport(self.logger)
        self.pipeline: Optional[ImportPipeline] = None
        self._stop_requested = threading.Event()

        if not self.dry_run and target is None:
            raise ValueError("A target platform is required unless running a dry run")

        self.logger.info(f"MigrationOrchestrator initialized (dry_run: {self.dry_run})")

    def request_stop(self) -> None:
        """Stop after the current batch of the running stage."""
        self._stop_requested.set()
        if self.pipeline is not None:
            self.pipeline.request_stop()

    def orchestrate_migration(self, plan: ImportPlan) -> Dict[str, Any]:
        """
        Run every stage of an import plan.

        In a dry run the stages write to an in-memory copy of the identity
        map and to a DryRunTarget, and every transcoded body lands in the
        inspection files; the durable map is left untouched.

        Args:
            plan: Import plan of a mapping profile

        Returns:
            Migration report dictionary
        """
        self.logger.info(f"Starting migration of profile '{plan.name}'")
        start_time = time.time()

        stage_stats: Dict[EntityKind, StageStats] = {}
        interrupted = False

        if self.dry_run:
            identity_map = self.identity_map.snapshot()
            target = DryRunTarget(
                fallback_user_id=self.config.get('target', {}).get('fallback_user_id', SYSTEM_USER_ID)
            )
            inspection_writer = InspectionWriter(self.inspection_directory).open()
        else:
            identity_map = self.identity_map
            target = self.target
            inspection_writer = None

        self.pipeline = ImportPipeline(
            identity_map,
            target,
            config=self.config,
            inspection_writer=inspection_writer,
            logger=self.logger
        )
        if self._stop_requested.is_set():
            self.pipeline.request_stop()

        try:
            for kind, records in plan.stages():
                if self.pipeline.stop_requested:
                    interrupted = True
                    break

                log_section(f"Importing {kind.value}s")
                stats = self.pipeline.run_stage(kind, records)
                stage_stats[kind] = stats

                if stats.stopped:
                    interrupted = True
                    break

            identity_map_stats = identity_map.get_statistics()
        finally:
            if inspection_writer is not None:
                inspection_writer.close()
            if self.dry_run:
                identity_map.close()

        migration_duration = time.time() - start_time
        report = self.report_generator.generate_report(
            stage_stats,
            migration_duration,
            profile=plan.name,
            dry_run=self.dry_run,
            identity_map_stats=identity_map_stats,
            interrupted=interrupted
        )

        self.logger.info(f"Migration orchestration complete in {migration_duration:.2f}s")
        return report


__all__ = ['MigrationOrchestrator']
