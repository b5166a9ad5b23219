"""
Migration report generator for aggregating statistics and formatting reports.

This module turns per-stage statistics into a report for console display,
JSON export and CSV export of the failed records.
"""

import csv
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from logger import format_duration
from models import EntityKind, StageStats

logger = logging.getLogger('forum_import.orchestrator.report')


class MigrationReport:
    """Generates migration reports aggregating statistics from all stages."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        """
        Initialize migration report generator.

        Args:
            logger: Optional logger instance
        """
        self.logger = logger or logging.getLogger('forum_import.orchestrator.report')

    def generate_report(
        self,
        stage_stats: Dict[EntityKind, StageStats],
        migration_duration: float,
        profile: Optional[str] = None,
        dry_run: bool = False,
        identity_map_stats: Optional[Dict[str, Any]] = None,
        interrupted: bool = False
    ) -> Dict[str, Any]:
        """
        Generate migration report.

        Args:
            stage_stats: Statistics of every stage that ran
            migration_duration: Total migration duration in seconds
            profile: Source profile name
            dry_run: Whether the run was a dry run
            identity_map_stats: IdentityMap.get_statistics() after the run
            interrupted: Whether a stop request ended the run early

        Returns:
            Migration report dictionary
        """
        report = {
            'summary': self._build_summary(stage_stats, migration_duration, profile, dry_run, interrupted),
            'stages': {kind.value: stats.to_dict() for kind, stats in stage_stats.items()},
            'errors': self._build_error_summary(stage_stats),
            'identity_map': identity_map_stats or {},
            'timestamp': datetime.now().isoformat()
        }

        self.logger.info(
            f"Report generated: {report['summary']['created']} created, "
            f"{report['summary']['failed']} failed"
        )

        return report

    def _build_summary(
        self,
        stage_stats: Dict[EntityKind, StageStats],
        duration: float,
        profile: Optional[str],
        dry_run: bool,
        interrupted: bool
    ) -> Dict[str, Any]:
        """Build high-level summary section."""
        totals = {
            key: sum(getattr(stats, key) for stats in stage_stats.values())
            for key in ('total', 'created', 'skipped', 'failed', 'fallbacks')
        }
        attempted = totals['created'] + totals['failed']

        return {
            'profile': profile,
            'dry_run': dry_run,
            'interrupted': interrupted,
            **totals,
            'success_rate': (totals['created'] / attempted) if attempted else 1.0,
            'duration_seconds': duration,
            'duration_formatted': format_duration(duration)
        }

    def _build_error_summary(self, stage_stats: Dict[EntityKind, StageStats]) -> List[Dict[str, Any]]:
        errors = []
        for stats in stage_stats.values():
            errors.extend(failure.to_dict() for failure in stats.failures)
        return errors

    def format_console_report(self, report: Dict[str, Any], max_errors: int = 20) -> str:
        """
        Format report for console display.

        Args:
            report: Migration report dictionary
            max_errors: Number of failed records listed

        Returns:
            Formatted console string
        """
        sections = []

        sections.append("=" * 60)
        sections.append("MIGRATION REPORT" + (" (DRY RUN)" if report['summary'].get('dry_run') else ""))
        sections.append("=" * 60)
        sections.append("")

        summary = report.get('summary', {})
        sections.append("Summary:")
        sections.append(f"  Profile:     {summary.get('profile') or 'unknown'}")
        sections.append(f"  Records:     {summary.get('total', 0)}")
        sections.append(f"  Created:     {summary.get('created', 0)}")
        sections.append(f"  Skipped:     {summary.get('skipped', 0)}")
        sections.append(f"  Failed:      {summary.get('failed', 0)}")
        sections.append(f"  Fallbacks:   {summary.get('fallbacks', 0)}")
        sections.append(f"  Duration:    {summary.get('duration_formatted', '0s')}")
        sections.append(f"  Success:     {summary.get('success_rate', 0) * 100:.1f}%")
        if summary.get('interrupted'):
            sections.append("  Status:      INTERRUPTED")
        sections.append("")

        sections.append("Stage Breakdown:")
        sections.append("-" * 60)
        sections.append(f"  {'Stage':<10} {'Total':>8} {'Created':>8} {'Skipped':>8} {'Failed':>8} {'Batches':>8}")
        for name, stage in report.get('stages', {}).items():
            sections.append(
                f"  {name:<10} {stage['total']:>8} {stage['created']:>8} "
                f"{stage['skipped']:>8} {stage['failed']:>8} {stage['batches']:>8}"
            )
        sections.append("")

        errors = report.get('errors', [])
        if errors:
            sections.append(f"Failed Records ({len(errors)}):")
            sections.append("-" * 60)
            for error in errors[:max_errors]:
                sections.append(
                    f"  [{error['kind']}] {error['source_id']}: {error['error_type']}: {error['reason']}"
                )
            if len(errors) > max_errors:
                sections.append(f"  ... and {len(errors) - max_errors} more")
            sections.append("")

        sections.append("=" * 60)

        return "\n".join(sections)

    def export_json_report(self, report: Dict[str, Any], filepath: str) -> None:
        """
        Export report to JSON file.

        Args:
            report: Migration report dictionary
            filepath: Output file path
        """
        try:
            with open(filepath, 'w', encoding='utf-8') as f:
                json.dump(report, f, indent=2, ensure_ascii=False, default=str)

            self.logger.info(f"JSON report exported to {filepath}")

        except OSError as e:
            self.logger.error(f"Failed to export JSON report: {str(e)}")

    def export_csv_errors(self, report: Dict[str, Any], filepath: str) -> None:
        """
        Export the failed records to CSV.

        Args:
            report: Migration report dictionary
            filepath: Output file path
        """
        try:
            with open(filepath, 'w', newline='', encoding='utf-8') as f:
                writer = csv.writer(f)
                writer.writerow(['kind', 'source_id', 'error_type', 'reason'])
                for error in report.get('errors', []):
                    writer.writerow([error['kind'], error['source_id'], error['error_type'], error['reason']])

            self.logger.info(f"CSV error list exported to {filepath}")

        except OSError as e:
            self.logger.error(f"Failed to export CSV error list: {str(e)}")


__all__ = ['MigrationReport']
