"""
Mapping profiles: thin, replaceable field mappings from one legacy source
layout to the canonical records the import pipeline consumes.

Package Structure:
- plan: ImportPlan base class
- flarum: Flarum database (SQL)
- csv_dump: users/emails/categories/topics CSV files
- json_export: JSON user export with roles
- helpers: username_for, prefixed
"""

import logging
from typing import Any, Dict

from sources import CsvSource, JsonSource, SqlSource
from .csv_dump import CsvDumpPlan
from .flarum import FlarumPlan
from .helpers import prefixed, username_for
from .json_export import JsonExportPlan
from .plan import ImportPlan

logger = logging.getLogger('forum_import.mappings')

PLANS = {
    'flarum': FlarumPlan,
    'csv_dump': CsvDumpPlan,
    'json_export': JsonExportPlan,
}


def build_plan(profile_name: str, config: Dict[str, Any]) -> ImportPlan:
    """
    Create the import plan of a profile together with its source reader.

    Args:
        profile_name: One of PLANS
        config: Full configuration dictionary

    Returns:
        ImportPlan ready to be run by the orchestrator

    Raises:
        ValueError: If the profile is unknown
    """
    if profile_name not in PLANS:
        raise ValueError(f"Unknown source profile '{profile_name}'. Must be one of: {sorted(PLANS)}")

    source_config = config.get('source', {})
    files = source_config.get('files') or {}

    if profile_name == 'flarum':
        source = SqlSource(
            database_url=source_config.get('database_url'),
            batch_size=config.get('migration', {}).get('batch_size', SqlSource.DEFAULT_BATCH_SIZE)
        )
    elif profile_name == 'csv_dump':
        source = CsvSource(files)
    else:
        source = JsonSource(files, keys=source_config.get('json_keys'))

    logger.debug(f"Built '{profile_name}' plan")
    return PLANS[profile_name](source, config)


__all__ = [
    'build_plan',
    'prefixed',
    'username_for',
    'CsvDumpPlan',
    'FlarumPlan',
    'ImportPlan',
    'JsonExportPlan',
    'PLANS'
]
