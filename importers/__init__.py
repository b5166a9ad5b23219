"""Import package for legacy forum to Discourse migration.

This package provides the durable identity map, the target platform
abstraction and the batched import pipeline that creates target entities
exactly once.

Package Structure:
- identity_map: Durable (kind, source_id) -> target_id store (sqlite)
- target_platform: TargetPlatform interface and DryRunTarget
- discourse_client: REST API client for Discourse
- import_pipeline: Batched, resumable per-stage importer
- inspection_writer: Dry-run before/after inspection files

Key Features:
- Resumable imports: committed records are skipped on re-run
- Batch level existence checks against the identity map
- Soft dependency fallbacks (system user, default category)
- Hard dependency failures for replies without a known thread
- Dry-run mode against an in-memory copy of the identity map

Configuration Referenced:
- target.*: Discourse API settings and fallbacks
- migration.*: Batch size, read-ahead, dry run and inspection settings
- identity_map.*: Identity map location
"""

from .discourse_client import DiscourseClient
from .identity_map import DuplicateMappingError, IdentityMap
from .import_pipeline import ImportPipeline
from .inspection_writer import InspectionWriter
from .target_platform import (
    SYSTEM_USER_ID,
    CreatedEntity,
    DryRunTarget,
    TargetPlatform,
    TargetUnavailableError,
    TargetValidationError,
)

__all__ = [
    'CreatedEntity',
    'DiscourseClient',
    'DryRunTarget',
    'DuplicateMappingError',
    'IdentityMap',
    'ImportPipeline',
    'InspectionWriter',
    'SYSTEM_USER_ID',
    'TargetPlatform',
    'TargetUnavailableError',
    'TargetValidationError',
]
