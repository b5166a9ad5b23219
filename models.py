"""Data models for the forum import pipeline."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from dateutil import parser as date_parser

logger = logging.getLogger('forum_import')

Identifier = Union[int, str]


class ImportToolError(Exception):
    """Base exception for import errors."""
    pass


class RecordError(ImportToolError):
    """A single source record is malformed and cannot be imported."""
    pass


class UnresolvedDependencyError(RecordError):
    """A hard foreign reference of a record could not be resolved."""
    pass


class EntityKind(Enum):
    """Kinds of entities tracked by the identity map, in import order."""
    GROUP = "group"
    USER = "user"
    CATEGORY = "category"
    TOPIC = "topic"
    POST = "post"

    @classmethod
    def import_order(cls) -> List['EntityKind']:
        return [cls.GROUP, cls.USER, cls.CATEGORY, cls.TOPIC, cls.POST]


# Canonical record keys the pipeline relies on, per kind
REQUIRED_FIELDS = {
    EntityKind.GROUP: ('id', 'name'),
    EntityKind.USER: ('id', 'username', 'email'),
    EntityKind.CATEGORY: ('id', 'name'),
    EntityKind.TOPIC: ('id', 'title', 'raw'),
    EntityKind.POST: ('id', 'raw', 'first_post_id'),
}


@dataclass(frozen=True)
class ExternalRecord:
    """Mapping between a source id and the id the target platform assigned."""

    kind: EntityKind
    source_id: str
    target_id: Optional[Identifier] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind.value,
            'source_id': self.source_id,
            'target_id': self.target_id
        }


@dataclass(frozen=True)
class TopicThread:
    """Resolved position of an imported post inside its topic."""

    topic_id: Identifier
    post_number: int
    next_post_number: int


@dataclass
class TranscodedBody:
    """Result of transcoding one legacy body."""

    text: str
    reply_to_post_number: Optional[int] = None
    mentions: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class RecordFailure:
    """A record skipped because of a record-level error."""

    kind: EntityKind
    source_id: Optional[str]
    reason: str
    error_type: str = 'RecordError'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind.value,
            'source_id': self.source_id,
            'reason': self.reason,
            'error_type': self.error_type
        }


@dataclass
class StageStats:
    """Counters for one import stage (one entity kind)."""

    kind: EntityKind
    total: int = 0
    created: int = 0
    skipped: int = 0
    failed: int = 0
    fallbacks: int = 0
    batches: int = 0
    batches_skipped: int = 0
    stopped: bool = False
    failures: List[RecordFailure] = field(default_factory=list)

    def add_failure(self, failure: RecordFailure) -> None:
        self.failed += 1
        self.failures.append(failure)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind.value,
            'total': self.total,
            'created': self.created,
            'skipped': self.skipped,
            'failed': self.failed,
            'fallbacks': self.fallbacks,
            'batches': self.batches,
            'batches_skipped': self.batches_skipped,
            'stopped': self.stopped,
            'failures': [failure.to_dict() for failure in self.failures]
        }


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a legacy timestamp into an aware datetime.

    Accepts datetimes, unix epoch numbers and date strings. Naive values
    are taken as UTC.

    Raises:
        RecordError: If the value cannot be parsed
    """
    if value is None or value == '':
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(value, tz=timezone.utc)
    else:
        text = str(value).strip()
        if text.isdigit():
            parsed = datetime.fromtimestamp(int(text), tz=timezone.utc)
        else:
            try:
                parsed = date_parser.parse(text)
            except (ValueError, OverflowError) as e:
                raise RecordError(f"Malformed date '{value}': {str(e)}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


__all__ = [
    'EntityKind',
    'ExternalRecord',
    'Identifier',
    'ImportToolError',
    'RecordError',
    'RecordFailure',
    'REQUIRED_FIELDS',
    'StageStats',
    'TopicThread',
    'TranscodedBody',
    'UnresolvedDependencyError',
    'parse_timestamp'
]
