"""Base import plan: what a mapping profile hands to the orchestrator."""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from models import EntityKind
from sources.base_source import BaseSource


class ImportPlan:
    """
    Canonical records of one source, per entity kind.

    Subclasses override the kinds their source provides; the others stay
    empty. Every method returns a fresh iterable, so a plan can be run more
    than once.
    """

    name = 'base'

    def __init__(self, source: BaseSource, config: Dict[str, Any] = None, logger: Optional[logging.Logger] = None):
        self.source = source
        self.config = config or {}
        self.logger = logger or logging.getLogger(f'forum_import.mappings.{self.name}')
        self.import_prefix = self.config.get('migration', {}).get('import_prefix', '') or ''

    def groups(self) -> Iterable[Dict[str, Any]]:
        return []

    def users(self) -> Iterable[Dict[str, Any]]:
        return []

    def categories(self) -> Iterable[Dict[str, Any]]:
        return []

    def topics(self) -> Iterable[Dict[str, Any]]:
        return []

    def posts(self) -> Iterable[Dict[str, Any]]:
        return []

    def stages(self) -> List[Tuple[EntityKind, Iterable[Dict[str, Any]]]]:
        """Record iterables in import order."""
        return [
            (EntityKind.GROUP, self.groups()),
            (EntityKind.USER, self.users()),
            (EntityKind.CATEGORY, self.categories()),
            (EntityKind.TOPIC, self.topics()),
            (EntityKind.POST, self.posts()),
        ]

    def close(self) -> None:
        self.source.close()


__all__ = ['ImportPlan']
