"""
Creation API of the target discussion platform.

The import pipeline only talks to a TargetPlatform. Payloads carry target
identifiers: the pipeline resolves every source reference through the
identity map before calling create_*.
"""

import itertools
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from models import Identifier, ImportToolError, RecordError, TopicThread

logger = logging.getLogger('forum_import.importers.target_platform')

SYSTEM_USER_ID = -1


class TargetValidationError(RecordError):
    """The target platform rejected one record."""

    def __init__(self, message: str, status_code: Optional[int] = None, errors: Optional[List[str]] = None):
        self.status_code = status_code
        self.errors = errors or []
        super().__init__(message)


class TargetUnavailableError(ImportToolError):
    """The target platform cannot be reached; the import must stop."""
    pass


@dataclass(frozen=True)
class CreatedEntity:
    """Identifiers the target assigned to a freshly created entity."""

    target_id: Identifier
    topic_id: Optional[Identifier] = None
    post_number: Optional[int] = None
    username: Optional[str] = None


class TargetPlatform(ABC):
    """Creation API consumed by the import pipeline."""

    fallback_user_id: Identifier = SYSTEM_USER_ID

    @abstractmethod
    def create_group(self, payload: Dict[str, Any]) -> CreatedEntity:
        """Create a group from {name, full_name}."""

    @abstractmethod
    def create_user(self, payload: Dict[str, Any]) -> CreatedEntity:
        """Create a user from {username, email, name, created_at, bio_raw, location, avatar_url}."""

    @abstractmethod
    def create_category(self, payload: Dict[str, Any]) -> CreatedEntity:
        """Create a category from {name, description, parent_category_id, user_id, position}."""

    @abstractmethod
    def create_topic(self, payload: Dict[str, Any]) -> CreatedEntity:
        """
        Create a topic and its first post from
        {title, raw, user_id, category_id, created_at}.

        Returns:
            CreatedEntity whose target_id is the first post's id, with the
            topic id and the post number (1)
        """

    @abstractmethod
    def create_post(self, payload: Dict[str, Any], thread: TopicThread) -> CreatedEntity:
        """
        Create a reply from {raw, topic_id, user_id, created_at, reply_to_post_number}.

        Args:
            payload: Reply payload
            thread: Resolved position of the topic's first post
        """

    @abstractmethod
    def add_group_members(self, group_id: Identifier, usernames: List[str]) -> None:
        """Add existing users to a group."""


class DryRunTarget(TargetPlatform):
    """
    Target that persists nothing and hands out synthetic identifiers.

    Used for dry runs: every create succeeds, so the pipeline exercises
    mapping, transcoding and dependency resolution end to end. Synthetic ids
    are strings so they never collide with real ids already in the map.
    """

    def __init__(self, fallback_user_id: Identifier = SYSTEM_USER_ID, logger: logging.Logger = None):
        self.fallback_user_id = fallback_user_id
        self.logger = logger or logging.getLogger('forum_import.importers.target_platform')
        self._counter = itertools.count(1)
        self._topic_ids = itertools.count(1)
        self._next_post_numbers: Dict[Identifier, int] = {}
        self.created: Dict[str, List[Dict[str, Any]]] = {
            'group': [], 'user': [], 'category': [], 'topic': [], 'post': []
        }
        self.memberships: Dict[Identifier, List[str]] = {}

    def _next_id(self, kind: str) -> str:
        return f"dry-run-{kind}-{next(self._counter)}"

    def _remember(self, kind: str, payload: Dict[str, Any], entity: CreatedEntity) -> CreatedEntity:
        self.created[kind].append(dict(payload, target_id=entity.target_id))
        self.logger.debug(f"[DRY RUN] Would create {kind}: {entity.target_id}")
        return entity

    def create_group(self, payload: Dict[str, Any]) -> CreatedEntity:
        return self._remember('group', payload, CreatedEntity(target_id=self._next_id('group')))

    def create_user(self, payload: Dict[str, Any]) -> CreatedEntity:
        entity = CreatedEntity(target_id=self._next_id('user'), username=payload.get('username'))
        return self._remember('user', payload, entity)

    def create_category(self, payload: Dict[str, Any]) -> CreatedEntity:
        return self._remember('category', payload, CreatedEntity(target_id=self._next_id('category')))

    def create_topic(self, payload: Dict[str, Any]) -> CreatedEntity:
        topic_id = f"dry-run-topic-{next(self._topic_ids)}"
        self._next_post_numbers[topic_id] = 2
        entity = CreatedEntity(target_id=self._next_id('post'), topic_id=topic_id, post_number=1)
        return self._remember('topic', payload, entity)

    def create_post(self, payload: Dict[str, Any], thread: TopicThread) -> CreatedEntity:
        topic_id = payload['topic_id']
        post_number = max(self._next_post_numbers.get(topic_id, 0), thread.next_post_number)
        self._next_post_numbers[topic_id] = post_number + 1
        entity = CreatedEntity(target_id=self._next_id('post'), topic_id=topic_id, post_number=post_number)
        return self._remember('post', payload, entity)

    def add_group_members(self, group_id: Identifier, usernames: List[str]) -> None:
        self.memberships.setdefault(group_id, []).extend(usernames)
        self.logger.debug(f"[DRY RUN] Would add {', '.join(usernames)} to group {group_id}")


__all__ = [
    'CreatedEntity',
    'DryRunTarget',
    'SYSTEM_USER_ID',
    'TargetPlatform',
    'TargetUnavailableError',
    'TargetValidationError'
]
