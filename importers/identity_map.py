"""
Identity map for resumable forum imports.

This module tracks which source records already exist on the target platform
and which identifier the platform assigned to them. The map is backed by a
SQLite database so an interrupted import can be re-run from the start and
skip everything that was already committed.
"""

import logging
import sqlite3
import threading
from typing import Any, Dict, Iterable, Optional, Set

from models import EntityKind, Identifier, RecordError, TopicThread

logger = logging.getLogger('forum_import.importers.identity_map')

# Stay well below SQLite's bound parameter limit
_QUERY_CHUNK = 500

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS id_mappings (
        kind TEXT NOT NULL,
        namespace TEXT NOT NULL,
        source_id TEXT NOT NULL,
        target_id NOT NULL,
        topic_id,
        post_number INTEGER,
        created_at TEXT DEFAULT CURRENT_TIMESTAMP,
        PRIMARY KEY (kind, namespace, source_id),
        UNIQUE (kind, namespace, target_id)
    );
"""

_TOPIC_INDEX = """
    CREATE INDEX IF NOT EXISTS idx_id_mappings_topic
    ON id_mappings (kind, namespace, topic_id);
"""


class DuplicateMappingError(RecordError):
    """A mapping conflicts with one already recorded."""

    def __init__(self, kind: EntityKind, source_id: str, target_id: Identifier, existing: str):
        self.kind = kind
        self.source_id = source_id
        self.target_id = target_id
        super().__init__(
            f"Cannot map {kind.value} '{source_id}' to {target_id!r}: {existing}"
        )


class IdentityMap:
    """Durable mapping of (kind, namespace, source id) to target identifiers."""

    def __init__(
        self,
        path: str = ':memory:',
        namespace: str = '',
        logger: Optional[logging.Logger] = None,
        connection: Optional[sqlite3.Connection] = None
    ):
        """
        Open (or create) an identity map.

        Args:
            path: SQLite database file, ':memory:' for a transient map
            namespace: Import prefix separating imports that share a target
            logger: Optional logger instance
            connection: Already opened connection (used by snapshot())
        """
        self.path = path
        self.namespace = namespace or ''
        self.logger = logger or logging.getLogger('forum_import.importers.identity_map')
        self._lock = threading.Lock()

        if connection is None:
            connection = sqlite3.connect(path, timeout=30.0, check_same_thread=False)
            if path != ':memory:':
                try:
                    connection.execute("PRAGMA journal_mode=WAL;")
                    connection.execute("PRAGMA synchronous=NORMAL;")
                except sqlite3.Error as e:
                    self.logger.warning(f"Could not set PRAGMA settings: {e}")
        self._conn = connection
        self._conn.execute(_SCHEMA)
        self._conn.execute(_TOPIC_INDEX)
        self._conn.commit()

        self.logger.debug(f"Opened identity map {path} (namespace '{self.namespace}')")

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'IdentityMap':
        """Create an identity map from the 'identity_map' and 'migration' sections."""
        path = config.get('identity_map', {}).get('path', './identity_map.sqlite3')
        namespace = config.get('migration', {}).get('import_prefix', '')
        return cls(path=path, namespace=str(namespace or ''))

    def record(
        self,
        kind: EntityKind,
        source_id: Any,
        target_id: Identifier,
        topic_id: Optional[Identifier] = None,
        post_number: Optional[int] = None
    ) -> bool:
        """
        Record the target id of a freshly persisted entity.

        Recording an identical mapping twice is a no-op and returns False.

        Raises:
            DuplicateMappingError: If the source id is already mapped to a
                different target, or the target is claimed by another source id
        """
        source_id = str(source_id)

        with self._lock:
            if not self._is_new(kind, source_id, target_id):
                return False
            with self._conn:
                self._insert(kind, source_id, target_id, topic_id, post_number)

        self.logger.debug(f"Mapping added: {kind.value}:{source_id} -> {target_id!r}")
        return True

    def record_topic(
        self,
        post_source_id: Any,
        post_target_id: Identifier,
        thread_source_id: Any,
        topic_id: Identifier,
        post_number: int = 1
    ) -> None:
        """
        Record a topic's first post and the topic itself in one transaction.

        Both mappings are checked before either is written, so a conflict on
        one leaves the map without the other.

        Args:
            post_source_id: Source id of the topic's first post
            post_target_id: Target id of the created first post
            thread_source_id: Source id of the thread (discussion)
            topic_id: Target topic id
            post_number: Post number of the first post

        Raises:
            DuplicateMappingError: If either mapping conflicts
        """
        post_source_id = str(post_source_id)
        thread_source_id = str(thread_source_id)

        with self._lock:
            new_post = self._is_new(EntityKind.POST, post_source_id, post_target_id)
            new_topic = self._is_new(EntityKind.TOPIC, thread_source_id, topic_id)
            with self._conn:
                if new_post:
                    self._insert(EntityKind.POST, post_source_id, post_target_id, topic_id, post_number)
                if new_topic:
                    self._insert(EntityKind.TOPIC, thread_source_id, topic_id, None, None)

        self.logger.debug(
            f"Topic mapping added: post:{post_source_id} -> {post_target_id!r}, "
            f"topic:{thread_source_id} -> {topic_id!r}"
        )

    def _is_new(self, kind: EntityKind, source_id: str, target_id: Identifier) -> bool:
        """False for an identical existing mapping; raises on a conflicting one."""
        existing = self._lookup(kind, source_id)
        if existing is not None:
            if existing['target_id'] == target_id:
                return False
            raise DuplicateMappingError(
                kind, source_id, target_id,
                f"already mapped to {existing['target_id']!r}"
            )

        row = self._conn.execute(
            "SELECT source_id FROM id_mappings "
            "WHERE kind = ? AND namespace = ? AND target_id = ?",
            (kind.value, self.namespace, target_id)
        ).fetchone()
        if row is not None:
            raise DuplicateMappingError(
                kind, source_id, target_id,
                f"target already claimed by source id '{row[0]}'"
            )
        return True

    def _insert(
        self,
        kind: EntityKind,
        source_id: str,
        target_id: Identifier,
        topic_id: Optional[Identifier],
        post_number: Optional[int]
    ) -> None:
        self._conn.execute(
            "INSERT INTO id_mappings "
            "(kind, namespace, source_id, target_id, topic_id, post_number) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (kind.value, self.namespace, source_id, target_id, topic_id, post_number)
        )

    def resolve(self, kind: EntityKind, source_id: Any) -> Optional[Identifier]:
        """Return the target id for a source id, or None if it was never imported."""
        if source_id is None:
            return None
        existing = self._lookup(kind, str(source_id))
        return existing['target_id'] if existing else None

    def exists(self, kind: EntityKind, source_id: Any) -> bool:
        return self.resolve(kind, source_id) is not None

    def existing_batch(self, kind: EntityKind, source_ids: Iterable[Any]) -> Set[str]:
        """
        Bulk existence check.

        Args:
            kind: Entity kind
            source_ids: Source ids to check

        Returns:
            The subset of source ids (as strings) that are already mapped
        """
        wanted = [str(source_id) for source_id in set(source_ids)]
        found: Set[str] = set()

        for start in range(0, len(wanted), _QUERY_CHUNK):
            chunk = wanted[start:start + _QUERY_CHUNK]
            placeholders = ','.join('?' * len(chunk))
            rows = self._conn.execute(
                f"SELECT source_id FROM id_mappings "
                f"WHERE kind = ? AND namespace = ? AND source_id IN ({placeholders})",
                (kind.value, self.namespace, *chunk)
            ).fetchall()
            found.update(row[0] for row in rows)

        return found

    def resolve_thread(self, post_source_id: Any) -> Optional[TopicThread]:
        """
        Resolve an imported post (normally a thread's first post) to its topic.

        Returns:
            TopicThread with the topic id, the post's number and the next
            post number of the topic, or None if the post was never imported
        """
        if post_source_id is None:
            return None

        existing = self._lookup(EntityKind.POST, str(post_source_id))
        if existing is None or existing['topic_id'] is None:
            return None

        row = self._conn.execute(
            "SELECT MAX(post_number) FROM id_mappings "
            "WHERE kind = ? AND namespace = ? AND topic_id = ?",
            (EntityKind.POST.value, self.namespace, existing['topic_id'])
        ).fetchone()
        highest = row[0] or existing['post_number'] or 1

        return TopicThread(
            topic_id=existing['topic_id'],
            post_number=existing['post_number'] or 1,
            next_post_number=highest + 1
        )

    def count(self, kind: Optional[EntityKind] = None) -> int:
        """Count mappings in this namespace, optionally for one kind."""
        if kind is None:
            row = self._conn.execute(
                "SELECT COUNT(*) FROM id_mappings WHERE namespace = ?",
                (self.namespace,)
            ).fetchone()
        else:
            row = self._conn.execute(
                "SELECT COUNT(*) FROM id_mappings WHERE kind = ? AND namespace = ?",
                (kind.value, self.namespace)
            ).fetchone()
        return row[0]

    def get_statistics(self) -> Dict[str, Any]:
        """Get mapping counts per kind."""
        by_kind = {kind.value: 0 for kind in EntityKind}
        rows = self._conn.execute(
            "SELECT kind, COUNT(*) FROM id_mappings WHERE namespace = ? GROUP BY kind",
            (self.namespace,)
        ).fetchall()
        for kind_value, total in rows:
            by_kind[kind_value] = total

        return {
            'namespace': self.namespace,
            'total': sum(by_kind.values()),
            'by_kind': by_kind
        }

    def snapshot(self) -> 'IdentityMap':
        """
        Copy this map into a transient in-memory map.

        Dry runs write to the copy so the durable map stays untouched.
        """
        memory = sqlite3.connect(':memory:', check_same_thread=False)
        with self._lock:
            self._conn.backup(memory)
        return IdentityMap(
            path=':memory:',
            namespace=self.namespace,
            logger=self.logger,
            connection=memory
        )

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> 'IdentityMap':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _lookup(self, kind: EntityKind, source_id: str) -> Optional[Dict[str, Any]]:
        row = self._conn.execute(
            "SELECT target_id, topic_id, post_number FROM id_mappings "
            "WHERE kind = ? AND namespace = ? AND source_id = ?",
            (kind.value, self.namespace, source_id)
        ).fetchone()
        if row is None:
            return None
        return {'target_id': row[0], 'topic_id': row[1], 'post_number': row[2]}


__all__ = ['DuplicateMappingError', 'IdentityMap']
