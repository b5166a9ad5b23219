"""
Import pipeline for legacy forum content.

One stage imports one entity kind. Stages are batched and idempotent: every
record already present in the identity map is skipped, so an interrupted
import is resumed by simply running it again.
"""

import logging
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from tqdm import tqdm

from converters.markup_transcoder import MarkupTranscoder
from logger import ProgressTracker
from models import (
    REQUIRED_FIELDS,
    EntityKind,
    Identifier,
    RecordError,
    RecordFailure,
    StageStats,
    UnresolvedDependencyError,
    parse_timestamp,
)
from sources.prefetch import prefetch_batches
from .identity_map import IdentityMap
from .inspection_writer import InspectionWriter
from .target_platform import SYSTEM_USER_ID, CreatedEntity, TargetPlatform, TargetValidationError

logger = logging.getLogger('forum_import.importers.import_pipeline')

Mapper = Callable[[Dict[str, Any]], Optional[Dict[str, Any]]]

DEFAULT_BATCH_SIZE = 1000

# Topics are committed under their first post: replies resolve them by post id
_COMMIT_KIND = {
    EntityKind.GROUP: EntityKind.GROUP,
    EntityKind.USER: EntityKind.USER,
    EntityKind.CATEGORY: EntityKind.CATEGORY,
    EntityKind.TOPIC: EntityKind.POST,
    EntityKind.POST: EntityKind.POST,
}


class ImportPipeline:
    """Runs batched, idempotent import stages against a target platform."""

    def __init__(
        self,
        identity_map: IdentityMap,
        target: TargetPlatform,
        transcoder: Optional[MarkupTranscoder] = None,
        config: Dict[str, Any] = None,
        inspection_writer: Optional[InspectionWriter] = None,
        logger: logging.Logger = None
    ):
        """
        Initialize the pipeline.

        Args:
            identity_map: Map of already imported records
            target: Creation API of the target platform
            transcoder: Body transcoder (built from config when omitted)
            config: Full configuration dictionary
            inspection_writer: Receives raw and transcoded bodies (dry runs)
            logger: Optional logger instance
        """
        self.config = config or {}
        self.logger = logger or logging.getLogger('forum_import.importers.import_pipeline')
        self.identity_map = identity_map
        self.target = target
        self.transcoder = transcoder or MarkupTranscoder(
            thread_lookup=identity_map.resolve_thread,
            config=self.config
        )
        self.inspection_writer = inspection_writer

        migration_config = self.config.get('migration', {})
        target_config = self.config.get('target', {})

        self.batch_size = int(migration_config.get('batch_size', DEFAULT_BATCH_SIZE))
        self.read_ahead = int(migration_config.get('read_ahead', 1))
        self.fallback_user_id: Identifier = target_config.get(
            'fallback_user_id', getattr(target, 'fallback_user_id', SYSTEM_USER_ID)
        )
        self.fallback_category_id: Optional[Identifier] = target_config.get('fallback_category_id')
        self.show_progress = self.config.get('advanced', {}).get('progress_bars', True)

        self._stop_requested = threading.Event()
        self._handlers = {
            EntityKind.GROUP: self._import_group,
            EntityKind.USER: self._import_user,
            EntityKind.CATEGORY: self._import_category,
            EntityKind.TOPIC: self._import_topic,
            EntityKind.POST: self._import_post,
        }

    def request_stop(self) -> None:
        """Ask the running stage to stop before its next batch."""
        self.logger.warning("Stop requested; finishing the current batch")
        self._stop_requested.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested.is_set()

    def import_groups(self, records: Iterable[Dict[str, Any]], mapper: Optional[Mapper] = None) -> StageStats:
        return self.run_stage(EntityKind.GROUP, records, mapper)

    def import_users(self, records: Iterable[Dict[str, Any]], mapper: Optional[Mapper] = None) -> StageStats:
        return self.run_stage(EntityKind.USER, records, mapper)

    def import_categories(self, records: Iterable[Dict[str, Any]], mapper: Optional[Mapper] = None) -> StageStats:
        return self.run_stage(EntityKind.CATEGORY, records, mapper)

    def import_topics(self, records: Iterable[Dict[str, Any]], mapper: Optional[Mapper] = None) -> StageStats:
        return self.run_stage(EntityKind.TOPIC, records, mapper)

    def import_posts(self, records: Iterable[Dict[str, Any]], mapper: Optional[Mapper] = None) -> StageStats:
        return self.run_stage(EntityKind.POST, records, mapper)

    def run_stage(
        self,
        kind: EntityKind,
        records: Iterable[Dict[str, Any]],
        mapper: Optional[Mapper] = None
    ) -> StageStats:
        """
        Import every record of one kind.

        Args:
            kind: Entity kind of the stage
            records: Source rows (canonical records when no mapper is given)
            mapper: Turns a source row into a canonical record; returning
                None skips the row

        Returns:
            StageStats for the stage
        """
        stats = StageStats(kind=kind)
        seen: Set[str] = set()

        self.logger.info(f"Importing {kind.value}s (batch size {self.batch_size})")

        with ProgressTracker(f"{kind.value}s") as tracker, \
                tqdm(desc=f"Importing {kind.value}s", unit=kind.value, disable=not self.show_progress) as bar:
            for batch in prefetch_batches(records or [], self.batch_size, self.read_ahead):
                if self._stop_requested.is_set():
                    stats.stopped = True
                    self.logger.warning(f"Stopping {kind.value} import before batch {stats.batches + 1}")
                    break

                stats.batches += 1
                self._run_batch(kind, batch, mapper, stats, seen, tracker)
                bar.update(len(batch))

        self.logger.info(
            f"{kind.value}s: {stats.created} created, {stats.skipped} skipped, "
            f"{stats.failed} failed, {stats.fallbacks} fallback(s)"
        )
        return stats

    def _run_batch(
        self,
        kind: EntityKind,
        batch: List[Dict[str, Any]],
        mapper: Optional[Mapper],
        stats: StageStats,
        seen: Set[str],
        tracker: ProgressTracker
    ) -> None:
        prepared = self._prepare_batch(kind, batch, mapper, stats, seen, tracker)
        if not prepared:
            return

        committed = self.identity_map.existing_batch(_COMMIT_KIND[kind], [source_id for source_id, _ in prepared])
        if len(committed) == len(prepared):
            stats.batches_skipped += 1
            stats.skipped += len(prepared)
            tracker.skip(len(prepared))
            self.logger.debug(f"Batch {stats.batches} of {kind.value}s already imported; skipping")
            return

        for source_id, record in prepared:
            if source_id in committed:
                stats.skipped += 1
                tracker.skip()
                continue
            tracker.increment(self._import_record(kind, source_id, record, stats))

    def _prepare_batch(
        self,
        kind: EntityKind,
        batch: List[Dict[str, Any]],
        mapper: Optional[Mapper],
        stats: StageStats,
        seen: Set[str],
        tracker: ProgressTracker
    ) -> List[Tuple[str, Dict[str, Any]]]:
        """Map, validate and dedupe one batch."""
        prepared = []

        for raw in batch:
            stats.total += 1
            try:
                record = mapper(raw) if mapper else raw
            except (RecordError, KeyError, ValueError, TypeError) as e:
                self._record_failure(stats, kind, _raw_id(raw), f"Mapping failed: {str(e)}", e)
                tracker.increment(success=False)
                continue

            if record is None:
                stats.skipped += 1
                tracker.skip()
                self.logger.debug(f"Mapper skipped {kind.value} row {_raw_id(raw)}")
                continue

            missing = [key for key in REQUIRED_FIELDS[kind] if record.get(key) in (None, '')]
            if missing:
                error = RecordError(f"Missing required field(s): {', '.join(missing)}")
                self._record_failure(stats, kind, _raw_id(record), str(error), error)
                tracker.increment(success=False)
                continue

            source_id = str(record['id'])
            if source_id in seen:
                stats.skipped += 1
                tracker.skip()
                self.logger.warning(f"Duplicate {kind.value} {source_id} in source; keeping the first")
                continue
            seen.add(source_id)
            prepared.append((source_id, record))

        return prepared

    def _import_record(self, kind: EntityKind, source_id: str, record: Dict[str, Any], stats: StageStats) -> bool:
        try:
            self._handlers[kind](source_id, record, stats)
        except RecordError as e:
            self._record_failure(stats, kind, source_id, str(e), e)
            return False

        stats.created += 1
        return True

    def _record_failure(
        self,
        stats: StageStats,
        kind: EntityKind,
        source_id: Optional[str],
        reason: str,
        error: Exception
    ) -> None:
        self.logger.error(f"Skipping {kind.value} {source_id}: {reason}")
        stats.add_failure(RecordFailure(
            kind=kind,
            source_id=source_id,
            reason=reason,
            error_type=type(error).__name__
        ))

    # Dependency resolution

    def _resolve_user(self, record: Dict[str, Any], stats: StageStats, key: str = 'user_id') -> Identifier:
        source_user_id = record.get(key)
        user_id = self.identity_map.resolve(EntityKind.USER, source_user_id)
        if user_id is not None:
            return user_id

        stats.fallbacks += 1
        self.logger.debug(
            f"Author {source_user_id} of record {record.get('id')} not imported; "
            f"using fallback user {self.fallback_user_id}"
        )
        return self.fallback_user_id

    def _resolve_category(self, record: Dict[str, Any], stats: StageStats, key: str) -> Optional[Identifier]:
        source_category_id = record.get(key)
        if source_category_id in (None, ''):
            return self.fallback_category_id

        category_id = self.identity_map.resolve(EntityKind.CATEGORY, source_category_id)
        if category_id is not None:
            return category_id

        stats.fallbacks += 1
        self.logger.debug(
            f"Category {source_category_id} of record {record.get('id')} not imported; "
            f"using fallback category {self.fallback_category_id}"
        )
        return self.fallback_category_id

    def _resolve_groups(self, record: Dict[str, Any]) -> List[Identifier]:
        group_ids = []
        for source_group_id in record.get('group_ids') or []:
            group_id = self.identity_map.resolve(EntityKind.GROUP, source_group_id)
            if group_id is None:
                self.logger.debug(f"Group {source_group_id} of user {record.get('id')} not imported; skipping")
                continue
            group_ids.append(group_id)
        return group_ids

    def _transcode(self, source_id: str, raw: str):
        body = self.transcoder.transcode(raw, source_id=source_id)
        if self.inspection_writer is not None:
            self.inspection_writer.write(source_id, raw, body.text)
        return body

    def _run_post_create_action(self, record: Dict[str, Any], created: CreatedEntity) -> None:
        action = record.get('post_create_action')
        if not callable(action):
            return
        try:
            action(created)
        except TargetValidationError as e:
            self.logger.warning(f"Post-create action of record {record.get('id')} failed: {str(e)}")

    # Per-kind import

    def _import_group(self, source_id: str, record: Dict[str, Any], stats: StageStats) -> None:
        payload = {
            'name': record['name'],
            'full_name': record.get('full_name')
        }
        created = self.target.create_group(payload)
        self.identity_map.record(EntityKind.GROUP, source_id, created.target_id)
        self._run_post_create_action(record, created)

    def _import_user(self, source_id: str, record: Dict[str, Any], stats: StageStats) -> None:
        payload = {
            'username': record['username'],
            'email': record['email'],
            'name': record.get('name'),
            'created_at': parse_timestamp(record.get('created_at')),
            'bio_raw': record.get('bio_raw'),
            'location': record.get('location'),
            'avatar_url': record.get('avatar_url')
        }
        group_ids = self._resolve_groups(record)

        created = self.target.create_user(payload)
        self.identity_map.record(EntityKind.USER, source_id, created.target_id)

        username = created.username or record['username']
        for group_id in group_ids:
            try:
                self.target.add_group_members(group_id, [username])
            except TargetValidationError as e:
                self.logger.warning(f"Could not add user {source_id} to group {group_id}: {str(e)}")
        self._run_post_create_action(record, created)

    def _import_category(self, source_id: str, record: Dict[str, Any], stats: StageStats) -> None:
        payload = {
            'name': record['name'],
            'description': record.get('description'),
            'parent_category_id': self._resolve_category(record, stats, 'parent_category_id'),
            'user_id': self._resolve_user(record, stats),
            'position': record.get('position')
        }
        created = self.target.create_category(payload)
        self.identity_map.record(EntityKind.CATEGORY, source_id, created.target_id)

    def _import_topic(self, source_id: str, record: Dict[str, Any], stats: StageStats) -> None:
        thread_id = record.get('thread_id')
        thread_key = source_id if thread_id in (None, '') else str(thread_id)
        mapped_topic = self.identity_map.resolve(EntityKind.TOPIC, thread_key)
        if mapped_topic is not None:
            raise RecordError(f"Thread {thread_key} is already imported as topic {mapped_topic!r}")

        body = self._transcode(source_id, record['raw'])
        payload = {
            'title': self.transcoder.transcode_title(record['title']),
            'raw': body.text,
            'user_id': self._resolve_user(record, stats),
            'category_id': self._resolve_category(record, stats, 'category_id'),
            'created_at': parse_timestamp(record.get('created_at'))
        }

        created = self.target.create_topic(payload)
        self.identity_map.record_topic(
            source_id, created.target_id, thread_key, created.topic_id,
            post_number=created.post_number or 1
        )

    def _import_post(self, source_id: str, record: Dict[str, Any], stats: StageStats) -> None:
        thread = self.identity_map.resolve_thread(record['first_post_id'])
        if thread is None:
            raise UnresolvedDependencyError(
                f"Parent post {record['first_post_id']} doesn't exist"
            )

        body = self._transcode(source_id, record['raw'])
        payload = {
            'raw': body.text,
            'topic_id': thread.topic_id,
            'user_id': self._resolve_user(record, stats),
            'created_at': parse_timestamp(record.get('created_at')),
            'reply_to_post_number': self._reply_to(body, thread.topic_id)
        }

        created = self.target.create_post(payload, thread)
        self.identity_map.record(
            EntityKind.POST, source_id, created.target_id,
            topic_id=thread.topic_id, post_number=created.post_number
        )

    def _reply_to(self, body, topic_id: Identifier) -> Optional[int]:
        """Only a mention of a post in the same topic becomes a reply link."""
        if body.reply_to_post_number is None or not body.mentions:
            return None
        if body.mentions[-1].get('topic_id') != topic_id:
            self.logger.debug("Last mention points into another topic; not linking as reply")
            return None
        return body.reply_to_post_number


def _raw_id(raw: Any) -> Optional[str]:
    if isinstance(raw, dict) and raw.get('id') is not None:
        return str(raw['id'])
    return None


__all__ = ['DEFAULT_BATCH_SIZE', 'ImportPipeline', 'Mapper']
