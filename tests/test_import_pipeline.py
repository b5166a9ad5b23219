"""Tests for the batched, resumable import pipeline."""

import itertools
import unittest

from importers.identity_map import IdentityMap
from importers.import_pipeline import ImportPipeline
from importers.target_platform import (
    CreatedEntity,
    DryRunTarget,
    TargetUnavailableError,
    TargetValidationError,
)
from models import EntityKind

CONFIG = {
    'migration': {'batch_size': 3, 'read_ahead': 0},
    'advanced': {'progress_bars': False}
}


def user(index):
    return {'id': index, 'username': f'user{index}', 'email': f'user{index}@example.com'}


class CountingTarget(DryRunTarget):
    """DryRunTarget whose ids start at an offset and that can go down after N users."""

    def __init__(self, start=1, fail_after=None, reject=()):
        super().__init__()
        self._counter = itertools.count(start)
        self.fail_after = fail_after
        self.reject = set(reject)
        self.user_calls = 0

    def create_user(self, payload):
        if self.fail_after is not None and self.user_calls >= self.fail_after:
            raise TargetUnavailableError("connection refused")
        self.user_calls += 1
        if payload['username'] in self.reject:
            raise TargetValidationError("Username is already taken", status_code=422)
        return super().create_user(payload)


class ClashingTarget(CountingTarget):
    """Hands out an already used topic or post id for bodies marked 'clash'."""

    def create_topic(self, payload):
        entity = super().create_topic(payload)
        if 'clash' in payload['raw']:
            return CreatedEntity(target_id=entity.target_id, topic_id='dry-run-topic-1', post_number=1)
        return entity

    def create_post(self, payload, thread):
        entity = super().create_post(payload, thread)
        if 'clash' in payload['raw']:
            first_post = self.created['topic'][0]['target_id']
            return CreatedEntity(target_id=first_post, topic_id=entity.topic_id, post_number=entity.post_number)
        return entity


class TestUserStage(unittest.TestCase):
    def setUp(self):
        self.identity_map = IdentityMap()

    def tearDown(self):
        self.identity_map.close()

    def test_rerun_creates_nothing(self):
        target = CountingTarget()
        pipeline = ImportPipeline(self.identity_map, target, config=CONFIG)
        records = [user(i) for i in range(5)]

        first = pipeline.import_users(records)
        second = pipeline.import_users(records)

        self.assertEqual(first.created, 5)
        self.assertEqual(second.created, 0)
        self.assertEqual(second.skipped, 5)
        self.assertEqual(len(target.created['user']), 5)
        self.assertEqual(self.identity_map.count(EntityKind.USER), 5)

    def test_resume_after_target_outage(self):
        records = [user(i) for i in range(10)]

        failing = ImportPipeline(self.identity_map, CountingTarget(fail_after=6), config=CONFIG)
        with self.assertRaises(TargetUnavailableError):
            failing.import_users(records)
        self.assertEqual(self.identity_map.count(EntityKind.USER), 6)

        target = CountingTarget(start=100)
        stats = ImportPipeline(self.identity_map, target, config=CONFIG).import_users(records)

        self.assertEqual(stats.created, 4)
        self.assertEqual(stats.skipped, 6)
        self.assertEqual(stats.batches_skipped, 2)
        self.assertEqual(len(target.created['user']), 4)
        self.assertEqual(self.identity_map.count(EntityKind.USER), 10)

    def test_rejected_record_is_skipped_and_import_continues(self):
        target = CountingTarget(reject={'user1'})
        stats = ImportPipeline(self.identity_map, target, config=CONFIG).import_users(
            [user(i) for i in range(3)]
        )

        self.assertEqual(stats.created, 2)
        self.assertEqual(stats.failed, 1)
        self.assertEqual(stats.failures[0].source_id, '1')
        self.assertEqual(stats.failures[0].error_type, 'TargetValidationError')
        self.assertFalse(self.identity_map.exists(EntityKind.USER, 1))

    def test_missing_required_field_fails_record(self):
        records = [user(0), {'id': 1, 'username': 'nomail', 'email': ''}]
        stats = ImportPipeline(self.identity_map, CountingTarget(), config=CONFIG).import_users(records)

        self.assertEqual(stats.created, 1)
        self.assertEqual(stats.failed, 1)
        self.assertIn('email', stats.failures[0].reason)

    def test_duplicate_source_rows_are_imported_once(self):
        stats = ImportPipeline(self.identity_map, CountingTarget(), config=CONFIG).import_users(
            [user(1), user(1), user(2)]
        )

        self.assertEqual(stats.created, 2)
        self.assertEqual(stats.skipped, 1)

    def test_mapper_can_skip_and_fail_rows(self):
        def mapper(row):
            if row['kind'] == 'bot':
                return None
            return {'id': row['uid'], 'username': row['login'], 'email': row['mail']}

        rows = [
            {'kind': 'human', 'uid': 1, 'login': 'a', 'mail': 'a@example.com'},
            {'kind': 'bot', 'uid': 2},
            {'kind': 'human', 'uid': 3},
        ]
        stats = ImportPipeline(self.identity_map, CountingTarget(), config=CONFIG).import_users(rows, mapper)

        self.assertEqual(stats.total, 3)
        self.assertEqual(stats.created, 1)
        self.assertEqual(stats.skipped, 1)
        self.assertEqual(stats.failed, 1)

    def test_group_memberships(self):
        pipeline = ImportPipeline(self.identity_map, CountingTarget(), config=CONFIG)
        pipeline.import_groups([{'id': 'r1', 'name': 'moderators'}])
        pipeline.import_users([dict(user(1), group_ids=['r1', 'unknown'])])

        group_id = self.identity_map.resolve(EntityKind.GROUP, 'r1')
        self.assertEqual(pipeline.target.memberships, {group_id: ['user1']})

    def test_post_create_action_receives_created_entity(self):
        seen = []
        record = dict(user(1), post_create_action=seen.append)
        ImportPipeline(self.identity_map, CountingTarget(), config=CONFIG).import_users([record])

        self.assertEqual(len(seen), 1)
        self.assertEqual(seen[0].username, 'user1')

    def test_stop_before_first_batch(self):
        pipeline = ImportPipeline(self.identity_map, CountingTarget(), config=CONFIG)
        pipeline.request_stop()
        stats = pipeline.import_users([user(i) for i in range(5)])

        self.assertTrue(stats.stopped)
        self.assertEqual(stats.created, 0)
        self.assertEqual(self.identity_map.count(), 0)


class TestTopicAndPostStages(unittest.TestCase):
    def setUp(self):
        self.identity_map = IdentityMap()
        self.target = CountingTarget()
        self.pipeline = ImportPipeline(self.identity_map, self.target, config=CONFIG)
        self.pipeline.import_users([user(1)])
        self.pipeline.import_categories([{'id': 'c1', 'name': 'General'}])

    def tearDown(self):
        self.identity_map.close()

    def topic(self, source_id='t1', **extra):
        record = {
            'id': source_id,
            'thread_id': f'd-{source_id}',
            'title': 'Hello &amp; welcome',
            'raw': '<t>First post</t>',
            'user_id': 1,
            'category_id': 'c1',
            'created_at': '2020-01-02 03:04:05'
        }
        record.update(extra)
        return record

    def test_topic_is_recorded_under_first_post_and_thread(self):
        stats = self.pipeline.import_topics([self.topic()])

        self.assertEqual(stats.created, 1)
        self.assertEqual(stats.fallbacks, 0)
        created = self.target.created['topic'][0]
        self.assertEqual(created['title'], 'Hello & welcome')
        self.assertEqual(created['raw'], 'First post')
        self.assertEqual(created['user_id'], self.identity_map.resolve(EntityKind.USER, 1))
        self.assertEqual(created['category_id'], self.identity_map.resolve(EntityKind.CATEGORY, 'c1'))
        self.assertEqual(self.identity_map.resolve(EntityKind.TOPIC, 'd-t1'), 'dry-run-topic-1')
        self.assertEqual(self.identity_map.resolve_thread('t1').post_number, 1)

    def test_topic_rerun_is_skipped(self):
        self.pipeline.import_topics([self.topic()])
        stats = self.pipeline.import_topics([self.topic()])

        self.assertEqual(stats.created, 0)
        self.assertEqual(stats.skipped, 1)
        self.assertEqual(len(self.target.created['topic']), 1)

    def test_unknown_author_and_category_fall_back(self):
        stats = self.pipeline.import_topics([self.topic(user_id=404, category_id='missing')])

        self.assertEqual(stats.created, 1)
        self.assertEqual(stats.fallbacks, 2)
        created = self.target.created['topic'][0]
        self.assertEqual(created['user_id'], -1)
        self.assertIsNone(created['category_id'])

    def test_configured_fallback_category(self):
        config = dict(CONFIG, target={'fallback_category_id': 'cat-9'})
        pipeline = ImportPipeline(self.identity_map, self.target, config=config)
        pipeline.import_topics([self.topic(category_id='missing')])

        self.assertEqual(self.target.created['topic'][0]['category_id'], 'cat-9')

    def test_reply_without_thread_fails(self):
        stats = self.pipeline.import_posts([{'id': 'p9', 'raw': '<t>orphan</t>', 'first_post_id': 'nope'}])

        self.assertEqual(stats.created, 0)
        self.assertEqual(stats.failed, 1)
        self.assertEqual(stats.failures[0].error_type, 'UnresolvedDependencyError')
        self.assertFalse(self.identity_map.exists(EntityKind.POST, 'p9'))

    def test_replies_are_numbered_in_order(self):
        self.pipeline.import_topics([self.topic()])
        stats = self.pipeline.import_posts([
            {'id': 'p2', 'raw': '<t>second</t>', 'first_post_id': 't1', 'user_id': 1},
            {'id': 'p3', 'raw': '<t>third</t>', 'first_post_id': 't1', 'user_id': 1},
        ])

        self.assertEqual(stats.created, 2)
        self.assertEqual(self.identity_map.resolve_thread('p3').post_number, 3)
        self.assertEqual(self.identity_map.resolve_thread('t1').next_post_number, 4)

    def test_mention_in_same_topic_sets_reply_to(self):
        self.pipeline.import_topics([self.topic()])
        self.pipeline.import_posts([{'id': 'p2', 'raw': '<t>second</t>', 'first_post_id': 't1'}])
        self.pipeline.import_posts([{
            'id': 'p3',
            'raw': '<r><POSTMENTION displayname="user1" id="p2">@user1</POSTMENTION> agreed</r>',
            'first_post_id': 't1'
        }])

        reply = self.target.created['post'][-1]
        self.assertEqual(reply['reply_to_post_number'], 2)
        self.assertIn('[quote="user1, post:2, topic:dry-run-topic-1"]', reply['raw'])

    def test_mention_into_other_topic_is_not_a_reply(self):
        self.pipeline.import_topics([self.topic('t1'), self.topic('t2')])
        self.pipeline.import_posts([{
            'id': 'p3',
            'raw': '<r><POSTMENTION displayname="user1" id="t1">@user1</POSTMENTION></r>',
            'first_post_id': 't2'
        }])

        reply = self.target.created['post'][-1]
        self.assertIsNone(reply['reply_to_post_number'])
        self.assertIn('topic:dry-run-topic-1', reply['raw'])

    def test_plain_text_body(self):
        stats = self.pipeline.import_topics([self.topic(raw='hello')])

        self.assertEqual(stats.created, 1)
        self.assertEqual(self.target.created['topic'][0]['raw'], 'hello')


class TestMappingConflicts(unittest.TestCase):
    def setUp(self):
        self.identity_map = IdentityMap()
        self.target = ClashingTarget()
        self.pipeline = ImportPipeline(self.identity_map, self.target, config=CONFIG)

    def tearDown(self):
        self.identity_map.close()

    def topic(self, source_id, raw='<t>body</t>', thread_id=None):
        return {
            'id': source_id,
            'thread_id': thread_id or f'd-{source_id}',
            'title': 'Title',
            'raw': raw
        }

    def test_topic_conflict_leaves_map_unchanged(self):
        stats = self.pipeline.import_topics([
            self.topic('t1'),
            self.topic('t2', raw='<t>clash</t>'),
            self.topic('t3'),
        ])

        self.assertEqual(stats.created, 2)
        self.assertEqual(stats.failed, 1)
        self.assertEqual(stats.failures[0].source_id, 't2')
        self.assertEqual(stats.failures[0].error_type, 'DuplicateMappingError')
        self.assertFalse(self.identity_map.exists(EntityKind.POST, 't2'))
        self.assertFalse(self.identity_map.exists(EntityKind.TOPIC, 'd-t2'))
        self.assertEqual(self.identity_map.count(), 4)

    def test_failed_topic_is_retried_on_rerun(self):
        self.pipeline.import_topics([self.topic('t1'), self.topic('t2', raw='<t>clash</t>')])

        stats = self.pipeline.import_topics([self.topic('t1'), self.topic('t2')])

        self.assertEqual(stats.created, 1)
        self.assertEqual(stats.skipped, 1)
        self.assertTrue(self.identity_map.exists(EntityKind.TOPIC, 'd-t2'))

    def test_thread_imported_under_other_first_post_is_not_created(self):
        self.pipeline.import_topics([self.topic('t1', thread_id='d1')])

        stats = self.pipeline.import_topics([self.topic('t9', thread_id='d1')])

        self.assertEqual(stats.failed, 1)
        self.assertEqual(len(self.target.created['topic']), 1)
        self.assertFalse(self.identity_map.exists(EntityKind.POST, 't9'))

    def test_reply_conflict_leaves_map_unchanged(self):
        self.pipeline.import_topics([self.topic('t1')])
        before = self.identity_map.count()

        stats = self.pipeline.import_posts([
            {'id': 'p2', 'raw': '<t>clash</t>', 'first_post_id': 't1'},
            {'id': 'p3', 'raw': '<t>fine</t>', 'first_post_id': 't1'},
        ])

        self.assertEqual(stats.failed, 1)
        self.assertEqual(stats.created, 1)
        self.assertFalse(self.identity_map.exists(EntityKind.POST, 'p2'))
        self.assertEqual(self.identity_map.count(), before + 1)


if __name__ == '__main__':
    unittest.main()
