"""Tests for the Discourse REST client using a mocked HTTP session."""

import json
import unittest
from datetime import datetime, timezone
from unittest import mock

import requests

from importers.discourse_client import DiscourseClient
from importers.target_platform import TargetUnavailableError, TargetValidationError
from models import TopicThread


def fake_response(status_code=200, body=None, headers=None):
    response = mock.Mock(spec=requests.Response)
    response.status_code = status_code
    response.headers = headers or {}
    response.reason = 'reason'
    response.content = json.dumps(body).encode('utf-8') if body is not None else b''
    response.json.return_value = body
    return response


class DiscourseClientTestCase(unittest.TestCase):
    def setUp(self):
        self.client = DiscourseClient('https://forum.example.com/', 'key', max_retries=0)
        self.request = mock.Mock()
        self.client.session.request = self.request

    def sent(self, index=-1):
        return self.request.call_args_list[index].kwargs


class TestRequests(DiscourseClientTestCase):
    def test_session_headers(self):
        self.assertEqual(self.client.session.headers['Api-Key'], 'key')
        self.assertEqual(self.client.session.headers['Api-Username'], 'system')
        self.assertEqual(self.client.base_url, 'https://forum.example.com')

    def test_validation_error_carries_messages(self):
        self.request.return_value = fake_response(422, {'errors': ['Name has already been taken']})

        with self.assertRaises(TargetValidationError) as ctx:
            self.client.create_group({'name': 'staff'})
        self.assertEqual(ctx.exception.status_code, 422)
        self.assertEqual(ctx.exception.errors, ['Name has already been taken'])

    def test_server_error_is_unavailable(self):
        self.request.return_value = fake_response(503)

        with self.assertRaises(TargetUnavailableError):
            self.client.create_group({'name': 'staff'})

    def test_connection_error_is_unavailable(self):
        self.request.side_effect = requests.ConnectionError("refused")

        with self.assertRaises(TargetUnavailableError):
            self.client.create_group({'name': 'staff'})

    @mock.patch('importers.discourse_client.time.sleep')
    def test_rate_limit_waits_and_retries(self, sleep):
        self.request.side_effect = [
            fake_response(429, headers={'Retry-After': '2'}),
            fake_response(200, {'basic_group': {'id': 41}}),
        ]

        self.assertEqual(self.client.create_group({'name': 'staff'}).target_id, 41)
        sleep.assert_called_once_with(2)

    @mock.patch('importers.discourse_client.time.sleep')
    def test_rate_limit_gives_up(self, sleep):
        self.request.return_value = fake_response(429)

        with self.assertRaises(TargetUnavailableError):
            self.client.create_group({'name': 'staff'})
        self.assertEqual(self.request.call_count, DiscourseClient.MAX_RATE_LIMIT_WAITS + 1)


class TestCreateCalls(DiscourseClientTestCase):
    def test_create_group(self):
        self.request.return_value = fake_response(200, {'basic_group': {'id': 41}})

        created = self.client.create_group({'name': 'staff', 'full_name': None})

        self.assertEqual(created.target_id, 41)
        self.assertEqual(self.sent()['url'], 'https://forum.example.com/admin/groups.json')
        self.assertEqual(self.sent()['json'], {'group': {'name': 'staff', 'full_name': 'staff'}})

    def test_create_user_with_profile(self):
        self.request.side_effect = [
            fake_response(200, {'success': True, 'user_id': 12}),
            fake_response(200, {'user': {}}),
        ]

        created = self.client.create_user({
            'username': 'alice', 'email': 'alice@example.com', 'bio_raw': 'Hello', 'location': None
        })

        self.assertEqual(created.target_id, 12)
        self.assertEqual(created.username, 'alice')
        self.assertTrue(self.sent(0)['json']['approved'])
        self.assertEqual(self.sent(1)['method'], 'PUT')
        self.assertEqual(self.sent(1)['json'], {'bio_raw': 'Hello'})
        self.assertEqual(self.client.username_for(12), 'alice')

    def test_create_user_failure(self):
        self.request.return_value = fake_response(200, {'success': False, 'message': 'Email is invalid'})

        with self.assertRaises(TargetValidationError) as ctx:
            self.client.create_user({'username': 'alice', 'email': 'bad'})
        self.assertIn('Email is invalid', str(ctx.exception))

    def test_create_category_with_description(self):
        self.request.side_effect = [
            fake_response(200, {'category': {'id': 5}}),
            fake_response(200, {'category': {'id': 5}}),
        ]

        created = self.client.create_category({'name': 'News', 'description': 'All news', 'parent_category_id': 2})

        self.assertEqual(created.target_id, 5)
        self.assertEqual(self.sent(0)['json']['parent_category_id'], 2)
        self.assertEqual(self.sent(1)['url'], 'https://forum.example.com/categories/5.json')

    def test_create_topic_acts_as_author(self):
        self.client._usernames[12] = 'alice'
        self.request.return_value = fake_response(200, {'id': 300, 'topic_id': 30, 'post_number': 1})

        created = self.client.create_topic({
            'title': 'Hi', 'raw': 'Body', 'user_id': 12, 'category_id': 5,
            'created_at': datetime(2020, 1, 2, tzinfo=timezone.utc)
        })

        self.assertEqual((created.target_id, created.topic_id, created.post_number), (300, 30, 1))
        self.assertEqual(self.sent()['headers']['Api-Username'], 'alice')
        self.assertEqual(self.sent()['json']['category'], 5)
        self.assertEqual(self.sent()['json']['created_at'], '2020-01-02T00:00:00+00:00')

    def test_create_post_looks_up_unknown_author(self):
        self.request.side_effect = [
            fake_response(200, {'id': 77, 'username': 'bob'}),
            fake_response(200, {'id': 301, 'topic_id': 30, 'post_number': 2}),
        ]

        created = self.client.create_post(
            {'raw': 'Reply', 'topic_id': 30, 'user_id': 77, 'reply_to_post_number': 1},
            TopicThread(topic_id=30, post_number=1, next_post_number=2)
        )

        self.assertEqual(created.post_number, 2)
        self.assertEqual(self.sent(0)['url'], 'https://forum.example.com/admin/users/77.json')
        self.assertEqual(self.sent(1)['json']['reply_to_post_number'], 1)
        self.assertEqual(self.sent(1)['headers']['Api-Username'], 'bob')

    def test_fallback_user_posts_as_system(self):
        self.request.return_value = fake_response(200, {'id': 302, 'topic_id': 30, 'post_number': 3})

        self.client.create_post({'raw': 'x', 'topic_id': 30, 'user_id': -1}, TopicThread(30, 1, 3))

        self.assertEqual(self.request.call_count, 1)
        self.assertEqual(self.sent()['headers']['Api-Username'], 'system')

    def test_unknown_author_posts_as_fallback_user(self):
        self.request.side_effect = [
            fake_response(404, {'errors': ['not found']}),
            fake_response(200, {'id': 303, 'topic_id': 30, 'post_number': 4}),
        ]

        created = self.client.create_post({'raw': 'x', 'topic_id': 30, 'user_id': 88}, TopicThread(30, 1, 4))

        self.assertEqual(created.target_id, 303)
        self.assertEqual(self.sent(1)['headers']['Api-Username'], 'system')

    def test_author_lookup_outage_still_fails(self):
        self.request.return_value = fake_response(503)

        with self.assertRaises(TargetUnavailableError):
            self.client.create_post({'raw': 'x', 'topic_id': 30, 'user_id': 88}, TopicThread(30, 1, 4))

    def test_add_group_members(self):
        self.request.return_value = fake_response(200, {'success': 'OK'})

        self.client.add_group_members(41, ['alice', 'bob'])

        self.assertEqual(self.sent()['url'], 'https://forum.example.com/groups/41/members.json')
        self.assertEqual(self.sent()['json'], {'usernames': 'alice,bob'})


class TestFromConfig(unittest.TestCase):
    def test_from_config(self):
        client = DiscourseClient.from_config({
            'target': {'base_url': 'https://forum.example.com', 'api_key': 'k', 'api_username': 'importer'},
            'advanced': {'request_timeout': 10, 'rate_limit': 0.2}
        })

        self.assertEqual(client.api_username, 'importer')
        self.assertEqual(client.timeout, 10)
        self.assertEqual(client.rate_limit, 0.2)


if __name__ == '__main__':
    unittest.main()
