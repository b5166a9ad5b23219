"""
Discourse-compatible REST API client.

This module provides the target platform adapter for a Discourse-style
discussion platform, handling API key authentication, retries, rate
limiting and the create calls the import pipeline needs.
"""

import logging
import secrets
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from models import Identifier, TopicThread
from .target_platform import (
    SYSTEM_USER_ID,
    CreatedEntity,
    TargetPlatform,
    TargetUnavailableError,
    TargetValidationError,
)

logger = logging.getLogger('forum_import.importers.discourse_client')


class DiscourseClient(TargetPlatform):
    """Discourse REST API client with retry logic and rate limiting."""

    DEFAULT_TIMEOUT = 30
    DEFAULT_MAX_RETRIES = 3
    DEFAULT_RETRY_BACKOFF = 0.5
    DEFAULT_RATE_LIMIT = 0.0
    MAX_RATE_LIMIT_WAITS = 5
    DEFAULT_CATEGORY_COLOR = '0088CC'
    DEFAULT_CATEGORY_TEXT_COLOR = 'FFFFFF'
    SYSTEM_USERNAME = 'system'

    def __init__(
        self,
        base_url: str,
        api_key: str,
        api_username: str = SYSTEM_USERNAME,
        fallback_user_id: Identifier = SYSTEM_USER_ID,
        verify_ssl: bool = True,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_backoff_factor: float = DEFAULT_RETRY_BACKOFF,
        rate_limit: float = DEFAULT_RATE_LIMIT
    ):
        """
        Initialize Discourse client.

        Args:
            base_url: Forum base URL
            api_key: Admin API key
            api_username: User the API key acts as by default
            fallback_user_id: Author used when a record's author is unknown
            verify_ssl: Whether to verify SSL certificates
            timeout: Request timeout in seconds
            max_retries: Maximum number of retries for failed requests
            retry_backoff_factor: Backoff factor for retries
            rate_limit: Minimum seconds between requests (0 = no limit)
        """
        self.base_url = base_url.rstrip('/')
        self.api_username = api_username
        self.fallback_user_id = fallback_user_id
        self.verify_ssl = verify_ssl
        self.timeout = timeout
        self.rate_limit = rate_limit
        self._last_request_time = 0.0
        self._usernames: Dict[Identifier, str] = {SYSTEM_USER_ID: self.SYSTEM_USERNAME}

        # Setup session with retry strategy
        self.session = requests.Session()
        self.session.headers.update({
            'Api-Key': api_key,
            'Api-Username': api_username,
            'Accept': 'application/json'
        })

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=retry_backoff_factor,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=None,
            raise_on_status=False
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount('http://', adapter)
        self.session.mount('https://', adapter)

        logger.debug(f"Initialized Discourse client for {base_url}")

    def _handle_rate_limit(self) -> None:
        """Enforce rate limiting between requests."""
        if self.rate_limit <= 0:
            return

        current_time = time.time()
        time_since_last = current_time - self._last_request_time

        if time_since_last < self.rate_limit:
            sleep_time = self.rate_limit - time_since_last
            logger.debug(f"Rate limiting: sleeping {sleep_time:.2f}s")
            time.sleep(sleep_time)

        self._last_request_time = time.time()

    def _make_request(
        self,
        method: str,
        endpoint: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        act_as: Optional[str] = None,
        _attempt: int = 0
    ) -> Dict[str, Any]:
        """
        Make HTTP request with error handling and retries.

        Args:
            method: HTTP method (GET, POST, PUT)
            endpoint: API endpoint path
            json: JSON payload
            params: Query parameters
            act_as: Username to act as for this request

        Returns:
            JSON response as dictionary

        Raises:
            TargetValidationError: The platform rejected the payload (4xx)
            TargetUnavailableError: Connection problems or server errors
        """
        self._handle_rate_limit()

        url = f"{self.base_url}{endpoint}"
        headers = {'Content-Type': 'application/json'}
        if act_as:
            headers['Api-Username'] = act_as

        logger.debug(f"{method} {url}")

        try:
            response = self.session.request(
                method=method,
                url=url,
                headers=headers,
                json=json,
                params=params,
                verify=self.verify_ssl,
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"Request failed: {method} {url} - {str(e)}")
            raise TargetUnavailableError(f"{method} {endpoint} failed: {str(e)}") from e

        logger.debug(f"Response status: {response.status_code}")

        # Handle rate limiting (429) with custom backoff
        if response.status_code == 429:
            if _attempt >= self.MAX_RATE_LIMIT_WAITS:
                raise TargetUnavailableError(f"{method} {endpoint} still rate limited after {_attempt} waits")

            retry_after = response.headers.get('Retry-After', '1')
            try:
                wait_time = int(retry_after)
            except ValueError:
                wait_time = 1

            logger.warning(f"Rate limited (429). Retrying after {wait_time}s")
            time.sleep(wait_time)
            return self._make_request(method, endpoint, json=json, params=params, act_as=act_as, _attempt=_attempt + 1)

        if response.status_code >= 500:
            raise TargetUnavailableError(f"{method} {endpoint} returned {response.status_code}")

        body = self._parse_body(response)

        if response.status_code >= 400:
            errors = body.get('errors') or []
            message = '; '.join(errors) if errors else (body.get('error') or response.reason or 'rejected')
            raise TargetValidationError(
                f"{method} {endpoint} rejected ({response.status_code}): {message}",
                status_code=response.status_code,
                errors=errors
            )

        return body

    @staticmethod
    def _parse_body(response: requests.Response) -> Dict[str, Any]:
        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    @staticmethod
    def _format_date(value: Any) -> Optional[str]:
        if isinstance(value, datetime):
            return value.isoformat()
        return value

    def username_for(self, user_id: Identifier) -> str:
        """Look up (and cache) the username of a target user id."""
        if user_id in self._usernames:
            return self._usernames[user_id]

        body = self._make_request('GET', f'/admin/users/{user_id}.json')
        username = body.get('username')
        if not username:
            raise TargetValidationError(f"Target user {user_id} has no username")
        self._usernames[user_id] = username
        return username

    def create_group(self, payload: Dict[str, Any]) -> CreatedEntity:
        data = {'group': {'name': payload['name'], 'full_name': payload.get('full_name') or payload['name']}}
        body = self._make_request('POST', '/admin/groups.json', json=data)
        group = body.get('basic_group') or body.get('group') or {}
        if 'id' not in group:
            raise TargetValidationError(f"Group '{payload['name']}' was not created")
        return CreatedEntity(target_id=group['id'])

    def create_user(self, payload: Dict[str, Any]) -> CreatedEntity:
        data = {
            'username': payload['username'],
            'email': payload['email'],
            'name': payload.get('name') or payload['username'],
            'password': secrets.token_urlsafe(24),
            'active': True,
            'approved': True
        }
        body = self._make_request('POST', '/users.json', json=data)
        if not body.get('success') or 'user_id' not in body:
            raise TargetValidationError(
                f"User '{payload['username']}' was not created: {body.get('message', 'unknown reason')}"
            )

        user_id = body['user_id']
        self._usernames[user_id] = payload['username']

        profile = {key: payload[key] for key in ('bio_raw', 'location') if payload.get(key)}
        if profile:
            self._make_request('PUT', f"/u/{payload['username']}.json", json=profile)

        return CreatedEntity(target_id=user_id, username=payload['username'])

    def create_category(self, payload: Dict[str, Any]) -> CreatedEntity:
        data = {
            'name': payload['name'],
            'color': self.DEFAULT_CATEGORY_COLOR,
            'text_color': self.DEFAULT_CATEGORY_TEXT_COLOR
        }
        if payload.get('parent_category_id') is not None:
            data['parent_category_id'] = payload['parent_category_id']
        if payload.get('position') is not None:
            data['position'] = payload['position']

        body = self._make_request('POST', '/categories.json', json=data)
        category = body.get('category') or {}
        if 'id' not in category:
            raise TargetValidationError(f"Category '{payload['name']}' was not created")

        if payload.get('description'):
            self._make_request(
                'PUT', f"/categories/{category['id']}.json",
                json={'description': payload['description']}
            )

        return CreatedEntity(target_id=category['id'])

    def create_topic(self, payload: Dict[str, Any]) -> CreatedEntity:
        data = {
            'title': payload['title'],
            'raw': payload['raw'],
            'created_at': self._format_date(payload.get('created_at'))
        }
        if payload.get('category_id') is not None:
            data['category'] = payload['category_id']

        body = self._make_request('POST', '/posts.json', json=data, act_as=self._author(payload))
        return self._created_post(body)

    def create_post(self, payload: Dict[str, Any], thread: TopicThread) -> CreatedEntity:
        data = {
            'topic_id': payload['topic_id'],
            'raw': payload['raw'],
            'created_at': self._format_date(payload.get('created_at'))
        }
        if payload.get('reply_to_post_number') is not None:
            data['reply_to_post_number'] = payload['reply_to_post_number']

        body = self._make_request('POST', '/posts.json', json=data, act_as=self._author(payload))
        return self._created_post(body)

    def add_group_members(self, group_id: Identifier, usernames: List[str]) -> None:
        if not usernames:
            return
        self._make_request('PUT', f'/groups/{group_id}/members.json', json={'usernames': ','.join(usernames)})

    def _author(self, payload: Dict[str, Any]) -> str:
        """Username to post as; an author the target cannot name falls back to the fallback user."""
        user_id = payload.get('user_id')
        if user_id is None or user_id == self.fallback_user_id:
            return self.username_for(self.fallback_user_id)

        try:
            return self.username_for(user_id)
        except TargetValidationError as e:
            logger.warning(f"Posting as fallback user instead of {user_id}: {str(e)}")
            return self.username_for(self.fallback_user_id)

    @staticmethod
    def _created_post(body: Dict[str, Any]) -> CreatedEntity:
        if 'id' not in body or 'topic_id' not in body:
            raise TargetValidationError("Post was not created: response has no id")
        return CreatedEntity(
            target_id=body['id'],
            topic_id=body['topic_id'],
            post_number=body.get('post_number')
        )

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'DiscourseClient':
        """
        Create client from configuration dictionary.

        Args:
            config: Configuration dict with 'target' section

        Returns:
            Configured DiscourseClient instance
        """
        target_config = config.get('target', {})

        # Extract advanced configuration with defaults
        advanced_config = config.get('advanced', {})

        return cls(
            base_url=target_config.get('base_url'),
            api_key=target_config.get('api_key'),
            api_username=target_config.get('api_username') or cls.SYSTEM_USERNAME,
            fallback_user_id=target_config.get('fallback_user_id', SYSTEM_USER_ID),
            verify_ssl=advanced_config.get('verify_ssl', True),
            timeout=advanced_config.get('request_timeout', cls.DEFAULT_TIMEOUT),
            max_retries=advanced_config.get('max_retries', cls.DEFAULT_MAX_RETRIES),
            retry_backoff_factor=advanced_config.get('retry_backoff_factor', cls.DEFAULT_RETRY_BACKOFF),
            rate_limit=advanced_config.get('rate_limit', cls.DEFAULT_RATE_LIMIT)
        )


__all__ = ['DiscourseClient']
