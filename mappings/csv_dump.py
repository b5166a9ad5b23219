"""
CSV dump profile.

Files (all with a header row):

    users       id,name[,username,created_at]
    emails      user_id,email
    categories  id,email,name,description
    topics      id,type,email,category_id,title,raw,PostedIn,PostedOn

`type` is `Discussion` for a topic's first post and `Post` for a reply;
a reply's `PostedIn` holds the id of its discussion row. Authors are
matched by email; unknown authors of posts become the anonymous user and
unknown category owners the system user.
"""

from typing import Any, Dict, Iterator, Optional

from .helpers import prefixed, username_for
from .plan import ImportPlan

ANONYMOUS_USER_ID = 'anonymous'
DEFAULT_TITLE = 'ZZZ no title'


class CsvDumpPlan(ImportPlan):
    """Maps a set of CSV files to canonical records."""

    name = 'csv_dump'

    def __init__(self, source, config=None, logger=None):
        super().__init__(source, config, logger)
        self._emails: Optional[Dict[str, str]] = None
        self._user_ids_by_email: Optional[Dict[str, str]] = None

    def _id(self, kind: str, source_id: Any) -> Optional[str]:
        return prefixed(self.import_prefix, f"csv-{kind}", source_id)

    def _email_for(self, user_id: str) -> Optional[str]:
        if self._emails is None:
            self._emails = {}
            if self.source.has('emails'):
                self._emails = self.source.lookup('emails', 'user_id', 'email')
        return self._emails.get(user_id)

    def _user_rows(self) -> Iterator[Dict[str, Any]]:
        for counter, row in enumerate(self.source.read('users')):
            user_id = row.get('id') or str(counter)
            yield dict(row, id=user_id, email=row.get('email') or self._email_for(user_id))

    def user_id_by_email(self, email: Optional[str], fallback: Optional[str] = None) -> Optional[str]:
        """Source id of the user owning an email address."""
        if self._user_ids_by_email is None:
            self._user_ids_by_email = {
                row['email'].strip().lower(): self._id('user', row['id'])
                for row in self._user_rows() if row.get('email')
            }
        if not email:
            return fallback
        return self._user_ids_by_email.get(email.strip().lower(), fallback)

    def users(self) -> Iterator[Dict[str, Any]]:
        yield {
            'id': ANONYMOUS_USER_ID,
            'username': 'anonymous',
            'name': 'Anonymous User',
            'email': 'anonymous@invalid.email'
        }
        for row in self._user_rows():
            name = row.get('name') or row.get('username')
            yield {
                'id': self._id('user', row['id']),
                'username': username_for(name),
                'name': name,
                'email': row.get('email'),
                'created_at': row.get('created_at') or None
            }

    def categories(self) -> Iterator[Dict[str, Any]]:
        if not self.source.has('categories'):
            return
        for row in self.source.read('categories'):
            yield {
                'id': self._id('category', row.get('id')),
                'user_id': self.user_id_by_email(row.get('email')),
                'name': row.get('name'),
                'description': row.get('description')
            }

    def _post(self, row: Dict[str, Any]) -> Dict[str, Any]:
        return {
            'id': self._id('topic', row.get('id')),
            'user_id': self.user_id_by_email(row.get('email'), fallback=ANONYMOUS_USER_ID),
            'raw': row.get('raw'),
            'created_at': row.get('PostedOn') or None
        }

    def topics(self) -> Iterator[Dict[str, Any]]:
        for row in self.source.read('topics'):
            if row.get('type') != 'Discussion':
                continue
            record = self._post(row)
            record['title'] = row.get('title') or DEFAULT_TITLE
            record['category_id'] = self._id('category', row.get('category_id'))
            yield record

    def posts(self) -> Iterator[Dict[str, Any]]:
        for row in self.source.read('topics'):
            if row.get('type') != 'Post':
                continue
            record = self._post(row)
            record['first_post_id'] = self._id('topic', row.get('PostedIn'))
            yield record


__all__ = ['ANONYMOUS_USER_ID', 'CsvDumpPlan', 'DEFAULT_TITLE']
