"""
Flarum database profile.

Users come from `users`, categories from `tags` (top level first, then
children), topics from each discussion's first post and replies from the
remaining comment posts.
"""

import itertools
from typing import Any, Dict, Iterator

from .plan import ImportPlan


class FlarumPlan(ImportPlan):
    """Maps a Flarum MySQL schema to canonical records."""

    name = 'flarum'

    def __init__(self, source, config=None, logger=None):
        super().__init__(source, config, logger)
        # Flarum installs often prefix their tables
        self.table_prefix = self.config.get('source', {}).get('table_prefix', '') or ''

    def _table(self, name: str) -> str:
        return f"{self.table_prefix}{name}"

    def users(self) -> Iterator[Dict[str, Any]]:
        rows = self.source.paginate(
            f"SELECT id, username, email, joined_at, last_seen_at "
            f"FROM {self._table('users')} ORDER BY id"
        )
        for row in rows:
            yield {
                'id': row['id'],
                'username': row['username'],
                'name': row['username'],
                'email': row['email'],
                'created_at': row['joined_at']
            }

    def categories(self) -> Iterator[Dict[str, Any]]:
        columns = "id, name, description, position, parent_id"
        top_level = self.source.query(
            f"SELECT {columns} FROM {self._table('tags')} "
            f"WHERE parent_id IS NULL ORDER BY position, id"
        )
        children = self.source.query(
            f"SELECT {columns} FROM {self._table('tags')} "
            f"WHERE parent_id IS NOT NULL ORDER BY position, id"
        )
        for row in itertools.chain(top_level, children):
            yield {
                'id': row['id'],
                'name': row['name'],
                'description': row['description'],
                'position': row['position'],
                'parent_category_id': row['parent_id']
            }

    def _post_query(self, first_posts: bool) -> str:
        posts, discussions = self._table('posts'), self._table('discussions')
        if first_posts:
            return (
                f"SELECT p.id id, d.id thread_id, d.title title, p.user_id user_id, "
                f"p.content raw, p.created_at created_at, t.tag_id category_id "
                f"FROM {posts} p "
                f"JOIN {discussions} d ON p.discussion_id = d.id "
                f"LEFT JOIN {self._table('discussion_tag')} t ON t.discussion_id = d.id "
                f"WHERE p.id = d.first_post_id "
                f"ORDER BY p.created_at, p.id"
            )
        return (
            f"SELECT p.id id, d.first_post_id first_post_id, p.user_id user_id, "
            f"p.content raw, p.created_at created_at "
            f"FROM {posts} p "
            f"JOIN {discussions} d ON p.discussion_id = d.id "
            f"WHERE p.id <> d.first_post_id AND p.type = 'comment' "
            f"ORDER BY p.created_at, p.id"
        )

    def topics(self) -> Iterator[Dict[str, Any]]:
        # Discussions with several tags repeat; the pipeline keeps the first row
        for row in self.source.paginate(self._post_query(first_posts=True)):
            yield {
                'id': row['id'],
                'thread_id': row['thread_id'],
                'title': row['title'],
                'raw': row['raw'],
                'user_id': row['user_id'],
                'category_id': row['category_id'],
                'created_at': row['created_at']
            }

    def posts(self) -> Iterator[Dict[str, Any]]:
        for row in self.source.paginate(self._post_query(first_posts=False)):
            yield {
                'id': row['id'],
                'first_post_id': row['first_post_id'],
                'raw': row['raw'],
                'user_id': row['user_id'],
                'created_at': row['created_at']
            }


__all__ = ['FlarumPlan']
