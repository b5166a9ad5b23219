"""
Generic JSON export profile.

The users document is a list of entries shaped like

    {"User": {"id", "login", "email", "first_name", "last_name",
              "avatar": {"profile"}, "biography", "location",
              "registration_data": {"registration_time"}},
     "roles": [{"id", "name"}, ...]}

Roles become groups; each user joins the groups of its roles.
"""

from typing import Any, Dict, Iterator, Set

from .helpers import username_for
from .plan import ImportPlan


class JsonExportPlan(ImportPlan):
    """Maps a JSON user export to groups and users."""

    name = 'json_export'

    def groups(self) -> Iterator[Dict[str, Any]]:
        seen: Set[str] = set()
        for entry in self.source.read('users'):
            for role in entry.get('roles') or []:
                key = str(role.get('id'))
                if key in seen:
                    continue
                seen.add(key)
                yield {'id': role.get('id'), 'name': role.get('name')}

    def users(self) -> Iterator[Dict[str, Any]]:
        for entry in self.source.read('users'):
            user = entry.get('User') or {}
            name = ' '.join(part for part in (user.get('first_name'), user.get('last_name')) if part)
            yield {
                'id': user.get('id'),
                'username': username_for(user.get('login')),
                'name': name or None,
                'email': user.get('email'),
                'bio_raw': user.get('biography'),
                'location': user.get('location'),
                'avatar_url': (user.get('avatar') or {}).get('profile'),
                'created_at': (user.get('registration_data') or {}).get('registration_time'),
                'group_ids': [role.get('id') for role in entry.get('roles') or []]
            }


__all__ = ['JsonExportPlan']
