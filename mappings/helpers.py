"""Small helpers shared by the mapping profiles."""

import hashlib
import re
from typing import Any, Optional

_USERNAME_INVALID = re.compile(r'[^a-z0-9_-]')


def username_for(name: Optional[str]) -> str:
    """
    Derive a target username from a display name.

    Lower-cases the name and drops everything outside [a-z0-9_-]. Names
    with nothing left fall back to the first 10 hex digits of their SHA1.
    """
    name = name or ''
    result = _USERNAME_INVALID.sub('', name.lower())
    if not result:
        result = hashlib.sha1(name.encode('utf-8')).hexdigest()[:10]
    return result


def prefixed(prefix: Optional[str], kind: str, source_id: Any) -> Optional[str]:
    """
    Build a namespaced source id, e.g. prefixed('2022-08-11', 'csv-user', 7)
    gives 'csv-user-import-2022-08-11-7'. Empty ids stay None.
    """
    if source_id is None or str(source_id).strip() == '':
        return None
    if prefix:
        return f"{kind}-import-{prefix}-{source_id}"
    return f"{kind}-import-{source_id}"


__all__ = ['prefixed', 'username_for']
