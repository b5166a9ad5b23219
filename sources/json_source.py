"""JSON export reader."""

import json
import logging
from typing import Any, Dict, Iterator, List, Optional

from .base_source import FileSource, SourceError


class JsonSource(FileSource):
    """
    Reads whole-document JSON exports.

    A document is either a list of records or an object holding the list
    under a key (the dataset name unless `keys` says otherwise).
    """

    def __init__(
        self,
        files: Dict[str, str],
        keys: Optional[Dict[str, str]] = None,
        logger: Optional[logging.Logger] = None
    ):
        super().__init__(files, logger or logging.getLogger('forum_import.sources.json'))
        self.keys = keys or {}
        self._documents: Dict[str, Any] = {}

    def load(self, name: str) -> Any:
        """Load (and cache) the parsed document of a dataset."""
        if name in self._documents:
            return self._documents[name]

        path = self.path_for(name)
        try:
            with open(path, 'r', encoding='utf-8') as f:
                document = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise SourceError(f"Cannot read JSON file {path}: {str(e)}") from e

        self.logger.debug(f"Loaded JSON dataset '{name}' from {path}")
        self._documents[name] = document
        return document

    def read(self, name: str) -> Iterator[Dict[str, Any]]:
        document = self.load(name)
        records = self._records(name, document)
        for record in records:
            if not isinstance(record, dict):
                raise SourceError(f"JSON dataset '{name}' holds a non-object record: {record!r}")
            yield record

    def _records(self, name: str, document: Any) -> List[Any]:
        if isinstance(document, list):
            return document

        if isinstance(document, dict):
            key = self.keys.get(name, name)
            records = document.get(key)
            if isinstance(records, list):
                return records
            raise SourceError(f"JSON dataset '{name}' has no list under key '{key}'")

        raise SourceError(f"JSON dataset '{name}' is neither a list nor an object")


__all__ = ['JsonSource']
