"""CSV dump reader."""

import csv
import logging
from typing import Any, Dict, Iterator, Optional

from .base_source import FileSource, SourceError


class CsvSource(FileSource):
    """Reads CSV files with a header row; a leading byte order mark is ignored."""

    def __init__(self, files: Dict[str, str], logger: Optional[logging.Logger] = None):
        super().__init__(files, logger or logging.getLogger('forum_import.sources.csv'))

    def read(self, name: str) -> Iterator[Dict[str, Any]]:
        path = self.path_for(name)
        self.logger.debug(f"Reading CSV dataset '{name}' from {path}")

        try:
            with open(path, 'r', encoding='utf-8-sig', newline='') as f:
                for row in csv.DictReader(f):
                    yield {key.strip(): value for key, value in row.items() if key is not None}
        except (OSError, UnicodeDecodeError, csv.Error) as e:
            raise SourceError(f"Cannot read CSV file {path}: {str(e)}") from e

    def lookup(self, name: str, key_column: str, value_column: str) -> Dict[str, Any]:
        """Build a dictionary from two columns of a dataset."""
        return {row.get(key_column): row.get(value_column) for row in self.read(name)}


__all__ = ['CsvSource']
