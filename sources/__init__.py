"""
Source readers for legacy forum data.

Package Structure:
- base_source: BaseSource interface and SourceError
- json_source: whole-document JSON exports
- csv_source: CSV dumps with a header row
- sql_source: relational source databases through SQLAlchemy
- prefetch: batching with read-ahead of the next batch
"""

from .base_source import BaseSource, FileSource, SourceError
from .csv_source import CsvSource
from .json_source import JsonSource
from .prefetch import prefetch_batches
from .sql_source import SqlSource

__all__ = [
    'BaseSource',
    'CsvSource',
    'FileSource',
    'JsonSource',
    'SourceError',
    'SqlSource',
    'prefetch_batches'
]
