"""Abstract source reader interface and common functionality."""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from models import ImportToolError


class SourceError(ImportToolError):
    """The source cannot be read; the import must stop."""
    pass


class BaseSource(ABC):
    """Abstract base class for legacy forum data sources."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger('forum_import.sources')

    @abstractmethod
    def read(self, name: str) -> Iterator[Dict[str, Any]]:
        """
        Stream the rows of one named dataset.

        Args:
            name: Dataset name (a configured file or query)

        Returns:
            Iterator of rows as dictionaries

        Raises:
            SourceError: If the dataset is unknown or unreadable
        """
        pass

    def has(self, name: str) -> bool:
        """Whether the named dataset is configured."""
        return False

    def close(self) -> None:
        pass

    def __enter__(self) -> 'BaseSource':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class FileSource(BaseSource):
    """Source backed by one file per dataset."""

    def __init__(self, files: Dict[str, str], logger: Optional[logging.Logger] = None):
        super().__init__(logger)
        self.files = {name: path for name, path in (files or {}).items() if path}

    def has(self, name: str) -> bool:
        return name in self.files

    def path_for(self, name: str) -> Path:
        if name not in self.files:
            raise SourceError(f"No file configured for '{name}' (source.files.{name})")

        path = Path(self.files[name])
        if not path.is_file():
            raise SourceError(f"File doesn't exist: {path}")
        return path


__all__ = ['BaseSource', 'FileSource', 'SourceError']
