"""Side-by-side dump of raw and transcoded bodies for dry runs."""

import logging
import threading
from pathlib import Path
from typing import Any, Optional, TextIO

logger = logging.getLogger('forum_import.importers.inspection_writer')

BEFORE_FILENAME = 'debug.1.before.txt'
AFTER_FILENAME = 'debug.2.after.txt'


class InspectionWriter:
    """
    Writes every transcoded body twice: as read from the source and as sent
    to the target. Both files use the same `--- record <id>` headers so they
    can be compared with any diff tool.
    """

    def __init__(self, directory: str, logger: Optional[logging.Logger] = None):
        self.directory = Path(directory)
        self.logger = logger or logging.getLogger('forum_import.importers.inspection_writer')
        self._lock = threading.Lock()
        self._before: Optional[TextIO] = None
        self._after: Optional[TextIO] = None
        self.records_written = 0

    @property
    def before_path(self) -> Path:
        return self.directory / BEFORE_FILENAME

    @property
    def after_path(self) -> Path:
        return self.directory / AFTER_FILENAME

    def open(self) -> 'InspectionWriter':
        """Create (or truncate) both inspection files."""
        self.directory.mkdir(parents=True, exist_ok=True)
        self._before = open(self.before_path, 'w', encoding='utf-8')
        self._after = open(self.after_path, 'w', encoding='utf-8')
        self.logger.info(f"Writing inspection files to {self.directory}")
        return self

    def write(self, source_id: Any, raw: Optional[str], transcoded: str) -> None:
        if self._before is None:
            self.open()

        with self._lock:
            self._before.write(f"\n\n--- record {source_id}\n\n{raw or ''}\n")
            self._after.write(f"\n\n--- record {source_id}\n\n{transcoded}\n")
            self.records_written += 1

    def close(self) -> None:
        for handle in (self._before, self._after):
            if handle is not None:
                handle.close()
        self._before = None
        self._after = None
        if self.records_written:
            self.logger.info(f"Inspection files hold {self.records_written} record(s)")

    def __enter__(self) -> 'InspectionWriter':
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


__all__ = ['AFTER_FILENAME', 'BEFORE_FILENAME', 'InspectionWriter']
