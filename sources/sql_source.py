"""Relational source database reader."""

import logging
from typing import Any, Dict, Iterator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from .base_source import BaseSource, SourceError


class SqlSource(BaseSource):
    """
    Reads a legacy forum database through SQLAlchemy.

    Named datasets are plain SQL queries; read() pages through them with
    LIMIT/OFFSET so very large tables are never loaded at once.
    """

    DEFAULT_BATCH_SIZE = 1000

    def __init__(
        self,
        database_url: Optional[str] = None,
        queries: Optional[Dict[str, str]] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        engine: Optional[Engine] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the SQL source.

        Args:
            database_url: SQLAlchemy URL, e.g. mysql+pymysql://user:pw@host/db
            queries: Named dataset queries
            batch_size: Rows fetched per page
            engine: Already created engine (takes precedence over the URL)
            logger: Optional logger instance
        """
        super().__init__(logger or logging.getLogger('forum_import.sources.sql'))
        self.queries = dict(queries or {})
        self.batch_size = batch_size

        if engine is None:
            if not database_url:
                raise SourceError("No source database URL configured (source.database_url)")
            try:
                engine = create_engine(database_url)
            except (SQLAlchemyError, ImportError) as e:
                raise SourceError(f"Cannot create database engine: {str(e)}") from e
        self.engine = engine

    def has(self, name: str) -> bool:
        return name in self.queries

    def read(self, name: str) -> Iterator[Dict[str, Any]]:
        if name not in self.queries:
            raise SourceError(f"No query configured for dataset '{name}'")
        return self.paginate(self.queries[name])

    def query(self, sql: str, params: Optional[Dict[str, Any]] = None) -> Iterator[Dict[str, Any]]:
        """
        Stream the rows of a query as dictionaries.

        Raises:
            SourceError: If the database is unavailable or the query fails
        """
        try:
            with self.engine.connect() as connection:
                result = connection.execution_options(stream_results=True).execute(text(sql), params or {})
                for row in result.mappings():
                    yield dict(row)
        except SQLAlchemyError as e:
            raise SourceError(f"Source query failed: {str(e)}") from e

    def paginate(
        self,
        sql: str,
        batch_size: Optional[int] = None,
        params: Optional[Dict[str, Any]] = None
    ) -> Iterator[Dict[str, Any]]:
        """Stream a query page by page using LIMIT/OFFSET."""
        batch_size = batch_size or self.batch_size
        paged_sql = f"{sql.strip().rstrip(';')} LIMIT :_limit OFFSET :_offset"
        offset = 0

        while True:
            page_params = dict(params or {}, _limit=batch_size, _offset=offset)
            rows = list(self.query(paged_sql, page_params))
            self.logger.debug(f"Fetched {len(rows)} row(s) at offset {offset}")

            yield from rows

            if len(rows) < batch_size:
                break
            offset += batch_size

    def scalar(self, sql: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Return the first column of the first row of a query."""
        try:
            with self.engine.connect() as connection:
                return connection.execute(text(sql), params or {}).scalar()
        except SQLAlchemyError as e:
            raise SourceError(f"Source query failed: {str(e)}") from e

    def close(self) -> None:
        self.engine.dispose()


__all__ = ['SqlSource']
