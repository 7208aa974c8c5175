"""Join probes: controlled, read-only joins against a live datasource.

A probe runs one SQL statement per candidate and returns raw counts. It never
retries; a connection or syntax failure raises JoinProbeError so callers can
tell "no match" apart from "could not test".

Every probe owns one connection (a DuckDB cursor or a SQLAlchemy connection)
and must not be shared between concurrent tasks. Obtain one per task from
``keygraph.datasources.ConnectionManager.open_probe``.
"""

from __future__ import annotations

import asyncio
import math
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import duckdb
from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from keygraph.analysis.relationships.models import JoinAnalysis
from keygraph.core.errors import KeygraphError
from keygraph.core.logging import get_logger

logger = get_logger(__name__)


class JoinProbeError(KeygraphError):
    """A join could not be executed (connection, permission or syntax failure)."""

    def __init__(self, source: str, target: str, message: str):
        self.source = source
        self.target = target
        self.message = message
        super().__init__(f"analyze join {source} -> {target}: {message}")


# =============================================================================
# SQL shaping
# =============================================================================


@dataclass(frozen=True)
class JoinDialect:
    """Dialect-specific pieces of the join analysis query."""

    name: str
    quote: Callable[[str], str]
    cast_text: Callable[[str], str]
    max_numeric: Callable[[str], str] | None = None
    table_hint: str = ""

    def table_ref(self, schema: str, table: str) -> str:
        if schema:
            return f"{self.quote(schema)}.{self.quote(table)}"
        return self.quote(table)


def _double_quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def _bracket_quote(identifier: str) -> str:
    return "[" + identifier.replace("]", "]]") + "]"


def get_dialect(name: str, quote: Callable[[str], str] | None = None) -> JoinDialect:
    """Return the JoinDialect for a SQLAlchemy dialect name or ``duckdb``.

    Args:
        name: Dialect name ('postgresql', 'mssql', 'duckdb', 'sqlite', ...)
        quote: Identifier quoting function; defaults to the dialect's own style

    Returns:
        JoinDialect. Unknown dialects get ANSI casts and no numeric max.
    """
    if name == "postgresql":
        return JoinDialect(
            name=name,
            quote=quote or _double_quote,
            cast_text=lambda expr: f"{expr}::text",
            max_numeric=lambda expr: (
                f"CASE WHEN {expr}::text ~ '^-?[0-9]+(\\.[0-9]+)?$' "
                f"THEN ({expr}::text)::numeric ELSE NULL END"
            ),
        )
    if name == "mssql":
        return JoinDialect(
            name=name,
            quote=quote or _bracket_quote,
            # NVARCHAR(MAX) is not allowed in COUNT(DISTINCT ...)
            cast_text=lambda expr: f"CAST({expr} AS NVARCHAR(4000))",
            max_numeric=lambda expr: f"TRY_CAST(CAST({expr} AS NVARCHAR(4000)) AS DECIMAL(38, 0))",
            table_hint=" WITH (NOLOCK)",
        )
    if name == "duckdb":
        return JoinDialect(
            name=name,
            quote=quote or _double_quote,
            cast_text=lambda expr: f"CAST({expr} AS VARCHAR)",
            # NaN sorts above every number in DuckDB, so non-finite values are dropped
            max_numeric=lambda expr: (
                f"CASE WHEN isfinite(TRY_CAST(CAST({expr} AS VARCHAR) AS DOUBLE)) "
                f"THEN TRY_CAST(CAST({expr} AS VARCHAR) AS DOUBLE) END"
            ),
        )
    return JoinDialect(
        name=name,
        quote=quote or _double_quote,
        cast_text=lambda expr: f"CAST({expr} AS VARCHAR)",
    )


def build_join_analysis_sql(
    dialect: JoinDialect,
    source_schema: str,
    source_table: str,
    source_column: str,
    target_schema: str,
    target_table: str,
    target_column: str,
) -> str:
    """Build the single-statement join analysis query.

    Columns are compared as text so that mismatched types (text vs bigint)
    still join. The reverse orphan count exposes false positives such as a
    three-valued enum column that fully matches a large id range.
    """
    src = dialect.table_ref(source_schema, source_table) + " s" + dialect.table_hint
    tgt = dialect.table_ref(target_schema, target_table) + " t" + dialect.table_hint
    s_col = f"s.{dialect.quote(source_column)}"
    t_col = f"t.{dialect.quote(target_column)}"
    s_text = dialect.cast_text(s_col)
    t_text = dialect.cast_text(t_col)

    if dialect.max_numeric is not None:
        max_source = (
            f"SELECT MAX({dialect.max_numeric(s_col)}) AS max_source_value "
            f"FROM {src} WHERE {s_col} IS NOT NULL"
        )
    else:
        max_source = "SELECT NULL AS max_source_value"

    return f"""
        WITH join_stats AS (
            SELECT
                COUNT(*) AS join_count,
                COUNT(DISTINCT {s_col}) AS source_matched,
                COUNT(DISTINCT {t_col}) AS target_matched
            FROM {src}
            JOIN {tgt} ON {s_text} = {t_text}
        ),
        orphan_stats AS (
            SELECT COUNT(DISTINCT {s_col}) AS orphan_count
            FROM {src}
            LEFT JOIN {tgt} ON {s_text} = {t_text}
            WHERE {t_col} IS NULL AND {s_col} IS NOT NULL
        ),
        reverse_orphan_stats AS (
            SELECT COUNT(DISTINCT {t_col}) AS reverse_orphan_count
            FROM {tgt}
            LEFT JOIN {src} ON {t_text} = {s_text}
            WHERE {s_col} IS NULL AND {t_col} IS NOT NULL
        ),
        max_source AS (
            {max_source}
        )
        SELECT join_count, source_matched, target_matched,
               orphan_count, reverse_orphan_count, max_source_value
        FROM join_stats, orphan_stats, reverse_orphan_stats, max_source
    """


def _row_to_analysis(row: Any) -> JoinAnalysis:
    join_count, source_matched, target_matched, orphans, reverse_orphans, max_value = row
    return JoinAnalysis(
        join_count=int(join_count or 0),
        source_matched=int(source_matched or 0),
        target_matched=int(target_matched or 0),
        orphan_count=int(orphans or 0),
        reverse_orphan_count=int(reverse_orphans or 0),
        max_source_value=_to_int(max_value),
    )


def _to_int(value: Any) -> int:
    """Coerce a driver numeric to int; None, NaN, infinities and junk become 0."""
    if value is None:
        return 0
    if isinstance(value, float) and not math.isfinite(value):
        return 0
    try:
        if isinstance(value, (int, float, Decimal)):
            return int(value)
        return int(Decimal(str(value)))
    except (ArithmeticError, ValueError):
        return 0


# =============================================================================
# Probes
# =============================================================================


class JoinProbe(ABC):
    """Runs join analysis queries over one datasource connection."""

    dialect: JoinDialect

    @abstractmethod
    def analyze_join(
        self,
        source_schema: str,
        source_table: str,
        source_column: str,
        target_schema: str,
        target_table: str,
        target_column: str,
    ) -> JoinAnalysis:
        """Execute the join analysis query.

        Raises:
            JoinProbeError: If the query cannot be executed
        """

    @abstractmethod
    def close(self) -> None:
        """Release the underlying connection."""

    def interrupt(self) -> None:
        """Abort a running query, if the driver supports it."""

    async def analyze(
        self,
        source_schema: str,
        source_table: str,
        source_column: str,
        target_schema: str,
        target_table: str,
        target_column: str,
    ) -> JoinAnalysis:
        """Run analyze_join in a worker thread.

        Cancelling the awaiting task interrupts the running query before
        CancelledError propagates.
        """
        try:
            return await asyncio.to_thread(
                self.analyze_join,
                source_schema,
                source_table,
                source_column,
                target_schema,
                target_table,
                target_column,
            )
        except asyncio.CancelledError:
            self.interrupt()
            raise

    def __enter__(self) -> JoinProbe:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def _execute(
        self,
        run: Callable[[str], Any],
        driver_errors: tuple[type[Exception], ...],
        source_schema: str,
        source_table: str,
        source_column: str,
        target_schema: str,
        target_table: str,
        target_column: str,
    ) -> JoinAnalysis:
        source = f"{source_table}.{source_column}"
        target = f"{target_table}.{target_column}"
        sql = build_join_analysis_sql(
            self.dialect,
            source_schema,
            source_table,
            source_column,
            target_schema,
            target_table,
            target_column,
        )
        try:
            row = run(sql)
        except driver_errors as e:
            logger.debug("join_probe_query_failed", source=source, target=target, error=str(e))
            raise JoinProbeError(source, target, str(e)) from e
        if row is None:
            raise JoinProbeError(source, target, "query returned no rows")
        return _row_to_analysis(row)


class DuckDBJoinProbe(JoinProbe):
    """Join probe over a DuckDB cursor.

    Pass a cursor from ``conn.cursor()``; cursors are independent connections
    to the same database and can be used from a worker thread.
    """

    def __init__(self, cursor: duckdb.DuckDBPyConnection):
        self._cursor = cursor
        self.dialect = get_dialect("duckdb")

    def analyze_join(
        self,
        source_schema: str,
        source_table: str,
        source_column: str,
        target_schema: str,
        target_table: str,
        target_column: str,
    ) -> JoinAnalysis:
        return self._execute(
            lambda sql: self._cursor.execute(sql).fetchone(),
            (duckdb.Error,),
            source_schema,
            source_table,
            source_column,
            target_schema,
            target_table,
            target_column,
        )

    def interrupt(self) -> None:
        self._cursor.interrupt()

    def close(self) -> None:
        self._cursor.close()


class SQLJoinProbe(JoinProbe):
    """Join probe over a SQLAlchemy connection (PostgreSQL, MSSQL, SQLite, ...)."""

    def __init__(self, connection: Connection):
        self._connection = connection
        self.dialect = get_dialect(
            connection.dialect.name, connection.dialect.identifier_preparer.quote_identifier
        )

    def analyze_join(
        self,
        source_schema: str,
        source_table: str,
        source_column: str,
        target_schema: str,
        target_table: str,
        target_column: str,
    ) -> JoinAnalysis:
        return self._execute(
            self._fetch_one,
            (SQLAlchemyError,),
            source_schema,
            source_table,
            source_column,
            target_schema,
            target_table,
            target_column,
        )

    def _fetch_one(self, sql: str) -> Any:
        try:
            return self._connection.execute(text(sql)).fetchone()
        finally:
            # End the implicit transaction; probes never write
            self._connection.rollback()

    def close(self) -> None:
        self._connection.close()
