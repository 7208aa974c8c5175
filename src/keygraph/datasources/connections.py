"""Pooled datasource connections for join probing.

Connections are pooled per ``(project_id, user_id, datasource_id)``. Each call
to ``open_probe`` hands out a probe with its own scoped connection (a DuckDB
cursor or a pooled SQLAlchemy connection), so concurrent probe tasks never
share one connection.

Usage:
    manager = ConnectionManager(pool_size=5)
    with manager.open_probe(datasource, project_id, user_id) as probe:
        analysis = await probe.analyze("public", "orders", "user_id", "public", "users", "id")
    manager.close()
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field

import duckdb
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from keygraph.analysis.relationships.probe import DuckDBJoinProbe, JoinProbe, SQLJoinProbe
from keygraph.core.errors import KeygraphError
from keygraph.core.logging import get_logger
from keygraph.datasources.models import Datasource, DatasourceType

logger = get_logger(__name__)

# (project_id, user_id, datasource_id)
PoolKey = tuple[str, str, str]


class DatasourceConnectionError(KeygraphError):
    """A datasource connection could not be established."""

    def __init__(self, datasource_id: str, message: str):
        self.datasource_id = datasource_id
        self.message = message
        super().__init__(f"datasource {datasource_id}: {message}")


@dataclass
class ConnectionManager:
    """Thread-safe pool of datasource connections.

    Attributes:
        pool_size: SQLAlchemy pool size per engine
        max_connections_per_user: Maximum pooled datasources held for one user
    """

    pool_size: int = 5
    max_connections_per_user: int = 10
    _engines: dict[PoolKey, Engine] = field(default_factory=dict, init=False, repr=False)
    _duckdb: dict[PoolKey, duckdb.DuckDBPyConnection] = field(
        default_factory=dict, init=False, repr=False
    )
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    @staticmethod
    def pool_key(project_id: str, user_id: str, datasource_id: str) -> PoolKey:
        return (project_id, user_id, datasource_id)

    def open_probe(self, datasource: Datasource, project_id: str, user_id: str = "") -> JoinProbe:
        """Open a join probe with its own scoped connection.

        Args:
            datasource: Datasource to connect to
            project_id: Owning project
            user_id: Requesting user; pools are not shared across users

        Returns:
            JoinProbe that must be closed by the caller (use it as a context manager)

        Raises:
            DatasourceConnectionError: If the connection cannot be opened
        """
        key = self.pool_key(project_id, user_id, datasource.datasource_id)
        if datasource.datasource_type == DatasourceType.DUCKDB:
            conn = self._get_duckdb(key, datasource)
            try:
                return DuckDBJoinProbe(conn.cursor())
            except duckdb.Error as e:
                raise DatasourceConnectionError(datasource.datasource_id, str(e)) from e

        engine = self._get_engine(key, user_id, datasource)
        try:
            return SQLJoinProbe(engine.connect())
        except SQLAlchemyError as e:
            raise DatasourceConnectionError(datasource.datasource_id, str(e)) from e

    def _get_duckdb(self, key: PoolKey, datasource: Datasource) -> duckdb.DuckDBPyConnection:
        with self._lock:
            conn = self._duckdb.get(key)
            if conn is None:
                path = datasource.connection_config.get("path", ":memory:")
                try:
                    conn = duckdb.connect(path, read_only=path != ":memory:")
                except duckdb.Error as e:
                    raise DatasourceConnectionError(datasource.datasource_id, str(e)) from e
                self._duckdb[key] = conn
                logger.debug("duckdb_connection_opened", pool_key="/".join(key))
            return conn

    def _get_engine(self, key: PoolKey, user_id: str, datasource: Datasource) -> Engine:
        with self._lock:
            engine = self._engines.get(key)
            if engine is not None:
                return engine

            held = sum(1 for _, holder, _ in self._engines if holder == user_id)
            if held >= self.max_connections_per_user:
                raise DatasourceConnectionError(
                    datasource.datasource_id,
                    f"connection limit reached for user ({self.max_connections_per_user})",
                )

            url = datasource.connection_config.get("url")
            if not url:
                raise DatasourceConnectionError(
                    datasource.datasource_id, "connection_config is missing 'url'"
                )
            try:
                engine = create_engine(url, pool_size=self.pool_size, pool_pre_ping=True)
            except (SQLAlchemyError, ImportError) as e:
                raise DatasourceConnectionError(datasource.datasource_id, str(e)) from e
            self._engines[key] = engine
            logger.debug("engine_created", pool_key="/".join(key), dialect=engine.dialect.name)
            return engine

    def close(self) -> None:
        """Dispose every pooled engine and DuckDB connection."""
        with self._lock:
            for engine in self._engines.values():
                engine.dispose()
            for conn in self._duckdb.values():
                conn.close()
            self._engines.clear()
            self._duckdb.clear()
