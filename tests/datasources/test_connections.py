"""Tests for pooled datasource connections."""

import pytest
from sqlalchemy import create_engine, text

from keygraph.analysis.relationships.probe import DuckDBJoinProbe, SQLJoinProbe
from keygraph.datasources.connections import ConnectionManager, DatasourceConnectionError
from keygraph.datasources.models import Datasource, DatasourceType


def _duckdb_source(path, datasource_id="ds-1"):
    return Datasource(
        datasource_id=datasource_id,
        project_id="proj-1",
        datasource_type=DatasourceType.DUCKDB,
        connection_config={"path": str(path)},
    )


@pytest.fixture
def sqlite_url(tmp_path):
    url = f"sqlite:///{tmp_path / 'crm.sqlite'}"
    engine = create_engine(url)
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE accounts (id INTEGER PRIMARY KEY)"))
        conn.execute(text("CREATE TABLE contacts (id INTEGER PRIMARY KEY, account_id INTEGER)"))
        conn.execute(text("INSERT INTO accounts VALUES (1), (2)"))
        conn.execute(text("INSERT INTO contacts VALUES (1, 1), (2, 1), (3, 2)"))
    engine.dispose()
    return url


@pytest.fixture
def manager():
    manager = ConnectionManager(pool_size=2, max_connections_per_user=2)
    yield manager
    manager.close()


class TestConnectionManager:
    async def test_duckdb_probe_per_call(self, manager, shop_duckdb):
        source = _duckdb_source(shop_duckdb)

        with manager.open_probe(source, "proj-1", "alice") as first:
            with manager.open_probe(source, "proj-1", "alice") as second:
                assert isinstance(first, DuckDBJoinProbe)
                assert first is not second
                a = await first.analyze("", "orders", "user_id", "", "users", "id")
                b = await second.analyze("", "line_items", "order_id", "", "orders", "id")

        assert a.join_count == 500
        assert b.join_count == 1000

    def test_sql_probe(self, manager, sqlite_url):
        source = Datasource(
            datasource_id="ds-sql",
            project_id="proj-1",
            datasource_type=DatasourceType.SQLITE,
            connection_config={"url": sqlite_url},
        )

        with manager.open_probe(source, "proj-1", "alice") as probe:
            assert isinstance(probe, SQLJoinProbe)
            analysis = probe.analyze_join("", "contacts", "account_id", "", "accounts", "id")

        assert analysis.join_count == 3
        assert analysis.source_matched == 2

    def test_pools_are_keyed_by_user(self, manager, sqlite_url):
        source = Datasource(
            datasource_id="ds-sql",
            project_id="proj-1",
            datasource_type=DatasourceType.SQLITE,
            connection_config={"url": sqlite_url},
        )

        manager.open_probe(source, "proj-1", "alice").close()
        manager.open_probe(source, "proj-1", "alice").close()
        manager.open_probe(source, "proj-1", "bob").close()

        assert set(manager._engines) == {
            ("proj-1", "alice", "ds-sql"),
            ("proj-1", "bob", "ds-sql"),
        }

    def test_per_user_limit(self, manager, sqlite_url):
        for n in range(2):
            source = Datasource(
                datasource_id=f"ds-{n}",
                project_id="proj-1",
                datasource_type=DatasourceType.SQLITE,
                connection_config={"url": sqlite_url},
            )
            manager.open_probe(source, "proj-1", "alice").close()

        third = Datasource(
            datasource_id="ds-3",
            project_id="proj-1",
            datasource_type=DatasourceType.SQLITE,
            connection_config={"url": sqlite_url},
        )
        with pytest.raises(DatasourceConnectionError, match="connection limit"):
            manager.open_probe(third, "proj-1", "alice")

        # Other users are unaffected
        manager.open_probe(third, "proj-1", "bob").close()

    def test_per_user_limit_with_colon_in_project_id(self, manager, sqlite_url):
        sources = [
            Datasource(
                datasource_id=f"ds-{n}",
                project_id="acme:eu",
                datasource_type=DatasourceType.SQLITE,
                connection_config={"url": sqlite_url},
            )
            for n in range(3)
        ]
        for source in sources[:2]:
            manager.open_probe(source, "acme:eu", "alice").close()

        with pytest.raises(DatasourceConnectionError, match="connection limit"):
            manager.open_probe(sources[2], "acme:eu", "alice")

    def test_missing_url(self, manager):
        source = Datasource(
            datasource_id="ds-x", project_id="proj-1", datasource_type=DatasourceType.POSTGRES
        )

        with pytest.raises(DatasourceConnectionError, match="missing 'url'"):
            manager.open_probe(source, "proj-1")

    def test_missing_duckdb_file(self, manager, tmp_path):
        source = _duckdb_source(tmp_path / "absent.duckdb")

        with pytest.raises(DatasourceConnectionError):
            manager.open_probe(source, "proj-1")
