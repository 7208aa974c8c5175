"""Shared pytest fixtures for all tests."""

from types import SimpleNamespace

import duckdb
import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from keygraph.storage import init_database
from keygraph.storage.models import (
    DatasourceRecord,
    OntologyEntityRecord,
    OntologyRecord,
    RelationshipCandidateRecord,
    SchemaColumnRecord,
    SchemaRelationshipRecord,
    SchemaTableRecord,
)


@pytest.fixture(scope="function")
async def engine() -> AsyncEngine:
    """Create an in-memory SQLite engine for testing.

    Creates a fresh database for each test function.
    """
    test_engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)

    # Enable foreign keys for SQLite
    @event.listens_for(test_engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    await init_database(test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
async def session(engine: AsyncEngine) -> AsyncSession:
    """Create a test database session tied to the test's engine."""
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest.fixture
def duckdb_conn():
    """Create an in-memory DuckDB connection for testing."""
    conn = duckdb.connect(":memory:")
    yield conn
    conn.close()


@pytest.fixture
def shop_duckdb(tmp_path):
    """File-based DuckDB with users, orders, products and a junction table.

    - users: 500 rows, id 1..500
    - orders: 500 rows, user_id = id (one order per user)
    - line_items: 1000 rows, order_id cycles 1..250 (two items per order)
    - products: ids 10001..10050, no overlap with users
    - user_tags: 900 rows linking 30 users to 100 tags
    - legacy_orders: user_id as VARCHAR, 20 values missing from users

    Returns the database path; the setup connection is closed so probes can
    open read-only connections.
    """
    db_path = tmp_path / "shop.duckdb"
    conn = duckdb.connect(str(db_path))

    conn.execute("""
        CREATE TABLE users AS
        SELECT i AS id, 'user_' || i AS name
        FROM generate_series(1, 500) AS t(i)
    """)
    conn.execute("""
        CREATE TABLE orders AS
        SELECT i AS id, i AS user_id, (i * 7 % 100)::DOUBLE AS amount
        FROM generate_series(1, 500) AS t(i)
    """)
    conn.execute("""
        CREATE TABLE line_items AS
        SELECT i AS id, ((i - 1) % 250) + 1 AS order_id
        FROM generate_series(1, 1000) AS t(i)
    """)
    conn.execute("""
        CREATE TABLE products AS
        SELECT i + 10000 AS id, 'product_' || i AS name
        FROM generate_series(1, 50) AS t(i)
    """)
    conn.execute("""
        CREATE TABLE tags AS
        SELECT i AS id, 'tag_' || i AS label
        FROM generate_series(1, 100) AS t(i)
    """)
    conn.execute("""
        CREATE TABLE user_tags AS
        SELECT u AS user_id, t AS tag_id
        FROM generate_series(1, 30) AS a(u), generate_series(1, 100) AS b(t)
        WHERE (u + t) % 10 < 3
    """)
    conn.execute("""
        CREATE TABLE legacy_orders AS
        SELECT i AS id, CAST(i + 480 AS VARCHAR) AS user_id
        FROM generate_series(1, 40) AS t(i)
    """)
    conn.close()
    return db_path


@pytest.fixture
async def shop_catalog(session: AsyncSession, shop_duckdb) -> SimpleNamespace:
    """Metadata store seeded with the shop_duckdb catalog.

    - datasource ds-1 (duckdb, pointing at shop_duckdb) in project proj-1
    - active ontology onto-1 with entities User, Order, LineItem
    - tables users, orders, line_items, products with their columns
    - a declared FK orders.user_id -> users.id
    - untested candidates line_items.order_id -> orders.id and products.id -> users.id

    Returns the ids as attributes (``column_ids`` keyed by 'table.column').
    """
    project_id, datasource_id, ontology_id = "proj-1", "ds-1", "onto-1"
    session.add(
        DatasourceRecord(
            datasource_id=datasource_id,
            project_id=project_id,
            name="shop",
            datasource_type="duckdb",
            connection_config={"path": str(shop_duckdb)},
        )
    )
    session.add(OntologyRecord(ontology_id=ontology_id, project_id=project_id, name="shop"))
    await session.flush()
    for entity_id, name, table in [
        ("e-user", "User", "users"),
        ("e-order", "Order", "orders"),
        ("e-line-item", "LineItem", "line_items"),
    ]:
        session.add(
            OntologyEntityRecord(
                entity_id=entity_id,
                project_id=project_id,
                ontology_id=ontology_id,
                name=name,
                primary_table=table,
            )
        )
    await session.flush()

    column_ids: dict[str, str] = {}
    for table_name, row_count, columns in [
        ("users", 500, ["id", "name"]),
        ("orders", 500, ["id", "user_id", "amount"]),
        ("line_items", 1000, ["id", "order_id"]),
        ("products", 50, ["id", "name"]),
    ]:
        table_id = f"t-{table_name}"
        session.add(
            SchemaTableRecord(
                table_id=table_id,
                project_id=project_id,
                datasource_id=datasource_id,
                table_name=table_name,
                row_count=row_count,
            )
        )
        await session.flush()
        for column_name in columns:
            column_id = f"c-{table_name}-{column_name}"
            column_ids[f"{table_name}.{column_name}"] = column_id
            session.add(
                SchemaColumnRecord(
                    column_id=column_id,
                    project_id=project_id,
                    table_id=table_id,
                    column_name=column_name,
                    data_type="VARCHAR" if column_name == "name" else "BIGINT",
                    is_primary_key=column_name == "id",
                )
            )
    await session.flush()

    session.add(
        SchemaRelationshipRecord(
            relationship_id="rel-orders-users",
            project_id=project_id,
            datasource_id=datasource_id,
            source_column_id=column_ids["orders.user_id"],
            target_column_id=column_ids["users.id"],
            inference_method="foreign_key",
        )
    )
    for candidate_id, source, target in [
        ("cand-items-orders", "line_items.order_id", "orders.id"),
        ("cand-products-users", "products.id", "users.id"),
    ]:
        session.add(
            RelationshipCandidateRecord(
                candidate_id=candidate_id,
                project_id=project_id,
                datasource_id=datasource_id,
                source_column_id=column_ids[source],
                target_column_id=column_ids[target],
            )
        )
    await session.commit()

    return SimpleNamespace(
        project_id=project_id,
        datasource_id=datasource_id,
        ontology_id=ontology_id,
        column_ids=column_ids,
    )
