"""Fixtures for discovery tests."""

import pytest
from discovery_fakes import (
    DATASOURCE_ID,
    PROJECT_ID,
    FakeProbe,
    FakeProbeFactory,
    ShopWorld,
    analysis,
    build_shop_world,
)

from keygraph.datasources.connections import ConnectionManager
from keygraph.datasources.models import Datasource, DatasourceType


@pytest.fixture
def fake_probe() -> FakeProbe:
    return FakeProbe(
        {
            "orders.user_id->users.id": analysis(500, 500, 500),
            "line_items.order_id->orders.id": analysis(1000, 250, 250, reverse_orphans=250),
        }
    )


@pytest.fixture
def shop(fake_probe) -> ShopWorld:
    """Shop scenario with a fake probe."""
    datasource = Datasource(
        datasource_id=DATASOURCE_ID, project_id=PROJECT_ID, datasource_type=DatasourceType.DUCKDB
    )
    return build_shop_world(FakeProbeFactory(fake_probe), datasource)


@pytest.fixture
def live_shop(shop_duckdb):
    """Shop scenario probing the shop_duckdb file through a real ConnectionManager."""
    manager = ConnectionManager()
    datasource = Datasource(
        datasource_id=DATASOURCE_ID,
        project_id=PROJECT_ID,
        datasource_type=DatasourceType.DUCKDB,
        connection_config={"path": str(shop_duckdb)},
    )
    yield build_shop_world(manager, datasource)
    manager.close()
