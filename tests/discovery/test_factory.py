"""End-to-end discovery over the SQLAlchemy store and a live DuckDB file."""

import json
import re
from unittest.mock import AsyncMock

import pytest

from keygraph.core.config import Settings
from keygraph.core.models.base import Cardinality, DetectionMethod
from keygraph.datasources.connections import ConnectionManager
from keygraph.discovery.factory import build_discovery_service, build_validator
from keygraph.llm import load_llm_config
from keygraph.llm.providers.base import LLMResponse
from keygraph.storage import EntityRelationshipRepository

_ROW = re.compile(r"^\| (\d+) \| (\S+) ")


def _judge(request) -> LLMResponse:
    """Accept every candidate except those sourced from the products table."""
    evaluations = []
    for line in request.prompt.splitlines():
        match = _ROW.match(line)
        if not match:
            continue
        accepted = not match.group(2).startswith("products.")
        evaluations.append(
            {
                "id": int(match.group(1)),
                "is_fk": accepted,
                "confidence": 0.9 if accepted else 0.2,
                "semantic_role": "order" if accepted else "",
                "reasoning": "judged by column naming",
                "should_include": accepted,
            }
        )
    return LLMResponse(content=json.dumps({"evaluations": evaluations}), model="claude-test")


@pytest.fixture
def provider():
    provider = AsyncMock()
    provider.generate_response = AsyncMock(side_effect=_judge)
    return provider


@pytest.fixture
def connections():
    manager = ConnectionManager()
    yield manager
    manager.close()


class TestBuildValidator:
    def test_settings_from_llm_config(self, provider):
        validator = build_validator(load_llm_config(), provider=provider)

        assert validator.batch_size == 20
        assert validator.min_confidence == 0.7
        assert validator.pool.max_concurrent == 4

    def test_disabled_feature_raises(self, provider):
        config = load_llm_config()
        config.features.fk_semantic_evaluation.enabled = False

        with pytest.raises(ValueError, match="disabled"):
            build_validator(config, provider=provider)


class TestDiscoveryEndToEnd:
    async def test_discovers_and_persists(self, session, shop_catalog, connections, provider):
        service = build_discovery_service(
            session, connections, settings=Settings(), provider=provider
        )

        result = await service.discover_relationships("proj-1", "ds-1", user_id="user-1")

        stats = result.unwrap()
        assert stats.preserved_db_fks == 1
        assert stats.candidates_evaluated == 2
        assert stats.relationships_created == 1
        assert stats.relationships_rejected == 1
        assert stats.relationships_failed == 0

        stored = {
            r.key: r
            for r in await EntityRelationshipRepository(session).get_by_ontology("onto-1")
        }
        assert set(stored) == {"orders.user_id->users.id", "line_items.order_id->orders.id"}
        declared = stored["orders.user_id->users.id"]
        assert declared.detection_method == DetectionMethod.FOREIGN_KEY
        assert declared.cardinality == Cardinality.ONE_TO_ONE
        judged = stored["line_items.order_id->orders.id"]
        assert judged.detection_method == DetectionMethod.PK_MATCH
        assert judged.cardinality == Cardinality.MANY_TO_ONE
        assert judged.description == "The order_id in line_items represents the order."

    async def test_rerun_is_idempotent(self, session, shop_catalog, connections, provider):
        service = build_discovery_service(
            session, connections, settings=Settings(), provider=provider
        )
        await service.discover_relationships("proj-1", "ds-1")

        second = (await service.discover_relationships("proj-1", "ds-1")).unwrap()

        assert second.preserved_db_fks == 0
        assert second.relationships_created == 0
        # The rejected candidate is judged again; accepted ones are deduplicated
        assert second.candidates_evaluated == 1
        assert len(await EntityRelationshipRepository(session).get_by_ontology("onto-1")) == 2
