"""Tests for collecting stored relationship candidates."""

from keygraph.analysis.relationships.cardinality import calculate_metrics
from keygraph.analysis.relationships.models import JoinAnalysis
from keygraph.discovery.collector import StoredCandidateCollector
from keygraph.storage import CandidateRepository, SchemaRepository
from keygraph.storage.models import SchemaColumnRecord


class TestStoredCandidateCollector:
    async def test_candidates_resolved_from_schema(self, session, shop_catalog):
        collector = StoredCandidateCollector(
            CandidateRepository(session), SchemaRepository(session)
        )
        calls = []

        candidates = await collector.collect_candidates(
            "proj-1", "ds-1", lambda c, t, m: calls.append((c, t))
        )

        by_key = {c.key: c for c in candidates}
        assert set(by_key) == {"line_items.order_id->orders.id", "products.id->users.id"}
        items = by_key["line_items.order_id->orders.id"]
        assert items.candidate_id == "cand-items-orders"
        assert items.source_column_id == shop_catalog.column_ids["line_items.order_id"]
        assert items.source_data_type == "BIGINT"
        assert items.source_row_count == 1000
        assert items.target_row_count == 500
        assert not items.has_join_stats
        assert calls == [(1, 2), (2, 2)]

    async def test_join_stats_carried_over(self, session, shop_catalog):
        candidate_repo = CandidateRepository(session)
        analysis = JoinAnalysis(
            join_count=1000, source_matched=250, target_matched=250, reverse_orphan_count=250
        )
        await candidate_repo.update_metrics(
            "proj-1", "cand-items-orders", analysis, calculate_metrics(analysis, 1000, 500)
        )
        collector = StoredCandidateCollector(candidate_repo, SchemaRepository(session))

        candidates = await collector.collect_candidates("proj-1", "ds-1", lambda *a: None)

        items = next(c for c in candidates if c.candidate_id == "cand-items-orders")
        assert items.has_join_stats
        assert items.join_analysis() == analysis
        assert items.reverse_orphan_count == 250

    async def test_candidates_with_missing_columns_skipped(self, session, shop_catalog):
        column = await session.get(SchemaColumnRecord, shop_catalog.column_ids["products.id"])
        column.project_id = "moved"
        await session.commit()
        collector = StoredCandidateCollector(
            CandidateRepository(session), SchemaRepository(session)
        )
        calls = []

        candidates = await collector.collect_candidates(
            "proj-1", "ds-1", lambda c, t, m: calls.append(c)
        )

        assert [c.candidate_id for c in candidates] == ["cand-items-orders"]
        assert calls == [1, 2]
