"""Candidate collection from stored relationship candidates."""

from __future__ import annotations

from keygraph.analysis.relationships.models import RelationshipCandidate
from keygraph.core.logging import get_logger
from keygraph.discovery.models import CandidateRecord, ProgressCallback, SchemaColumn, SchemaTable
from keygraph.discovery.ports import CandidateRepository, SchemaRepository

logger = get_logger(__name__)


class StoredCandidateCollector:
    """Turn persisted CandidateRecords into RelationshipCandidates.

    Records whose columns or tables no longer exist are skipped. Join
    statistics recorded by an earlier join test are carried over, so the
    pipeline does not probe those pairs again.
    """

    def __init__(self, candidate_repo: CandidateRepository, schema_repo: SchemaRepository):
        self.candidate_repo = candidate_repo
        self.schema_repo = schema_repo

    async def collect_candidates(
        self, project_id: str, datasource_id: str, progress: ProgressCallback
    ) -> list[RelationshipCandidate]:
        records = await self.candidate_repo.list_by_datasource(project_id, datasource_id)
        tables = {
            t.table_id: t
            for t in await self.schema_repo.list_tables(project_id, datasource_id)
        }
        columns = {
            c.column_id: c for c in await self.schema_repo.list_columns(project_id, datasource_id)
        }

        candidates: list[RelationshipCandidate] = []
        total = len(records)
        for i, record in enumerate(records, start=1):
            candidate = _to_candidate(record, tables, columns)
            if candidate is None:
                logger.debug("stored_candidate_skipped", candidate_id=record.candidate_id)
            else:
                candidates.append(candidate)
            progress(i, total, f"Collected {i}/{total} candidates")

        logger.debug("stored_candidates_collected", total=total, usable=len(candidates))
        return candidates


def _to_candidate(
    record: CandidateRecord,
    tables: dict[str, SchemaTable],
    columns: dict[str, SchemaColumn],
) -> RelationshipCandidate | None:
    source_column = columns.get(record.source_column_id)
    target_column = columns.get(record.target_column_id)
    if source_column is None or target_column is None:
        return None
    source_table = tables.get(source_column.table_id)
    target_table = tables.get(target_column.table_id)
    if source_table is None or target_table is None:
        return None

    return RelationshipCandidate(
        candidate_id=record.candidate_id,
        source_schema=source_table.schema_name,
        source_table=source_table.table_name,
        source_column=source_column.column_name,
        source_column_id=source_column.column_id,
        source_data_type=source_column.data_type,
        target_schema=target_table.schema_name,
        target_table=target_table.table_name,
        target_column=target_column.column_name,
        target_column_id=target_column.column_id,
        target_data_type=target_column.data_type,
        source_distinct_count=source_column.distinct_count,
        target_distinct_count=target_column.distinct_count,
        source_row_count=record.source_row_count or source_table.row_count,
        target_row_count=record.target_row_count or target_table.row_count,
        sample_values=source_column.sample_values,
        join_count=record.join_count,
        source_matched=record.source_matched,
        target_matched=record.target_matched,
        orphan_count=record.orphan_count,
        reverse_orphan_count=record.reverse_orphan_count,
        source_table_description=source_table.description,
        target_table_description=target_table.description,
    )
