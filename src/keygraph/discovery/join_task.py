"""Per-candidate join tests.

A CandidateJoinTask probes one stored candidate against the live datasource
and writes the resulting metrics back onto the candidate record. Each task
opens its own scoped probe, so many tasks can run concurrently.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass

from keygraph.analysis.relationships.cardinality import calculate_metrics
from keygraph.analysis.relationships.models import JoinMetrics
from keygraph.analysis.relationships.probe import JoinProbeError
from keygraph.core.concurrency import WorkerPool, WorkResult
from keygraph.core.logging import get_logger, increment_join_probe
from keygraph.discovery.ports import (
    CandidateRepository,
    DatasourceRepository,
    ProbeFactory,
    SchemaRepository,
)

logger = get_logger(__name__)


def format_join_task_description(
    source_table: str, source_column: str, target_table: str, target_column: str
) -> str:
    """Human-readable task label; schema prefixes are stripped from table names."""
    source = source_table.rsplit(".", 1)[-1]
    target = target_table.rsplit(".", 1)[-1]
    return f"Test join: {source}.{source_column} → {target}.{target_column}"


@dataclass
class CandidateJoinTask:
    """Join-test one stored relationship candidate.

    The table/column names are only used for the description; ``execute``
    fills them in from the schema if the caller left them empty.
    """

    candidate_id: str
    project_id: str
    datasource_id: str
    user_id: str
    candidate_repo: CandidateRepository
    schema_repo: SchemaRepository
    datasource_repo: DatasourceRepository
    probe_factory: ProbeFactory
    source_table: str = ""
    source_column: str = ""
    target_table: str = ""
    target_column: str = ""

    @property
    def description(self) -> str:
        return format_join_task_description(
            self.source_table, self.source_column, self.target_table, self.target_column
        )

    async def execute(self) -> JoinMetrics:
        """Probe the candidate's join and store its metrics.

        Returns:
            The computed JoinMetrics

        Raises:
            LookupError: Candidate, datasource, column or table not found
            JoinProbeError: The join could not be executed
        """
        candidate = await self.candidate_repo.get(self.project_id, self.candidate_id)
        if candidate is None:
            raise LookupError(f"candidate {self.candidate_id} not found")

        datasource = await self.datasource_repo.get(self.project_id, self.datasource_id)
        if datasource is None:
            raise LookupError(f"datasource {self.datasource_id} not found")

        source_column = await self.schema_repo.get_column(
            self.project_id, candidate.source_column_id
        )
        if source_column is None:
            raise LookupError(f"source column {candidate.source_column_id} not found")
        target_column = await self.schema_repo.get_column(
            self.project_id, candidate.target_column_id
        )
        if target_column is None:
            raise LookupError(f"target column {candidate.target_column_id} not found")

        source_table = await self.schema_repo.get_table(self.project_id, source_column.table_id)
        if source_table is None:
            raise LookupError(f"source table {source_column.table_id} not found")
        target_table = await self.schema_repo.get_table(self.project_id, target_column.table_id)
        if target_table is None:
            raise LookupError(f"target table {target_column.table_id} not found")

        self.source_table = self.source_table or source_table.table_name
        self.source_column = self.source_column or source_column.column_name
        self.target_table = self.target_table or target_table.table_name
        self.target_column = self.target_column or target_column.column_name

        probe = await asyncio.to_thread(
            self.probe_factory.open_probe, datasource, self.project_id, self.user_id
        )
        try:
            analysis = await probe.analyze(
                source_table.schema_name,
                source_table.table_name,
                source_column.column_name,
                target_table.schema_name,
                target_table.table_name,
                target_column.column_name,
            )
        except JoinProbeError:
            increment_join_probe(failed=True)
            raise
        finally:
            probe.close()
        increment_join_probe()

        metrics = calculate_metrics(analysis, source_table.row_count, target_table.row_count)
        await self.candidate_repo.update_metrics(
            self.project_id, self.candidate_id, analysis, metrics
        )
        logger.debug(
            "candidate_join_tested",
            candidate_id=self.candidate_id,
            description=self.description,
            cardinality=metrics.cardinality.value,
            join_match_rate=metrics.join_match_rate,
        )
        return metrics


async def run_candidate_join_tasks(
    tasks: Sequence[CandidateJoinTask], max_concurrent: int = 4
) -> list[WorkResult[JoinMetrics]]:
    """Run join tasks with bounded concurrency.

    Returns:
        One WorkResult per task, in order. A failed task carries its exception.
    """
    pool = WorkerPool(max_concurrent)
    results = await pool.process([(task.candidate_id, task.execute) for task in tasks])
    failed = sum(1 for r in results if not r.ok)
    if failed:
        logger.warning("candidate_join_tasks_failed", failed=failed, total=len(results))
    return results
