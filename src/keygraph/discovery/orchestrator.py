"""Relationship discovery pipeline.

Phases, in order:
1. Load context: active ontology, entities, schema metadata, join probe
2. Preserve DB-declared foreign keys
3. Preserve high-confidence column-feature foreign keys
4. Collect remaining candidates
5. Deduplicate against existing relationships
6. Validate candidates with the semantic judge
7. Persist validated relationships
8. Report

Only missing context (no active ontology, unreadable datasource or schema
metadata) fails a run. Every per-item failure is logged and counted.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from uuid import uuid4

from keygraph.analysis.relationships.cardinality import determine_cardinality
from keygraph.analysis.relationships.models import RelationshipCandidate, ValidatedRelationship
from keygraph.analysis.relationships.probe import JoinProbe, JoinProbeError
from keygraph.core.config import Settings, get_settings
from keygraph.core.logging import (
    end_run_metrics,
    get_logger,
    increment_db_write,
    increment_join_probe,
    log_context,
    record_operation_timing,
    start_run_metrics,
)
from keygraph.core.models.base import (
    Cardinality,
    DetectionMethod,
    InferenceMethod,
    RelationshipSource,
    RelationshipStatus,
    Result,
)
from keygraph.discovery.models import (
    DiscoveryResult,
    EntityRelationship,
    Ontology,
    OntologyEntity,
    ProgressCallback,
    SchemaColumn,
    SchemaTable,
)
from keygraph.discovery.ports import (
    CandidateCollector,
    DatasourceRepository,
    EntityRelationshipRepository,
    EntityRepository,
    OntologyRepository,
    ProbeFactory,
    SchemaRepository,
)
from keygraph.discovery.validator import RelationshipValidator

logger = get_logger(__name__)

# Overall progress sub-ranges handed to collaborators
COLLECT_PROGRESS = (20, 50)
VALIDATE_PROGRESS = (50, 90)


def _noop_progress(current: int, total: int, message: str) -> None:
    pass


def remap_progress(progress: ProgressCallback, start: int, end: int) -> ProgressCallback:
    """Map a collaborator's (current, total) onto the [start, end] percentage range."""
    span = end - start

    def remapped(current: int, total: int, message: str) -> None:
        progress(start + current * span // max(total, 1), 100, message)

    return remapped


@dataclass
class _RunContext:
    """Everything loaded in phase 1, plus keys created during the run."""

    project_id: str
    datasource_id: str
    ontology: Ontology
    probe: JoinProbe
    entity_by_table: dict[str, OntologyEntity]
    table_by_id: dict[str, SchemaTable]
    table_by_name: dict[str, SchemaTable]
    column_by_id: dict[str, SchemaColumn]
    columns_by_table: dict[str, dict[str, SchemaColumn]]
    existing_keys: set[str]
    result: DiscoveryResult = field(default_factory=DiscoveryResult)

    def find_table(self, name: str, default_schema: str = "") -> SchemaTable | None:
        """Resolve a table name, schema-qualified first, then bare."""
        if "." in name:
            return self.table_by_name.get(name) or self.table_by_name.get(name.split(".", 1)[1])
        if default_schema:
            table = self.table_by_name.get(f"{default_schema}.{name}")
            if table is not None:
                return table
        return self.table_by_name.get(name)

    def find_column(self, table: SchemaTable, column_name: str) -> SchemaColumn | None:
        return self.columns_by_table.get(table.table_id, {}).get(column_name)

    def entity_for(self, table: SchemaTable) -> OntologyEntity | None:
        return self.entity_by_table.get(table.qualified_name) or self.entity_by_table.get(
            table.table_name
        )


class RelationshipDiscoveryService:
    """Discover, validate and persist entity relationships for one datasource."""

    def __init__(
        self,
        ontology_repo: OntologyRepository,
        entity_repo: EntityRepository,
        schema_repo: SchemaRepository,
        relationship_repo: EntityRelationshipRepository,
        datasource_repo: DatasourceRepository,
        collector: CandidateCollector,
        probe_factory: ProbeFactory,
        validator: RelationshipValidator,
        settings: Settings | None = None,
    ):
        self.ontology_repo = ontology_repo
        self.entity_repo = entity_repo
        self.schema_repo = schema_repo
        self.relationship_repo = relationship_repo
        self.datasource_repo = datasource_repo
        self.collector = collector
        self.probe_factory = probe_factory
        self.validator = validator
        self.settings = settings or get_settings()

    async def discover_relationships(
        self,
        project_id: str,
        datasource_id: str,
        progress: ProgressCallback | None = None,
        user_id: str = "",
    ) -> Result[DiscoveryResult]:
        """Run the full discovery pipeline.

        Args:
            project_id: Project owning the ontology
            datasource_id: Datasource to analyze
            progress: Receives (current, 100, message) at phase boundaries
            user_id: Requesting user, used to key pooled datasource connections

        Returns:
            Result with aggregate counts, or a failure for missing context
        """
        started = time.monotonic()
        report = progress or _noop_progress
        start_run_metrics(run_id=str(uuid4()))

        try:
            with log_context(project_id=project_id, datasource_id=datasource_id):
                report(0, 100, "Processing DB-declared FK relationships")
                context_result = await self._load_context(project_id, datasource_id, user_id)
                if not context_result.success:
                    logger.error("discovery_context_failed", error=context_result.error)
                    return Result.fail(context_result.error or "failed to load context")

                ctx = context_result.unwrap()
                try:
                    return await self._run(ctx, report, started)
                finally:
                    ctx.probe.close()
        finally:
            metrics = end_run_metrics()
            if metrics:
                logger.info("discovery_run_metrics", **metrics.to_dict())

    async def _run(
        self, ctx: _RunContext, report: ProgressCallback, started: float
    ) -> Result[DiscoveryResult]:
        result = ctx.result

        phase_start = time.monotonic()
        result.preserved_db_fks = await self._preserve_db_fks(ctx)
        record_operation_timing("preserve_db_fks", time.monotonic() - phase_start)
        logger.info("db_fks_preserved", count=result.preserved_db_fks)

        report(10, 100, "Processing ColumnFeatures FK relationships")
        phase_start = time.monotonic()
        result.preserved_column_fks = await self._preserve_column_feature_fks(ctx)
        record_operation_timing("preserve_column_fks", time.monotonic() - phase_start)
        logger.info("column_feature_fks_preserved", count=result.preserved_column_fks)

        report(COLLECT_PROGRESS[0], 100, "Collecting relationship candidates")
        phase_start = time.monotonic()
        candidates = await self._collect_candidates(ctx, report)
        record_operation_timing("collect_candidates", time.monotonic() - phase_start)

        try:
            existing = await self.relationship_repo.get_by_ontology(ctx.ontology.ontology_id)
        except Exception as e:
            logger.error("existing_relationships_unavailable", error=str(e))
            return Result.fail(f"load existing relationships: {e}")
        ctx.existing_keys.update(r.key for r in existing)
        new_candidates = self._deduplicate(candidates, ctx.existing_keys)
        result.candidates_evaluated = len(new_candidates)
        logger.info(
            "candidates_deduplicated",
            collected=len(candidates),
            new=len(new_candidates),
        )

        validated: list[ValidatedRelationship] = []
        if new_candidates:
            report(VALIDATE_PROGRESS[0], 100, "Validating relationship candidates with LLM")
            phase_start = time.monotonic()
            prepared = [await self._prepare_candidate(ctx, c) for c in new_candidates]
            outcome = await self.validator.validate_candidates(
                prepared, ctx.project_id, remap_progress(report, *VALIDATE_PROGRESS)
            )
            record_operation_timing("validate_candidates", time.monotonic() - phase_start)
            validated = outcome.validated
            result.unscored_candidates = len(outcome.unscored)
            if outcome.is_partial:
                logger.warning(
                    "validation_partially_failed",
                    failed_batches=outcome.failed_batches,
                    unscored=len(outcome.unscored),
                    errors=outcome.errors,
                )

        report(VALIDATE_PROGRESS[1], 100, "Storing validated relationships")
        for item in validated:
            if not item.is_valid_fk:
                result.relationships_rejected += 1
                logger.debug(
                    "candidate_rejected",
                    candidate=item.candidate.key,
                    reasoning=item.reasoning,
                )
                continue
            if await self._store_validated(ctx, item):
                result.relationships_created += 1

        result.duration_ms = int((time.monotonic() - started) * 1000)
        report(100, 100, "Relationship discovery complete")
        logger.info("relationship_discovery_complete", **result.model_dump())
        return Result.ok(result)

    # =========================================================================
    # Phase 1: context
    # =========================================================================

    async def _load_context(
        self, project_id: str, datasource_id: str, user_id: str
    ) -> Result[_RunContext]:
        try:
            ontology = await self.ontology_repo.get_active(project_id)
        except Exception as e:
            return Result.fail(f"get active ontology: {e}")
        if ontology is None:
            return Result.fail(f"no active ontology found for project {project_id}")

        try:
            entities = await self.entity_repo.get_by_ontology(project_id, ontology.ontology_id)
            datasource = await self.datasource_repo.get(project_id, datasource_id)
            tables = await self.schema_repo.list_tables(project_id, datasource_id)
            columns = await self.schema_repo.list_columns(project_id, datasource_id)
            existing = await self.relationship_repo.get_by_ontology(ontology.ontology_id)
        except Exception as e:
            return Result.fail(f"load discovery metadata: {e}")
        if datasource is None:
            return Result.fail(f"datasource {datasource_id} not found")

        try:
            probe = await asyncio.to_thread(
                self.probe_factory.open_probe, datasource, project_id, user_id
            )
        except Exception as e:
            return Result.fail(f"create schema discoverer: {e}")

        entity_by_table: dict[str, OntologyEntity] = {}
        for entity in entities:
            if entity.primary_schema:
                entity_by_table[f"{entity.primary_schema}.{entity.primary_table}"] = entity
            entity_by_table.setdefault(entity.primary_table, entity)

        table_by_name: dict[str, SchemaTable] = {}
        for table in tables:
            table_by_name[table.qualified_name] = table
            table_by_name.setdefault(table.table_name, table)

        columns_by_table: dict[str, dict[str, SchemaColumn]] = {}
        for column in columns:
            columns_by_table.setdefault(column.table_id, {})[column.column_name] = column

        return Result.ok(
            _RunContext(
                project_id=project_id,
                datasource_id=datasource_id,
                ontology=ontology,
                probe=probe,
                entity_by_table=entity_by_table,
                table_by_id={t.table_id: t for t in tables},
                table_by_name=table_by_name,
                column_by_id={c.column_id: c for c in columns},
                columns_by_table=columns_by_table,
                existing_keys={r.key for r in existing},
            )
        )

    # =========================================================================
    # Phases 2-3: preservation
    # =========================================================================

    async def _preserve_db_fks(self, ctx: _RunContext) -> int:
        try:
            relationships = await self.schema_repo.list_relationships(
                ctx.project_id, ctx.datasource_id
            )
        except Exception as e:
            logger.error("schema_relationships_unavailable", error=str(e))
            return 0

        preserved = 0
        for rel in relationships:
            if rel.inference_method != InferenceMethod.FOREIGN_KEY:
                continue

            source_column = ctx.column_by_id.get(rel.source_column_id)
            target_column = ctx.column_by_id.get(rel.target_column_id)
            if source_column is None or target_column is None:
                logger.debug(
                    "db_fk_skipped", reason="column not found", relationship=rel.relationship_id
                )
                continue

            source_table = ctx.table_by_id.get(source_column.table_id)
            target_table = ctx.table_by_id.get(target_column.table_id)
            if source_table is None or target_table is None:
                logger.debug(
                    "db_fk_skipped", reason="table not found", relationship=rel.relationship_id
                )
                continue

            if await self._preserve(
                ctx,
                source_table,
                source_column,
                target_table,
                target_column,
                DetectionMethod.FOREIGN_KEY,
                confidence=1.0,
            ):
                preserved += 1
        return preserved

    async def _preserve_column_feature_fks(self, ctx: _RunContext) -> int:
        min_confidence = self.settings.column_feature_fk_min_confidence
        preserved = 0

        for column in ctx.column_by_id.values():
            identifier = column.features.identifier if column.features else None
            if identifier is None or not identifier.fk_target_table:
                continue
            if identifier.fk_confidence < min_confidence:
                continue

            source_table = ctx.table_by_id.get(column.table_id)
            if source_table is None:
                continue

            target_table = ctx.find_table(identifier.fk_target_table, source_table.schema_name)
            if target_table is None:
                logger.debug(
                    "column_fk_skipped",
                    reason="target table not found",
                    column=f"{source_table.table_name}.{column.column_name}",
                    target_table=identifier.fk_target_table,
                )
                continue

            target_column_name = (
                identifier.fk_target_column or self.settings.default_fk_target_column
            )
            target_column = ctx.find_column(target_table, target_column_name)
            if target_column is None:
                logger.debug(
                    "column_fk_skipped",
                    reason="target column not found",
                    target=f"{target_table.table_name}.{target_column_name}",
                )
                continue

            if await self._preserve(
                ctx,
                source_table,
                column,
                target_table,
                target_column,
                DetectionMethod.DATA_OVERLAP,
                confidence=identifier.fk_confidence,
            ):
                preserved += 1
        return preserved

    async def _preserve(
        self,
        ctx: _RunContext,
        source_table: SchemaTable,
        source_column: SchemaColumn,
        target_table: SchemaTable,
        target_column: SchemaColumn,
        method: DetectionMethod,
        confidence: float,
    ) -> bool:
        source_entity = ctx.entity_for(source_table)
        target_entity = ctx.entity_for(target_table)
        if source_entity is None or target_entity is None:
            # Table not yet covered by the ontology
            logger.debug(
                "fk_skipped_missing_entity",
                source_table=source_table.table_name,
                target_table=target_table.table_name,
                method=method.value,
            )
            return False

        relationship = EntityRelationship(
            ontology_id=ctx.ontology.ontology_id,
            source_entity_id=source_entity.entity_id,
            target_entity_id=target_entity.entity_id,
            source_column_schema=source_table.schema_name,
            source_column_table=source_table.table_name,
            source_column_name=source_column.column_name,
            source_column_id=source_column.column_id,
            target_column_schema=target_table.schema_name,
            target_column_table=target_table.table_name,
            target_column_name=target_column.column_name,
            target_column_id=target_column.column_id,
            detection_method=method,
            confidence=confidence,
            status=RelationshipStatus.CONFIRMED,
            cardinality=Cardinality.MANY_TO_ONE,
            source=RelationshipSource.INFERRED,
        )
        if relationship.key in ctx.existing_keys:
            logger.debug("fk_already_exists", key=relationship.key, method=method.value)
            return False

        relationship.cardinality = await self._probe_cardinality(
            ctx, source_table, source_column, target_table, target_column
        )
        return await self._create(ctx, relationship)

    async def _probe_cardinality(
        self,
        ctx: _RunContext,
        source_table: SchemaTable,
        source_column: SchemaColumn,
        target_table: SchemaTable,
        target_column: SchemaColumn,
    ) -> Cardinality:
        try:
            analysis = await ctx.probe.analyze(
                source_table.schema_name,
                source_table.table_name,
                source_column.column_name,
                target_table.schema_name,
                target_table.table_name,
                target_column.column_name,
            )
        except JoinProbeError as e:
            increment_join_probe(failed=True)
            ctx.result.join_probe_failures += 1
            logger.warning(
                "join_probe_failed_default_cardinality",
                source=f"{source_table.table_name}.{source_column.column_name}",
                target=f"{target_table.table_name}.{target_column.column_name}",
                default=Cardinality.MANY_TO_ONE.value,
                error=str(e),
            )
            return Cardinality.MANY_TO_ONE

        increment_join_probe()
        return determine_cardinality(analysis, source_table.row_count, target_table.row_count)

    # =========================================================================
    # Phases 4-5: collection and deduplication
    # =========================================================================

    async def _collect_candidates(
        self, ctx: _RunContext, report: ProgressCallback
    ) -> list[RelationshipCandidate]:
        try:
            candidates = await self.collector.collect_candidates(
                ctx.project_id, ctx.datasource_id, remap_progress(report, *COLLECT_PROGRESS)
            )
        except Exception as e:
            logger.error("candidate_collection_failed", error=str(e))
            return []
        logger.info("candidates_collected", count=len(candidates))
        return candidates

    @staticmethod
    def _deduplicate(
        candidates: list[RelationshipCandidate], existing_keys: set[str]
    ) -> list[RelationshipCandidate]:
        seen = set(existing_keys)
        unique: list[RelationshipCandidate] = []
        for candidate in candidates:
            if candidate.key in seen:
                continue
            seen.add(candidate.key)
            unique.append(candidate)
        return unique

    # =========================================================================
    # Phases 6-7: validation and persistence
    # =========================================================================

    async def _prepare_candidate(
        self, ctx: _RunContext, candidate: RelationshipCandidate
    ) -> RelationshipCandidate:
        """Fill in schema context, and join statistics when the collector did not probe."""
        source_table = ctx.find_table(candidate.source_table, candidate.source_schema)
        target_table = ctx.find_table(candidate.target_table, candidate.target_schema)
        source_column = (
            ctx.find_column(source_table, candidate.source_column) if source_table else None
        )
        target_column = (
            ctx.find_column(target_table, candidate.target_column) if target_table else None
        )
        target_entity = ctx.entity_for(target_table) if target_table else None

        updates: dict[str, object] = {}
        if source_table is not None:
            updates["source_row_count"] = candidate.source_row_count or source_table.row_count
            updates["source_table_description"] = (
                candidate.source_table_description or source_table.description
            )
        if target_table is not None:
            updates["target_row_count"] = candidate.target_row_count or target_table.row_count
            updates["target_table_description"] = (
                candidate.target_table_description or target_table.description
            )
        if source_column is not None:
            updates["source_column_id"] = candidate.source_column_id or source_column.column_id
            updates["source_data_type"] = candidate.source_data_type or source_column.data_type
            if candidate.source_distinct_count is None:
                updates["source_distinct_count"] = source_column.distinct_count
            if not candidate.sample_values:
                updates["sample_values"] = source_column.sample_values
        if target_column is not None:
            updates["target_column_id"] = candidate.target_column_id or target_column.column_id
            updates["target_data_type"] = candidate.target_data_type or target_column.data_type
        if target_entity is not None and not candidate.target_entity_name:
            updates["target_entity_name"] = target_entity.name
            updates["target_entity_description"] = target_entity.description

        prepared = candidate.model_copy(update=updates)
        if prepared.has_join_stats:
            return prepared

        try:
            analysis = await ctx.probe.analyze(
                candidate.source_schema,
                candidate.source_table,
                candidate.source_column,
                candidate.target_schema,
                candidate.target_table,
                candidate.target_column,
            )
        except JoinProbeError as e:
            increment_join_probe(failed=True)
            ctx.result.join_probe_failures += 1
            logger.warning("candidate_probe_failed", candidate=candidate.key, error=str(e))
            return prepared
        increment_join_probe()
        return prepared.with_join_analysis(analysis)

    async def _store_validated(self, ctx: _RunContext, item: ValidatedRelationship) -> bool:
        candidate = item.candidate
        source_table = ctx.find_table(candidate.source_table, candidate.source_schema)
        target_table = ctx.find_table(candidate.target_table, candidate.target_schema)
        source_entity = ctx.entity_for(source_table) if source_table else None
        target_entity = ctx.entity_for(target_table) if target_table else None
        if source_entity is None or target_entity is None:
            ctx.result.relationships_failed += 1
            logger.warning(
                "validated_relationship_missing_entity",
                candidate=candidate.key,
                source_entity_found=source_entity is not None,
                target_entity_found=target_entity is not None,
            )
            return False

        description = None
        if item.source_role:
            description = (
                f"The {candidate.source_column} in {candidate.source_table} "
                f"represents the {item.source_role}."
            )

        relationship = EntityRelationship(
            ontology_id=ctx.ontology.ontology_id,
            source_entity_id=source_entity.entity_id,
            target_entity_id=target_entity.entity_id,
            source_column_schema=candidate.source_schema or source_table.schema_name,
            source_column_table=candidate.source_table,
            source_column_name=candidate.source_column,
            source_column_id=candidate.source_column_id,
            target_column_schema=candidate.target_schema or target_table.schema_name,
            target_column_table=candidate.target_table,
            target_column_name=candidate.target_column,
            target_column_id=candidate.target_column_id,
            detection_method=DetectionMethod.PK_MATCH,
            confidence=item.confidence,
            status=RelationshipStatus.CONFIRMED,
            cardinality=item.cardinality,
            description=description,
            source=RelationshipSource.INFERRED,
        )
        return await self._create(ctx, relationship)

    async def _create(self, ctx: _RunContext, relationship: EntityRelationship) -> bool:
        try:
            await self.relationship_repo.create(relationship)
        except Exception as e:
            ctx.result.relationships_failed += 1
            logger.error(
                "relationship_create_failed",
                key=relationship.key,
                method=relationship.detection_method.value,
                error=str(e),
            )
            return False
        increment_db_write()
        ctx.existing_keys.add(relationship.key)
        logger.debug(
            "relationship_created",
            key=relationship.key,
            method=relationship.detection_method.value,
            cardinality=relationship.cardinality.value,
        )
        return True
