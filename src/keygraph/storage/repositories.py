"""SQLAlchemy implementations of the discovery repositories.

Every repository wraps one AsyncSession. Write operations commit
immediately, so a failed insert never discards earlier writes of the run.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from keygraph.analysis.relationships.models import JoinAnalysis, JoinMetrics
from keygraph.core.models.base import (
    Cardinality,
    DetectionMethod,
    InferenceMethod,
    RelationshipSource,
    RelationshipStatus,
)
from keygraph.datasources.models import Datasource, DatasourceType
from keygraph.discovery.models import (
    CandidateRecord,
    ColumnFeatures,
    EntityRelationship,
    KnowledgeFact,
    Ontology,
    OntologyEntity,
    SchemaColumn,
    SchemaRelationship,
    SchemaTable,
)
from keygraph.storage.models import (
    DatasourceRecord,
    EntityRelationshipRecord,
    KnowledgeFactRecord,
    OntologyEntityRecord,
    OntologyRecord,
    RelationshipCandidateRecord,
    SchemaColumnRecord,
    SchemaRelationshipRecord,
    SchemaTableRecord,
)

# =============================================================================
# Record -> model conversion
# =============================================================================


def _table_from_record(record: SchemaTableRecord) -> SchemaTable:
    return SchemaTable(
        table_id=record.table_id,
        datasource_id=record.datasource_id,
        schema_name=record.schema_name or "",
        table_name=record.table_name,
        row_count=record.row_count,
        description=record.description or "",
    )


def _column_from_record(record: SchemaColumnRecord) -> SchemaColumn:
    return SchemaColumn(
        column_id=record.column_id,
        table_id=record.table_id,
        column_name=record.column_name,
        data_type=record.data_type or "",
        is_primary_key=record.is_primary_key,
        distinct_count=record.distinct_count,
        sample_values=[str(v) for v in record.sample_values or []],
        features=ColumnFeatures.model_validate(record.features) if record.features else None,
    )


def _candidate_from_record(record: RelationshipCandidateRecord) -> CandidateRecord:
    return CandidateRecord(
        candidate_id=record.candidate_id,
        project_id=record.project_id,
        datasource_id=record.datasource_id,
        source_column_id=record.source_column_id,
        target_column_id=record.target_column_id,
        join_count=record.join_count,
        source_matched=record.source_matched,
        target_matched=record.target_matched,
        orphan_count=record.orphan_count,
        reverse_orphan_count=record.reverse_orphan_count,
        cardinality=Cardinality(record.cardinality) if record.cardinality else None,
        join_match_rate=record.join_match_rate,
        orphan_rate=record.orphan_rate,
        target_coverage=record.target_coverage,
        source_row_count=record.source_row_count,
        target_row_count=record.target_row_count,
        matched_rows=record.matched_rows,
        orphan_rows=record.orphan_rows,
        tested_at=record.tested_at,
    )


def _relationship_from_record(record: EntityRelationshipRecord) -> EntityRelationship:
    return EntityRelationship(
        relationship_id=record.relationship_id,
        ontology_id=record.ontology_id,
        source_entity_id=record.source_entity_id,
        target_entity_id=record.target_entity_id,
        source_column_schema=record.source_column_schema,
        source_column_table=record.source_column_table,
        source_column_name=record.source_column_name,
        source_column_id=record.source_column_id,
        target_column_schema=record.target_column_schema,
        target_column_table=record.target_column_table,
        target_column_name=record.target_column_name,
        target_column_id=record.target_column_id,
        detection_method=DetectionMethod(record.detection_method),
        confidence=record.confidence,
        status=RelationshipStatus(record.status),
        cardinality=Cardinality(record.cardinality),
        description=record.description,
        source=RelationshipSource(record.source),
        created_at=record.created_at,
    )


# =============================================================================
# Repositories
# =============================================================================


class OntologyRepository:
    """Repository for project ontologies."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_active(self, project_id: str) -> Ontology | None:
        stmt = (
            select(OntologyRecord)
            .where(OntologyRecord.project_id == project_id)
            .where(OntologyRecord.is_active == True)  # noqa: E712
            .order_by(OntologyRecord.created_at.desc())
            .limit(1)
        )
        record = (await self.session.execute(stmt)).scalar_one_or_none()
        if record is None:
            return None
        return Ontology(
            ontology_id=record.ontology_id,
            project_id=record.project_id,
            name=record.name,
            is_active=record.is_active,
        )


class EntityRepository:
    """Repository for ontology entities."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_ontology(self, project_id: str, ontology_id: str) -> list[OntologyEntity]:
        stmt = select(OntologyEntityRecord).where(
            OntologyEntityRecord.project_id == project_id,
            OntologyEntityRecord.ontology_id == ontology_id,
        )
        records = (await self.session.execute(stmt)).scalars().all()
        return [
            OntologyEntity(
                entity_id=r.entity_id,
                ontology_id=r.ontology_id,
                name=r.name,
                description=r.description or "",
                primary_schema=r.primary_schema,
                primary_table=r.primary_table,
            )
            for r in records
        ]


class SchemaRepository:
    """Repository for the datasource schema catalog."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_tables(self, project_id: str, datasource_id: str) -> list[SchemaTable]:
        stmt = (
            select(SchemaTableRecord)
            .where(
                SchemaTableRecord.project_id == project_id,
                SchemaTableRecord.datasource_id == datasource_id,
            )
            .order_by(SchemaTableRecord.schema_name, SchemaTableRecord.table_name)
        )
        records = (await self.session.execute(stmt)).scalars().all()
        return [_table_from_record(r) for r in records]

    async def list_columns(self, project_id: str, datasource_id: str) -> list[SchemaColumn]:
        stmt = (
            select(SchemaColumnRecord)
            .join(SchemaTableRecord, SchemaColumnRecord.table_id == SchemaTableRecord.table_id)
            .where(
                SchemaColumnRecord.project_id == project_id,
                SchemaTableRecord.datasource_id == datasource_id,
            )
            .order_by(SchemaTableRecord.table_name, SchemaColumnRecord.column_name)
        )
        records = (await self.session.execute(stmt)).scalars().all()
        return [_column_from_record(r) for r in records]

    async def list_relationships(
        self, project_id: str, datasource_id: str
    ) -> list[SchemaRelationship]:
        stmt = select(SchemaRelationshipRecord).where(
            SchemaRelationshipRecord.project_id == project_id,
            SchemaRelationshipRecord.datasource_id == datasource_id,
        )
        records = (await self.session.execute(stmt)).scalars().all()
        return [
            SchemaRelationship(
                relationship_id=r.relationship_id,
                datasource_id=r.datasource_id,
                source_column_id=r.source_column_id,
                target_column_id=r.target_column_id,
                inference_method=InferenceMethod(r.inference_method),
            )
            for r in records
        ]

    async def get_table(self, project_id: str, table_id: str) -> SchemaTable | None:
        stmt = select(SchemaTableRecord).where(
            SchemaTableRecord.project_id == project_id,
            SchemaTableRecord.table_id == table_id,
        )
        record = (await self.session.execute(stmt)).scalar_one_or_none()
        return _table_from_record(record) if record else None

    async def get_column(self, project_id: str, column_id: str) -> SchemaColumn | None:
        stmt = select(SchemaColumnRecord).where(
            SchemaColumnRecord.project_id == project_id,
            SchemaColumnRecord.column_id == column_id,
        )
        record = (await self.session.execute(stmt)).scalar_one_or_none()
        return _column_from_record(record) if record else None


class EntityRelationshipRepository:
    """Repository for discovered entity relationships."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_ontology(self, ontology_id: str) -> list[EntityRelationship]:
        stmt = (
            select(EntityRelationshipRecord)
            .where(EntityRelationshipRecord.ontology_id == ontology_id)
            .order_by(EntityRelationshipRecord.created_at)
        )
        records = (await self.session.execute(stmt)).scalars().all()
        return [_relationship_from_record(r) for r in records]

    async def create(self, relationship: EntityRelationship) -> None:
        """Insert a relationship.

        Raises:
            SQLAlchemyError: On constraint violations (e.g. a duplicate column pair)
        """
        self.session.add(
            EntityRelationshipRecord(
                relationship_id=relationship.relationship_id,
                ontology_id=relationship.ontology_id,
                source_entity_id=relationship.source_entity_id,
                target_entity_id=relationship.target_entity_id,
                source_column_schema=relationship.source_column_schema,
                source_column_table=relationship.source_column_table,
                source_column_name=relationship.source_column_name,
                source_column_id=relationship.source_column_id,
                target_column_schema=relationship.target_column_schema,
                target_column_table=relationship.target_column_table,
                target_column_name=relationship.target_column_name,
                target_column_id=relationship.target_column_id,
                detection_method=relationship.detection_method.value,
                confidence=relationship.confidence,
                status=relationship.status.value,
                cardinality=relationship.cardinality.value,
                description=relationship.description,
                source=relationship.source.value,
                created_at=relationship.created_at,
            )
        )
        try:
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            raise


class DatasourceRepository:
    """Repository for registered datasources."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, project_id: str, datasource_id: str) -> Datasource | None:
        stmt = select(DatasourceRecord).where(
            DatasourceRecord.project_id == project_id,
            DatasourceRecord.datasource_id == datasource_id,
        )
        record = (await self.session.execute(stmt)).scalar_one_or_none()
        if record is None:
            return None
        return Datasource(
            datasource_id=record.datasource_id,
            project_id=record.project_id,
            name=record.name,
            datasource_type=DatasourceType(record.datasource_type),
            connection_config=record.connection_config or {},
        )


class CandidateRepository:
    """Repository for relationship candidates and their join test metrics."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, project_id: str, candidate_id: str) -> CandidateRecord | None:
        record = await self._get_record(project_id, candidate_id)
        return _candidate_from_record(record) if record else None

    async def list_by_datasource(
        self, project_id: str, datasource_id: str
    ) -> list[CandidateRecord]:
        stmt = select(RelationshipCandidateRecord).where(
            RelationshipCandidateRecord.project_id == project_id,
            RelationshipCandidateRecord.datasource_id == datasource_id,
        )
        records = (await self.session.execute(stmt)).scalars().all()
        return [_candidate_from_record(r) for r in records]

    async def update_metrics(
        self, project_id: str, candidate_id: str, analysis: JoinAnalysis, metrics: JoinMetrics
    ) -> None:
        """Overwrite the candidate's join counts and metrics.

        Raises:
            LookupError: If the candidate does not exist
        """
        record = await self._get_record(project_id, candidate_id)
        if record is None:
            raise LookupError(f"candidate {candidate_id} not found")

        record.join_count = analysis.join_count
        record.source_matched = analysis.source_matched
        record.target_matched = analysis.target_matched
        record.orphan_count = analysis.orphan_count
        record.reverse_orphan_count = analysis.reverse_orphan_count
        record.cardinality = metrics.cardinality.value
        record.join_match_rate = metrics.join_match_rate
        record.orphan_rate = metrics.orphan_rate
        record.target_coverage = metrics.target_coverage
        record.source_row_count = metrics.source_row_count
        record.target_row_count = metrics.target_row_count
        record.matched_rows = metrics.matched_rows
        record.orphan_rows = metrics.orphan_rows
        record.tested_at = datetime.now(UTC)
        try:
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            raise

    async def _get_record(
        self, project_id: str, candidate_id: str
    ) -> RelationshipCandidateRecord | None:
        stmt = select(RelationshipCandidateRecord).where(
            RelationshipCandidateRecord.project_id == project_id,
            RelationshipCandidateRecord.candidate_id == candidate_id,
        )
        return (await self.session.execute(stmt)).scalar_one_or_none()


class KnowledgeRepository:
    """Repository for project knowledge facts."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_project(self, project_id: str) -> list[KnowledgeFact]:
        stmt = (
            select(KnowledgeFactRecord)
            .where(KnowledgeFactRecord.project_id == project_id)
            .order_by(KnowledgeFactRecord.created_at)
        )
        records = (await self.session.execute(stmt)).scalars().all()
        return [
            KnowledgeFact(
                fact_id=r.fact_id,
                project_id=r.project_id,
                fact_type=r.fact_type,
                value=r.value,
                context=r.context or "",
            )
            for r in records
        ]
