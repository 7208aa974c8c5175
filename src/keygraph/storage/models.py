"""Metadata store tables.

Ontology, schema catalog, relationship candidates and discovered entity
relationships. Every row is scoped by ``project_id``.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from keygraph.storage.base import Base


class OntologyRecord(Base):
    """Project ontologies; at most one is active per project."""

    __tablename__ = "ontologies"

    ontology_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    project_id: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False, default="")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=lambda: datetime.now(UTC)
    )


class OntologyEntityRecord(Base):
    """Business entities, each anchored on a primary table."""

    __tablename__ = "ontology_entities"

    entity_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    project_id: Mapped[str] = mapped_column(String, nullable=False)
    ontology_id: Mapped[str] = mapped_column(ForeignKey("ontologies.ontology_id"), nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    primary_schema: Mapped[str] = mapped_column(String, nullable=False, default="")
    primary_table: Mapped[str] = mapped_column(String, nullable=False)


class DatasourceRecord(Base):
    """Registered datasources and their connection settings."""

    __tablename__ = "datasources"

    datasource_id: Mapped[str] = mapped_column(
        String, primary_key=True, default=lambda: str(uuid4())
    )
    project_id: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    # 'duckdb', 'postgres', ...
    datasource_type: Mapped[str] = mapped_column(String, nullable=False)
    connection_config: Mapped[dict[str, Any] | None] = mapped_column(JSON)


class SchemaTableRecord(Base):
    """Tables discovered in a datasource."""

    __tablename__ = "schema_tables"
    __table_args__ = (
        UniqueConstraint("datasource_id", "schema_name", "table_name", name="uq_schema_table"),
    )

    table_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    project_id: Mapped[str] = mapped_column(String, nullable=False)
    datasource_id: Mapped[str] = mapped_column(
        ForeignKey("datasources.datasource_id"), nullable=False
    )
    schema_name: Mapped[str] = mapped_column(String, nullable=False, default="")
    table_name: Mapped[str] = mapped_column(String, nullable=False)
    row_count: Mapped[int | None] = mapped_column(Integer)
    description: Mapped[str | None] = mapped_column(Text)


class SchemaColumnRecord(Base):
    """Columns of discovered tables, with profiling results."""

    __tablename__ = "schema_columns"
    __table_args__ = (UniqueConstraint("table_id", "column_name", name="uq_schema_column"),)

    column_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    project_id: Mapped[str] = mapped_column(String, nullable=False)
    table_id: Mapped[str] = mapped_column(ForeignKey("schema_tables.table_id"), nullable=False)
    column_name: Mapped[str] = mapped_column(String, nullable=False)
    data_type: Mapped[str | None] = mapped_column(String)
    is_primary_key: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    distinct_count: Mapped[int | None] = mapped_column(Integer)
    sample_values: Mapped[list[str] | None] = mapped_column(JSON)
    features: Mapped[dict[str, Any] | None] = mapped_column(JSON)  # ColumnFeatures.model_dump()


class SchemaRelationshipRecord(Base):
    """Column-level relationships recorded in the schema catalog."""

    __tablename__ = "schema_relationships"

    relationship_id: Mapped[str] = mapped_column(
        String, primary_key=True, default=lambda: str(uuid4())
    )
    project_id: Mapped[str] = mapped_column(String, nullable=False)
    datasource_id: Mapped[str] = mapped_column(
        ForeignKey("datasources.datasource_id"), nullable=False
    )
    source_column_id: Mapped[str] = mapped_column(
        ForeignKey("schema_columns.column_id"), nullable=False
    )
    target_column_id: Mapped[str] = mapped_column(
        ForeignKey("schema_columns.column_id"), nullable=False
    )
    inference_method: Mapped[str] = mapped_column(String, nullable=False)


class EntityRelationshipRecord(Base):
    """Discovered relationships between ontology entities.

    The unique constraint mirrors the deduplication key, so a concurrent run
    cannot insert the same column pair twice.
    """

    __tablename__ = "entity_relationships"
    __table_args__ = (
        UniqueConstraint(
            "ontology_id",
            "source_column_table",
            "source_column_name",
            "target_column_table",
            "target_column_name",
            name="uq_entity_relationship_columns",
        ),
    )

    relationship_id: Mapped[str] = mapped_column(
        String, primary_key=True, default=lambda: str(uuid4())
    )
    ontology_id: Mapped[str] = mapped_column(ForeignKey("ontologies.ontology_id"), nullable=False)
    source_entity_id: Mapped[str] = mapped_column(
        ForeignKey("ontology_entities.entity_id"), nullable=False
    )
    target_entity_id: Mapped[str] = mapped_column(
        ForeignKey("ontology_entities.entity_id"), nullable=False
    )

    source_column_schema: Mapped[str] = mapped_column(String, nullable=False, default="")
    source_column_table: Mapped[str] = mapped_column(String, nullable=False)
    source_column_name: Mapped[str] = mapped_column(String, nullable=False)
    source_column_id: Mapped[str | None] = mapped_column(String)
    target_column_schema: Mapped[str] = mapped_column(String, nullable=False, default="")
    target_column_table: Mapped[str] = mapped_column(String, nullable=False)
    target_column_name: Mapped[str] = mapped_column(String, nullable=False)
    target_column_id: Mapped[str | None] = mapped_column(String)

    detection_method: Mapped[str] = mapped_column(String, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)
    cardinality: Mapped[str] = mapped_column(String, nullable=False)  # '1:1', '1:N', 'N:1', 'N:M'
    description: Mapped[str | None] = mapped_column(Text)
    source: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=lambda: datetime.now(UTC)
    )


Index("idx_entity_relationships_ontology", EntityRelationshipRecord.ontology_id)


class RelationshipCandidateRecord(Base):
    """Candidate column pairs and their latest join test metrics."""

    __tablename__ = "relationship_candidates"

    candidate_id: Mapped[str] = mapped_column(
        String, primary_key=True, default=lambda: str(uuid4())
    )
    project_id: Mapped[str] = mapped_column(String, nullable=False)
    datasource_id: Mapped[str] = mapped_column(
        ForeignKey("datasources.datasource_id"), nullable=False
    )
    source_column_id: Mapped[str] = mapped_column(
        ForeignKey("schema_columns.column_id"), nullable=False
    )
    target_column_id: Mapped[str] = mapped_column(
        ForeignKey("schema_columns.column_id"), nullable=False
    )

    # Raw join counts
    join_count: Mapped[int | None] = mapped_column(Integer)
    source_matched: Mapped[int | None] = mapped_column(Integer)
    target_matched: Mapped[int | None] = mapped_column(Integer)
    orphan_count: Mapped[int | None] = mapped_column(Integer)
    reverse_orphan_count: Mapped[int | None] = mapped_column(Integer)

    # Derived metrics
    cardinality: Mapped[str | None] = mapped_column(String)
    join_match_rate: Mapped[float | None] = mapped_column(Float)
    orphan_rate: Mapped[float | None] = mapped_column(Float)
    target_coverage: Mapped[float | None] = mapped_column(Float)
    source_row_count: Mapped[int | None] = mapped_column(Integer)
    target_row_count: Mapped[int | None] = mapped_column(Integer)
    matched_rows: Mapped[int | None] = mapped_column(Integer)
    orphan_rows: Mapped[int | None] = mapped_column(Integer)
    tested_at: Mapped[datetime | None] = mapped_column(DateTime)


Index("idx_relationship_candidates_datasource", RelationshipCandidateRecord.datasource_id)


class KnowledgeFactRecord(Base):
    """Project knowledge that enriches the semantic judge prompt."""

    __tablename__ = "knowledge_facts"

    fact_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    project_id: Mapped[str] = mapped_column(String, nullable=False)
    fact_type: Mapped[str] = mapped_column(String, nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    context: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=lambda: datetime.now(UTC)
    )
