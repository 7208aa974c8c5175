"""Ontology, schema and relationship records used by discovery."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from uuid import uuid4

from pydantic import BaseModel, Field

from keygraph.analysis.relationships.models import relationship_key
from keygraph.core.models.base import (
    Cardinality,
    DetectionMethod,
    InferenceMethod,
    RelationshipSource,
    RelationshipStatus,
)

# (current, total, message); must be cheap, it may run inside tight loops
ProgressCallback = Callable[[int, int, str], None]


class Ontology(BaseModel):
    ontology_id: str
    project_id: str
    name: str = ""
    is_active: bool = True


class OntologyEntity(BaseModel):
    """A business entity anchored on its primary table."""

    entity_id: str
    ontology_id: str
    name: str
    description: str = ""
    primary_schema: str = ""
    primary_table: str


class SchemaTable(BaseModel):
    table_id: str
    datasource_id: str
    schema_name: str = ""
    table_name: str
    row_count: int | None = None
    description: str = ""

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.table_name}" if self.schema_name else self.table_name


class IdentifierFeatures(BaseModel):
    """FK target inferred for a column by feature extraction."""

    fk_target_table: str = ""
    fk_target_column: str = ""
    fk_confidence: float = 0.0


class ColumnFeatures(BaseModel):
    identifier: IdentifierFeatures | None = None


class SchemaColumn(BaseModel):
    column_id: str
    table_id: str
    column_name: str
    data_type: str = ""
    is_primary_key: bool = False
    distinct_count: int | None = None
    sample_values: list[str] = Field(default_factory=list)
    features: ColumnFeatures | None = None


class SchemaRelationship(BaseModel):
    """A relationship recorded at the schema level (e.g. a declared FK)."""

    relationship_id: str
    datasource_id: str
    source_column_id: str
    target_column_id: str
    inference_method: InferenceMethod


class EntityRelationship(BaseModel):
    """A persisted link between two ontology entities through a column pair."""

    relationship_id: str = Field(default_factory=lambda: str(uuid4()))
    ontology_id: str
    source_entity_id: str
    target_entity_id: str

    source_column_schema: str = ""
    source_column_table: str
    source_column_name: str
    source_column_id: str | None = None
    target_column_schema: str = ""
    target_column_table: str
    target_column_name: str
    target_column_id: str | None = None

    detection_method: DetectionMethod
    confidence: float = Field(ge=0.0, le=1.0)
    status: RelationshipStatus = RelationshipStatus.CONFIRMED
    cardinality: Cardinality
    description: str | None = None
    source: RelationshipSource = RelationshipSource.INFERRED
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def key(self) -> str:
        return relationship_key(
            self.source_column_table,
            self.source_column_name,
            self.target_column_table,
            self.target_column_name,
        )


class KnowledgeFact(BaseModel):
    """Project knowledge (terminology, rules, ...) that informs the judge."""

    fact_id: str = Field(default_factory=lambda: str(uuid4()))
    project_id: str
    fact_type: str
    value: str
    context: str = ""


class CandidateRecord(BaseModel):
    """A stored relationship candidate and its most recent join test results."""

    candidate_id: str
    project_id: str
    datasource_id: str
    source_column_id: str
    target_column_id: str

    join_count: int | None = None
    source_matched: int | None = None
    target_matched: int | None = None
    orphan_count: int | None = None
    reverse_orphan_count: int | None = None

    cardinality: Cardinality | None = None
    join_match_rate: float | None = None
    orphan_rate: float | None = None
    target_coverage: float | None = None
    source_row_count: int | None = None
    target_row_count: int | None = None
    matched_rows: int | None = None
    orphan_rows: int | None = None
    tested_at: datetime | None = None


class DiscoveryResult(BaseModel):
    """Aggregate counts of one discovery run.

    A successful run can still be a partial one: compare the counters to
    detect failed or unscored items.
    """

    candidates_evaluated: int = 0
    relationships_created: int = 0
    relationships_rejected: int = 0
    relationships_failed: int = 0
    preserved_db_fks: int = 0
    preserved_column_fks: int = 0
    join_probe_failures: int = 0
    unscored_candidates: int = 0
    duration_ms: int = 0
