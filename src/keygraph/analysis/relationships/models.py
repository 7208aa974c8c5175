"""Pydantic models for join analysis, candidates and verdicts."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from keygraph.core.models.base import Cardinality


class JoinAnalysis(BaseModel):
    """Raw counts from one inner join of a source column onto a target column."""

    join_count: int = Field(default=0, ge=0)  # Rows surviving the inner join
    source_matched: int = Field(default=0, ge=0)  # Distinct source values with a match
    target_matched: int = Field(default=0, ge=0)  # Distinct target values with a match
    orphan_count: int = Field(default=0, ge=0)  # Distinct source values with no match
    reverse_orphan_count: int = Field(default=0, ge=0)  # Distinct target values never referenced
    max_source_value: int = 0  # Numeric max of the source column, 0 when not numeric


class JoinMetrics(BaseModel):
    """Cardinality plus match/orphan/coverage rates, computed against row counts."""

    cardinality: Cardinality
    join_match_rate: float = Field(ge=0.0, le=1.0)
    orphan_rate: float = Field(ge=0.0, le=1.0)
    target_coverage: float = Field(ge=0.0, le=1.0)
    source_row_count: int
    target_row_count: int
    matched_rows: int
    orphan_rows: int


class RelationshipCandidate(BaseModel):
    """A proposed source column -> target column link awaiting judgment.

    Join statistics are present when the collector already probed the pair.
    Context fields (types, table purposes, target entity) feed the judge prompt.
    """

    model_config = ConfigDict(frozen=True)

    candidate_id: str | None = None

    source_schema: str = ""
    source_table: str
    source_column: str
    source_column_id: str | None = None
    source_data_type: str = ""

    target_schema: str = ""
    target_table: str
    target_column: str
    target_column_id: str | None = None
    target_data_type: str = ""

    # Statistical hints
    source_distinct_count: int | None = None
    target_distinct_count: int | None = None
    source_row_count: int | None = None
    target_row_count: int | None = None
    sample_values: list[str] = Field(default_factory=list)
    max_source_value: int | None = None

    # Join statistics
    join_count: int | None = None
    source_matched: int | None = None
    target_matched: int | None = None
    orphan_count: int | None = None
    reverse_orphan_count: int | None = None

    # Prompt context
    source_table_description: str = ""
    target_table_description: str = ""
    target_entity_name: str = ""
    target_entity_description: str = ""

    @property
    def key(self) -> str:
        """Deduplication key, unique per ontology."""
        return relationship_key(
            self.source_table, self.source_column, self.target_table, self.target_column
        )

    @property
    def has_join_stats(self) -> bool:
        return self.join_count is not None and self.source_matched is not None

    def join_analysis(self) -> JoinAnalysis | None:
        """Join statistics as a JoinAnalysis, or None if the pair was never probed."""
        if not self.has_join_stats:
            return None
        return JoinAnalysis(
            join_count=self.join_count or 0,
            source_matched=self.source_matched or 0,
            target_matched=self.target_matched or 0,
            orphan_count=self.orphan_count or 0,
            reverse_orphan_count=self.reverse_orphan_count or 0,
            max_source_value=self.max_source_value or 0,
        )

    def with_join_analysis(self, analysis: JoinAnalysis) -> RelationshipCandidate:
        """Copy of this candidate carrying the given join statistics."""
        return self.model_copy(
            update={
                "join_count": analysis.join_count,
                "source_matched": analysis.source_matched,
                "target_matched": analysis.target_matched,
                "orphan_count": analysis.orphan_count,
                "reverse_orphan_count": analysis.reverse_orphan_count,
                "max_source_value": self.max_source_value or analysis.max_source_value or None,
            }
        )


class FKEvaluation(BaseModel):
    """The semantic judge's verdict on one candidate."""

    is_fk: bool
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    semantic_role: str = ""
    reasoning: str = ""
    should_include: bool = False


class ValidatedRelationship(BaseModel):
    """A candidate paired with its final verdict."""

    candidate: RelationshipCandidate
    is_valid_fk: bool
    confidence: float = Field(ge=0.0, le=1.0)
    cardinality: Cardinality
    source_role: str = ""
    reasoning: str = ""


def relationship_key(
    source_table: str, source_column: str, target_table: str, target_column: str
) -> str:
    """Build the ``table.column->table.column`` key used for deduplication."""
    return f"{source_table}.{source_column}->{target_table}.{target_column}"
