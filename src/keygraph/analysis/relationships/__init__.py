"""Relationship analysis: join probing, cardinality inference, semantic evaluation.

Main entry points:
- JoinProbe.analyze / analyze_join: Raw join counts for one column pair
- determine_cardinality / calculate_metrics: Cardinality label and rates
- SemanticEvaluator.evaluate_candidates: LLM verdicts for a batch of candidates
"""

from keygraph.analysis.relationships.cardinality import (
    CARDINALITY_TOLERANCE,
    calculate_metrics,
    determine_cardinality,
)
from keygraph.analysis.relationships.evaluator import SemanticEvaluationError, SemanticEvaluator
from keygraph.analysis.relationships.models import (
    FKEvaluation,
    JoinAnalysis,
    JoinMetrics,
    RelationshipCandidate,
    ValidatedRelationship,
    relationship_key,
)
from keygraph.analysis.relationships.probe import (
    DuckDBJoinProbe,
    JoinProbe,
    JoinProbeError,
    SQLJoinProbe,
    build_join_analysis_sql,
    get_dialect,
)

__all__ = [
    # Probing
    "JoinProbe",
    "DuckDBJoinProbe",
    "SQLJoinProbe",
    "JoinProbeError",
    "build_join_analysis_sql",
    "get_dialect",
    # Cardinality
    "CARDINALITY_TOLERANCE",
    "calculate_metrics",
    "determine_cardinality",
    # Evaluation
    "SemanticEvaluator",
    "SemanticEvaluationError",
    # Models
    "FKEvaluation",
    "JoinAnalysis",
    "JoinMetrics",
    "RelationshipCandidate",
    "ValidatedRelationship",
    "relationship_key",
]
