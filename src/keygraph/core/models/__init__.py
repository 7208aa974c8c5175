"""Core models: only truly shared base types.

Domain models live in their respective packages:
- analysis/relationships/models.py -> join statistics, candidates, verdicts
- discovery/models.py              -> ontology, schema and relationship records
"""

from keygraph.core.models.base import (
    Cardinality,
    DetectionMethod,
    InferenceMethod,
    KnowledgeFactType,
    RelationshipSource,
    RelationshipStatus,
    Result,
)

__all__ = [
    "Cardinality",
    "DetectionMethod",
    "InferenceMethod",
    "KnowledgeFactType",
    "RelationshipSource",
    "RelationshipStatus",
    "Result",
]
