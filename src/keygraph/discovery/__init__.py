"""Relationship discovery pipeline.

Main entry points:
- RelationshipDiscoveryService.discover_relationships: Full pipeline for one datasource
- RelationshipValidator.validate_candidates: Batched semantic validation
- CandidateJoinTask / run_candidate_join_tasks: Join-test stored candidates
"""

from keygraph.discovery.collector import StoredCandidateCollector
from keygraph.discovery.join_task import (
    CandidateJoinTask,
    format_join_task_description,
    run_candidate_join_tasks,
)
from keygraph.discovery.models import (
    CandidateRecord,
    ColumnFeatures,
    DiscoveryResult,
    EntityRelationship,
    IdentifierFeatures,
    KnowledgeFact,
    Ontology,
    OntologyEntity,
    ProgressCallback,
    SchemaColumn,
    SchemaRelationship,
    SchemaTable,
)
from keygraph.discovery.orchestrator import RelationshipDiscoveryService, remap_progress
from keygraph.discovery.validator import (
    RelationshipValidator,
    ValidationOutcome,
    to_validated_relationship,
)

__all__ = [
    # Pipeline
    "RelationshipDiscoveryService",
    "remap_progress",
    "StoredCandidateCollector",
    # Validation
    "RelationshipValidator",
    "ValidationOutcome",
    "to_validated_relationship",
    # Join tests
    "CandidateJoinTask",
    "format_join_task_description",
    "run_candidate_join_tasks",
    # Models
    "CandidateRecord",
    "ColumnFeatures",
    "DiscoveryResult",
    "EntityRelationship",
    "IdentifierFeatures",
    "KnowledgeFact",
    "Ontology",
    "OntologyEntity",
    "ProgressCallback",
    "SchemaColumn",
    "SchemaRelationship",
    "SchemaTable",
]
