"""Metadata storage: SQLAlchemy tables and repository implementations."""

from keygraph.storage.base import (
    Base,
    get_engine,
    get_session_factory,
    init_database,
    reset_database,
)
from keygraph.storage.repositories import (
    CandidateRepository,
    DatasourceRepository,
    EntityRelationshipRepository,
    EntityRepository,
    KnowledgeRepository,
    OntologyRepository,
    SchemaRepository,
)

__all__ = [
    "Base",
    "get_engine",
    "get_session_factory",
    "init_database",
    "reset_database",
    "CandidateRepository",
    "DatasourceRepository",
    "EntityRelationshipRepository",
    "EntityRepository",
    "KnowledgeRepository",
    "OntologyRepository",
    "SchemaRepository",
]
