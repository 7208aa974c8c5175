"""Collaborator interfaces consumed by the discovery pipeline.

Concrete SQLAlchemy implementations live in ``keygraph.storage.repositories``;
tests substitute in-memory fakes.
"""

from __future__ import annotations

from typing import Protocol

from keygraph.analysis.relationships.models import (
    JoinAnalysis,
    JoinMetrics,
    RelationshipCandidate,
)
from keygraph.analysis.relationships.probe import JoinProbe
from keygraph.datasources.models import Datasource
from keygraph.discovery.models import (
    CandidateRecord,
    EntityRelationship,
    KnowledgeFact,
    Ontology,
    OntologyEntity,
    ProgressCallback,
    SchemaColumn,
    SchemaRelationship,
    SchemaTable,
)


class OntologyRepository(Protocol):
    async def get_active(self, project_id: str) -> Ontology | None: ...


class EntityRepository(Protocol):
    async def get_by_ontology(self, project_id: str, ontology_id: str) -> list[OntologyEntity]: ...


class SchemaRepository(Protocol):
    async def list_tables(self, project_id: str, datasource_id: str) -> list[SchemaTable]: ...

    async def list_columns(self, project_id: str, datasource_id: str) -> list[SchemaColumn]: ...

    async def list_relationships(
        self, project_id: str, datasource_id: str
    ) -> list[SchemaRelationship]: ...

    async def get_table(self, project_id: str, table_id: str) -> SchemaTable | None: ...

    async def get_column(self, project_id: str, column_id: str) -> SchemaColumn | None: ...


class EntityRelationshipRepository(Protocol):
    async def get_by_ontology(self, ontology_id: str) -> list[EntityRelationship]: ...

    async def create(self, relationship: EntityRelationship) -> None: ...


class DatasourceRepository(Protocol):
    async def get(self, project_id: str, datasource_id: str) -> Datasource | None: ...


class CandidateRepository(Protocol):
    async def get(self, project_id: str, candidate_id: str) -> CandidateRecord | None: ...

    async def list_by_datasource(
        self, project_id: str, datasource_id: str
    ) -> list[CandidateRecord]: ...

    async def update_metrics(
        self, project_id: str, candidate_id: str, analysis: JoinAnalysis, metrics: JoinMetrics
    ) -> None: ...


class KnowledgeRepository(Protocol):
    async def get_by_project(self, project_id: str) -> list[KnowledgeFact]: ...


class CandidateCollector(Protocol):
    async def collect_candidates(
        self, project_id: str, datasource_id: str, progress: ProgressCallback
    ) -> list[RelationshipCandidate]: ...


class ProbeFactory(Protocol):
    """Opens a join probe with its own scoped datasource connection."""

    def open_probe(
        self, datasource: Datasource, project_id: str, user_id: str = ""
    ) -> JoinProbe: ...
