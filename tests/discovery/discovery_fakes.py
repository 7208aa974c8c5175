"""In-memory fakes for the discovery ports, over a small shop schema.

Schema (mirrors the shop_duckdb fixture):
    users(id), orders(id, user_id), line_items(id, order_id), products(id)
Entities: User -> users, Order -> orders, LineItem -> line_items
"""

from __future__ import annotations

from dataclasses import dataclass, field

from keygraph.analysis.relationships.models import (
    FKEvaluation,
    JoinAnalysis,
    RelationshipCandidate,
)
from keygraph.analysis.relationships.probe import JoinProbe, JoinProbeError
from keygraph.core.config import Settings
from keygraph.core.models.base import InferenceMethod
from keygraph.datasources.models import Datasource
from keygraph.discovery.models import (
    ColumnFeatures,
    EntityRelationship,
    IdentifierFeatures,
    Ontology,
    OntologyEntity,
    SchemaColumn,
    SchemaRelationship,
    SchemaTable,
)
from keygraph.discovery.orchestrator import RelationshipDiscoveryService
from keygraph.discovery.validator import RelationshipValidator

PROJECT_ID = "proj-1"
DATASOURCE_ID = "ds-1"
ONTOLOGY_ID = "onto-1"


class FakeOntologyRepository:
    def __init__(self, ontology: Ontology | None):
        self.ontology = ontology

    async def get_active(self, project_id):
        return self.ontology


class FakeEntityRepository:
    def __init__(self, entities: list[OntologyEntity]):
        self.entities = entities

    async def get_by_ontology(self, project_id, ontology_id):
        return [e for e in self.entities if e.ontology_id == ontology_id]


class FakeSchemaRepository:
    def __init__(self, tables, columns, relationships=None):
        self.tables = tables
        self.columns = columns
        self.relationships = relationships or []
        self.relationships_error: Exception | None = None

    async def list_tables(self, project_id, datasource_id):
        return list(self.tables)

    async def list_columns(self, project_id, datasource_id):
        return list(self.columns)

    async def list_relationships(self, project_id, datasource_id):
        if self.relationships_error:
            raise self.relationships_error
        return list(self.relationships)

    async def get_table(self, project_id, table_id):
        return next((t for t in self.tables if t.table_id == table_id), None)

    async def get_column(self, project_id, column_id):
        return next((c for c in self.columns if c.column_id == column_id), None)


class FakeRelationshipRepository:
    def __init__(self):
        self.relationships: list[EntityRelationship] = []
        self.fail_keys: set[str] = set()

    async def get_by_ontology(self, ontology_id):
        return [r for r in self.relationships if r.ontology_id == ontology_id]

    async def create(self, relationship):
        if relationship.key in self.fail_keys:
            raise RuntimeError(f"insert failed for {relationship.key}")
        self.relationships.append(relationship)

    def by_key(self, key: str) -> EntityRelationship:
        return next(r for r in self.relationships if r.key == key)


class FakeDatasourceRepository:
    def __init__(self, datasource: Datasource | None):
        self.datasource = datasource

    async def get(self, project_id, datasource_id):
        return self.datasource


class FakeCollector:
    def __init__(self, candidates=None, error: Exception | None = None):
        self.candidates = candidates or []
        self.error = error

    async def collect_candidates(self, project_id, datasource_id, progress):
        if self.error:
            raise self.error
        total = len(self.candidates)
        for i in range(1, total + 1):
            progress(i, total, f"Collected {i}/{total}")
        return list(self.candidates)


class FakeProbe(JoinProbe):
    """Probe answering from a dict of 'table.column->table.column' keys."""

    def __init__(self, analyses: dict[str, JoinAnalysis]):
        self.analyses = analyses
        self.closed = False
        self.calls: list[str] = []

    def analyze_join(
        self, source_schema, source_table, source_column, target_schema, target_table, target_column
    ):
        key = f"{source_table}.{source_column}->{target_table}.{target_column}"
        self.calls.append(key)
        if key not in self.analyses:
            raise JoinProbeError(
                f"{source_table}.{source_column}", f"{target_table}.{target_column}", "no data"
            )
        return self.analyses[key]

    def close(self):
        self.closed = True


class FakeProbeFactory:
    def __init__(self, probe: JoinProbe | None = None, error: Exception | None = None):
        self.probe = probe or FakeProbe({})
        self.error = error

    def open_probe(self, datasource, project_id, user_id=""):
        if self.error:
            raise self.error
        return self.probe


class FakeEvaluator:
    """Judge that answers from a dict of candidate keys to verdicts.

    Candidates whose key is missing get no verdict. A batch containing a key
    in ``fail_keys`` raises.
    """

    def __init__(self, verdicts: dict[str, FKEvaluation] | None = None):
        self.verdicts = verdicts or {}
        self.fail_keys: set[str] = set()
        self.batches: list[list[RelationshipCandidate]] = []

    async def evaluate_candidates(self, candidates, project_id):
        self.batches.append(list(candidates))
        if any(c.key in self.fail_keys for c in candidates):
            raise RuntimeError("judge unavailable")
        return {
            i: self.verdicts[c.key]
            for i, c in enumerate(candidates, start=1)
            if c.key in self.verdicts
        }


def accept(confidence: float = 0.9, role: str = "owner") -> FKEvaluation:
    return FKEvaluation(
        is_fk=True,
        confidence=confidence,
        semantic_role=role,
        reasoning="Clear entity reference",
        should_include=True,
    )


def reject() -> FKEvaluation:
    return FKEvaluation(
        is_fk=False, confidence=0.9, reasoning="Coincidental match", should_include=False
    )


def analysis(
    join_count, source_matched, target_matched, orphans=0, reverse_orphans=0
) -> JoinAnalysis:
    return JoinAnalysis(
        join_count=join_count,
        source_matched=source_matched,
        target_matched=target_matched,
        orphan_count=orphans,
        reverse_orphan_count=reverse_orphans,
    )


def _column(column_id, table_id, name, data_type="BIGINT", **kwargs) -> SchemaColumn:
    return SchemaColumn(
        column_id=column_id, table_id=table_id, column_name=name, data_type=data_type, **kwargs
    )


@dataclass
class ShopWorld:
    """Repositories and collaborators for one discovery scenario."""

    ontology_repo: FakeOntologyRepository
    entity_repo: FakeEntityRepository
    schema_repo: FakeSchemaRepository
    relationship_repo: FakeRelationshipRepository
    datasource_repo: FakeDatasourceRepository
    collector: FakeCollector
    probe_factory: object
    evaluator: FakeEvaluator
    settings: Settings = field(default_factory=Settings)
    batch_size: int = 20

    def service(self) -> RelationshipDiscoveryService:
        return RelationshipDiscoveryService(
            ontology_repo=self.ontology_repo,
            entity_repo=self.entity_repo,
            schema_repo=self.schema_repo,
            relationship_repo=self.relationship_repo,
            datasource_repo=self.datasource_repo,
            collector=self.collector,
            probe_factory=self.probe_factory,
            validator=RelationshipValidator(
                self.evaluator, batch_size=self.batch_size, max_concurrent=2
            ),
            settings=self.settings,
        )

    def column_id(self, table_name: str, column_name: str) -> str:
        table = next(t for t in self.schema_repo.tables if t.table_name == table_name)
        return next(
            c.column_id
            for c in self.schema_repo.columns
            if c.table_id == table.table_id and c.column_name == column_name
        )

    def declare_fk(self, source: str, target: str) -> None:
        """Record a DB-declared FK between 'table.column' refs."""
        st, sc = source.split(".")
        tt, tc = target.split(".")
        self.schema_repo.relationships.append(
            SchemaRelationship(
                relationship_id=f"rel-{source}-{target}",
                datasource_id=DATASOURCE_ID,
                source_column_id=self.column_id(st, sc),
                target_column_id=self.column_id(tt, tc),
                inference_method=InferenceMethod.FOREIGN_KEY,
            )
        )

    def set_identifier_fk(
        self, source: str, target_table: str, target_column: str = "", confidence: float = 0.9
    ) -> None:
        st, sc = source.split(".")
        column_id = self.column_id(st, sc)
        self.schema_repo.columns = [
            c.model_copy(
                update={
                    "features": ColumnFeatures(
                        identifier=IdentifierFeatures(
                            fk_target_table=target_table,
                            fk_target_column=target_column,
                            fk_confidence=confidence,
                        )
                    )
                }
            )
            if c.column_id == column_id
            else c
            for c in self.schema_repo.columns
        ]


def build_shop_world(probe_factory, datasource: Datasource) -> ShopWorld:
    tables = [
        SchemaTable(table_id="t-users", datasource_id=DATASOURCE_ID, table_name="users",
                    row_count=500, description="Registered customers"),
        SchemaTable(table_id="t-orders", datasource_id=DATASOURCE_ID, table_name="orders",
                    row_count=500, description="Customer orders"),
        SchemaTable(table_id="t-line-items", datasource_id=DATASOURCE_ID,
                    table_name="line_items", row_count=1000),
        SchemaTable(table_id="t-products", datasource_id=DATASOURCE_ID, table_name="products",
                    row_count=50),
    ]
    columns = [
        _column("c-users-id", "t-users", "id", is_primary_key=True, distinct_count=500),
        _column("c-orders-id", "t-orders", "id", is_primary_key=True, distinct_count=500),
        _column("c-orders-user-id", "t-orders", "user_id", distinct_count=500,
                sample_values=["1", "2", "3"]),
        _column("c-line-items-id", "t-line-items", "id", is_primary_key=True),
        _column("c-line-items-order-id", "t-line-items", "order_id", distinct_count=250),
        _column("c-products-id", "t-products", "id", is_primary_key=True),
    ]
    entities = [
        OntologyEntity(entity_id="e-user", ontology_id=ONTOLOGY_ID, name="User",
                       description="A customer", primary_table="users"),
        OntologyEntity(entity_id="e-order", ontology_id=ONTOLOGY_ID, name="Order",
                       primary_table="orders"),
        OntologyEntity(entity_id="e-line-item", ontology_id=ONTOLOGY_ID, name="LineItem",
                       primary_table="line_items"),
    ]
    return ShopWorld(
        ontology_repo=FakeOntologyRepository(
            Ontology(ontology_id=ONTOLOGY_ID, project_id=PROJECT_ID, name="shop")
        ),
        entity_repo=FakeEntityRepository(entities),
        schema_repo=FakeSchemaRepository(tables, columns),
        relationship_repo=FakeRelationshipRepository(),
        datasource_repo=FakeDatasourceRepository(datasource),
        collector=FakeCollector(),
        probe_factory=probe_factory,
        evaluator=FakeEvaluator(),
    )

