"""Wiring for the discovery pipeline from configuration."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from keygraph.analysis.relationships.evaluator import SemanticEvaluator
from keygraph.core.config import Settings, get_settings
from keygraph.datasources.connections import ConnectionManager
from keygraph.discovery.collector import StoredCandidateCollector
from keygraph.discovery.orchestrator import RelationshipDiscoveryService
from keygraph.discovery.ports import KnowledgeRepository
from keygraph.discovery.validator import RelationshipValidator
from keygraph.llm.circuit_breaker import CircuitBreaker
from keygraph.llm.config import LLMConfig, load_llm_config
from keygraph.llm.providers import LLMProvider, create_provider
from keygraph.llm.resilience import ResilientLLMClient


def build_validator(
    llm_config: LLMConfig,
    knowledge_repo: KnowledgeRepository | None = None,
    provider: LLMProvider | None = None,
) -> RelationshipValidator:
    """Build the validator with its resilient judge client.

    Args:
        llm_config: Loaded llm.yaml
        knowledge_repo: Source of project knowledge facts for the prompt
        provider: Pre-built provider; created from ``active_provider`` if None

    Raises:
        ValueError: If the feature is disabled or the provider is unknown
    """
    feature = llm_config.features.fk_semantic_evaluation
    if not feature.enabled:
        raise ValueError("fk_semantic_evaluation is disabled in llm.yaml")

    if provider is None:
        provider_config = llm_config.providers[llm_config.active_provider].model_dump()
        provider_config["model_tier"] = feature.model_tier
        provider = create_provider(llm_config.active_provider, provider_config)

    resilience = llm_config.resilience
    client = ResilientLLMClient(
        provider,
        circuit_breaker=CircuitBreaker(
            threshold=resilience.circuit_breaker.threshold,
            reset_after=resilience.circuit_breaker.reset_after_seconds,
        ),
        retry_config=resilience.retry.to_retry_config(),
    )
    evaluation = llm_config.evaluation
    evaluator = SemanticEvaluator(
        client,
        knowledge_repo=knowledge_repo,
        temperature=evaluation.temperature,
        max_tokens=llm_config.limits.max_output_tokens_per_request,
    )
    return RelationshipValidator(
        evaluator,
        batch_size=evaluation.batch_size,
        max_concurrent=evaluation.max_concurrent,
        min_confidence=evaluation.min_confidence,
    )


def build_discovery_service(
    session: AsyncSession,
    connections: ConnectionManager,
    llm_config: LLMConfig | None = None,
    settings: Settings | None = None,
    provider: LLMProvider | None = None,
) -> RelationshipDiscoveryService:
    """Build a discovery service backed by the SQLAlchemy repositories."""
    from keygraph.storage import repositories

    settings = settings or get_settings()
    llm_config = llm_config or load_llm_config()
    schema_repo = repositories.SchemaRepository(session)

    return RelationshipDiscoveryService(
        ontology_repo=repositories.OntologyRepository(session),
        entity_repo=repositories.EntityRepository(session),
        schema_repo=schema_repo,
        relationship_repo=repositories.EntityRelationshipRepository(session),
        datasource_repo=repositories.DatasourceRepository(session),
        collector=StoredCandidateCollector(repositories.CandidateRepository(session), schema_repo),
        probe_factory=connections,
        validator=build_validator(
            llm_config, repositories.KnowledgeRepository(session), provider=provider
        ),
        settings=settings,
    )
