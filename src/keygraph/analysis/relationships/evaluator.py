"""Semantic evaluation of relationship candidates by an LLM judge.

One prompt covers a whole batch. The judge answers with one verdict per
1-based candidate id; ids outside the batch are dropped, never fatal.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ValidationError

from keygraph.analysis.relationships.models import FKEvaluation, RelationshipCandidate
from keygraph.core.errors import KeygraphError
from keygraph.core.logging import get_logger
from keygraph.core.models.base import KnowledgeFactType
from keygraph.llm.circuit_breaker import CircuitOpenError
from keygraph.llm.errors import LLMError
from keygraph.llm.prompts import PromptRenderer
from keygraph.llm.providers.base import LLMProvider, LLMRequest

if TYPE_CHECKING:
    from keygraph.discovery.models import KnowledgeFact
    from keygraph.discovery.ports import KnowledgeRepository

logger = get_logger(__name__)

PROMPT_TEMPLATE = "fk_semantic_evaluation"
MAX_SAMPLE_VALUES = 5

_FACT_TYPE_ORDER = [
    KnowledgeFactType.TERMINOLOGY,
    KnowledgeFactType.BUSINESS_RULE,
    KnowledgeFactType.ENUMERATION,
    KnowledgeFactType.CONVENTION,
]


class SemanticEvaluationError(KeygraphError):
    """The judge call failed or its response could not be parsed."""


class _EvaluationItem(BaseModel):
    id: int
    is_fk: bool
    confidence: float = 0.0
    semantic_role: str = ""
    reasoning: str = ""
    should_include: bool = False


class SemanticEvaluator:
    """Judge relationship candidates with an LLM.

    The client is expected to carry the resilience policy (see
    ``keygraph.llm.ResilientLLMClient``); a CircuitOpenError from it propagates
    unchanged so callers can stop submitting batches.
    """

    def __init__(
        self,
        client: LLMProvider,
        renderer: PromptRenderer | None = None,
        knowledge_repo: KnowledgeRepository | None = None,
        temperature: float | None = None,
        max_tokens: int = 4000,
    ):
        self.client = client
        self.renderer = renderer or PromptRenderer()
        self.knowledge_repo = knowledge_repo
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def evaluate_candidates(
        self, candidates: list[RelationshipCandidate], project_id: str
    ) -> dict[int, FKEvaluation]:
        """Evaluate a batch of candidates in one judge call.

        Args:
            candidates: Candidates to judge; verdict ids refer to positions (1-based)
            project_id: Project whose knowledge facts enrich the prompt

        Returns:
            Verdicts keyed by 1-based candidate index. Candidates the judge
            skipped are absent.

        Raises:
            CircuitOpenError: The circuit breaker rejected the call
            SemanticEvaluationError: The call failed or the response was unparseable
        """
        if not candidates:
            return {}

        facts = await self._load_knowledge(project_id)
        system, prompt, template_temperature = self.renderer.render_split(
            PROMPT_TEMPLATE,
            {
                "domain_knowledge": format_domain_knowledge(facts),
                "candidates_table": format_candidates_table(candidates),
                "additional_context": format_additional_context(candidates),
            },
        )

        request = LLMRequest(
            prompt=prompt,
            system=system,
            temperature=self.temperature if self.temperature is not None else template_temperature,
            max_tokens=self.max_tokens,
            thinking=False,
        )

        try:
            response = await self.client.generate_response(request)
        except CircuitOpenError:
            logger.warning(
                "fk_evaluation_skipped_circuit_open",
                project_id=project_id,
                candidate_count=len(candidates),
            )
            raise
        except LLMError as e:
            logger.error(
                "fk_evaluation_call_failed",
                project_id=project_id,
                candidate_count=len(candidates),
                error=str(e),
            )
            raise SemanticEvaluationError(f"LLM call failed: {e}") from e

        results = self._parse_response(response.content, len(candidates))
        logger.debug(
            "fk_evaluation_complete",
            project_id=project_id,
            candidates_evaluated=len(results),
            candidates_total=len(candidates),
        )
        return results

    async def evaluate_candidate(
        self, candidate: RelationshipCandidate, project_id: str
    ) -> FKEvaluation:
        """Evaluate a single candidate.

        Raises:
            SemanticEvaluationError: If the judge returned no verdict for it
        """
        results = await self.evaluate_candidates([candidate], project_id)
        if 1 not in results:
            raise SemanticEvaluationError(f"no evaluation result for candidate {candidate.key}")
        return results[1]

    async def _load_knowledge(self, project_id: str) -> list[KnowledgeFact]:
        if self.knowledge_repo is None:
            return []
        try:
            return await self.knowledge_repo.get_by_project(project_id)
        except Exception as e:
            # Knowledge only enriches the prompt
            logger.warning("knowledge_facts_unavailable", project_id=project_id, error=str(e))
            return []

    def _parse_response(self, content: str, candidate_count: int) -> dict[int, FKEvaluation]:
        try:
            parsed = json.loads(_strip_code_fence(content))
        except json.JSONDecodeError as e:
            logger.error("fk_evaluation_unparseable", response_preview=content[:200])
            raise SemanticEvaluationError(f"parse LLM response: {e}") from e

        items = parsed.get("evaluations") if isinstance(parsed, dict) else None
        if not isinstance(items, list):
            raise SemanticEvaluationError("parse LLM response: missing 'evaluations' list")

        results: dict[int, FKEvaluation] = {}
        for raw in items:
            try:
                item = _EvaluationItem.model_validate(raw)
            except ValidationError as e:
                logger.warning("fk_evaluation_item_malformed", item=raw, error=str(e))
                continue

            if item.id < 1 or item.id > candidate_count:
                logger.warning(
                    "fk_evaluation_dropped",
                    reason="candidate id out of range",
                    id=item.id,
                    max_valid=candidate_count,
                )
                continue

            results[item.id] = FKEvaluation(
                is_fk=item.is_fk,
                confidence=max(0.0, min(1.0, item.confidence)),
                semantic_role=item.semantic_role,
                reasoning=item.reasoning,
                should_include=item.should_include,
            )
        return results


def _strip_code_fence(content: str) -> str:
    content = content.strip()
    if content.startswith("```"):
        lines = content.split("\n")
        # Drop the opening ```json line and the closing fence
        content = "\n".join(line for line in lines[1:] if not line.startswith("```"))
    return content


# =============================================================================
# Prompt sections
# =============================================================================


def format_domain_knowledge(facts: list[KnowledgeFact]) -> str:
    """Render knowledge facts grouped by type, or an empty string if none."""
    if not facts:
        return ""

    by_type: dict[str, list[Any]] = {}
    for fact in facts:
        by_type.setdefault(str(fact.fact_type), []).append(fact)

    lines = [
        "## Domain Knowledge",
        "",
        "Use these domain-specific facts to inform your evaluation:",
        "",
    ]
    for fact_type in _FACT_TYPE_ORDER:
        group = by_type.get(fact_type.value)
        if not group:
            continue
        lines.append(f"**{fact_type.value.replace('_', ' ').title()}:**")
        for fact in group:
            suffix = f" ({fact.context})" if fact.context else ""
            lines.append(f"- {fact.value}{suffix}")
        lines.append("")
    return "\n".join(lines) + "\n"


def format_candidates_table(candidates: list[RelationshipCandidate]) -> str:
    """Render the numbered markdown table of candidates."""
    lines = [
        "| ID | Source Column | Target Column | Join Stats | Cardinality | Target Entity |",
        "|----|---------------|---------------|------------|-------------|---------------|",
    ]
    for i, c in enumerate(candidates, start=1):
        source = _column_label(c.source_schema, c.source_table, c.source_column, c.source_data_type)
        target = _column_label(c.target_schema, c.target_table, c.target_column, c.target_data_type)
        lines.append(
            f"| {i} | {source} | {target} | {_join_stats(c)} | {_distinct_stats(c)} "
            f"| {_target_entity(c)} |"
        )
    return "\n".join(lines)


def format_additional_context(candidates: list[RelationshipCandidate]) -> str:
    """Render per-candidate table purposes, sample values, max values and unreferenced targets."""
    sections: list[str] = []
    for i, c in enumerate(candidates, start=1):
        lines: list[str] = []
        if c.source_table_description:
            lines.append(f"- **Source table purpose**: {c.source_table_description}")
        if c.target_table_description:
            lines.append(f"- **Target table purpose**: {c.target_table_description}")
        if c.sample_values:
            lines.append(f"- Sample values: {', '.join(c.sample_values[:MAX_SAMPLE_VALUES])}")
        if c.max_source_value is not None:
            lines.append(f"- Max value in column: {c.max_source_value}")
        if c.has_join_stats and c.reverse_orphan_count is not None:
            lines.append(f"- {c.reverse_orphan_count} target values are never referenced")
        if not lines:
            continue
        header = (
            f"### Candidate {i}: {c.source_table}.{c.source_column} → "
            f"{c.target_table}.{c.target_column}"
        )
        sections.append("\n".join([header, *lines]) + "\n")
    return "\n".join(sections) + "\n" if sections else "None.\n"


def _column_label(schema: str, table: str, column: str, data_type: str) -> str:
    name = f"{schema}.{table}.{column}" if schema else f"{table}.{column}"
    return f"{name} ({data_type})" if data_type else name


def _join_stats(c: RelationshipCandidate) -> str:
    if not c.has_join_stats:
        return "not probed"
    orphans = c.orphan_count or 0
    if orphans == 0:
        return "0% orphans"
    orphan_pct = orphans / ((c.source_matched or 0) + orphans) * 100
    return f"{orphan_pct:.1f}% orphans ({orphans})"


def _distinct_stats(c: RelationshipCandidate) -> str:
    if c.source_distinct_count is None:
        return "unknown"
    if c.source_row_count:
        ratio = c.source_distinct_count / c.source_row_count * 100
        return f"{c.source_distinct_count} distinct ({ratio:.1f}%)"
    return f"{c.source_distinct_count} distinct"


def _target_entity(c: RelationshipCandidate) -> str:
    if not c.target_entity_name:
        return "unknown"
    if c.target_entity_description and len(c.target_entity_description) < 50:
        return f"{c.target_entity_name} - {c.target_entity_description}"
    return c.target_entity_name
