"""Batch validation of relationship candidates.

Candidates are split into batches and judged through a bounded worker pool,
so at most ``max_concurrent`` judge calls are in flight. A failed batch
leaves its candidates unscored; it never fails the other batches.
"""

from __future__ import annotations

from functools import partial

from pydantic import BaseModel, Field

from keygraph.analysis.relationships.cardinality import determine_cardinality
from keygraph.analysis.relationships.evaluator import SemanticEvaluator
from keygraph.analysis.relationships.models import (
    FKEvaluation,
    RelationshipCandidate,
    ValidatedRelationship,
)
from keygraph.core.concurrency import WorkerPool
from keygraph.core.logging import get_logger
from keygraph.core.models.base import Cardinality
from keygraph.discovery.models import ProgressCallback
from keygraph.llm.circuit_breaker import CircuitOpenError

logger = get_logger(__name__)

DEFAULT_MIN_CONFIDENCE = 0.7


class ValidationOutcome(BaseModel):
    """Verdicts for the scored candidates plus what could not be scored."""

    validated: list[ValidatedRelationship] = Field(default_factory=list)
    unscored: list[RelationshipCandidate] = Field(default_factory=list)
    failed_batches: int = 0
    errors: list[str] = Field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return bool(self.unscored)


class RelationshipValidator:
    """Fan candidate batches out to the semantic evaluator."""

    def __init__(
        self,
        evaluator: SemanticEvaluator,
        batch_size: int = 20,
        max_concurrent: int = 4,
        min_confidence: float = DEFAULT_MIN_CONFIDENCE,
    ):
        self.evaluator = evaluator
        self.batch_size = max(1, batch_size)
        self.pool = WorkerPool(max_concurrent)
        self.min_confidence = min_confidence

    async def validate_candidates(
        self,
        candidates: list[RelationshipCandidate],
        project_id: str,
        progress: ProgressCallback | None = None,
    ) -> ValidationOutcome:
        """Judge every candidate, tolerating failed batches.

        Args:
            candidates: Candidates to judge
            project_id: Owning project
            progress: Receives (completed_batches, total_batches, message)

        Returns:
            ValidationOutcome. Candidates in failed batches, or skipped by the
            judge, are listed in ``unscored``.
        """
        if not candidates:
            return ValidationOutcome()

        batches = [
            candidates[i : i + self.batch_size]
            for i in range(0, len(candidates), self.batch_size)
        ]

        def on_progress(done: int, total: int) -> None:
            if progress:
                progress(done, total, f"Validated {done}/{total} candidate batches")

        results = await self.pool.process(
            [
                (f"batch-{n}", partial(self.evaluator.evaluate_candidates, batch, project_id))
                for n, batch in enumerate(batches, start=1)
            ],
            on_progress=on_progress,
        )

        outcome = ValidationOutcome()
        circuit_open = False
        for batch, result in zip(batches, results, strict=True):
            if not result.ok:
                outcome.failed_batches += 1
                outcome.unscored.extend(batch)
                outcome.errors.append(str(result.error))
                circuit_open = circuit_open or isinstance(result.error, CircuitOpenError)
                continue

            verdicts = result.value or {}
            for index, candidate in enumerate(batch, start=1):
                verdict = verdicts.get(index)
                if verdict is None:
                    logger.warning("candidate_unscored", candidate=candidate.key)
                    outcome.unscored.append(candidate)
                    continue
                outcome.validated.append(
                    to_validated_relationship(candidate, verdict, self.min_confidence)
                )

        if outcome.failed_batches:
            logger.warning(
                "candidate_validation_partial",
                failed_batches=outcome.failed_batches,
                total_batches=len(batches),
                unscored=len(outcome.unscored),
                circuit_open=circuit_open,
            )
        return outcome


def to_validated_relationship(
    candidate: RelationshipCandidate,
    verdict: FKEvaluation,
    min_confidence: float = DEFAULT_MIN_CONFIDENCE,
) -> ValidatedRelationship:
    """Combine a candidate's join statistics with the judge's verdict.

    A candidate is a valid FK only if the judge calls it an FK, wants it
    included, and is at least ``min_confidence`` sure. Cardinality comes
    from the join statistics, N:1 when the pair was never probed.
    """
    analysis = candidate.join_analysis()
    cardinality = (
        determine_cardinality(analysis, candidate.source_row_count, candidate.target_row_count)
        if analysis is not None
        else Cardinality.MANY_TO_ONE
    )

    is_valid = verdict.is_fk and verdict.should_include
    reasoning = verdict.reasoning
    if is_valid and verdict.confidence < min_confidence:
        is_valid = False
        reasoning = (
            f"Low confidence ({verdict.confidence:.2f} < {min_confidence:.2f} threshold): "
            f"{reasoning}"
        )

    return ValidatedRelationship(
        candidate=candidate,
        is_valid_fk=is_valid,
        confidence=verdict.confidence,
        cardinality=cardinality,
        source_role=verdict.semantic_role,
        reasoning=reasoning,
    )
