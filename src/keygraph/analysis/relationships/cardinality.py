"""Cardinality inference from join statistics.

Pure functions: identical inputs always produce identical outputs.
"""

from __future__ import annotations

from keygraph.analysis.relationships.models import JoinAnalysis, JoinMetrics
from keygraph.core.models.base import Cardinality

# A ratio must exceed 1.0 by more than this to count as "multiple"
CARDINALITY_TOLERANCE = 0.05


def determine_cardinality(
    result: JoinAnalysis,
    source_row_count: int | None = None,
    target_row_count: int | None = None,
) -> Cardinality:
    """Classify a join as 1:1, 1:N, N:1 or N:M.

    The ratios are computed from distinct matched values on each side:
    ``join_count / source_matched`` is the average number of target rows per
    source value, ``join_count / target_matched`` the average number of source
    rows per target value.

    When both sides show multiples, ``target_matched <= source_matched`` means
    duplicate FK values on a many-to-one link (N:1); only more distinct
    targets than sources indicates a genuine junction (N:M).

    Args:
        result: Join counts from a JoinProbe
        source_row_count: Row count of the source table (unused by the decision)
        target_row_count: Row count of the target table (unused by the decision)

    Returns:
        Cardinality label. N:1 when nothing matched.
    """
    if result.join_count == 0 or result.source_matched == 0:
        return Cardinality.MANY_TO_ONE

    avg_targets_per_source = result.join_count / result.source_matched
    avg_sources_per_target = (
        result.join_count / result.target_matched if result.target_matched > 0 else 0.0
    )

    source_has_multiple = avg_targets_per_source > 1.0 + CARDINALITY_TOLERANCE
    target_has_multiple = avg_sources_per_target > 1.0 + CARDINALITY_TOLERANCE

    if source_has_multiple and target_has_multiple:
        if result.target_matched <= result.source_matched:
            return Cardinality.MANY_TO_ONE
        return Cardinality.MANY_TO_MANY
    if target_has_multiple:
        return Cardinality.MANY_TO_ONE
    if source_has_multiple:
        return Cardinality.ONE_TO_MANY
    return Cardinality.ONE_TO_ONE


def calculate_metrics(
    result: JoinAnalysis,
    source_row_count: int | None,
    target_row_count: int | None,
) -> JoinMetrics:
    """Derive match, orphan and coverage rates for a probed join.

    Rates are computed against table row counts, not the join count, so
    duplicate keys are not double counted. Unknown or non-positive row counts
    default to 1, which yields a degenerate rate instead of a division error.

    Args:
        result: Join counts from a JoinProbe
        source_row_count: Row count of the source table, if known
        target_row_count: Row count of the target table, if known

    Returns:
        JoinMetrics with every rate in [0, 1]
    """
    source_rows = source_row_count if source_row_count and source_row_count > 0 else 1
    target_rows = target_row_count if target_row_count and target_row_count > 0 else 1

    orphan_rows = min(result.orphan_count, source_rows)
    matched_rows = source_rows - orphan_rows

    return JoinMetrics(
        cardinality=determine_cardinality(result, source_rows, target_rows),
        join_match_rate=matched_rows / source_rows,
        orphan_rate=orphan_rows / source_rows,
        target_coverage=_clamp(result.target_matched / target_rows),
        source_row_count=source_rows,
        target_row_count=target_rows,
        matched_rows=matched_rows,
        orphan_rows=orphan_rows,
    )


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))
