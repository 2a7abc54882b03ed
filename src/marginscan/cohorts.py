"""Cohort aggregation and margin opportunity computation.

Deals are grouped by cohort key. Only cohorts with at least
``min_cohort_size`` deals are materialized, and only those contribute to the
opportunity figures. Overall deal and revenue totals, and the current average
margin, still cover every input deal.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from .classifier import classify
from .config import DEFAULT_MIN_COHORT_SIZE, DEFAULT_SCAN_MONTHS
from .models import Cohort, CohortKey, DealRecord
from .stats import mean, summarize

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class OverallStats:
    """Scan-wide totals derived from all deals and from qualifying cohorts."""

    total_deals: int
    total_revenue: float
    current_avg_margin: float
    qualifying_revenue: float
    total_opportunity: float
    achievable_avg_margin: float
    annual_opportunity: float


@dataclass(frozen=True, slots=True)
class Aggregation:
    """Aggregator output.

    ``gaps`` pairs each below-median Closed-Won deal in a qualifying cohort
    with its opportunity. Pairs hold the deal itself, so records that share a
    ``deal_id`` keep separate gaps.
    """

    cohorts: Tuple[Cohort, ...]
    overall: OverallStats
    gaps: Tuple[Tuple[DealRecord, float], ...]


def group_by_cohort(deals: Sequence[DealRecord]) -> Dict[CohortKey, List[DealRecord]]:
    """Group deals by cohort key in order of first appearance."""
    groups: Dict[CohortKey, List[DealRecord]] = {}
    for deal in deals:
        groups.setdefault(classify(deal), []).append(deal)
    return groups


def won_margins(deals: Sequence[DealRecord]) -> List[float]:
    """Margins of Closed-Won deals; deals without margin data are excluded."""
    return [deal.margin_percent for deal in deals if deal.is_won and deal.margin_percent is not None]


def deal_opportunity(deal: DealRecord, median_margin: float) -> float:
    """Revenue gap between a deal's margin and its cohort median.

    Only Closed-Won deals strictly below the median contribute; margins are
    percentage points.
    """
    if not deal.is_won or deal.margin_percent is None:
        return 0.0
    if deal.margin_percent >= median_margin:
        return 0.0
    return deal.amount * (median_margin - deal.margin_percent) / 100.0


def build_cohort(
    key: CohortKey, deals: Sequence[DealRecord]
) -> Tuple[Cohort, List[Tuple[DealRecord, float]]]:
    """Compute statistics and per-deal gaps for one qualifying cohort."""
    won_count = sum(1 for deal in deals if deal.is_won)
    margins = won_margins(deals)

    median_margin: Optional[float] = None
    p25_margin: Optional[float] = None
    p75_margin: Optional[float] = None
    avg_margin: Optional[float] = None
    gaps: List[Tuple[DealRecord, float]] = []

    if margins:
        summary = summarize(margins)
        median_margin = summary.median
        p25_margin = summary.p25
        p75_margin = summary.p75
        avg_margin = summary.mean

        for deal in deals:
            gap = deal_opportunity(deal, median_margin)
            if gap > 0:
                gaps.append((deal, gap))

    cohort = Cohort(
        oem=key.oem,
        size_bucket=key.size_bucket,
        segment=key.segment,
        deal_count=len(deals),
        won_count=won_count,
        lost_count=len(deals) - won_count,
        median_margin=median_margin,
        p25_margin=p25_margin,
        p75_margin=p75_margin,
        avg_margin=avg_margin,
        win_rate=won_count / len(deals),
        total_revenue=math.fsum(deal.amount for deal in deals),
        margin_opportunity=math.fsum(gap for _, gap in gaps),
        deals=tuple(deals),
    )
    return cohort, gaps


def aggregate(
    deals: Sequence[DealRecord],
    min_cohort_size: int = DEFAULT_MIN_COHORT_SIZE,
    scan_months: int = DEFAULT_SCAN_MONTHS,
) -> Aggregation:
    """Aggregate validated deals into qualifying cohorts and overall figures.

    Business logic:
    - Group deals by cohort key; cohorts keep first-appearance order.
    - Drop cohorts with fewer than ``min_cohort_size`` deals.
    - ``total_deals``, ``total_revenue`` and ``current_avg_margin`` cover all
      deals; opportunity figures cover qualifying cohorts only.
    - ``achievable_avg_margin`` adds the opportunity, as margin points over
      qualifying revenue, to the current average margin.
    - ``annual_opportunity`` scales the total to a 12-month rate.
    """
    cohorts: List[Cohort] = []
    gaps: List[Tuple[DealRecord, float]] = []
    dropped_cohorts = 0

    for key, members in group_by_cohort(deals).items():
        if len(members) < min_cohort_size:
            dropped_cohorts += 1
            logger.debug(
                "Dropping sub-threshold cohort",
                extra={"cohort": key.label, "deal_count": len(members), "min_cohort_size": min_cohort_size},
            )
            continue

        cohort, cohort_gaps = build_cohort(key, members)
        cohorts.append(cohort)
        gaps.extend(cohort_gaps)

    all_margins = won_margins(deals)
    current_avg_margin = mean(all_margins) if all_margins else 0.0

    qualifying_revenue = math.fsum(cohort.total_revenue for cohort in cohorts)
    total_opportunity = math.fsum(cohort.margin_opportunity for cohort in cohorts)

    achievable_avg_margin = current_avg_margin
    if qualifying_revenue > 0:
        achievable_avg_margin += total_opportunity / qualifying_revenue * 100.0

    overall = OverallStats(
        total_deals=len(deals),
        total_revenue=math.fsum(deal.amount for deal in deals),
        current_avg_margin=current_avg_margin,
        qualifying_revenue=qualifying_revenue,
        total_opportunity=total_opportunity,
        achievable_avg_margin=achievable_avg_margin,
        annual_opportunity=total_opportunity * 12 / scan_months,
    )

    logger.info(
        "Aggregated cohorts",
        extra={
            "deals_total": len(deals),
            "cohorts_qualifying": len(cohorts),
            "cohorts_dropped": dropped_cohorts,
            "total_opportunity": total_opportunity,
        },
    )

    return Aggregation(cohorts=tuple(cohorts), overall=overall, gaps=tuple(gaps))
