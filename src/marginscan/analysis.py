"""Secondary breakdowns: per-rep margin performance and win rate by margin band."""

from __future__ import annotations

import math
from typing import Dict, List, Optional, Sequence, Tuple

from .config import DEFAULT_BAND_WIDTH
from .models import Cohort, DealRecord, MarginBand, RepStat
from .stats import mean, stddev

TERMINAL_BAND_FLOOR = 100.0
SWEET_SPOT_MIN_DEALS = 10


def compute_rep_stats(
    cohorts: Sequence[Cohort],
    gaps: Sequence[Tuple[DealRecord, float]],
    current_avg_margin: float,
) -> List[RepStat]:
    """Compute one ``RepStat`` per owner over deals in qualifying cohorts.

    ``avg_margin`` and ``margin_consistency`` cover the rep's Closed-Won deals
    with margin data and are ``None`` when there are none. Results are ordered
    by ``margin_left_on_table`` descending, then owner id.
    """
    deals_by_owner: Dict[str, List[DealRecord]] = {}
    for cohort in cohorts:
        for deal in cohort.deals:
            deals_by_owner.setdefault(deal.owner_id, []).append(deal)

    gaps_by_owner: Dict[str, List[float]] = {}
    for deal, gap in gaps:
        gaps_by_owner.setdefault(deal.owner_id, []).append(gap)

    rep_stats: List[RepStat] = []
    for owner_id, deals in deals_by_owner.items():
        margins = [deal.margin_percent for deal in deals if deal.is_won and deal.margin_percent is not None]
        avg_margin: Optional[float] = mean(margins) if margins else None

        owner_name = next((deal.owner_name for deal in deals if deal.owner_name), None)

        rep_stats.append(
            RepStat(
                owner_id=owner_id,
                owner_name=owner_name,
                deal_count=len(deals),
                won_count=sum(1 for deal in deals if deal.is_won),
                avg_margin=avg_margin,
                margin_consistency=stddev(margins) if margins else None,
                margin_left_on_table=math.fsum(gaps_by_owner.get(owner_id, ())),
                vs_team_avg=avg_margin - current_avg_margin if avg_margin is not None else None,
            )
        )

    rep_stats.sort(key=lambda rep: (-rep.margin_left_on_table, rep.owner_id))
    return rep_stats


def band_floor(margin_percent: float, band_width: float = DEFAULT_BAND_WIDTH) -> float:
    """Return the lower bound of the band containing ``margin_percent``.

    Margins of 100% or more share the terminal ``100+`` band.
    """
    if margin_percent >= TERMINAL_BAND_FLOOR:
        return TERMINAL_BAND_FLOOR
    return math.floor(margin_percent / band_width) * band_width


def compute_margin_bands(
    deals: Sequence[DealRecord],
    band_width: float = DEFAULT_BAND_WIDTH,
) -> List[MarginBand]:
    """Compute deal count and win rate per fixed-width margin band.

    Deals without margin data are not banded. Bands are ordered by lower bound.
    """
    counts: Dict[float, List[int]] = {}
    for deal in deals:
        if deal.margin_percent is None:
            continue
        tally = counts.setdefault(band_floor(deal.margin_percent, band_width), [0, 0])
        tally[0] += 1
        if deal.is_won:
            tally[1] += 1

    bands: List[MarginBand] = []
    for lower_bound in sorted(counts):
        deal_count, won_count = counts[lower_bound]
        if lower_bound >= TERMINAL_BAND_FLOOR:
            upper_bound = None
        else:
            upper_bound = min(lower_bound + band_width, TERMINAL_BAND_FLOOR)
        bands.append(
            MarginBand(
                lower_bound=lower_bound,
                upper_bound=upper_bound,
                deal_count=deal_count,
                won_count=won_count,
                win_rate=won_count / deal_count,
            )
        )

    return bands


def find_sweet_spot(
    bands: Sequence[MarginBand],
    min_deals: int = SWEET_SPOT_MIN_DEALS,
) -> Optional[MarginBand]:
    """Return the band with the highest win rate among bands with enough deals.

    Ties go to the lower band. Returns ``None`` when no band has ``min_deals``.
    """
    sweet_spot: Optional[MarginBand] = None
    for band in sorted(bands, key=lambda item: item.lower_bound):
        if band.deal_count < min_deals:
            continue
        if sweet_spot is None or band.win_rate > sweet_spot.win_rate:
            sweet_spot = band
    return sweet_spot
