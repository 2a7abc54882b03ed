"""Deal validation and cohort classification.

Classification is total: every valid deal maps to exactly one
:class:`~marginscan.models.CohortKey`. Bucket boundaries are inclusive on the
lower bound and exclusive on the upper bound, except the top band.
"""

from __future__ import annotations

from typing import List, Optional

from .errors import MalformedRecordError
from .models import UNSPECIFIED_OEM, CohortKey, DealRecord, LineItem, Segment, SizeBucket


# (exclusive upper bound, bucket), ascending. Amounts at or above the last
# bound fall into the top bucket.
SIZE_BUCKET_BOUNDS = (
    (25_000.0, SizeBucket.SMALL),
    (100_000.0, SizeBucket.MID_MARKET),
    (500_000.0, SizeBucket.ENTERPRISE),
)

SEGMENT_BOUNDS = (
    (50_000_000.0, Segment.SMB),
    (500_000_000.0, Segment.MID_MARKET),
)


def validate_deal(deal: DealRecord) -> DealRecord:
    """Check that a deal carries the fields needed for classification.

    Returns the deal unchanged so callers can validate inline.

    Raises:
        MalformedRecordError: If the deal id, amount, stage outcome, or owner
            id is missing.
    """
    missing: List[str] = []
    if not deal.deal_id:
        missing.append("deal_id")
    if deal.amount is None:
        missing.append("amount")
    if deal.stage_outcome is None:
        missing.append("stage_outcome")
    if not deal.owner_id:
        missing.append("owner_id")

    if missing:
        raise MalformedRecordError(
            f"Deal record {deal.deal_id or '<unknown>'} is missing required fields: "
            f"{', '.join(missing)}"
        )

    return deal


def size_bucket(amount: float) -> SizeBucket:
    """Map a deal amount to its size bucket."""
    for upper_bound, bucket in SIZE_BUCKET_BOUNDS:
        if amount < upper_bound:
            return bucket
    return SizeBucket.STRATEGIC


def segment(annual_revenue: Optional[float]) -> Segment:
    """Map account annual revenue to a customer segment.

    Missing revenue is treated as SMB.
    """
    if annual_revenue is None:
        return Segment.SMB

    for upper_bound, value in SEGMENT_BOUNDS:
        if annual_revenue < upper_bound:
            return value
    return Segment.ENTERPRISE


def primary_line_item(line_items: List[LineItem]) -> Optional[LineItem]:
    """Return the line item with the greatest extended price.

    Ties keep the first item in input order.
    """
    primary: Optional[LineItem] = None
    for item in line_items:
        if primary is None or item.extended_price > primary.extended_price:
            primary = item
    return primary


def primary_oem(deal: DealRecord) -> str:
    """Return the OEM of a deal's primary line item, or ``"Unspecified"``."""
    primary = primary_line_item(list(deal.line_items))
    if primary is None or not (primary.product_family or "").strip():
        return UNSPECIFIED_OEM
    return primary.product_family.strip()


def classify(deal: DealRecord) -> CohortKey:
    """Compute the cohort key for a validated deal."""
    return CohortKey(
        oem=primary_oem(deal),
        size_bucket=size_bucket(deal.amount),
        segment=segment(deal.account_annual_revenue),
    )
