"""Command-line argument parsing for the margin opportunity scanner."""

from __future__ import annotations

import argparse
import math
import os
from typing import Optional, Sequence

from .store import DEFAULT_DB_PATH, DEFAULT_TENANT


def _positive_int(value: str) -> int:
    """Parse and validate a positive integer CLI value.

    Raises:
        argparse.ArgumentTypeError: If value is not a positive integer.
    """
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("must be an integer") from exc

    if parsed <= 0:
        raise argparse.ArgumentTypeError("must be greater than 0")

    return parsed


def _positive_float(value: str) -> float:
    try:
        parsed = float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("must be a number") from exc

    if not math.isfinite(parsed):
        raise argparse.ArgumentTypeError("must be a finite number")

    if parsed <= 0:
        raise argparse.ArgumentTypeError("must be greater than 0")

    return parsed


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments for the scan, status and result commands.

    Returns:
        Parsed CLI arguments. ``command`` is one of ``scan``, ``status`` or
        ``result``. Scan tuning options are ``None`` when omitted so that
        configuration defaults apply.
    """
    parser = argparse.ArgumentParser(
        prog="margin-scan",
        description=(
            "Quantify margin opportunity across historical closed deals by comparing "
            "each deal with its peer-cohort median margin."
        ),
    )
    parser.add_argument(
        "--db",
        default=os.getenv("MARGIN_SCAN_DB", DEFAULT_DB_PATH),
        help=f"SQLite file holding scan results and job status (default: {DEFAULT_DB_PATH}).",
    )
    parser.add_argument(
        "--tenant",
        default=os.getenv("MARGIN_SCAN_TENANT", DEFAULT_TENANT),
        help="Tenant whose deals and results are used.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    scan = subparsers.add_parser("scan", help="Run a full scan and store the result.")
    scan.add_argument(
        "--base-url",
        default=os.getenv("DEAL_SOURCE_URL", ""),
        help="Deal source API base URL (default: $DEAL_SOURCE_URL).",
    )
    scan.add_argument(
        "--scan-months",
        type=_positive_int,
        default=None,
        help="Lookback window in months (default: 24).",
    )
    scan.add_argument(
        "--min-cohort-size",
        type=_positive_int,
        default=None,
        help="Minimum deals for a cohort to be reported (default: 5).",
    )
    scan.add_argument(
        "--band-width",
        type=_positive_float,
        default=None,
        help="Margin band width in percentage points (default: 5).",
    )
    scan.add_argument(
        "--chunk-size",
        type=_positive_int,
        default=None,
        help="Deals fetched per chunk (default: 200).",
    )

    subparsers.add_parser("status", help="Print the current scan status.")
    subparsers.add_parser("result", help="Print the last scan result as JSON.")

    return parser.parse_args(argv)
