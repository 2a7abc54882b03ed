"""Entry point wiring configuration, the deal source, the store and the scanner."""

from __future__ import annotations

import json
import logging
import sys
from argparse import Namespace
from typing import List, Optional, Sequence

from .cli import parse_args
from .config import load_config, load_source_config
from .deal_client import DealSourceClient
from .errors import AuthenticationError, ConfigurationError, DataFetchError, ScanStateError
from .models import ScanResult
from .scanner import ScanOrchestrator, get_scan_result, get_scan_status
from .store import ScanStore

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_UNEXPECTED = 1
EXIT_CONFIGURATION = 2
EXIT_AUTHENTICATION = 3
EXIT_DATA_FETCH = 4
EXIT_STATE = 5


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _format_percent(value: Optional[float]) -> str:
    return "n/a" if value is None else f"{value:.1f}%"


def format_summary(result: ScanResult, top: int = 5) -> str:
    """Render a short human-readable summary of a scan result."""
    lines: List[str] = [
        f"Scan date: {result.scan_date.isoformat()}",
        f"Deals analyzed: {result.total_deals} (skipped: {result.skipped_count})",
        f"Total revenue: {result.total_revenue:,.2f}",
        f"Current avg margin: {_format_percent(result.current_avg_margin)}",
        f"Achievable avg margin: {_format_percent(result.achievable_avg_margin)}",
        f"Annual opportunity: {result.annual_opportunity:,.2f}",
        f"Margin sweet spot: {result.sweet_spot or 'n/a'}",
    ]

    if result.cohorts:
        lines.append("")
        lines.append("Top cohorts by opportunity:")
        for cohort in result.cohorts[:top]:
            lines.append(
                f"   {cohort.key.label}: {cohort.margin_opportunity:,.2f} "
                f"(median {_format_percent(cohort.median_margin)}, {cohort.deal_count} deals)"
            )

    return "\n".join(lines)


def _run_scan(args: Namespace) -> int:
    config = load_config(
        {
            "scan_months": args.scan_months,
            "min_cohort_size": args.min_cohort_size,
            "band_width": args.band_width,
            "chunk_size": args.chunk_size,
        }
    )
    source_config = load_source_config(base_url=args.base_url, tenant=args.tenant)

    store = ScanStore(args.db, tenant=args.tenant)
    orchestrator = ScanOrchestrator(source=DealSourceClient(config=source_config), store=store, config=config)

    print(f"Scanning {config.scan_months} months of closed deals for tenant '{args.tenant}'...")
    result = orchestrator.run()
    print(format_summary(result))
    return EXIT_OK


def _show_result(args: Namespace) -> int:
    payload = get_scan_result(ScanStore(args.db, tenant=args.tenant))
    if payload is None:
        print("No completed scan result is available.", file=sys.stderr)
        return EXIT_STATE
    print(json.dumps(payload, indent=2))
    return EXIT_OK


def orchestrate_scan(argv: Optional[Sequence[str]] = None) -> int:
    """Run the requested command and map failures to process exit codes."""
    try:
        args = parse_args(argv)
        _configure_logging(args.verbose)

        if args.command == "scan":
            return _run_scan(args)
        if args.command == "status":
            print(get_scan_status(ScanStore(args.db, tenant=args.tenant)))
            return EXIT_OK
        return _show_result(args)
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        return EXIT_CONFIGURATION
    except AuthenticationError as exc:
        logger.error("Authentication error: %s", exc)
        return EXIT_AUTHENTICATION
    except DataFetchError as exc:
        logger.error("Deal source error: %s", exc)
        return EXIT_DATA_FETCH
    except ScanStateError as exc:
        logger.error("Scan state error: %s", exc)
        return EXIT_STATE
    except Exception:
        logger.exception("Unexpected error while running margin scan")
        return EXIT_UNEXPECTED


def main() -> None:
    raise SystemExit(orchestrate_scan())


if __name__ == "__main__":
    main()
