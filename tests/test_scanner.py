"""Tests for scan orchestration, progress reporting and failure handling."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional
from unittest.mock import Mock

import pytest

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from marginscan.config import ScanConfig
from marginscan.deal_client import DealPage
from marginscan.errors import DataFetchError, ScanStateError
from marginscan.models import DealRecord, JobStatus, LineItem, StageOutcome
from marginscan.scanner import ScanOrchestrator, get_scan_result, get_scan_status
from marginscan.store import ScanStore


class _PagedSource:
    """In-memory deal source serving fixed pages; cursors are page indexes."""

    def __init__(self, pages: List[List[DealRecord]], total: Optional[int] = None, fail_on_chunk: Optional[int] = None):
        self.pages = pages
        self.total = total if total is not None else sum(len(page) for page in pages)
        self.fail_on_chunk = fail_on_chunk
        self.cursors: List[Optional[str]] = []

    def count_deals(self, window_months: int) -> int:
        return self.total

    def fetch_deals(self, window_months: int, cursor: Optional[str], limit: int) -> DealPage:
        self.cursors.append(cursor)
        index = int(cursor) if cursor else 0
        if self.fail_on_chunk == index + 1:
            raise DataFetchError("Deal source request failed after retries: GET /deals")
        next_cursor = str(index + 1) if index + 1 < len(self.pages) else None
        return DealPage(deals=tuple(self.pages[index]), next_cursor=next_cursor)


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2026, 4, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(minutes=1)
        return self.now


def _deal(deal_id: str, margin: Optional[float] = 30.0, amount: Optional[float] = 50_000.0, oem="Cisco", owner="rep-1", won=True) -> DealRecord:
    return DealRecord(
        deal_id=deal_id,
        closed_date=datetime(2025, 12, 1, tzinfo=timezone.utc),
        amount=amount,
        margin_percent=margin,
        stage_outcome=StageOutcome.WON if won else StageOutcome.LOST,
        owner_id=owner,
        owner_name=owner.title(),
        line_items=(LineItem(oem, amount or 0.0, 1),),
    )


def _deals(count: int, prefix: str = "D", oem: str = "Cisco") -> List[DealRecord]:
    return [
        _deal(f"{prefix}-{i}", margin=10.0 + (i % 5) * 10.0, oem=oem, owner=f"rep-{i % 3}", won=i % 4 != 3)
        for i in range(count)
    ]


def _pages(deals: List[DealRecord], size: int) -> List[List[DealRecord]]:
    return [deals[i:i + size] for i in range(0, len(deals), size)]


def _orchestrator(source, store, chunk_size: int = 10, clock=None) -> ScanOrchestrator:
    config = ScanConfig(scan_months=24, min_cohort_size=5, band_width=5.0, chunk_size=chunk_size)
    return ScanOrchestrator(source=source, store=store, config=config, clock=clock or _Clock())


def test_run_completes_and_persists_result(tmp_path):
    """Verify a full run ends Complete with the result saved."""
    store = ScanStore(tmp_path / "scan.db")
    deals = _deals(25)
    source = _PagedSource(_pages(deals, 10))
    orchestrator = _orchestrator(source, store)

    result = orchestrator.run()

    assert orchestrator.job.status is JobStatus.COMPLETE
    assert orchestrator.job.processed_count == 25
    assert get_scan_status(store) == "Complete"
    assert source.cursors == [None, "1", "2"]
    assert result.total_deals == 25
    assert result.scan_months == 24
    assert store.load_last_result().model_dump(mode="json", by_alias=True) == result.model_dump(mode="json", by_alias=True)
    assert get_scan_result(store) == result.model_dump(mode="json", by_alias=True)


def test_status_mid_ingestion_reports_running_progress(tmp_path):
    """Verify chunk 3 of 10 with 450 of 2,847 processed reads 'Running: 450/2847'."""
    store = ScanStore(tmp_path / "scan.db")
    source = _PagedSource(_pages(_deals(1500), 150), total=2847)
    orchestrator = _orchestrator(source, store, chunk_size=150)

    orchestrator.start()
    assert get_scan_status(store) == "Running: 0/2847"
    for _ in range(3):
        assert orchestrator.process_next_chunk() is True

    assert orchestrator.status_text == "Running: 450/2847"
    assert get_scan_status(store) == "Running: 450/2847"


def test_total_count_never_falls_below_processed_count(tmp_path):
    """Verify an under-estimated total is raised so that total >= processed while running."""
    store = ScanStore(tmp_path / "scan.db")
    source = _PagedSource(_pages(_deals(12), 10), total=5)
    orchestrator = _orchestrator(source, store)

    orchestrator.start()
    orchestrator.process_next_chunk()

    assert orchestrator.status_text == "Running: 10/10"


def test_rerun_over_unchanged_deals_reproduces_result_except_scan_date(tmp_path):
    """Verify scans are deterministic apart from the completion timestamp."""
    store = ScanStore(tmp_path / "scan.db")
    deals = _deals(40) + _deals(12, prefix="H", oem="HP")
    orchestrator = _orchestrator(_PagedSource(_pages(deals, 7)), store)

    first = orchestrator.run().model_dump(mode="json", by_alias=True)
    second = orchestrator.run().model_dump(mode="json", by_alias=True)

    assert first.pop("scanDate") != second.pop("scanDate")
    assert first == second


def test_fetch_failure_on_fourth_chunk_keeps_prior_result(tmp_path):
    """Verify a DataFetchError leaves Error status and the previous run's result intact."""
    store = ScanStore(tmp_path / "scan.db")
    pages = _pages(_deals(60), 10)
    prior = _orchestrator(_PagedSource(pages), store).run()

    failing = _orchestrator(_PagedSource(pages, fail_on_chunk=4), store)
    with pytest.raises(DataFetchError):
        failing.run()

    assert failing.job.status is JobStatus.ERROR
    assert failing.job.processed_count == 30
    assert "GET /deals" in failing.job.error_message
    assert get_scan_status(store) == "Error"
    assert store.load_last_result().model_dump(mode="json", by_alias=True) == prior.model_dump(mode="json", by_alias=True)


def test_fetch_failure_without_prior_run_leaves_no_result(tmp_path):
    """Verify a failed first scan never persists a partial result."""
    store = ScanStore(tmp_path / "scan.db")
    orchestrator = _orchestrator(_PagedSource(_pages(_deals(60), 10), fail_on_chunk=4), store)

    with pytest.raises(DataFetchError):
        orchestrator.run()

    assert store.load_last_result() is None
    assert get_scan_result(store) is None
    assert get_scan_status(store) == "Error"


def test_count_failure_moves_job_to_error(tmp_path):
    """Verify a failure estimating the total is fatal to the run."""
    store = ScanStore(tmp_path / "scan.db")
    source = _PagedSource([[]])
    source.count_deals = Mock(side_effect=DataFetchError("count unavailable"))

    with pytest.raises(DataFetchError):
        _orchestrator(source, store).start()

    assert get_scan_status(store) == "Error"


def test_restart_after_failure_discards_partial_progress(tmp_path):
    """Verify deals ingested by a failed run are not merged into the next run."""
    store = ScanStore(tmp_path / "scan.db")
    source = _PagedSource(_pages(_deals(30), 10), fail_on_chunk=3)
    orchestrator = _orchestrator(source, store)

    with pytest.raises(DataFetchError):
        orchestrator.run()

    source.fail_on_chunk = None
    result = orchestrator.run()

    assert result.total_deals == 30
    assert orchestrator.job.processed_count == 30
    assert orchestrator.job.error_message is None


def test_malformed_records_are_skipped_and_counted(tmp_path):
    """Verify records missing required fields are excluded from all figures."""
    store = ScanStore(tmp_path / "scan.db")
    deals = _deals(10) + [_deal("BAD-1", amount=None), _deal("", margin=15.0)]
    orchestrator = _orchestrator(_PagedSource(_pages(deals, 5)), store)

    result = orchestrator.run()

    assert result.total_deals == 10
    assert result.skipped_count == 2
    assert orchestrator.job.skipped_count == 2
    assert orchestrator.job.processed_count == 12
    assert result.total_revenue == pytest.approx(500_000.0)


def test_result_orders_cohorts_by_opportunity(tmp_path):
    """Verify cohorts are presented by descending opportunity, ties in appearance order."""
    store = ScanStore(tmp_path / "scan.db")
    flat = [_deal(f"F-{i}", margin=25.0, oem="Dell") for i in range(5)]
    spread = [_deal(f"S-{i}", margin=10.0 * (i + 1), oem="Cisco") for i in range(5)]
    orchestrator = _orchestrator(_PagedSource(_pages(flat + spread, 10)), store)

    result = orchestrator.run()

    assert [cohort.key.oem for cohort in result.cohorts] == ["Cisco", "Dell"]
    assert result.cohorts[0].margin_opportunity == pytest.approx(15_000.0)
    assert result.cohorts[1].margin_opportunity == 0.0
    assert result.rep_stats[0].owner_id == "rep-1"


def test_sweet_spot_is_reported_on_result(tmp_path):
    """Verify the sweet spot band label is carried on the result."""
    store = ScanStore(tmp_path / "scan.db")
    low = [_deal(f"L-{i}", margin=2.0, won=i < 6) for i in range(20)]
    mid = [_deal(f"M-{i}", margin=7.0, won=i < 9) for i in range(15)]
    orchestrator = _orchestrator(_PagedSource(_pages(low + mid, 10)), store)

    result = orchestrator.run()

    assert result.sweet_spot == "5-10%"
    assert [band.label for band in result.margin_bands] == ["0-5%", "5-10%"]


def test_illegal_transitions_raise_scan_state_error(tmp_path):
    """Verify lifecycle guards on chunk processing, finalizing and double starts."""
    store = ScanStore(tmp_path / "scan.db")
    orchestrator = _orchestrator(_PagedSource(_pages(_deals(20), 10)), store)

    with pytest.raises(ScanStateError):
        orchestrator.process_next_chunk()

    orchestrator.start()
    with pytest.raises(ScanStateError):
        orchestrator.start()
    with pytest.raises(ScanStateError):
        orchestrator.finalize()

    while orchestrator.process_next_chunk():
        pass
    orchestrator.finalize()

    with pytest.raises(ScanStateError):
        orchestrator.finalize()


def test_status_defaults_to_idle_without_any_scan(tmp_path):
    """Verify polling before any scan reports Idle."""
    assert get_scan_status(ScanStore(tmp_path / "scan.db")) == "Idle"


def test_repeated_records_across_pages_keep_rep_totals_consistent(tmp_path):
    """Verify rep totals still add up to total opportunity when a page is served twice."""
    store = ScanStore(tmp_path / "scan.db")
    deals = [_deal(f"R-{i}", margin=10.0 * (i + 1), owner=f"rep-{i % 2}") for i in range(5)]
    orchestrator = _orchestrator(_PagedSource([deals, deals]), store)

    result = orchestrator.run()

    assert result.total_deals == 10
    assert result.total_opportunity > 0
    assert sum(rep.margin_left_on_table for rep in result.rep_stats) == pytest.approx(result.total_opportunity)
