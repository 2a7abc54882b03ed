"""Scan orchestration: fetch, classify, aggregate and finalize in bounded chunks.

A scan moves through ``Idle -> Running -> Complete | Error``. Ingestion runs one
chunk per :meth:`ScanOrchestrator.process_next_chunk` call, so callers may
suspend between chunks and poll progress from the persisted job status. All
figures are a pure function of the ingested deals; only ``scan_date`` depends
on the clock.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from .analysis import compute_margin_bands, compute_rep_stats, find_sweet_spot
from .classifier import validate_deal
from .cohorts import aggregate
from .config import ScanConfig
from .deal_client import DealPage
from .errors import MalformedRecordError, ScanStateError
from .models import DealRecord, JobStatus, ScanJob, ScanResult

logger = logging.getLogger(__name__)


class DealSource(Protocol):
    def count_deals(self, window_months: int) -> int:
        ...

    def fetch_deals(self, window_months: int, cursor: Optional[str], limit: int) -> DealPage:
        ...


class ScanPersistence(Protocol):
    def save_result(self, result: ScanResult) -> None:
        ...

    def save_job_status(self, job: ScanJob) -> None:
        ...

    def load_last_result(self) -> Optional[ScanResult]:
        ...

    def load_job_status(self) -> Optional[ScanJob]:
        ...


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ScanOrchestrator:
    """Drives one scan at a time over a paginated deal source."""

    def __init__(
        self,
        source: DealSource,
        store: ScanPersistence,
        config: Optional[ScanConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._source = source
        self._store = store
        self._config = config or ScanConfig()
        self._clock = clock or _utc_now

        self._job = ScanJob()
        self._deals: List[DealRecord] = []
        self._cursor: Optional[str] = None
        self._exhausted = False

    @property
    def job(self) -> ScanJob:
        return self._job

    @property
    def status_text(self) -> str:
        return self._job.status_text

    def _require_running(self) -> None:
        if self._job.status is not JobStatus.RUNNING:
            raise ScanStateError(f"Scan is not running (status: {self._job.status.value}).")

    def _save_job(self, **changes: Any) -> None:
        self._job = self._job.evolve(**changes)
        self._store.save_job_status(self._job)

    def _fail(self, exc: Exception) -> None:
        """Move the job to Error and drop everything ingested so far."""
        logger.exception(
            "Scan failed",
            extra={
                "processed_count": self._job.processed_count,
                "total_count": self._job.total_count,
            },
        )
        self._deals = []
        self._cursor = None
        self._exhausted = False
        self._save_job(status=JobStatus.ERROR, finished_at=self._clock(), error_message=str(exc))

    def start(self) -> ScanJob:
        """Begin a new scan from Idle or a terminal state.

        Raises:
            ScanStateError: If this orchestrator's scan is already running.
            DataFetchError: If the source cannot estimate the deal count; the
                job is left in Error.
        """
        if self._job.status is JobStatus.RUNNING:
            raise ScanStateError("A scan is already running; wait for it to finish before starting another.")

        self._deals = []
        self._cursor = None
        self._exhausted = False
        self._job = ScanJob(status=JobStatus.RUNNING, started_at=self._clock())

        try:
            total_count = self._source.count_deals(self._config.scan_months)
            self._save_job(total_count=total_count)
        except Exception as exc:
            self._fail(exc)
            raise

        logger.info(
            "Scan started",
            extra={
                "total_count": total_count,
                "scan_months": self._config.scan_months,
                "chunk_size": self._config.chunk_size,
            },
        )
        return self._job

    def _ingest(self, deals: Sequence[DealRecord]) -> int:
        """Validate and accumulate one chunk; return the number of skipped records."""
        skipped = 0
        for deal in deals:
            try:
                self._deals.append(validate_deal(deal))
            except MalformedRecordError as exc:
                skipped += 1
                logger.debug("Skipping malformed deal record", extra={"reason": str(exc)})
        return skipped

    def process_next_chunk(self) -> bool:
        """Fetch and ingest the next chunk.

        Returns:
            ``True`` while more chunks remain, ``False`` once the source is exhausted.

        Raises:
            ScanStateError: If no scan is running.
            DataFetchError: If the chunk cannot be fetched; the job is left in Error.
        """
        self._require_running()
        if self._exhausted:
            return False

        try:
            page = self._source.fetch_deals(self._config.scan_months, self._cursor, self._config.chunk_size)
            skipped = self._ingest(page.deals)

            processed_count = self._job.processed_count + len(page.deals)
            self._cursor = page.next_cursor
            self._exhausted = page.next_cursor is None
            self._save_job(
                processed_count=processed_count,
                total_count=max(self._job.total_count, processed_count),
                skipped_count=self._job.skipped_count + skipped,
            )
        except Exception as exc:
            self._fail(exc)
            raise

        logger.info(
            "Processed deal chunk",
            extra={
                "chunk_deals": len(page.deals),
                "chunk_skipped": skipped,
                "progress": self._job.status_text,
            },
        )
        return not self._exhausted

    def _build_result(self) -> ScanResult:
        aggregation = aggregate(self._deals, self._config.min_cohort_size, self._config.scan_months)
        overall = aggregation.overall

        rep_stats = compute_rep_stats(aggregation.cohorts, aggregation.gaps, overall.current_avg_margin)
        margin_bands = compute_margin_bands(self._deals, self._config.band_width)
        sweet_spot = find_sweet_spot(margin_bands)

        cohorts = sorted(aggregation.cohorts, key=lambda cohort: -cohort.margin_opportunity)

        return ScanResult(
            scan_date=self._clock(),
            total_deals=overall.total_deals,
            total_revenue=overall.total_revenue,
            current_avg_margin=overall.current_avg_margin,
            achievable_avg_margin=overall.achievable_avg_margin,
            annual_opportunity=overall.annual_opportunity,
            total_opportunity=overall.total_opportunity,
            scan_months=self._config.scan_months,
            skipped_count=self._job.skipped_count,
            cohorts=tuple(cohorts),
            rep_stats=tuple(rep_stats),
            margin_bands=tuple(margin_bands),
            sweet_spot=sweet_spot.label if sweet_spot else None,
        )

    def finalize(self) -> ScanResult:
        """Aggregate ingested deals, persist the result and mark the job Complete.

        Raises:
            ScanStateError: If no scan is running or chunks remain unprocessed.
        """
        self._require_running()
        if not self._exhausted:
            raise ScanStateError("Cannot finalize a scan before all chunks are processed.")

        try:
            result = self._build_result()
            self._store.save_result(result)
            self._save_job(status=JobStatus.COMPLETE, finished_at=result.scan_date)
        except Exception as exc:
            self._fail(exc)
            raise

        logger.info(
            "Scan complete",
            extra={
                "total_deals": result.total_deals,
                "skipped_count": result.skipped_count,
                "cohorts": len(result.cohorts),
                "annual_opportunity": result.annual_opportunity,
            },
        )
        self._deals = []
        return result

    def run(self) -> ScanResult:
        """Run a full scan: start, ingest every chunk, finalize."""
        self.start()
        while self.process_next_chunk():
            pass
        return self.finalize()


def get_scan_status(store: ScanPersistence) -> str:
    """Return the polled status string: ``Idle``, ``Running: P/T``, ``Complete`` or ``Error``."""
    job = store.load_job_status()
    if job is None:
        return JobStatus.IDLE.value
    return job.status_text


def get_scan_result(store: ScanPersistence) -> Optional[Dict[str, Any]]:
    """Return the serialized form of the last completed scan, or ``None``."""
    result = store.load_last_result()
    if result is None:
        return None
    return result.model_dump(mode="json", by_alias=True)
