"""Deal source REST API client used to page through closed deals."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import requests

from .config import SourceConfig
from .errors import DataFetchError
from .models import DealRecord, LineItem, StageOutcome

_OUTCOMES = {
    "won": StageOutcome.WON,
    "closed won": StageOutcome.WON,
    "closedwon": StageOutcome.WON,
    "lost": StageOutcome.LOST,
    "closed lost": StageOutcome.LOST,
    "closedlost": StageOutcome.LOST,
}


@dataclass(frozen=True, slots=True)
class DealPage:
    """One chunk of deals plus the cursor for the next one (``None`` when done)."""

    deals: Tuple[DealRecord, ...]
    next_cursor: Optional[str]


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    return parsed if math.isfinite(parsed) else None


def _to_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_datetime(value: Any) -> Optional[datetime]:
    """Parse ISO8601 timestamps into timezone-aware datetimes."""
    if not value or not isinstance(value, str):
        return None

    normalized = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_outcome(value: Any) -> Optional[StageOutcome]:
    if not isinstance(value, str):
        return None
    return _OUTCOMES.get(value.strip().lower())


def parse_deal(item: Any) -> DealRecord:
    """Convert one API payload item into a ``DealRecord``.

    Parsing is lenient: missing or unparsable fields become ``None`` and are
    left for validation to reject.
    """
    if not isinstance(item, dict):
        return DealRecord(
            deal_id=None,
            closed_date=None,
            amount=None,
            margin_percent=None,
            stage_outcome=None,
            owner_id=None,
        )

    owner = item.get("owner") if isinstance(item.get("owner"), dict) else {}
    account = item.get("account") if isinstance(item.get("account"), dict) else {}

    line_items: List[LineItem] = []
    for line in item.get("lineItems") or []:
        if not isinstance(line, dict):
            continue
        line_items.append(
            LineItem(
                product_family=_to_str(line.get("productFamily")),
                unit_price=_to_float(line.get("unitPrice")) or 0.0,
                quantity=_to_float(line.get("quantity")) or 0.0,
            )
        )

    return DealRecord(
        deal_id=_to_str(item.get("id")),
        closed_date=_parse_datetime(item.get("closedDate")),
        amount=_to_float(item.get("amount")),
        margin_percent=_to_float(item.get("marginPercent")),
        stage_outcome=_parse_outcome(item.get("stage")),
        owner_id=_to_str(owner.get("id")),
        owner_name=_to_str(owner.get("name")),
        line_items=tuple(line_items),
        account_annual_revenue=_to_float(account.get("annualRevenue")),
    )


class DealSourceClient:
    """Small, typed client for the deal source query API."""

    _MAX_RETRIES = 5
    _MAX_BACKOFF_SECONDS = 30

    def __init__(self, config: SourceConfig, timeout_seconds: int = 30) -> None:
        """Initialize an authenticated deal source client.

        Args:
            config: Validated source configuration including base URL and token.
            timeout_seconds: Per-request timeout in seconds.
        """
        self._config = config
        self._timeout_seconds = timeout_seconds
        self._base_url = f"{config.base_url}/tenants/{config.tenant}"

        self._session = requests.Session()
        self._session.headers.update(
            {
                "Accept": "application/json",
                "Authorization": f"Bearer {config.token}",
            }
        )

    def _build_url(self, path: str) -> str:
        """Build a fully qualified API URL from a path below the tenant root."""
        return f"{self._base_url}/{path.lstrip('/')}"

    def _extract_backoff_seconds(self, response: requests.Response, attempt: int) -> int:
        """Compute exponential backoff seconds, honoring Retry-After when available."""
        retry_after_header = response.headers.get("Retry-After")
        if retry_after_header:
            try:
                retry_after_seconds = int(retry_after_header)
                return min(self._MAX_BACKOFF_SECONDS, max(1, retry_after_seconds))
            except ValueError:
                pass

        return min(self._MAX_BACKOFF_SECONDS, 2 ** (attempt - 1))

    def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Execute a GET request with retry logic for 429/5xx responses.

        Raises:
            DataFetchError: If the request repeatedly fails, returns HTTP >= 400,
                or does not return a JSON object.
        """
        url = self._build_url(path)
        query = dict(params or {})

        last_error: Optional[Exception] = None

        for attempt in range(1, self._MAX_RETRIES + 1):
            try:
                response = self._session.get(url, params=query, timeout=self._timeout_seconds)
            except requests.RequestException as exc:
                last_error = exc
                if attempt == self._MAX_RETRIES:
                    raise DataFetchError(f"Deal source request failed after retries: GET {url}") from exc
                time.sleep(min(self._MAX_BACKOFF_SECONDS, 2 ** (attempt - 1)))
                continue

            status_code = response.status_code
            is_retryable = status_code == 429 or 500 <= status_code <= 599

            if is_retryable and attempt < self._MAX_RETRIES:
                time.sleep(self._extract_backoff_seconds(response, attempt))
                continue

            if status_code >= 400:
                raise DataFetchError(
                    "Deal source request failed: "
                    f"GET {url} returned {status_code} - {response.text}"
                )

            try:
                payload = response.json()
            except ValueError as exc:
                raise DataFetchError(f"Deal source returned invalid JSON: GET {url}") from exc

            if not isinstance(payload, dict):
                raise DataFetchError(f"Deal source returned unexpected payload shape: GET {url}")

            return payload

        raise DataFetchError(f"Deal source request failed after retries: GET {url}") from last_error

    def count_deals(self, window_months: int) -> int:
        """Return the source's estimate of closed deals in the lookback window."""
        payload = self._get_json("deals/count", params={"windowMonths": window_months})
        count = payload.get("count")
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            raise DataFetchError(f"Deal source returned an invalid deal count: {count!r}")
        return count

    def fetch_deals(self, window_months: int, cursor: Optional[str], limit: int) -> DealPage:
        """Fetch one chunk of closed deals.

        Args:
            window_months: Lookback window in months.
            cursor: Opaque cursor from the previous page, or ``None`` for the first.
            limit: Maximum number of deals in the chunk.

        Returns:
            A ``DealPage``; ``next_cursor`` is ``None`` on the last page.
        """
        params: Dict[str, Any] = {"windowMonths": window_months, "limit": limit}
        if cursor:
            params["cursor"] = cursor

        payload = self._get_json("deals", params=params)

        items = payload.get("value", [])
        if not isinstance(items, list):
            raise DataFetchError("Deal source returned a page without a 'value' list.")

        return DealPage(
            deals=tuple(parse_deal(item) for item in items),
            next_cursor=_to_str(payload.get("nextCursor")),
        )
