"""Configuration parsing and validation for the margin opportunity scanner."""

from __future__ import annotations

import math
import os
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from .errors import AuthenticationError, ConfigurationError

DEFAULT_SCAN_MONTHS = 24
DEFAULT_MIN_COHORT_SIZE = 5
DEFAULT_BAND_WIDTH = 5.0
DEFAULT_CHUNK_SIZE = 200

TOKEN_ENV_VAR = "DEAL_SOURCE_TOKEN"

# Recognized option names, accepted in either camelCase or snake_case.
_OPTION_ALIASES = {
    "scanMonths": "scan_months",
    "scan_months": "scan_months",
    "minCohortSize": "min_cohort_size",
    "min_cohort_size": "min_cohort_size",
    "bandWidth": "band_width",
    "band_width": "band_width",
    "chunkSize": "chunk_size",
    "chunk_size": "chunk_size",
}


@dataclass(frozen=True)
class ScanConfig:
    """Validated settings that control a scan."""

    scan_months: int = DEFAULT_SCAN_MONTHS
    min_cohort_size: int = DEFAULT_MIN_COHORT_SIZE
    band_width: float = DEFAULT_BAND_WIDTH
    chunk_size: int = DEFAULT_CHUNK_SIZE


@dataclass(frozen=True)
class SourceConfig:
    """Connection settings for the deal source API."""

    base_url: str
    tenant: str
    token: str


def _positive(name: str, value: Any, kind: type) -> Any:
    try:
        parsed = kind(value)
    except (TypeError, ValueError, OverflowError) as exc:
        raise ConfigurationError(f"Invalid value for '{name}': expected a number, got {value!r}.") from exc

    if kind is int and parsed != float(value):
        raise ConfigurationError(f"Invalid value for '{name}': expected an integer, got {value!r}.")

    if not math.isfinite(parsed):
        raise ConfigurationError(f"Invalid value for '{name}': expected a finite number, got {value!r}.")

    if parsed <= 0:
        raise ConfigurationError(f"Invalid value for '{name}': expected a value greater than 0.")

    return parsed


def load_config(options: Optional[Mapping[str, Any]] = None) -> ScanConfig:
    """Build and validate scan configuration.

    Args:
        options: Raw option mapping. Keys may be camelCase (``scanMonths``) or
            snake_case (``scan_months``). Unknown keys are ignored; ``None``
            values fall back to defaults.

    Returns:
        A validated ``ScanConfig`` instance.

    Raises:
        ConfigurationError: If a recognized option is not a positive number.
    """
    values = {}
    for key, value in (options or {}).items():
        name = _OPTION_ALIASES.get(key)
        if name is None or value is None:
            continue
        values[name] = value

    return ScanConfig(
        scan_months=_positive("scan_months", values.get("scan_months", DEFAULT_SCAN_MONTHS), int),
        min_cohort_size=_positive(
            "min_cohort_size", values.get("min_cohort_size", DEFAULT_MIN_COHORT_SIZE), int
        ),
        band_width=_positive("band_width", values.get("band_width", DEFAULT_BAND_WIDTH), float),
        chunk_size=_positive("chunk_size", values.get("chunk_size", DEFAULT_CHUNK_SIZE), int),
    )


def load_source_config(base_url: str, tenant: str) -> SourceConfig:
    """Build deal source connection settings.

    Raises:
        ConfigurationError: If ``base_url`` or ``tenant`` is blank.
        AuthenticationError: If ``DEAL_SOURCE_TOKEN`` is not configured.
    """
    if not base_url.strip():
        raise ConfigurationError("Invalid value for 'base_url': expected a non-empty URL.")
    if not tenant.strip():
        raise ConfigurationError("Invalid value for 'tenant': expected a non-empty tenant id.")

    token: str = os.getenv(TOKEN_ENV_VAR, "").strip()
    if not token:
        raise AuthenticationError(
            "Missing required deal source API token. "
            f"Set the '{TOKEN_ENV_VAR}' environment variable before running a scan."
        )

    return SourceConfig(base_url=base_url.strip().rstrip("/"), tenant=tenant.strip(), token=token)
