"""Check quota and rate limits of AI coding agents."""

import logging

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())

from .errors import QuotaFetchError, ReasonCode  # noqa: E402
from .formatter import format_table  # noqa: E402
from .models import DisplayRow, GlobalSummary, ProviderResult, QuotaReport, Urgency  # noqa: E402
from .quota import SUPPORTED_PROVIDERS, fetch_all_rate_limits  # noqa: E402
from .rows import build_rows  # noqa: E402
from .summary import summarize  # noqa: E402

__all__ = [
    "DisplayRow",
    "GlobalSummary",
    "ProviderResult",
    "QuotaFetchError",
    "QuotaReport",
    "ReasonCode",
    "SUPPORTED_PROVIDERS",
    "Urgency",
    "build_rows",
    "fetch_all_rate_limits",
    "format_table",
    "summarize",
]
