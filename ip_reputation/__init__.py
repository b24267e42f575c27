"""IP Reputation Checker - cached AbuseIPDB lookups."""

__version__ = "1.0.0"

from .cache import TTLCache
from .client import ReputationClient
from .errors import (
    ConfigError,
    NetworkFailure,
    ParseFailure,
    ReputationError,
    UpstreamStatusFailure,
)
from .models import Report, ReputationResult

__all__ = [
    "ReputationClient",
    "TTLCache",
    "ReputationResult",
    "Report",
    "ReputationError",
    "NetworkFailure",
    "ParseFailure",
    "UpstreamStatusFailure",
    "ConfigError",
]
