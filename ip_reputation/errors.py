"""Error types raised by ip-reputation.

Lookup failures derive from `ReputationError` so callers can treat every
failed lookup the same way and still branch on the kind when needed.
"""

from __future__ import annotations

from typing import Any, Optional


class ConfigError(ValueError):
    """Missing credential or an invalid setting value."""


class ReputationError(Exception):
    """A lookup that produced no result."""


class NetworkFailure(ReputationError):
    """Upstream unreachable, timed out, or the body could not be read."""


class ParseFailure(ReputationError):
    """Upstream body is not in the expected structured shape."""


class UpstreamStatusFailure(ReputationError):
    """Upstream answered with a non-success status.

    The raw body text is kept for diagnostics; AbuseIPDB puts its error
    details there (`{"errors": [{"detail": ...}]}`).
    """

    def __init__(self, status: int, body: str, rate_limit: Optional[Any] = None):
        super().__init__(f"API error: {body}")
        self.status = status
        self.body = body
        self.rate_limit = rate_limit
