"""Rate limit header parsing.

AbuseIPDB reports its daily quota on every response:

    X-RateLimit-Limit: 1000
    X-RateLimit-Remaining: 997
    X-RateLimit-Reset: 1739880000     (epoch seconds, only once exhausted)
    Retry-After: 29017                 (seconds, only on 429)

We keep the parsed form typed (with datetime) and expose a JSON-safe dict for
diagnostics.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Any

_LIMIT = "x-ratelimit-limit"
_REMAINING = "x-ratelimit-remaining"
_RESET = "x-ratelimit-reset"
_RETRY_AFTER = "retry-after"


@dataclass(frozen=True)
class RateLimitInfo:
    limit: int | None = None
    remaining: int | None = None
    reset_at: datetime | None = None  # UTC
    retry_after_ms: int | None = None
    raw: dict[str, str] = field(default_factory=dict)

    @property
    def exhausted(self) -> bool:
        """True when the upstream reports zero remaining calls."""
        return self.remaining == 0

    def describe(self) -> str:
        """One-line summary, e.g. `0/1000 calls remaining, resets at ...`."""
        parts = []
        if self.remaining is not None:
            quota = f"{self.remaining}/{self.limit}" if self.limit is not None else str(self.remaining)
            parts.append(f"{quota} calls remaining")
        if self.reset_at is not None:
            parts.append(f"resets at {self.reset_at.isoformat()}")
        if self.retry_after_ms is not None:
            parts.append(f"retry after {self.retry_after_ms // 1000}s")
        return ", ".join(parts)

    def to_public_dict(self) -> dict[str, Any]:
        return {
            "limit": self.limit,
            "remaining": self.remaining,
            "reset_at": self.reset_at.isoformat() if self.reset_at else None,
            "retry_after_ms": self.retry_after_ms,
            "raw": dict(self.raw),
        }


def _as_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def _lowercased(headers: Mapping[str, str]) -> dict[str, tuple[str, str]]:
    """Lowercase -> (original_key, value) for case-insensitive lookups."""
    return {str(k).lower(): (str(k), str(v)) for k, v in headers.items() if k is not None}


def _parse_reset(value: str | None, *, now: datetime) -> datetime | None:
    reset = _as_int(value)
    if reset is None:
        return None
    # Heuristic: big numbers are epoch timestamps, small ones are deltas.
    if reset >= 1_000_000_000_000:
        return datetime.fromtimestamp(reset / 1000.0, tz=timezone.utc)
    if reset >= 1_000_000_000:
        return datetime.fromtimestamp(reset, tz=timezone.utc)
    return now + timedelta(seconds=max(reset, 0))


def _parse_retry_after(value: str | None, *, now: datetime) -> tuple[int | None, datetime | None]:
    if value is None:
        return None, None
    value = value.strip()

    seconds = _as_int(value)
    if seconds is not None:
        seconds = max(seconds, 0)
        return seconds * 1000, now + timedelta(seconds=seconds)

    try:
        dt = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None, None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return int(max(0.0, (dt - now).total_seconds()) * 1000), dt


def parse_rate_limit_info(
    headers: Mapping[str, str] | None,
    *,
    now: datetime | None = None,
) -> RateLimitInfo | None:
    """Parse rate limit info from HTTP response headers.

    Returns None when no rate-limit header is present.
    """

    if not headers:
        return None
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    ci = _lowercased(headers)
    raw = {
        orig: v
        for lk, (orig, v) in ci.items()
        if lk == _RETRY_AFTER or lk.startswith("x-ratelimit-")
    }
    if not raw:
        return None

    def _value(name: str) -> str | None:
        hit = ci.get(name)
        return hit[1] if hit else None

    reset_at = _parse_reset(_value(_RESET), now=now)
    retry_after_ms, retry_reset_at = _parse_retry_after(_value(_RETRY_AFTER), now=now)

    return RateLimitInfo(
        limit=_as_int(_value(_LIMIT)),
        remaining=_as_int(_value(_REMAINING)),
        reset_at=reset_at or retry_reset_at,
        retry_after_ms=retry_after_ms,
        raw=raw,
    )
