"""Models for ip-reputation.

These frozen dataclasses are the stable contract between the upstream
AbuseIPDB `check` payload and whatever we hand back to callers. Sequences are
tuples so a result is an immutable snapshot once built.

Wire format (both directions) uses the upstream camelCase names wrapped in a
top-level `data` object.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, TypeVar, Union

from .errors import ParseFailure

T = TypeVar("T")


def _field(payload: dict[str, Any], name: str, kind: type, default: Any) -> Any:
    value = payload.get(name)
    if value is None:
        return default
    # bool is an int subclass; never accept one for the other.
    if kind is int and isinstance(value, bool):
        raise ParseFailure(f"field {name!r}: expected integer, got boolean")
    if kind is int and isinstance(value, float) and value.is_integer():
        return int(value)
    if not isinstance(value, kind):
        raise ParseFailure(
            f"field {name!r}: expected {kind.__name__}, got {type(value).__name__}"
        )
    return value


def _seq(
    payload: dict[str, Any], name: str, item: Callable[[Any, str], T]
) -> tuple[T, ...]:
    value = payload.get(name)
    if value is None:
        return ()
    if not isinstance(value, list):
        raise ParseFailure(f"field {name!r}: expected array, got {type(value).__name__}")
    return tuple(item(v, f"{name}[{i}]") for i, v in enumerate(value))


def _str_item(value: Any, where: str) -> str:
    if not isinstance(value, str):
        raise ParseFailure(f"{where}: expected str, got {type(value).__name__}")
    return value


def _int_item(value: Any, where: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ParseFailure(f"{where}: expected integer, got {type(value).__name__}")
    if isinstance(value, float):
        if not value.is_integer():
            raise ParseFailure(f"{where}: expected integer, got {value!r}")
        return int(value)
    return value


def _object(value: Any, where: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ParseFailure(f"{where}: expected object, got {type(value).__name__}")
    return value


@dataclass(frozen=True)
class Report:
    """One abuse report filed against an address."""

    reported_at: str = ""
    comment: str = ""
    categories: tuple[int, ...] = ()
    reporter_id: int = 0
    reporter_country_code: str = ""
    reporter_country_name: str = ""

    @classmethod
    def from_dict(cls, payload: Any, where: str = "report") -> "Report":
        p = _object(payload, where)
        return cls(
            reported_at=_field(p, "reportedAt", str, ""),
            comment=_field(p, "comment", str, ""),
            categories=_seq(p, "categories", _int_item),
            reporter_id=_field(p, "reporterId", int, 0),
            reporter_country_code=_field(p, "reporterCountryCode", str, ""),
            reporter_country_name=_field(p, "reporterCountryName", str, ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "reportedAt": self.reported_at,
            "comment": self.comment,
            "categories": list(self.categories),
            "reporterId": self.reporter_id,
            "reporterCountryCode": self.reporter_country_code,
            "reporterCountryName": self.reporter_country_name,
        }


@dataclass(frozen=True)
class ReputationResult:
    """Normalized reputation record for a single IP address."""

    ip_address: str = ""
    is_public: bool = False
    ip_version: int = 0
    is_whitelisted: bool = False
    abuse_confidence_score: int = 0
    country_code: str = ""
    country_name: str = ""
    usage_type: str = ""
    isp: str = ""
    domain: str = ""
    hostnames: tuple[str, ...] = ()
    total_reports: int = 0
    num_distinct_users: int = 0
    last_reported_at: str = ""
    reports: tuple[Report, ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, payload: Any) -> "ReputationResult":
        """Build from the contents of the upstream `data` object."""
        p = _object(payload, "data")
        return cls(
            ip_address=_field(p, "ipAddress", str, ""),
            is_public=_field(p, "isPublic", bool, False),
            ip_version=_field(p, "ipVersion", int, 0),
            is_whitelisted=_field(p, "isWhitelisted", bool, False),
            abuse_confidence_score=_field(p, "abuseConfidenceScore", int, 0),
            country_code=_field(p, "countryCode", str, ""),
            country_name=_field(p, "countryName", str, ""),
            usage_type=_field(p, "usageType", str, ""),
            isp=_field(p, "isp", str, ""),
            domain=_field(p, "domain", str, ""),
            hostnames=_seq(p, "hostnames", _str_item),
            total_reports=_field(p, "totalReports", int, 0),
            num_distinct_users=_field(p, "numDistinctUsers", int, 0),
            last_reported_at=_field(p, "lastReportedAt", str, ""),
            reports=_seq(p, "reports", Report.from_dict),
        )

    @classmethod
    def from_body(cls, body: Union[bytes, str], *, require_data: bool = True) -> "ReputationResult":
        """Parse a raw upstream response body (`{"data": {...}}`).

        Raises ParseFailure if the body is not JSON or not the expected shape.
        With `require_data=False` (error bodies such as `{"errors": [...]}`)
        a missing or null `data` member yields an empty result instead.
        """
        try:
            doc = json.loads(body)
        except (ValueError, UnicodeDecodeError) as e:
            raise ParseFailure(f"invalid JSON body: {e}") from e
        doc = _object(doc, "body")
        data = doc.get("data")
        if data is None:
            if require_data:
                raise ParseFailure("body has no 'data' object")
            return cls()
        return cls.from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ipAddress": self.ip_address,
            "isPublic": self.is_public,
            "ipVersion": self.ip_version,
            "isWhitelisted": self.is_whitelisted,
            "abuseConfidenceScore": self.abuse_confidence_score,
            "countryCode": self.country_code,
            "usageType": self.usage_type,
            "isp": self.isp,
            "domain": self.domain,
            "hostnames": list(self.hostnames),
            "countryName": self.country_name,
            "totalReports": self.total_reports,
            "numDistinctUsers": self.num_distinct_users,
            "lastReportedAt": self.last_reported_at,
            "reports": [r.to_dict() for r in self.reports],
        }

    def to_response(self) -> dict[str, Any]:
        """Boundary format returned to HTTP / CLI callers."""
        return {"data": self.to_dict()}
