"""
AbuseIPDB reputation client with a cache-aside TTL cache.
Requires an API key (free tier: 1000 requests/day)
https://docs.abuseipdb.com/#check-endpoint
"""

from __future__ import annotations

import http.client
import logging
import socket
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Optional

from .cache import TTLCache
from .config import Settings
from .errors import ConfigError, NetworkFailure, ParseFailure, UpstreamStatusFailure
from .http_meta import headers_to_dict, status_of
from .models import ReputationResult
from .rate_limit import parse_rate_limit_info

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.abuseipdb.com/api/v2"
DEFAULT_TIMEOUT = 30
MAX_AGE_IN_DAYS = 90
CHECK_PATH = "/check"


class ReputationClient:
    """Looks up IP reputation, answering repeat lookups from its cache.

    Safe to share between threads: the only shared mutable state is the
    cache, which locks internally. Each `check` builds its own request.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        cache: Optional[TTLCache] = None,
    ) -> None:
        if not api_key:
            raise ConfigError("ABUSEIPDB_KEY not set")
        self._api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._owns_cache = cache is None
        self.cache = cache if cache is not None else TTLCache()

    @classmethod
    def from_settings(cls, settings: Settings) -> "ReputationClient":
        cache = TTLCache(
            ttl_seconds=settings.cache_ttl_seconds,
            sweep_interval_seconds=settings.sweep_interval_seconds,
        )
        client = cls(settings.api_key, timeout=settings.timeout, cache=cache)
        client._owns_cache = True
        return client

    def _build_request(self, ip: str) -> urllib.request.Request:
        params = urllib.parse.urlencode({
            "ipAddress": ip,
            "maxAgeInDays": MAX_AGE_IN_DAYS,
            "verbose": "",
        })
        return urllib.request.Request(
            f"{self.base_url}{CHECK_PATH}?{params}",
            headers={"Accept": "application/json", "Key": self._api_key},
            method="GET",
        )

    def _fetch(self, req: urllib.request.Request) -> tuple[int, dict[str, str], bytes]:
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                return status_of(response), headers_to_dict(response.headers), response.read()
        except urllib.error.HTTPError as e:
            # Non-2xx is still an upstream answer; its body explains the error.
            try:
                body = e.read()
            except OSError as read_err:
                raise NetworkFailure(f"reading error body: {read_err}") from read_err
            finally:
                e.close()
            return e.code, headers_to_dict(e.headers), body or b""
        except (urllib.error.URLError, http.client.HTTPException, socket.timeout, OSError) as e:
            raise NetworkFailure(str(getattr(e, "reason", e))) from e

    def check(self, ip: str, caller: str) -> ReputationResult:
        """Return the reputation of `ip`.

        `caller` identifies who asked (e.g. the client's address) and is only
        used for the audit log line.

        Raises NetworkFailure, ParseFailure or UpstreamStatusFailure; the cache
        is left untouched on every failure.
        """
        cached = self.cache.get(ip)
        if cached is not None:
            logger.info("Cache hit for IP: %s", ip)
            return cached

        status, headers, body = self._fetch(self._build_request(ip))

        logger.info("Cache miss for IP: %s", ip)
        logger.info("%s\t%s\t%s", caller, CHECK_PATH, ip)

        try:
            # Only a success must carry `data`; error bodies are kept as text below.
            result = ReputationResult.from_body(body, require_data=status == 200)
        except ParseFailure as e:
            raise ParseFailure(f"HTTP {status}: {e}") from e

        rate_limit = parse_rate_limit_info(headers)
        if rate_limit is not None and rate_limit.exhausted:
            logger.warning("The request limit has been reached.")

        if status != 200:
            raise UpstreamStatusFailure(status, _text(body), rate_limit)

        self.cache.set(ip, result)
        return result

    def close(self) -> None:
        if self._owns_cache:
            self.cache.close()

    def __enter__(self) -> "ReputationClient":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()


def _text(body: bytes) -> str:
    return body.decode("utf-8", errors="replace")
