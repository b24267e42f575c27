"""
Tests for the reputation client (cache-aside + upstream handling).
"""

import io
import json
import socket
import threading
import unittest
import urllib.error
from concurrent.futures import ThreadPoolExecutor
from email.message import Message
from unittest.mock import patch
from urllib.parse import parse_qs, urlparse

from ip_reputation.cache import TTLCache
from ip_reputation.client import ReputationClient
from ip_reputation.config import Settings
from ip_reputation.errors import (
    ConfigError,
    NetworkFailure,
    ParseFailure,
    ReputationError,
    UpstreamStatusFailure,
)

SAMPLE = {
    "data": {
        "ipAddress": "118.25.6.39",
        "isPublic": True,
        "ipVersion": 4,
        "isWhitelisted": False,
        "abuseConfidenceScore": 100,
        "countryCode": "CN",
        "countryName": "China",
        "usageType": "Data Center/Web Hosting/Transit",
        "isp": "Tencent Cloud Computing (Beijing) Co. Ltd",
        "domain": "tencent.com",
        "hostnames": [],
        "isTor": False,
        "totalReports": 1,
        "numDistinctUsers": 1,
        "lastReportedAt": "2018-12-20T20:55:14+00:00",
        "reports": [
            {
                "reportedAt": "2018-12-20T20:55:14+00:00",
                "comment": "Dec 20 20:55:14 srv206 sshd[13937]: Invalid user oracle",
                "categories": [18, 22],
                "reporterId": 1,
                "reporterCountryCode": "US",
                "reporterCountryName": "United States",
            }
        ],
    }
}


def _headers(values=None) -> Message:
    msg = Message()
    for k, v in (values or {}).items():
        msg[k] = v
    return msg


class FakeResponse:
    def __init__(self, body: bytes, status: int = 200, headers=None):
        self._body = body
        self.status = status
        self.headers = _headers(headers)

    def read(self) -> bytes:
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class FakeUpstream:
    """Stands in for urllib.request.urlopen; counts calls."""

    def __init__(self, body=SAMPLE, status=200, headers=None, error=None):
        self.body = body if isinstance(body, bytes) else json.dumps(body).encode()
        self.status = status
        self.headers = headers or {"X-RateLimit-Limit": "1000", "X-RateLimit-Remaining": "999"}
        self.error = error
        self.requests = []
        self.timeouts = []
        self._lock = threading.Lock()

    @property
    def calls(self) -> int:
        return len(self.requests)

    def __call__(self, req, timeout=None):
        with self._lock:
            self.requests.append(req)
            self.timeouts.append(timeout)
        if self.error is not None:
            raise self.error
        if self.status != 200:
            raise urllib.error.HTTPError(
                req.full_url, self.status, "error", _headers(self.headers), io.BytesIO(self.body)
            )
        return FakeResponse(self.body, self.status, self.headers)


class ClientTestCase(unittest.TestCase):
    def setUp(self):
        self.cache = TTLCache(start_sweeper=False)
        self.client = ReputationClient("test-key", cache=self.cache)

    def tearDown(self):
        self.client.close()

    def _patch(self, upstream: FakeUpstream):
        p = patch("ip_reputation.client.urllib.request.urlopen", upstream)
        p.start()
        self.addCleanup(p.stop)
        return upstream


class TestRequestShape(ClientTestCase):
    def test_request_targets_check_with_params_and_headers(self):
        upstream = self._patch(FakeUpstream())

        self.client.check("118.25.6.39", "127.0.0.1:5555")

        req = upstream.requests[0]
        url = urlparse(req.full_url)
        self.assertEqual(req.get_method(), "GET")
        self.assertEqual((url.scheme, url.netloc, url.path), ("https", "api.abuseipdb.com", "/api/v2/check"))
        self.assertEqual(
            parse_qs(url.query, keep_blank_values=True),
            {"ipAddress": ["118.25.6.39"], "maxAgeInDays": ["90"], "verbose": [""]},
        )
        self.assertEqual(req.get_header("Key"), "test-key")
        self.assertEqual(req.get_header("Accept"), "application/json")
        self.assertEqual(upstream.timeouts, [30])

    def test_each_call_builds_its_own_request(self):
        upstream = self._patch(FakeUpstream())

        self.client.check("1.1.1.1", "a")
        self.client.check("2.2.2.2", "b")

        first, second = upstream.requests
        self.assertIsNot(first, second)
        self.assertIn("ipAddress=1.1.1.1", first.full_url)
        self.assertIn("ipAddress=2.2.2.2", second.full_url)
        self.assertNotIn("1.1.1.1", second.full_url)

    def test_ipv6_address_is_encoded(self):
        upstream = self._patch(FakeUpstream())
        self.client.check("2001:db8::1", "a")
        query = parse_qs(urlparse(upstream.requests[0].full_url).query)
        self.assertEqual(query["ipAddress"], ["2001:db8::1"])


class TestCacheAside(ClientTestCase):
    def test_second_call_is_served_from_cache(self):
        upstream = self._patch(FakeUpstream())

        r1 = self.client.check("118.25.6.39", "10.0.0.1:1000")
        r2 = self.client.check("118.25.6.39", "10.0.0.2:2000")

        self.assertEqual(upstream.calls, 1)
        self.assertEqual(r1, r2)
        self.assertEqual(r1.abuse_confidence_score, 100)
        self.assertEqual(r1.reports[0].categories, (18, 22))

    def test_miss_stores_exact_result(self):
        self._patch(FakeUpstream())

        result = self.client.check("118.25.6.39", "x")

        self.assertEqual(self.cache.get("118.25.6.39"), result)
        self.assertEqual(result.to_response(), {
            "data": {k: v for k, v in SAMPLE["data"].items() if k != "isTor"}
        })

    def test_expired_entry_triggers_new_fetch(self):
        now = [0.0]
        cache = TTLCache(ttl_seconds=3600, clock=lambda: now[0], start_sweeper=False)
        client = ReputationClient("k", cache=cache)
        upstream = self._patch(FakeUpstream())

        client.check("1.2.3.4", "x")
        now[0] = 3601
        client.check("1.2.3.4", "x")

        self.assertEqual(upstream.calls, 2)

    def test_hit_logs_and_skips_network(self):
        upstream = self._patch(FakeUpstream())
        self.client.check("1.2.3.4", "x")

        with self.assertLogs("ip_reputation.client", level="INFO") as logs:
            self.client.check("1.2.3.4", "x")

        self.assertEqual(upstream.calls, 1)
        self.assertEqual(logs.output, ["INFO:ip_reputation.client:Cache hit for IP: 1.2.3.4"])

    def test_miss_logs_caller_path_and_ip(self):
        self._patch(FakeUpstream())

        with self.assertLogs("ip_reputation.client", level="INFO") as logs:
            self.client.check("1.2.3.4", "203.0.113.7:51234")

        self.assertIn("INFO:ip_reputation.client:Cache miss for IP: 1.2.3.4", logs.output)
        self.assertIn("INFO:ip_reputation.client:203.0.113.7:51234\t/check\t1.2.3.4", logs.output)

    def test_concurrent_checks_are_safe(self):
        upstream = self._patch(FakeUpstream())
        ips = [f"198.51.100.{i}" for i in range(10)]

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda ip: self.client.check(ip, "t"), ips * 5))

        self.assertEqual(len(results), 50)
        self.assertEqual(len(self.cache), 10)
        # No coalescing: racing misses may each call upstream, but never more
        # than once per check.
        self.assertGreaterEqual(upstream.calls, 10)
        self.assertLessEqual(upstream.calls, 50)


class TestFailures(ClientTestCase):
    def test_network_error_not_cached(self):
        self._patch(FakeUpstream(error=urllib.error.URLError(ConnectionRefusedError("refused"))))

        with self.assertRaises(NetworkFailure):
            self.client.check("1.2.3.4", "x")
        self.assertEqual(len(self.cache), 0)

    def test_timeout_is_network_failure(self):
        self._patch(FakeUpstream(error=socket.timeout("timed out")))

        with self.assertRaises(NetworkFailure) as ctx:
            self.client.check("1.2.3.4", "x")
        self.assertIn("timed out", str(ctx.exception))
        self.assertEqual(len(self.cache), 0)

    def test_status_error_carries_body_and_is_not_cached(self):
        body = {"errors": [{"detail": "Authentication failed.", "status": 401}]}
        self._patch(FakeUpstream(body=body, status=401))

        with self.assertRaises(UpstreamStatusFailure) as ctx:
            self.client.check("1.2.3.4", "x")

        err = ctx.exception
        self.assertEqual(err.status, 401)
        self.assertIn("Authentication failed.", err.body)
        self.assertIn("Authentication failed.", str(err))
        self.assertIsInstance(err, ReputationError)
        self.assertNotIn("1.2.3.4", self.cache)

    def test_failed_call_does_not_evict_previous_success(self):
        upstream = self._patch(FakeUpstream())
        good = self.client.check("1.2.3.4", "x")
        upstream.status = 500

        self.assertEqual(self.client.check("1.2.3.4", "x"), good)
        self.assertEqual(upstream.calls, 1)

    def test_invalid_json_is_parse_failure(self):
        self._patch(FakeUpstream(body=b"<html>Bad Gateway</html>"))

        with self.assertRaises(ParseFailure):
            self.client.check("1.2.3.4", "x")
        self.assertEqual(len(self.cache), 0)

    def test_success_without_data_is_parse_failure(self):
        for body in ({}, {"errors": [{"detail": "odd"}]}):
            with self.subTest(body=body):
                self._patch(FakeUpstream(body=body))

                with self.assertRaises(ParseFailure):
                    self.client.check("1.2.3.4", "x")
                self.assertNotIn("1.2.3.4", self.cache)

    def test_wrong_shape_is_parse_failure(self):
        self._patch(FakeUpstream(body={"data": {"abuseConfidenceScore": "high"}}))

        with self.assertRaises(ParseFailure):
            self.client.check("1.2.3.4", "x")
        self.assertEqual(len(self.cache), 0)


class TestRateLimit(ClientTestCase):
    def test_exhausted_quota_warns_but_succeeds(self):
        self._patch(FakeUpstream(headers={"X-RateLimit-Limit": "1000", "X-RateLimit-Remaining": "0"}))

        with self.assertLogs("ip_reputation.client", level="WARNING") as logs:
            result = self.client.check("1.2.3.4", "x")

        self.assertEqual(result.ip_address, "118.25.6.39")
        self.assertIn("WARNING:ip_reputation.client:The request limit has been reached.", logs.output)
        self.assertIn("1.2.3.4", self.cache)

    def test_429_fails_and_exposes_rate_limit(self):
        body = {"errors": [{"detail": "Daily rate limit of 1000 requests exceeded.", "status": 429}]}
        headers = {"X-RateLimit-Limit": "1000", "X-RateLimit-Remaining": "0", "Retry-After": "120"}
        self._patch(FakeUpstream(body=body, status=429, headers=headers))

        with self.assertLogs("ip_reputation.client", level="WARNING"):
            with self.assertRaises(UpstreamStatusFailure) as ctx:
                self.client.check("1.2.3.4", "x")

        self.assertEqual(ctx.exception.status, 429)
        self.assertEqual(ctx.exception.rate_limit.remaining, 0)
        self.assertEqual(ctx.exception.rate_limit.retry_after_ms, 120_000)


class TestConstruction(unittest.TestCase):
    def test_missing_key(self):
        with self.assertRaises(ConfigError):
            ReputationClient("")

    def test_owned_cache_closed_with_client(self):
        client = ReputationClient("k")
        sweeper = client.cache._sweeper
        client.close()
        self.assertFalse(sweeper.is_alive())

    def test_injected_cache_left_open(self):
        cache = TTLCache(sweep_interval_seconds=600)
        try:
            with ReputationClient("k", cache=cache):
                pass
            self.assertFalse(cache.closed)
        finally:
            cache.close()

    def test_from_settings(self):
        settings = Settings(api_key="k", timeout=5, cache_ttl_seconds=60, sweep_interval_seconds=30)
        with ReputationClient.from_settings(settings) as client:
            self.assertEqual(client.timeout, 5)
            self.assertEqual(client.cache.ttl_seconds, 60)
            self.assertEqual(client.cache.sweep_interval_seconds, 30)
            cache = client.cache
        self.assertTrue(cache.closed)


if __name__ == "__main__":
    unittest.main()
