#!/usr/bin/env python3
"""
IP Reputation Checker - CLI entry point
"""

from __future__ import annotations

import argparse
import dataclasses
import ipaddress
import json
import logging
import socket
import sys
from typing import Optional

from .cache import TTLCache
from .client import ReputationClient
from .config import LOG_LEVELS, load_settings
from .errors import ConfigError, ReputationError
from .models import ReputationResult

EXIT_OK = 0
EXIT_LOOKUP_FAILED = 1
EXIT_CONFIG = 2

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


def _ip_address(value: str) -> str:
    # Validate only; the address is looked up exactly as typed.
    try:
        ipaddress.ip_address(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an IPv4/IPv6 address: {value!r}") from None
    return value


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--log-level",
        type=str.upper,
        choices=LOG_LEVELS,
        default=None,
        help="Logging level (default: LOG_LEVEL or INFO)",
    )

    parser = argparse.ArgumentParser(
        prog="ip-reputation",
        description="Check IP address reputation via AbuseIPDB (cached)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    check = sub.add_parser("check", parents=[common], help="Look up a single IP address")
    check.add_argument("ip", type=_ip_address, help="IPv4 or IPv6 address")
    check.add_argument("--json", "-j", action="store_true", help="Output as JSON")
    check.add_argument(
        "--timeout", "-t", type=int, default=None, help="Upstream timeout in seconds (default: 30)"
    )

    serve = sub.add_parser("serve", parents=[common], help="Run the HTTP API")
    serve.add_argument("--host", default=None, help="Listen address (default: HOST or 0.0.0.0)")
    serve.add_argument("--port", "-p", type=int, default=None, help="Listen port (default: PORT or 8000)")
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings()
    except ConfigError as e:
        configure_logging(args.log_level or "INFO")
        logging.getLogger(__name__).error("%s", e)
        sys.exit(EXIT_CONFIG)

    if args.log_level:
        settings = dataclasses.replace(settings, log_level=args.log_level)
    configure_logging(settings.log_level)

    if args.command == "serve":
        from .api import serve

        try:
            serve(settings, host=args.host, port=args.port)
        except ConfigError as e:
            logging.getLogger(__name__).error("%s", e)
            sys.exit(EXIT_CONFIG)
        return

    timeout = args.timeout if args.timeout is not None else settings.timeout
    # One-shot lookup: nothing to sweep, so no background thread.
    cache = TTLCache(ttl_seconds=settings.cache_ttl_seconds, start_sweeper=False)
    with ReputationClient(settings.api_key, timeout=timeout, cache=cache) as client:
        try:
            result = client.check(args.ip, f"cli@{socket.gethostname()}")
        except ReputationError as e:
            print(f"Query error : {e}", file=sys.stderr)
            rate_limit = getattr(e, "rate_limit", None)
            if rate_limit is not None and rate_limit.describe():
                print(f"Rate limit: {rate_limit.describe()}", file=sys.stderr)
            sys.exit(EXIT_LOOKUP_FAILED)

    if args.json:
        print(json.dumps(result.to_response(), indent=2, ensure_ascii=False))
    else:
        print_human_readable(result)
    sys.exit(EXIT_OK)


def _score_icon(score: int) -> str:
    if score >= 80:
        return "🔴"
    if score >= 50:
        return "🟠"
    return "✅"


def print_human_readable(result: ReputationResult) -> None:
    """Print human-readable output."""
    print("\n🔍 IP Reputation Report")
    print(f"{'=' * 50}")
    print(f"IP:      {result.ip_address} (IPv{result.ip_version})")
    print(f"ISP:     {result.isp or '-'}")
    print(f"Domain:  {result.domain or '-'}")
    print(f"Country: {result.country_name or result.country_code or '-'}")
    print(f"Usage:   {result.usage_type or '-'}")
    print(f"{'=' * 50}")

    score = result.abuse_confidence_score
    print(f"\n{_score_icon(score)} Abuse Confidence: {score}/100")
    if result.is_whitelisted:
        print("🛡️  Whitelisted")
    print(
        f"📊 Reports: {result.total_reports} from {result.num_distinct_users} distinct users"
    )
    if result.last_reported_at:
        print(f"⏱️  Last reported: {result.last_reported_at}")

    if result.reports:
        print("\n📋 Recent Reports:")
        print(f"{'-' * 50}")
        for r in result.reports[:5]:
            cats = ",".join(str(c) for c in r.categories)
            comment = r.comment.strip().replace("\n", " ")
            if len(comment) > 60:
                comment = comment[:57] + "..."
            print(f"  {r.reported_at} [{cats}] {r.reporter_country_code}: {comment}")


if __name__ == "__main__":
    main()
