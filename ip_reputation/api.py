"""
IP Reputation Web API
FastAPI front-end for the reputation client
"""

from __future__ import annotations

import ipaddress
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, field_validator
from starlette.middleware.httpsredirect import HTTPSRedirectMiddleware

from . import __version__
from .client import ReputationClient
from .config import Settings, load_settings
from .errors import ConfigError, ReputationError, UpstreamStatusFailure

logger = logging.getLogger(__name__)


class CheckRequest(BaseModel):
    ip: str

    @field_validator("ip")
    @classmethod
    def _valid_ip(cls, value: str) -> str:
        # Validate only; the address is passed on exactly as supplied.
        ipaddress.ip_address(value)
        return value


def _caller(request: Request) -> str:
    if request.client is None:
        return ""
    return f"{request.client.host}:{request.client.port}"


def create_app(
    settings: Optional[Settings] = None,
    client: Optional[ReputationClient] = None,
) -> FastAPI:
    """Build the app.

    When `client` is given the caller owns it; otherwise one is built from
    `settings` at startup and closed at shutdown.
    """
    if settings is None:
        settings = load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = client is None
        app.state.client = client if client is not None else ReputationClient.from_settings(settings)
        try:
            yield
        finally:
            if owned:
                app.state.client.close()

    app = FastAPI(
        title="IP Reputation Checker",
        description="Cached AbuseIPDB reputation lookups",
        version=__version__,
        lifespan=lifespan,
    )

    if not settings.development:
        app.add_middleware(HTTPSRedirectMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["GET", "POST"],
    )

    @app.exception_handler(RequestValidationError)
    async def bad_request(request: Request, exc: RequestValidationError):
        logger.warning("Rejected request from %s: %s", _caller(request), exc.errors())
        return PlainTextResponse("Bad request", status_code=400)

    @app.get("/api/health")
    def health():
        """Health check endpoint"""
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    @app.post("/check/endpoint")
    def check_endpoint(body: CheckRequest, request: Request):
        """Check a single IP address"""
        try:
            result = request.app.state.client.check(body.ip, _caller(request))
        except UpstreamStatusFailure as e:
            if e.rate_limit is not None:
                logger.error("%s (rate limit: %s)", e, e.rate_limit.to_public_dict())
            else:
                logger.error("%s", e)
            return PlainTextResponse(f"Query error : {e}", status_code=500)
        except ReputationError as e:
            logger.error("%s", e)
            return PlainTextResponse(f"Query error : {e}", status_code=500)
        return result.to_response()

    return app


def serve(settings: Settings, host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Run the API with uvicorn; TLS outside development."""
    app = create_app(settings)
    kwargs = {}
    if not settings.development:
        if not (settings.cert_file and settings.key_file):
            raise ConfigError("CERT and KEY are required outside development")
        kwargs = {"ssl_certfile": settings.cert_file, "ssl_keyfile": settings.key_file}
    uvicorn.run(
        app,
        host=host or settings.host,
        port=port or settings.port,
        log_level=settings.log_level.lower(),
        **kwargs,
    )
