"""FastAPI application. One catch-all route hands every request to the RequestRouter."""

import logging

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from config.config_loader import AppConfig
from src.catalog import FlagState
from src.providers.base import CompletionClient
from src.providers.openrouter import OpenRouterClient
from src.ratelimit import RateLimiter, build_rate_limiter
from src.router import InboundRequest, RequestRouter

logger = logging.getLogger(__name__)

_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def client_key(request: Request, trust_proxy_headers: bool = False) -> str:
    """Identify the caller by IP.

    By default only the socket peer counts; any client can write forwarding
    headers. With trust_proxy_headers the edge header wins, then the last
    X-Forwarded-For hop, which is the one our own proxy appended.
    """
    if trust_proxy_headers:
        cf_ip = request.headers.get("CF-Connecting-IP", "").strip()
        if cf_ip:
            return cf_ip
        hops = [h.strip() for h in request.headers.get("X-Forwarded-For", "").split(",") if h.strip()]
        if hops:
            return hops[-1]
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def create_app(
    config: AppConfig,
    client: CompletionClient | None = None,
    limiter: RateLimiter | None = None,
) -> FastAPI:
    """Build the proxy app.

    Args:
        config: Loaded application config.
        client: Completion client to use; defaults to an OpenRouterClient
            built on first use, so a missing key only fails generation calls.
        limiter: Rate limiter; defaults to one built from config.rate_limit.
    """
    if limiter is None:
        limiter = build_rate_limiter(
            limit=config.rate_limit.limit,
            window_sec=config.rate_limit.window_sec,
            redis_url=config.rate_limit.redis_url,
            memory_fallback=config.rate_limit.memory_fallback,
            fail_open=config.rate_limit.fail_open,
        )

    def client_factory() -> CompletionClient:
        return client if client is not None else OpenRouterClient(config.upstream)

    router = RequestRouter(
        config=config,
        limiter=limiter,
        flags=FlagState(config.feature_flags),
        client_factory=client_factory,
    )

    app = FastAPI(
        title="Fortune Council",
        description="Edge proxy for the fortune teller UI: rate limiting, council prompting, upstream completions.",
        version=config.version,
    )
    app.state.router = router

    logger.info(
        "Fortune proxy ready: origin=%s, rate limit %d/%ds (%s)",
        config.cors.allowed_origin,
        limiter.limit,
        limiter.window_sec,
        limiter.backend,
    )

    @app.api_route("/{path:path}", methods=_METHODS)
    async def handle(request: Request) -> Response:
        inbound = InboundRequest(
            method=request.method,
            path=request.url.path,
            body=await request.body(),
            client_key=client_key(request, config.rate_limit.trust_proxy_headers),
        )
        outbound = await router.dispatch(inbound)
        if outbound.payload is None:
            return Response(status_code=outbound.status, headers=outbound.headers)
        return JSONResponse(outbound.payload, status_code=outbound.status, headers=outbound.headers)

    return app
