"""Request routing: CORS, method check, rate-limit gate, validation, dispatch."""

import hmac
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

import pydantic

from config.config_loader import AppConfig, SamplingConfig
from src.catalog import FlagState, describe_models, select_model
from src.council import generate_action_plan, generate_council, generate_single_fortune
from src.errors import (
    AuthorizationError,
    FortuneError,
    MethodNotAllowed,
    NotFound,
    RateLimitExceeded,
    ValidationError,
)
from src.models import GenerationParams, RateLimitDecision
from src.providers.base import CompletionClient
from src.ratelimit import RateLimiter
from src.schemas import ActionPlanRequest, TextRequest

logger = logging.getLogger(__name__)

Handler = Callable[[dict], Awaitable[dict]]

# Methods accepted on paths no route claims, so they still reach the 404.
_UNKNOWN_PATH_METHODS = frozenset({"POST"})


@dataclass
class InboundRequest:
    method: str
    path: str
    body: bytes = b""
    client_key: str = "unknown"


@dataclass
class OutboundResponse:
    status: int
    payload: dict | None
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class Route:
    methods: frozenset[str]
    handler: Handler


def _parse_body(raw: bytes) -> dict:
    if not raw.strip():
        return {}
    try:
        body = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValidationError("Request body must be valid JSON") from exc
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def _validate(model: type[pydantic.BaseModel], body: dict, message: str):
    try:
        return model.model_validate(body)
    except pydantic.ValidationError as exc:
        raise ValidationError(message) from exc


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class RequestRouter:
    """Maps inbound requests onto the generation operations.

    Order of checks: preflight, method, rate limit, body, route. A request
    with a bad body still spends one unit of quota.
    """

    def __init__(
        self,
        config: AppConfig,
        limiter: RateLimiter,
        flags: FlagState,
        client_factory: Callable[[], CompletionClient],
    ) -> None:
        self._config = config
        self._limiter = limiter
        self._flags = flags
        self._client_factory = client_factory
        self._client: CompletionClient | None = None

        post = frozenset({"POST"})
        get_or_post = frozenset({"GET", "POST"})
        self._routes: dict[str, Route] = {
            "/api/fortune/text": Route(post, self._fortune_text),
            "/api/fortune/voice": Route(post, self._fortune_voice),
            "/api/fortune/council": Route(post, self._fortune_council),
            "/api/fortune/action-plan": Route(post, self._action_plan),
            "/api/models": Route(get_or_post, self._models),
            "/api/models/switch": Route(post, self._switch_flags),
            "/api/health": Route(get_or_post, self._health),
        }

    @property
    def flags(self) -> FlagState:
        return self._flags

    def cors_headers(self) -> dict[str, str]:
        return {
            "Access-Control-Allow-Origin": self._config.cors.allowed_origin,
            "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
            "Access-Control-Allow-Headers": "Content-Type",
            "Access-Control-Max-Age": str(self._config.cors.max_age_sec),
        }

    @staticmethod
    def _quota_headers(decision: RateLimitDecision) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(decision.limit),
            "X-RateLimit-Remaining": str(decision.remaining),
        }

    @staticmethod
    def _error(exc: FortuneError, headers: dict[str, str]) -> OutboundResponse:
        return OutboundResponse(exc.status_code, exc.to_payload(), headers)

    async def dispatch(self, request: InboundRequest) -> OutboundResponse:
        method = request.method.upper()
        headers = self.cors_headers()

        if method == "OPTIONS":
            return OutboundResponse(200, None, headers)

        route = self._routes.get(request.path)
        allowed = route.methods if route else _UNKNOWN_PATH_METHODS
        if method not in allowed:
            headers["Allow"] = ", ".join(sorted(allowed))
            return self._error(MethodNotAllowed("Method not allowed"), headers)

        try:
            decision = await self._limiter.check(request.client_key)
        except Exception:
            logger.exception("Rate limit check failed for %s", request.client_key)
            return OutboundResponse(500, {"error": "internal_error", "message": "Internal server error"}, headers)

        headers.update(self._quota_headers(decision))
        if not decision.allowed:
            return self._error(RateLimitExceeded(request.client_key, decision.limit), headers)

        try:
            body = _parse_body(request.body)
            if route is None:
                raise NotFound("Not found")
            payload = await route.handler(body)
        except FortuneError as exc:
            if exc.status_code >= 500:
                logger.warning("%s %s failed: %s", method, request.path, exc.message)
            return self._error(exc, headers)
        except Exception:
            logger.exception("Unhandled error on %s %s", method, request.path)
            return OutboundResponse(500, {"error": "internal_error", "message": "Internal server error"}, headers)

        return OutboundResponse(200, payload, headers)

    def _get_client(self) -> CompletionClient:
        if self._client is None:
            self._client = self._client_factory()
        return self._client

    def _params(self, sampling: SamplingConfig) -> GenerationParams:
        return GenerationParams(
            model=select_model(self._config.models, self._flags.current),
            temperature=sampling.temperature,
            max_tokens=sampling.max_tokens,
        )

    async def _single_fortune(self, text: str) -> str:
        return await generate_single_fortune(
            text,
            self._config.personas[0],
            self._get_client(),
            self._params(self._config.generation.fortune),
        )

    async def _fortune_text(self, body: dict) -> dict:
        req = _validate(TextRequest, body, "Text is required")
        return {"fortune": await self._single_fortune(req.text)}

    async def _fortune_voice(self, body: dict) -> dict:
        req = _validate(TextRequest, body, "Voice transcription is required")
        return {"transcription": req.text, "fortune": await self._single_fortune(req.text)}

    async def _fortune_council(self, body: dict) -> dict:
        req = _validate(TextRequest, body, "Text is required")
        turns = await generate_council(
            req.text,
            self._config.personas,
            self._get_client(),
            self._params(self._config.generation.council),
        )
        return {"council": [t.to_payload() for t in turns]}

    async def _action_plan(self, body: dict) -> dict:
        req = _validate(ActionPlanRequest, body, "Goal is required")
        plan = await generate_action_plan(
            req.original_question or "",
            req.user_goal,
            self._config.planner,
            self._get_client(),
            self._params(self._config.generation.action_plan),
        )
        return {"actionPlan": plan}

    async def _models(self, body: dict) -> dict:
        return describe_models(self._config.models, self._flags.current)

    async def _switch_flags(self, body: dict) -> dict:
        expected = self._config.admin_token
        token = body.get("adminToken")
        if not expected or not isinstance(token, str) or not hmac.compare_digest(
            token.encode("utf-8"), expected.encode("utf-8")
        ):
            raise AuthorizationError("Unauthorized")
        updates = {k: v for k, v in body.items() if k != "adminToken"}
        flags = self._flags.apply(updates)
        return {"success": True, "featureFlags": dict(flags), "timestamp": _now()}

    async def _health(self, body: dict) -> dict:
        return {
            "status": "healthy",
            "version": self._config.version,
            "models": {
                "active": select_model(self._config.models, self._flags.current),
                "default": self._config.models.default,
            },
            "rateLimit": {
                "backend": self._limiter.backend,
                "limit": self._limiter.limit,
                "windowSec": self._limiter.window_sec,
            },
            "timestamp": _now(),
        }
