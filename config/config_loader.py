"""Load settings.yaml into typed dataclasses. Resolves environment overrides at startup."""

import logging
import os
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path

import yaml

from src.models import Persona

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"


@dataclass
class UpstreamConfig:
    base_url: str
    api_key_env: str
    timeout_sec: int
    referer: str = ""
    title: str = ""


@dataclass
class SamplingConfig:
    temperature: float
    max_tokens: int


@dataclass
class GenerationConfig:
    fortune: SamplingConfig
    council: SamplingConfig
    action_plan: SamplingConfig


@dataclass
class RateLimitConfig:
    limit: int
    window_sec: int
    fail_open: bool = True
    memory_fallback: bool = True
    trust_proxy_headers: bool = False  # key on CF-Connecting-IP / X-Forwarded-For
    redis_url: str | None = field(default=None, repr=False)


@dataclass
class CorsConfig:
    allowed_origin: str
    max_age_sec: int = 86400


@dataclass
class ModelInfo:
    id: str
    name: str
    flag: str | None = None          # feature flag that activates this model
    requires: list[str] = field(default_factory=list)  # flags that must also be on
    available_from: date | None = None


@dataclass
class ModelsConfig:
    default: str
    catalog: list[ModelInfo] = field(default_factory=list)


@dataclass
class AppConfig:
    version: str
    upstream: UpstreamConfig
    generation: GenerationConfig
    rate_limit: RateLimitConfig
    cors: CorsConfig
    models: ModelsConfig
    personas: list[Persona]
    planner: Persona
    feature_flags: dict[str, bool] = field(default_factory=dict)
    admin_token: str | None = field(default=None, repr=False)


def _env(name: str | None) -> str | None:
    if not name:
        return None
    value = os.environ.get(name, "").strip()
    return value or None


def _sampling(raw: dict) -> SamplingConfig:
    return SamplingConfig(
        temperature=float(raw["temperature"]),
        max_tokens=int(raw["max_tokens"]),
    )


def _persona(raw: dict) -> Persona:
    return Persona(
        id=str(raw["id"]),
        display_name=str(raw["name"]),
        icon=str(raw.get("icon", "")),
        color=str(raw.get("color", "")),
        system_prompt=str(raw["prompt"]).strip(),
    )


def _model_info(raw: dict) -> ModelInfo:
    available_from = raw.get("available_from")
    if isinstance(available_from, str):
        available_from = date.fromisoformat(available_from)
    return ModelInfo(
        id=str(raw["id"]),
        name=str(raw.get("name", raw["id"])),
        flag=raw.get("flag"),
        requires=[str(f) for f in raw.get("requires", [])],
        available_from=available_from,
    )


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing, ValueError if the
    persona list is empty.
    Logs a warning for a missing upstream API key but does not raise; the
    generation endpoints report it per request.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    upstream_raw = raw["upstream"]
    upstream = UpstreamConfig(
        base_url=str(upstream_raw["base_url"]),
        api_key_env=str(upstream_raw["api_key_env"]),
        timeout_sec=int(upstream_raw["timeout_sec"]),
        referer=str(upstream_raw.get("referer", "")),
        title=str(upstream_raw.get("title", "")),
    )

    generation_raw = raw["generation"]
    generation = GenerationConfig(
        fortune=_sampling(generation_raw["fortune"]),
        council=_sampling(generation_raw["council"]),
        action_plan=_sampling(generation_raw["action_plan"]),
    )

    limit_raw = raw["rate_limit"]
    rate_limit = RateLimitConfig(
        limit=int(limit_raw["limit"]),
        window_sec=int(limit_raw["window_sec"]),
        fail_open=bool(limit_raw.get("fail_open", True)),
        memory_fallback=bool(limit_raw.get("memory_fallback", True)),
        trust_proxy_headers=bool(limit_raw.get("trust_proxy_headers", False)),
        redis_url=_env(limit_raw.get("redis_url_env")),
    )

    cors_raw = raw["cors"]
    cors = CorsConfig(
        allowed_origin=_env(cors_raw.get("allowed_origin_env")) or str(cors_raw["allowed_origin"]),
        max_age_sec=int(cors_raw.get("max_age_sec", 86400)),
    )

    models_raw = raw["models"]
    models = ModelsConfig(
        default=str(models_raw["default"]),
        catalog=[_model_info(m) for m in models_raw.get("catalog", [])],
    )

    personas = [_persona(p) for p in raw.get("personas", [])]
    if not personas:
        raise ValueError(f"No personas configured in {settings_path}")

    admin_raw = raw.get("admin", {})
    admin_token = _env(admin_raw.get("token_env"))

    if _env(upstream.api_key_env):
        logger.info("Upstream credential found in %s", upstream.api_key_env)
    else:
        logger.warning(
            "Upstream credential missing: set %s in .env; generation endpoints will return 500",
            upstream.api_key_env,
        )
    if rate_limit.trust_proxy_headers:
        logger.info("Rate limit keyed on proxy headers (CF-Connecting-IP, X-Forwarded-For)")
    if rate_limit.redis_url:
        logger.info("Rate limit store: redis")
    elif rate_limit.memory_fallback:
        logger.info("Rate limit store: in-process memory")
    else:
        logger.warning("Rate limit store not configured; limiting disabled")

    return AppConfig(
        version=str(raw.get("service", {}).get("version", "0.0.0")),
        upstream=upstream,
        generation=generation,
        rate_limit=rate_limit,
        cors=cors,
        models=models,
        personas=personas,
        planner=_persona(raw["planner"]),
        feature_flags={k: bool(v) for k, v in raw.get("feature_flags", {}).items()},
        admin_token=admin_token,
    )
