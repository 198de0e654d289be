"""Shared pytest fixtures."""

from datetime import date
from unittest.mock import AsyncMock

import pytest

from config.config_loader import (
    AppConfig,
    CorsConfig,
    GenerationConfig,
    ModelInfo,
    ModelsConfig,
    RateLimitConfig,
    SamplingConfig,
    UpstreamConfig,
)
from src.models import GenerationParams, Persona
from src.providers.base import CompletionClient


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class MockCompletionClient(CompletionClient):
    """Test double CompletionClient.

    complete is an AsyncMock, so tests read the calls from
    client.complete.await_args_list. Items in responses are returned in
    order; an exception instance is raised instead.
    """

    def __init__(self, responses: list | None = None) -> None:
        self.complete = AsyncMock(  # type: ignore[assignment]
            side_effect=list(responses) if responses is not None else None,
            return_value="Mock fortune",
        )

    def name(self) -> str:
        return "mock"

    async def complete(self, system_prompt, user_message, context_messages, params) -> str:  # type: ignore[override]
        """Default implementation; replaced by AsyncMock in __init__."""
        return "Mock fortune"


@pytest.fixture
def personas() -> list[Persona]:
    return [
        Persona("A", "Alpha", "🅰", "purple", "You are Alpha."),
        Persona("B", "Beta", "🅱", "gold", "You are Beta."),
        Persona("C", "Gamma", "©", "orange", "You are Gamma."),
    ]


@pytest.fixture
def planner() -> Persona:
    return Persona("planner", "The Planner", "📜", "teal", "You write action plans.")


@pytest.fixture
def params() -> GenerationParams:
    return GenerationParams(model="test/model", temperature=0.85, max_tokens=150)


@pytest.fixture
def sample_upstream_config() -> UpstreamConfig:
    return UpstreamConfig(
        base_url="https://openrouter.example/api/v1",
        api_key_env="TEST_OPENROUTER_KEY",
        timeout_sec=30,
        referer="https://fortune.example",
        title="Fortune Test",
    )


@pytest.fixture
def sample_app_config(
    sample_upstream_config: UpstreamConfig,
    personas: list[Persona],
    planner: Persona,
) -> AppConfig:
    return AppConfig(
        version="9.9.9",
        upstream=sample_upstream_config,
        generation=GenerationConfig(
            fortune=SamplingConfig(temperature=0.8, max_tokens=200),
            council=SamplingConfig(temperature=0.85, max_tokens=150),
            action_plan=SamplingConfig(temperature=0.7, max_tokens=400),
        ),
        rate_limit=RateLimitConfig(limit=10, window_sec=60),
        cors=CorsConfig(allowed_origin="https://ui.example", max_age_sec=86400),
        models=ModelsConfig(
            default="base/model",
            catalog=[
                ModelInfo(id="base/model", name="Base"),
                ModelInfo(id="fast/model", name="Fast", flag="useFast", available_from=date(2024, 3, 1)),
            ],
        ),
        personas=personas,
        planner=planner,
        feature_flags={"useFast": False, "enableStreaming": False},
        admin_token="s3cret",
    )


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()
