"""OpenRouter completion client using the openai SDK (OpenAI-compatible API)."""

import logging
import os
import time
from collections.abc import Sequence

import openai
from openai import AsyncOpenAI

from config.config_loader import UpstreamConfig
from src.errors import ConfigurationError, MalformedResponseError, UpstreamError
from src.models import GenerationParams
from src.providers.base import CompletionClient, Message, build_messages

logger = logging.getLogger(__name__)


class OpenRouterClient(CompletionClient):
    """OpenRouter chat completions via the OpenAI-compatible endpoint."""

    def __init__(self, config: UpstreamConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env, "").strip()
        if not api_key:
            raise ConfigurationError("API key not configured")
        headers = {}
        if config.referer:
            headers["HTTP-Referer"] = config.referer
        if config.title:
            headers["X-Title"] = config.title
        # Retries are a caller concern; the timeout belongs to the transport.
        self._client = AsyncOpenAI(
            api_key=api_key,
            base_url=config.base_url,
            timeout=config.timeout_sec,
            max_retries=0,
            default_headers=headers,
        )

    def name(self) -> str:
        return "openrouter"

    async def complete(
        self,
        system_prompt: str,
        user_message: str,
        context_messages: Sequence[Message],
        params: GenerationParams,
    ) -> str:
        start = time.monotonic()
        try:
            response = await self._client.chat.completions.create(
                model=params.model,
                messages=build_messages(system_prompt, user_message, context_messages),
                temperature=params.temperature,
                max_tokens=params.max_tokens,
            )
        except openai.APIStatusError as exc:
            logger.warning("Upstream returned %d for %s", exc.status_code, params.model)
            raise UpstreamError(exc.status_code, exc.response.text) from exc
        except openai.APIConnectionError as exc:
            logger.warning("Upstream unreachable for %s: %s", params.model, exc)
            raise UpstreamError(502, str(exc)) from exc

        latency = time.monotonic() - start

        choice = response.choices[0] if response.choices else None
        if not choice or not choice.message or not choice.message.content:
            raise MalformedResponseError(response.model_dump_json())

        token_count: int | None = None
        if response.usage:
            token_count = response.usage.total_tokens

        logger.info(
            "OpenRouter %s: %.2fs, %s tokens",
            params.model,
            latency,
            token_count,
        )

        return choice.message.content
