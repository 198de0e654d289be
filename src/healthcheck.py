"""Upstream connectivity check: one tiny completion before serving traffic."""

import asyncio
import logging

from src.models import GenerationParams
from src.providers.base import CompletionClient

logger = logging.getLogger(__name__)

_PING_SYSTEM = "You are a connectivity check."
_PING_PROMPT = "Reply with the word OK only."
_TIMEOUT_SEC = 15.0


async def ping_upstream(client: CompletionClient, model: str) -> tuple[bool, str]:
    """Ping the completion service with the given model.

    Returns:
        (ok, error_message); error_message is "" when ok is True.
    """
    params = GenerationParams(model=model, temperature=0.0, max_tokens=5)
    try:
        await asyncio.wait_for(
            client.complete(_PING_SYSTEM, _PING_PROMPT, [], params),
            timeout=_TIMEOUT_SEC,
        )
        return True, ""
    except Exception as exc:
        logger.debug("Upstream ping via %s failed: %s", client.name(), exc)
        return False, str(exc) or type(exc).__name__
