"""Council orchestration: sequential persona calls, each aware of its predecessors."""

import logging
from collections.abc import Callable, Sequence

from src.errors import CouncilError, UpstreamError
from src.models import ContextEntry, CouncilTurn, GenerationParams, Persona
from src.providers.base import CompletionClient, Message

logger = logging.getLogger(__name__)

_CONTEXT_PREFIX = "Previous council members have said: "
_TURN_PROMPT = "Now it is your turn to speak. What do you see?"


def _format_context(context: Sequence[ContextEntry]) -> str:
    """Summarize earlier turns as 'name: "response" | name: "response"'."""
    return _CONTEXT_PREFIX + " | ".join(
        f'{entry.display_name}: "{entry.response}"' for entry in context
    )


def build_council_messages(
    input_text: str,
    context: Sequence[ContextEntry],
) -> tuple[str, list[Message]]:
    """Return (user_message, context_messages) for one council member.

    The first member sees only the question; later members also get an
    assistant message with everything said so far and a prompt to speak.
    """
    user_message = f'Original question: "{input_text}"'
    if not context:
        return user_message, []
    return user_message, [
        {"role": "assistant", "content": _format_context(context)},
        {"role": "user", "content": _TURN_PROMPT},
    ]


async def generate_council(
    input_text: str,
    personas: Sequence[Persona],
    client: CompletionClient,
    params: GenerationParams,
    on_turn_complete: Callable[[CouncilTurn], None] | None = None,
) -> list[CouncilTurn]:
    """Run every persona in declaration order, threading prior answers as context.

    Args:
        input_text: The user's question or transcript.
        personas: Council members, in speaking order.
        client: Upstream completion client.
        params: Model and sampling parameters shared by every member.
        on_turn_complete: Optional callback invoked after each member speaks.

    Returns:
        One CouncilTurn per persona, in persona order.

    Raises:
        CouncilError: If any member's call fails. No partial council is returned.
    """
    turns: list[CouncilTurn] = []
    context: list[ContextEntry] = []

    for persona in personas:
        user_message, context_messages = build_council_messages(input_text, context)
        logger.debug("Council member %s speaking after %d others", persona.id, len(context))

        try:
            response = await client.complete(
                persona.system_prompt,
                user_message,
                context_messages,
                params,
            )
        except UpstreamError as exc:
            logger.warning("Council aborted at %s: %s", persona.id, exc.message)
            raise CouncilError(persona.id, persona.display_name, exc) from exc

        turn = CouncilTurn(
            persona_id=persona.id,
            display_name=persona.display_name,
            icon=persona.icon,
            color=persona.color,
            response=response,
        )
        turns.append(turn)
        context.append(ContextEntry(display_name=persona.display_name, response=response))

        if on_turn_complete:
            on_turn_complete(turn)

    logger.info("Council complete: %d members spoke", len(turns))
    return turns


async def generate_single_fortune(
    input_text: str,
    persona: Persona,
    client: CompletionClient,
    params: GenerationParams,
) -> str:
    """One call with the persona's prompt and the raw input, no context."""
    return await client.complete(persona.system_prompt, input_text, [], params)


async def generate_action_plan(
    original_question: str,
    user_goal: str,
    planner: Persona,
    client: CompletionClient,
    params: GenerationParams,
) -> str:
    """Turn the original question and the user's goal into a short plan."""
    parts = []
    if original_question:
        parts.append(f'Original question: "{original_question}"')
    parts.append(f'My goal: "{user_goal}"')
    parts.append("Create my action plan.")
    return await client.complete(planner.system_prompt, "\n".join(parts), [], params)
