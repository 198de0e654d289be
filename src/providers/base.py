"""Abstract base for upstream completion clients."""

from abc import ABC, abstractmethod
from collections.abc import Sequence

from src.models import GenerationParams

# Chat message in the OpenAI wire shape: {"role": ..., "content": ...}
Message = dict[str, str]


class CompletionClient(ABC):
    """Abstract base for all upstream completion services."""

    @abstractmethod
    def name(self) -> str:
        """Return a short name for logs (e.g. 'openrouter')."""
        ...

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        user_message: str,
        context_messages: Sequence[Message],
        params: GenerationParams,
    ) -> str:
        """Generate text for a system/user pair plus prior conversation.

        Args:
            system_prompt: Instruction for the model.
            user_message: The end-user message.
            context_messages: Extra assistant/user turns sent after the user
                message, in order.
            params: Model id, temperature and output cap.

        Returns:
            Text of the first completion choice.

        Raises:
            UpstreamError: On a non-success status or transport failure.
            MalformedResponseError: When the response carries no content.
        """
        ...


def build_messages(
    system_prompt: str,
    user_message: str,
    context_messages: Sequence[Message] = (),
) -> list[Message]:
    """Assemble the message list sent upstream."""
    messages: list[Message] = [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_message},
    ]
    messages.extend(dict(m) for m in context_messages)
    return messages
