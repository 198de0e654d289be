"""Pure dataclasses for the fortune council pipeline. No logic, no deps."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Persona:
    id: str
    display_name: str
    icon: str
    color: str
    system_prompt: str


@dataclass(frozen=True)
class GenerationParams:
    model: str
    temperature: float
    max_tokens: int


@dataclass
class CouncilTurn:
    persona_id: str
    display_name: str
    icon: str
    color: str
    response: str

    def to_payload(self) -> dict[str, str]:
        """Shape expected by the browser UI."""
        return {
            "id": self.persona_id,
            "name": self.display_name,
            "emoji": self.icon,
            "color": self.color,
            "response": self.response,
        }


@dataclass(frozen=True)
class ContextEntry:
    display_name: str
    response: str


@dataclass(frozen=True)
class CounterEntry:
    count: int
    expires_at: float      # clock value after which the entry is gone


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    limit: int
