"""Tests for src/models.py dataclasses."""

import dataclasses

import pytest

from src.models import CouncilTurn, GenerationParams, Persona, RateLimitDecision


def test_persona_is_immutable():
    persona = Persona("wise_cat", "The Wise Cat", "🐱", "orange", "Purr.")
    with pytest.raises(dataclasses.FrozenInstanceError):
        persona.system_prompt = "Bark."  # type: ignore[misc]


def test_council_turn_payload_matches_ui_shape():
    turn = CouncilTurn(
        persona_id="wise_cat",
        display_name="The Wise Cat",
        icon="🐱",
        color="orange",
        response="Nap first, decide later.",
    )
    assert turn.to_payload() == {
        "id": "wise_cat",
        "name": "The Wise Cat",
        "emoji": "🐱",
        "color": "orange",
        "response": "Nap first, decide later.",
    }


def test_generation_params_fields():
    params = GenerationParams(model="google/gemma-2-27b-it", temperature=0.8, max_tokens=200)
    assert params.max_tokens == 200


def test_rate_limit_decision_fields():
    decision = RateLimitDecision(allowed=False, remaining=0, limit=10)
    assert decision.allowed is False
    assert decision.limit == 10
