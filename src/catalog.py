"""Model catalogue, feature flags, and flag-driven model selection."""

import logging
from collections.abc import Mapping
from datetime import date
from types import MappingProxyType

from config.config_loader import ModelInfo, ModelsConfig

logger = logging.getLogger(__name__)


class FlagState:
    """Holds the current feature flags for one running app.

    The flags are an immutable mapping; apply() swaps in a new one, so a
    request that already read the flags keeps a consistent view.
    """

    def __init__(self, initial: Mapping[str, bool]) -> None:
        self._flags: Mapping[str, bool] = MappingProxyType(dict(initial))

    @property
    def current(self) -> Mapping[str, bool]:
        return self._flags

    def apply(self, updates: Mapping[str, object]) -> Mapping[str, bool]:
        """Replace known flags with the boolean values in updates.

        Unknown keys and non-boolean values are ignored.
        """
        merged = dict(self._flags)
        changed = []
        for name, value in updates.items():
            if name in merged and isinstance(value, bool):
                merged[name] = value
                changed.append(name)
        self._flags = MappingProxyType(merged)
        if changed:
            logger.info("Feature flags updated: %s", ", ".join(f"{n}={merged[n]}" for n in changed))
        return self._flags


def _is_available(model: ModelInfo, today: date) -> bool:
    return model.available_from is None or today >= model.available_from


def _is_switched_on(model: ModelInfo, flags: Mapping[str, bool]) -> bool:
    if not model.flag:
        return False
    return all(flags.get(name) for name in [model.flag, *model.requires])


def select_model(models: ModelsConfig, flags: Mapping[str, bool], today: date | None = None) -> str:
    """Return the id of the first switched-on, released model, else the default.

    A model is switched on when its flag and every flag in its requires list
    are true.
    """
    today = today or date.today()
    for model in models.catalog:
        if _is_switched_on(model, flags) and _is_available(model, today):
            return model.id
    return models.default


def describe_models(
    models: ModelsConfig,
    flags: Mapping[str, bool],
    today: date | None = None,
) -> dict:
    """Payload for the model listing endpoint."""
    today = today or date.today()
    active = select_model(models, flags, today)
    return {
        "available": [
            {
                "id": m.id,
                "name": m.name,
                "active": m.id == active,
                "released": _is_available(m, today),
            }
            for m in models.catalog
        ],
        "default": models.default,
        "active": active,
        "featureFlags": dict(flags),
    }
