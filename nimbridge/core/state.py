"""Process-wide model selection state shared by all requests."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

logger = logging.getLogger("nimbridge")


@dataclass
class ModelState:
    """Sticky current model plus a consecutive-failure counter.

    Concurrent requests update this object without coordination, so the last
    writer wins. Nothing here is used for correctness decisions beyond which
    model the next request tries first.
    """

    primary_model: str
    fallback_models: tuple[str, ...] = ()
    current_model: str = ""
    failure_count: int = 0

    def __post_init__(self) -> None:
        self.fallback_models = tuple(self.fallback_models)
        if not self.current_model:
            self.current_model = self.primary_model

    @property
    def known_models(self) -> tuple[str, ...]:
        models = [self.primary_model]
        for name in self.fallback_models:
            if name not in models:
                models.append(name)
        return tuple(models)

    def model_for_attempt(self, attempt: int) -> str | None:
        """Attempt 0 uses the current model, attempt k uses fallback k-1.

        Returns None once the models are used up; blank names never resolve.
        """
        if attempt == 0:
            return self.current_model or None
        index = attempt - 1
        if 0 <= index < len(self.fallback_models):
            return self.fallback_models[index] or None
        return None

    def record_success(self, model: str) -> None:
        self.failure_count = 0
        if model != self.current_model:
            logger.info("Promoting current model %s -> %s", self.current_model, model)
            self.current_model = model

    def record_failure(self) -> int:
        self.failure_count += 1
        return self.failure_count


def build_model_state(primary: str, fallbacks: Sequence[str]) -> ModelState:
    names = [str(name).strip() for name in fallbacks if name and str(name).strip()]
    return ModelState(primary_model=primary, fallback_models=tuple(names))
