"""
Model registry.
An explicit, per-session catalog of models built from config.AVAILABLE_MODELS
plus whatever the active provider reports from fetch_models().
"""

import logging
import threading
from typing import Any, Dict, Iterable, List, Optional

from agent.types import ModelCapabilities, ModelInfo

logger = logging.getLogger(__name__)


class ModelRegistry:
    def __init__(self, models: Iterable[ModelInfo] = ()):
        self._lock = threading.Lock()
        self._models: Dict[str, ModelInfo] = {}
        for m in models:
            self._models[m.model_id] = m

    @classmethod
    def from_config(cls, table: Iterable[Dict[str, Any]]) -> "ModelRegistry":
        return cls(ModelInfo.from_dict(entry) for entry in table)

    def get(self, model_id: str) -> Optional[ModelInfo]:
        with self._lock:
            return self._models.get(model_id)

    def resolve(self, model_id: str, provider: str) -> ModelInfo:
        """Known model, or a conservative default entry for an unknown id."""
        model = self.get(model_id)
        if model is not None:
            return model
        logger.info(f"Model {model_id} not in registry; using default capabilities")
        return ModelInfo(model_id=model_id, display_name=model_id, provider=provider,
                         capabilities=ModelCapabilities())

    def merge(self, models: Iterable[ModelInfo]) -> int:
        """Add models not already known. Configured entries keep their capabilities."""
        added = 0
        with self._lock:
            for m in models:
                if m.model_id not in self._models:
                    self._models[m.model_id] = m
                    added += 1
        return added

    def for_provider(self, provider: str) -> List[ModelInfo]:
        with self._lock:
            return [m for m in self._models.values() if m.provider == provider]

    def __contains__(self, model_id: str) -> bool:
        return self.get(model_id) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._models)
