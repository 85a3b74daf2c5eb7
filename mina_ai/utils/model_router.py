"""Routes AI task types to model identifiers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Literal, Optional, get_args

from mina_ai.config import ConfigError

logger = logging.getLogger(__name__)

TaskType = Literal["chat", "embedding", "extraction", "reasoning"]
TASK_TYPES: tuple[str, ...] = get_args(TaskType)


@dataclass(frozen=True)
class ModelRouterConfig:
    model: str
    embedding_model: str
    extraction_model: str
    reasoning_model: Optional[str] = None


@dataclass(frozen=True)
class ModelConfig:
    """A resolved model id, tagged with the task type it was resolved for."""

    model: str
    task_type: TaskType


def _require(value: Optional[str], field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{field_name} is required and cannot be empty")
    return value


class ModelRouter:
    """
    Maps task types to model ids.
    Immutable after construction; reloading config means building a new router.
    """

    def __init__(self, config: ModelRouterConfig) -> None:
        self._chat_model = _require(config.model, "model")
        self._embedding_model = _require(config.embedding_model, "embeddingModel")
        self._extraction_model = _require(config.extraction_model, "extractionModel")

        reasoning = config.reasoning_model
        if reasoning is not None and (not isinstance(reasoning, str) or not reasoning.strip()):
            raise ConfigError("reasoningModel cannot be an empty string when provided")
        # None = not configured, fall back to the chat model
        self._reasoning_model: Optional[str] = reasoning

    def get_model(self, task_type: TaskType) -> ModelConfig:
        if task_type == "chat":
            return ModelConfig(self._chat_model, "chat")
        if task_type == "embedding":
            return ModelConfig(self._embedding_model, "embedding")
        if task_type == "extraction":
            return ModelConfig(self._extraction_model, "extraction")
        if task_type == "reasoning":
            return ModelConfig(self._reasoning_model or self._chat_model, "reasoning")

        logger.warning("Unknown task type: %s, falling back to chat model", task_type)
        return ModelConfig(self._chat_model, "chat")

    def has_reasoning_model(self) -> bool:
        return self._reasoning_model is not None

    def get_routing_summary(self) -> Dict[str, str]:
        """Human-readable snapshot of what each task type resolves to."""
        return {
            "chat": self._chat_model,
            "embedding": self._embedding_model,
            "extraction": self._extraction_model,
            "reasoning": self._reasoning_model or f"{self._chat_model} (fallback)",
        }

    @staticmethod
    def is_claude_model(model_id: Optional[str]) -> bool:
        if not model_id or not isinstance(model_id, str):
            return False
        return model_id.lower().startswith("claude-")
