"""Configuration loading for the Mina AI responder."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional


class ConfigError(RuntimeError):
    """Raised when configuration is invalid."""


DEFAULT_SYSTEM_PROMPT = "You are Mina, a helpful Discord bot assistant."


def _parse_optional_int(name: str) -> Optional[int]:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer.") from exc


def _parse_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _parse_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _parse_temperature(raw: Optional[str]) -> Optional[float]:
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError:
        return None
    return max(0.0, min(2.0, value))


@dataclass(frozen=True)
class Config:
    """Validated configuration for the bot."""

    token: str
    app_id: int
    test_guild_id: Optional[int]
    admin_user_id: Optional[int]
    log_level: str
    db_path: str

    # OpenAI-compatible endpoint (non-Claude models)
    llm_base_url: str
    llm_api_key: str
    # Anthropic endpoint (Claude models)
    anthropic_base_url: str
    anthropic_api_key: str

    # Model routing
    model: str
    embedding_model: str
    extraction_model: str
    reasoning_model: Optional[str]

    # Responder behaviour
    max_tokens: int
    temperature: float
    timeout_ms: int
    system_prompt: str
    max_tool_iterations: int
    dm_enabled: bool

    @classmethod
    def load(cls) -> "Config":
        """Load configuration from environment variables."""

        token = os.getenv("DISCORD_BOT_TOKEN")
        if not token:
            raise ConfigError("DISCORD_BOT_TOKEN is not set.")

        app_id = _parse_int("DISCORD_APP_ID", 0)
        test_guild_id = _parse_optional_int("MINA_TEST_GUILD_ID")

        admin_user_id: Optional[int] = None
        try:
            admin_user_id = _parse_optional_int("ADMIN_USER_ID")
        except ConfigError:
            admin_user_id = None

        log_level_raw = os.getenv("LOG_LEVEL", "INFO").strip()
        if log_level_raw.isdigit():
            level_name = logging.getLevelName(int(log_level_raw))
            if not isinstance(level_name, str) or level_name not in logging.getLevelNamesMapping():
                raise ConfigError("LOG_LEVEL has an unknown value.")
            log_level = level_name
        else:
            log_level = log_level_raw.upper()
            if log_level not in logging.getLevelNamesMapping():
                raise ConfigError("LOG_LEVEL has an unknown value.")

        db_path = os.getenv("MINA_DB_PATH", "mina_ai.db")

        llm_base_url = os.getenv("LLM_BASE_URL", "http://localhost:8001/v1").rstrip("/")
        llm_api_key = os.getenv("LLM_API_KEY", "EMPTY")
        anthropic_base_url = os.getenv("ANTHROPIC_BASE_URL", "https://api.anthropic.com/v1").rstrip("/")
        anthropic_api_key = os.getenv("ANTHROPIC_API_KEY", "")

        model = os.getenv("AI_MODEL", "gemini-3-flash-preview")
        embedding_model = os.getenv("AI_EMBEDDING_MODEL", "text-embedding-005")
        extraction_model = os.getenv("AI_EXTRACTION_MODEL", "gemini-2.5-flash-lite")
        # Unset means "no dedicated reasoning model"; set-but-empty is rejected by the router.
        reasoning_model = os.getenv("AI_REASONING_MODEL")

        temperature = _parse_temperature(os.getenv("AI_TEMPERATURE"))
        if temperature is None:
            temperature = 0.7

        return cls(
            token=token,
            app_id=app_id,
            test_guild_id=test_guild_id,
            admin_user_id=admin_user_id,
            log_level=log_level,
            db_path=db_path,
            llm_base_url=llm_base_url,
            llm_api_key=llm_api_key,
            anthropic_base_url=anthropic_base_url,
            anthropic_api_key=anthropic_api_key,
            model=model,
            embedding_model=embedding_model,
            extraction_model=extraction_model,
            reasoning_model=reasoning_model,
            max_tokens=max(1, _parse_int("AI_MAX_TOKENS", 1024)),
            temperature=temperature,
            timeout_ms=max(1000, _parse_int("AI_TIMEOUT_MS", 20000)),
            system_prompt=os.getenv("AI_SYSTEM_PROMPT") or DEFAULT_SYSTEM_PROMPT,
            max_tool_iterations=max(1, _parse_int("AI_MAX_TOOL_ITERATIONS", 5)),
            dm_enabled=_parse_bool("AI_DM_ENABLED", False),
        )

    def router_config(self):
        """Build the model routing configuration from this config."""
        from mina_ai.utils.model_router import ModelRouterConfig

        return ModelRouterConfig(
            model=self.model,
            embedding_model=self.embedding_model,
            extraction_model=self.extraction_model,
            reasoning_model=self.reasoning_model,
        )

    @property
    def timeout_sec(self) -> float:
        return self.timeout_ms / 1000.0

    def validate(self) -> None:
        """Validate configuration and log warnings for missing optional values."""
        logger = logging.getLogger(__name__)

        if not self.admin_user_id:
            logger.warning("ADMIN_USER_ID is not set. Admin-only commands will be unavailable.")

        if not self.test_guild_id:
            logger.info("MINA_TEST_GUILD_ID is not set. Every guild is limited to 2 free-will channels.")

        if self.reasoning_model is None:
            logger.info("AI_REASONING_MODEL is not set. Reasoning tasks fall back to %s.", self.model)

        if not self.anthropic_api_key:
            logger.warning("ANTHROPIC_API_KEY is not set. Claude models cannot be called.")
