# nexus/config.py
"""
Configuration for the Nexus swarm orchestrator.

All configuration flows through this module. Values are loaded from environment
variables (via .env file) and validated with Pydantic. Every component receives
its slice of config explicitly; nothing reads the environment on its own.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal, Optional

import structlog
from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings

logger = structlog.get_logger(__name__)

# Resolve .env relative to the project root (one level above nexus/ package),
# so the config works regardless of the user's current working directory.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"


class ProviderConfig(BaseSettings):
    """Connection to the generative model provider (Anthropic Messages API)."""

    api_key: Optional[str] = Field(None, alias="ANTHROPIC_API_KEY")
    auth_token: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("ANTHROPIC_AUTH_TOKEN", "NEXUS_AUTH_TOKEN"),
    )
    model: str = Field("claude-sonnet-4-5-20250929", alias="NEXUS_MODEL")
    # Decomposition and synthesis are the heavier calls; empty = use ``model``.
    planner_model: str = Field("", alias="NEXUS_PLANNER_MODEL")
    max_tokens: int = Field(4096, alias="NEXUS_MAX_TOKENS")
    request_timeout_seconds: float = Field(120.0, alias="NEXUS_REQUEST_TIMEOUT_SECONDS")
    retry_max_retries: int = Field(3, alias="NEXUS_RETRY_MAX_RETRIES")
    retry_base_delay: float = Field(0.5, alias="NEXUS_RETRY_BASE_DELAY")
    retry_max_delay: float = Field(8.0, alias="NEXUS_RETRY_MAX_DELAY")
    retry_exponential_base: float = Field(2.0, alias="NEXUS_RETRY_EXPONENTIAL_BASE")
    retry_jitter_range: float = Field(0.25, alias="NEXUS_RETRY_JITTER_RANGE")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def resolve_auth(self) -> "ProviderConfig":
        if self.api_key or self.auth_token:
            return self
        raise ValueError(
            "No authentication configured. Set ANTHROPIC_API_KEY or ANTHROPIC_AUTH_TOKEN."
        )

    @model_validator(mode="after")
    def normalize_runtime_limits(self) -> "ProviderConfig":
        self.max_tokens = max(1, int(self.max_tokens))
        if not self.planner_model:
            self.planner_model = self.model
        self.request_timeout_seconds = max(1.0, float(self.request_timeout_seconds))
        self.retry_max_retries = max(0, int(self.retry_max_retries))
        self.retry_base_delay = max(0.05, float(self.retry_base_delay))
        self.retry_max_delay = max(self.retry_base_delay, float(self.retry_max_delay))
        self.retry_exponential_base = max(1.0, float(self.retry_exponential_base))
        self.retry_jitter_range = max(0.0, min(1.0, float(self.retry_jitter_range)))
        return self


class SwarmConfig(BaseSettings):
    """Scheduler pacing, timeouts and the executor failure policy."""

    # Progress animation. Not a correctness property, only a perceptual one.
    tick_interval: float = Field(0.05, alias="NEXUS_TICK_INTERVAL")
    progress_increment_min: int = Field(1, alias="NEXUS_PROGRESS_INCREMENT_MIN")
    progress_increment_max: int = Field(3, alias="NEXUS_PROGRESS_INCREMENT_MAX")
    # Pause between a dependency completing and its dependent starting.
    settle_delay: float = Field(0.8, alias="NEXUS_SETTLE_DELAY")

    executor_timeout: float = Field(120.0, alias="NEXUS_EXECUTOR_TIMEOUT")
    synthesis_timeout: float = Field(180.0, alias="NEXUS_SYNTHESIS_TIMEOUT")

    # "fail": bounded retries, then FAILED. "stuck": one attempt, agent stays at 100%.
    failure_policy: Literal["fail", "stuck"] = Field("fail", alias="NEXUS_FAILURE_POLICY")
    executor_max_attempts: int = Field(3, alias="NEXUS_EXECUTOR_MAX_ATTEMPTS")
    executor_retry_base_delay: float = Field(1.0, alias="NEXUS_EXECUTOR_RETRY_BASE_DELAY")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "SwarmConfig":
        self.tick_interval = max(0.0, float(self.tick_interval))
        self.progress_increment_min = max(1, min(100, int(self.progress_increment_min)))
        self.progress_increment_max = max(
            self.progress_increment_min, min(100, int(self.progress_increment_max))
        )
        self.settle_delay = max(0.0, float(self.settle_delay))
        self.executor_timeout = max(0.01, float(self.executor_timeout))
        self.synthesis_timeout = max(0.01, float(self.synthesis_timeout))
        self.executor_max_attempts = max(1, int(self.executor_max_attempts))
        self.executor_retry_base_delay = max(0.0, float(self.executor_retry_base_delay))
        return self


class ArchiveConfig(BaseSettings):
    """Best-effort local mission archive ("swarm memory")."""

    data_dir: Path = Field(Path("./nexus_data"), alias="NEXUS_DATA_DIR")
    max_entries: int = Field(50, alias="NEXUS_ARCHIVE_MAX_ENTRIES")
    # How many past missions are fed back into the decomposer prompt.
    context_missions: int = Field(5, alias="NEXUS_ARCHIVE_CONTEXT_MISSIONS")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "ArchiveConfig":
        self.max_entries = max(1, int(self.max_entries))
        self.context_missions = max(0, int(self.context_missions))
        return self

    @property
    def archive_path(self) -> Path:
        return self.data_dir / "missions.json"


class ChatConfig(BaseSettings):
    """Context window applied to post-synthesis follow-up questions."""

    max_history_turns: int = Field(20, alias="NEXUS_CHAT_MAX_HISTORY_TURNS")
    max_result_chars: int = Field(2000, alias="NEXUS_CHAT_MAX_RESULT_CHARS")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "ChatConfig":
        self.max_history_turns = max(0, int(self.max_history_turns))
        self.max_result_chars = max(100, int(self.max_result_chars))
        return self


class NexusConfig:
    """
    Master configuration that composes all subsystem configs.

    The provider section is loaded lazily so commands that never talk to the
    model (archive browsing) work without credentials.
    """

    def __init__(self) -> None:
        self.swarm = SwarmConfig()
        self.archive = ArchiveConfig()
        self.chat = ChatConfig()
        self._provider: Optional[ProviderConfig] = None

        if not self.archive.data_dir.is_absolute():
            self.archive.data_dir = (_PROJECT_ROOT / self.archive.data_dir).resolve()

    @property
    def provider(self) -> ProviderConfig:
        if self._provider is None:
            self._provider = ProviderConfig()
        return self._provider

    def __repr__(self) -> str:
        return (
            f"NexusConfig(policy={self.swarm.failure_policy}, "
            f"tick={self.swarm.tick_interval}s, "
            f"archive={self.archive.archive_path})"
        )
