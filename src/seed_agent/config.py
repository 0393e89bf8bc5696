"""Runtime configuration for the marketplace worker."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

from seed_agent.marketplace.client import (
    DEFAULT_API_URL,
    DEFAULT_API_URL_V2,
    DEFAULT_TIMEOUT_SECONDS,
)

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
DEFAULT_COMMAND_TEMPLATE = "claude -p --model {model} -- {prompt}"
DEFAULT_NO_TOOLS_COMMAND_TEMPLATE = (
    'claude -p --model {model} --disallowed-tools "WebSearch,WebFetch,Bash" -- {prompt}'
)


@dataclass(slots=True)
class MarketplaceSettings:
    """Marketplace API access."""

    api_key: str = ""
    api_url: str = DEFAULT_API_URL
    api_url_v2: str = DEFAULT_API_URL_V2
    request_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS


@dataclass(slots=True)
class DispatchSettings:
    """Discovery and admission settings."""

    poll_interval_seconds: float = 30.0
    page_size: int = 20
    min_budget: float = 0.50
    max_concurrent_jobs: int = 3
    dedup_capacity: int = 1000


@dataclass(slots=True)
class RetrySettings:
    """Generation retry policy."""

    # Retries after the first attempt; 3 means up to 4 tools-enabled attempts.
    max_retries: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 10.0
    fallback_no_tools: bool = True


@dataclass(slots=True)
class BackendSettings:
    """CLI agent used for generation."""

    agent: str = "claude"
    model: str = "claude-sonnet-4"
    command_template: str = DEFAULT_COMMAND_TEMPLATE
    no_tools_command_template: str | None = DEFAULT_NO_TOOLS_COMMAND_TEMPLATE
    timeout_seconds: float = 600.0
    workdir_root: Path = Path(".seed_agent_work")


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    db_path: Path = Path(".seed_agent.db")
    log_level: str = "INFO"
    marketplace: MarketplaceSettings = field(default_factory=MarketplaceSettings)
    dispatch: DispatchSettings = field(default_factory=DispatchSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    backend: BackendSettings = field(default_factory=BackendSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("SEED_AGENT_DB_PATH", ".seed_agent.db")),
            log_level=os.getenv("SEED_AGENT_LOG_LEVEL", "INFO").strip().upper(),
            marketplace=MarketplaceSettings(
                api_key=os.getenv("SEED_AGENT_API_KEY", "").strip(),
                api_url=os.getenv("SEED_AGENT_API_URL", DEFAULT_API_URL).strip(),
                api_url_v2=os.getenv("SEED_AGENT_API_URL_V2", DEFAULT_API_URL_V2).strip(),
                request_timeout_seconds=_env_float(
                    "SEED_AGENT_HTTP_TIMEOUT_SECONDS",
                    DEFAULT_TIMEOUT_SECONDS,
                ),
            ),
            dispatch=DispatchSettings(
                poll_interval_seconds=_env_float("SEED_AGENT_POLL_INTERVAL_SECONDS", 30.0),
                page_size=_env_int("SEED_AGENT_PAGE_SIZE", 20),
                min_budget=_env_float("SEED_AGENT_MIN_BUDGET", 0.50),
                max_concurrent_jobs=_env_int("SEED_AGENT_MAX_CONCURRENT_JOBS", 3),
            ),
            retry=RetrySettings(
                max_retries=_env_int("SEED_AGENT_RETRY_MAX_RETRIES", 3),
                base_delay_seconds=_env_float("SEED_AGENT_RETRY_BASE_DELAY_SECONDS", 1.0),
                max_delay_seconds=_env_float("SEED_AGENT_RETRY_MAX_DELAY_SECONDS", 10.0),
                fallback_no_tools=_env_bool("SEED_AGENT_RETRY_FALLBACK_NO_TOOLS", default=True),
            ),
            backend=BackendSettings(
                agent=os.getenv("SEED_AGENT_LLM_AGENT", "claude").strip().lower(),
                model=os.getenv("SEED_AGENT_LLM_MODEL", "claude-sonnet-4").strip(),
                command_template=os.getenv(
                    "SEED_AGENT_LLM_COMMAND_TEMPLATE",
                    DEFAULT_COMMAND_TEMPLATE,
                ),
                no_tools_command_template=os.getenv(
                    "SEED_AGENT_LLM_NO_TOOLS_COMMAND_TEMPLATE",
                    DEFAULT_NO_TOOLS_COMMAND_TEMPLATE,
                )
                or None,
                timeout_seconds=_env_float("SEED_AGENT_LLM_TIMEOUT_SECONDS", 600.0),
                workdir_root=Path(os.getenv("SEED_AGENT_WORKDIR_ROOT", ".seed_agent_work")),
            ),
        )

    def validate_for_run(self) -> None:
        """Raise configuration error if the worker cannot start."""

        if not self.marketplace.api_key:
            raise ValueError("SEED_AGENT_API_KEY is required to run the worker.")
        for name, url in (
            ("SEED_AGENT_API_URL", self.marketplace.api_url),
            ("SEED_AGENT_API_URL_V2", self.marketplace.api_url_v2),
        ):
            parsed = urlparse(url)
            if parsed.scheme not in {"http", "https"} or not parsed.netloc:
                raise ValueError(f"{name} must be an absolute http(s) URL, got {url!r}.")
        if self.dispatch.poll_interval_seconds <= 0:
            raise ValueError("SEED_AGENT_POLL_INTERVAL_SECONDS must be > 0.")
        if self.dispatch.page_size <= 0:
            raise ValueError("SEED_AGENT_PAGE_SIZE must be > 0.")
        if self.dispatch.min_budget < 0:
            raise ValueError("SEED_AGENT_MIN_BUDGET must be >= 0.")
        if self.dispatch.max_concurrent_jobs <= 0:
            raise ValueError("SEED_AGENT_MAX_CONCURRENT_JOBS must be > 0.")
        if self.retry.max_retries < 0:
            raise ValueError("SEED_AGENT_RETRY_MAX_RETRIES must be >= 0.")
        if self.retry.base_delay_seconds < 0 or self.retry.max_delay_seconds < 0:
            raise ValueError("SEED_AGENT_RETRY_*_DELAY_SECONDS must be >= 0.")
        if not self.backend.command_template.strip():
            raise ValueError("SEED_AGENT_LLM_COMMAND_TEMPLATE must not be empty.")
        if self.log_level not in _LOG_LEVELS:
            raise ValueError(f"SEED_AGENT_LOG_LEVEL must be one of {', '.join(_LOG_LEVELS)}.")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid number value for {name}: {value!r}") from error


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
