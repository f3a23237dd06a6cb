"""Configuration and environment for the remediator."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from sre_remediator.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "sre-remediator" / "config.yaml"
DEFAULT_CACHE_DIR = Path.home() / ".cache" / "sre-remediator"
DEFAULT_FIELD_MANAGER = "sre-remediator"


class Settings(BaseSettings):
    """Process settings loaded from environment and .env."""

    model_config = SettingsConfigDict(
        env_prefix="SRE_REMEDIATOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Kubernetes
    kubeconfig: Path | None = Field(
        default=None,
        description="Path to kubeconfig; uses KUBECONFIG env or default location if unset",
    )
    context: str | None = Field(default=None, description="Kubernetes context to use")
    namespace: str | None = Field(default=None, description="Namespace to analyze; all namespaces if unset")
    label_selector: str | None = Field(default=None, description="Label selector applied by analyzers")
    field_manager: str = Field(
        default=DEFAULT_FIELD_MANAGER,
        description="Field manager identity used for server-side apply",
    )

    # AI provider
    config_path: Path = Field(
        default=DEFAULT_CONFIG_PATH,
        description="YAML document holding AI provider configuration, re-read every cycle",
    )
    llm_provider: str | None = Field(
        default=None,
        description="Provider name to use from the configuration document (default: its defaultprovider)",
    )
    openai_api_key: str | None = Field(
        default=None,
        description="OpenAI API key, used when no configuration document exists",
    )
    openai_base_url: str | None = Field(
        default=None,
        description="Base URL for an OpenAI-compatible API (e.g. http://localhost:11434/v1)",
    )
    model: str = Field(default="gpt-4o-mini", description="Model name when no configuration document exists")
    temperature: float = Field(default=0.1, ge=0.0, le=2.0, description="LLM temperature")
    language: str = Field(default="english", description="Language used for AI explanations")

    # Analysis
    max_concurrency: int = Field(default=10, ge=1, description="Max analyzers running at once")
    filters: list[str] = Field(default_factory=list, description="Explicit analyzer names to run")
    active_filters: list[str] = Field(
        default_factory=list,
        description="Analyzers run when no explicit filter is given (all registered if empty)",
    )
    with_stats: bool = Field(default=False, description="Record per-analyzer durations")
    explain: bool = Field(default=False, description="Ask the AI backend to explain each issue before remediating")
    anonymize: bool = Field(default=False, description="Mask sensitive names before sending them to the AI backend")

    # Cache
    no_cache: bool = Field(default=False, description="Disable the completion cache")
    cache_backend: Literal["memory", "file"] = Field(default="memory", description="Completion cache storage")
    cache_dir: Path = Field(default=DEFAULT_CACHE_DIR, description="Directory for the file cache")

    # Remediation behavior
    dry_run: bool = Field(
        default=False,
        description="If true, generate corrected manifests but do not apply them",
    )
    interval_seconds: float = Field(default=60.0, gt=0, description="Period between orchestration cycles")
    overlap_policy: Literal["allow", "skip"] = Field(
        default="allow",
        description="What to do when a tick fires while the previous cycle is still running",
    )
    poll_interval_seconds: float = Field(default=5.0, gt=0, description="Rollout verification poll interval")
    rollout_timeout_seconds: float = Field(default=300.0, gt=0, description="Rollout verification deadline")
    require_all_ready: bool = Field(
        default=False,
        description="Require every pod of a workload to be ready instead of the first one",
    )

    # Agent HTTP server
    agent_host: str = Field(default="0.0.0.0", description="Bind address of the cluster agent")
    agent_port: int = Field(default=8080, description="Port of the cluster agent")


class AIProviderConfig(BaseModel):
    """One AI provider entry of the configuration document."""

    name: str
    model: str = "gpt-4o-mini"
    password: str | None = Field(default=None, description="API key or token")
    baseurl: str | None = Field(default=None, description="Base URL for OpenAI-compatible endpoints")
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)


class AIConfig(BaseModel):
    defaultprovider: str | None = None
    providers: list[AIProviderConfig] = Field(default_factory=list)


class ConfigDocument(BaseModel):
    """Top-level shape of the YAML configuration document."""

    ai: AIConfig = Field(default_factory=AIConfig)


def get_settings() -> Settings:
    """Return validated settings instance."""
    return Settings()


def _read_document(path: Path) -> ConfigDocument:
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except OSError as e:
        raise ConfigError(f"cannot read configuration {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"configuration {path} is not valid YAML: {e}") from e
    try:
        return ConfigDocument.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"configuration {path} is invalid: {e}") from e


def load_provider_config(settings: Settings) -> AIProviderConfig:
    """
    Resolve the AI provider for one cycle.

    The configuration document is read from disk on every call so operator edits
    take effect at the next trigger. When the document does not exist, the
    provider is built from the OpenAI settings if an API key or base URL is set.
    """
    path = Path(settings.config_path).expanduser()
    if not path.exists():
        if settings.openai_api_key or settings.openai_base_url:
            logger.debug("No configuration document at %s, using environment settings", path)
            return AIProviderConfig(
                name="openai" if not settings.openai_base_url else "openai_compatible",
                model=settings.model,
                password=settings.openai_api_key,
                baseurl=settings.openai_base_url,
                temperature=settings.temperature,
            )
        raise ConfigError(f"configuration {path} does not exist and no OpenAI credentials are set")

    doc = _read_document(path)
    if not doc.ai.providers:
        raise ConfigError(f"configuration {path} defines no AI providers")
    wanted = settings.llm_provider or doc.ai.defaultprovider or doc.ai.providers[0].name
    for provider in doc.ai.providers:
        if provider.name == wanted:
            return provider
    raise ConfigError(f"AI provider '{wanted}' not found in {path}")
