"""AI backend: turn a prompt into generated text."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import openai
from openai import OpenAI

from sre_remediator.config import AIProviderConfig
from sre_remediator.errors import AIBackendError, RateLimitedError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are an expert Kubernetes SRE. Answer with exactly what is asked, nothing more."


class AIBackend(ABC):
    """A language model that completes prompts."""

    name: str = "unknown"

    @abstractmethod
    def complete(self, prompt: str) -> str:
        """Return generated text; raise RateLimitedError or AIBackendError on failure."""


def _openai_client(provider: AIProviderConfig) -> OpenAI:
    """Build OpenAI client from provider config (supports OpenAI and compatible endpoints)."""
    if provider.baseurl:
        return OpenAI(
            base_url=provider.baseurl,
            api_key=provider.password or "not-needed",
        )
    return OpenAI(api_key=provider.password or "")


class OpenAIBackend(AIBackend):
    """Chat-completions backend for OpenAI and OpenAI-compatible servers (e.g. Ollama)."""

    def __init__(self, provider: AIProviderConfig, client: OpenAI | None = None) -> None:
        self.name = provider.name
        self.model = provider.model
        self.temperature = provider.temperature
        self._client = client or _openai_client(provider)

    def complete(self, prompt: str) -> str:
        try:
            response = self._client.chat.completions.create(
                model=self.model,
                temperature=self.temperature,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
            )
        except openai.RateLimitError as e:
            raise RateLimitedError(self.name, str(e)) from e
        except openai.OpenAIError as e:
            raise AIBackendError(f"AI provider '{self.name}' failed: {e}") from e
        text = response.choices[0].message.content if response.choices else None
        if not text:
            raise AIBackendError(f"AI provider '{self.name}' returned an empty completion")
        return text


def new_backend(provider: AIProviderConfig) -> AIBackend:
    """Build the backend for a provider entry."""
    logger.debug("Using AI provider %s (model=%s)", provider.name, provider.model)
    return OpenAIBackend(provider)
