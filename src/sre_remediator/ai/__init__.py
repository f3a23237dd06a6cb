"""AI layer: prompt completion backends."""

from sre_remediator.ai.backend import AIBackend, OpenAIBackend, new_backend

__all__ = [
    "AIBackend",
    "OpenAIBackend",
    "new_backend",
]
