"""Completion cache: reuse AI responses for identical failure signatures."""

from sre_remediator.cache.backends import FileCache, MemoryCache
from sre_remediator.cache.base import CompletionCache, fingerprint
from sre_remediator.config import Settings


def new_cache(settings: Settings) -> CompletionCache:
    """Build the cache selected by settings."""
    if settings.cache_backend == "file":
        return FileCache(settings.cache_dir, disabled=settings.no_cache)
    return MemoryCache(disabled=settings.no_cache)


__all__ = [
    "CompletionCache",
    "FileCache",
    "MemoryCache",
    "fingerprint",
    "new_cache",
]
