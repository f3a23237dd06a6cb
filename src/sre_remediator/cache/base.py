"""Completion cache contract and fingerprinting."""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


def fingerprint(provider: str, language: str, failure_text: str, purpose: str = "remediation") -> str:
    """
    Deterministic cache key for one AI request.

    Derived from provider identity, target language and the exact failure text
    sent in the prompt; purpose keeps explanations and corrected manifests for
    the same failure apart.
    """
    h = hashlib.sha256()
    for part in (purpose, provider, language, failure_text):
        h.update(part.encode("utf-8"))
        h.update(b"\x00")
    return h.hexdigest()


def encode_payload(response: str) -> str:
    return base64.b64encode(response.encode("utf-8")).decode("ascii")


def decode_payload(payload: str) -> str:
    return base64.b64decode(payload.encode("ascii"), validate=True).decode("utf-8")


class CompletionCache(ABC):
    """
    Fingerprint -> AI response store.

    Entries are pure-function outputs: the same fingerprint always maps to the
    same response, so concurrent writers may race with last-write-wins. Reads
    that fail to decode count as misses and writes never raise.
    """

    def __init__(self, disabled: bool = False) -> None:
        self._disabled = disabled

    @property
    def disabled(self) -> bool:
        return self._disabled

    def disable(self) -> None:
        self._disabled = True

    def enable(self) -> None:
        self._disabled = False

    def lookup(self, key: str) -> str | None:
        """Return the cached response, or None on miss, when disabled, or when the entry is corrupt."""
        if self._disabled:
            return None
        try:
            payload = self._read(key)
        except (OSError, ValueError) as e:
            logger.warning("Cache read for %s failed, treating as miss: %s", key[:12], e)
            return None
        if payload is None:
            return None
        try:
            return decode_payload(payload)
        except (binascii.Error, ValueError) as e:
            logger.warning("Cache entry %s is corrupt, regenerating: %s", key[:12], e)
            return None

    def store(self, key: str, response: str) -> bool:
        """Store a response; returns False instead of raising when the write fails."""
        if self._disabled:
            return False
        try:
            self._write(key, encode_payload(response))
        except (OSError, ValueError) as e:
            logger.warning("Cache write for %s failed: %s", key[:12], e)
            return False
        return True

    def evict(self, key: str) -> bool:
        """Drop one entry, e.g. a response that proved not to work; returns whether one was removed."""
        try:
            removed = self._delete(key)
        except (OSError, ValueError) as e:
            logger.warning("Cache eviction of %s failed: %s", key[:12], e)
            return False
        if removed:
            logger.info("Evicted cache entry %s", key[:12])
        return removed

    @abstractmethod
    def _read(self, key: str) -> str | None:
        """Return the raw encoded payload or None."""

    @abstractmethod
    def _write(self, key: str, payload: str) -> None:
        """Persist the raw encoded payload."""

    @abstractmethod
    def _delete(self, key: str) -> bool:
        """Remove the entry; False when there was none."""

    @abstractmethod
    def clear(self) -> None:
        """Drop every entry."""
