"""Error taxonomy shared by the analysis, remediation and verification layers."""

from __future__ import annotations


class RemediatorError(Exception):
    """Base class for all errors raised by sre_remediator."""


class InputError(RemediatorError):
    """Malformed input (resource name, parent object, analyzer filter). Not retryable."""


class ConfigError(RemediatorError):
    """Settings or AI provider configuration could not be loaded."""


class ClusterError(RemediatorError):
    """A Kubernetes API call failed."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class ResourceNotFound(ClusterError):
    """The requested resource does not exist."""

    def __init__(self, kind: str, namespace: str | None, name: str) -> None:
        where = f"{namespace}/{name}" if namespace else name
        super().__init__(f"{kind} {where} not found", status=404)
        self.kind = kind
        self.namespace = namespace
        self.name = name


class ApplyError(ClusterError):
    """Server-side apply of a manifest was rejected or the manifest could not be decoded."""


class AIBackendError(RemediatorError):
    """The AI backend failed to produce a completion."""


class RateLimitedError(AIBackendError):
    """The AI backend rejected the request because a quota or rate limit was hit."""

    def __init__(self, provider: str, detail: str = "") -> None:
        message = f"AI provider '{provider}' is rate limiting requests (quota exhausted or too many requests)"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.provider = provider
