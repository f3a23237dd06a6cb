"""Contract between the remediation engine and the cluster."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator
from typing import Any

from sre_remediator.cluster.models import ApplyOutcome, PodStatus

DEFAULT_NAMESPACE = "default"


class ClusterAccessor(ABC):
    """
    Read, list and apply cluster resources.

    Implementations raise ClusterError (or ResourceNotFound) on API and transport
    failures so callers never see client-library exceptions.
    """

    @abstractmethod
    def get(self, kind: str, namespace: str | None, name: str) -> dict[str, Any]:
        """Return the full object as a plain dict."""

    @abstractmethod
    def list(self, kind: str, namespace: str | None = None, label_selector: str | None = None) -> list[dict[str, Any]]:
        """List objects of a kind; all namespaces when namespace is None."""

    @abstractmethod
    def manifest_yaml(self, kind: str, namespace: str, name: str) -> str:
        """Return a simplified manifest (apiVersion, kind, name/namespace, spec) as YAML text."""

    @abstractmethod
    def apply(self, manifest: str, field_manager: str, force: bool = True) -> ApplyOutcome:
        """Server-side apply one YAML manifest document."""

    @abstractmethod
    def pod_status(self, namespace: str, name: str) -> PodStatus:
        """Return the phase and container readiness of a pod."""

    @abstractmethod
    def workload_pod_names(self, kind: str, namespace: str, name: str) -> list[str]:
        """Return names of the pods a controller (one of WORKLOAD_KINDS) currently owns."""

    @abstractmethod
    def stream_logs(self, namespace: str, name: str, container: str | None = None) -> Iterator[bytes]:
        """Yield raw log chunks of a pod until the underlying stream ends."""

    def ping(self) -> bool:
        """Cheap reachability check of the cluster API."""
        return True
