"""Shared fakes and fixtures for remediator tests."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from typing import Any

import pytest
import yaml

from sre_remediator.ai import AIBackend
from sre_remediator.analysis import Failure, Result, Sensitive
from sre_remediator.cache import MemoryCache
from sre_remediator.cluster import ApplyOutcome, ClusterAccessor, ContainerStatus, PodStatus
from sre_remediator.cluster.kube import simplify_manifest
from sre_remediator.errors import ApplyError, RateLimitedError, ResourceNotFound


def make_pod_status(name: str, phase: str = "Running", ready: bool = True, namespace: str = "default") -> PodStatus:
    return PodStatus(
        name=name,
        namespace=namespace,
        phase=phase,
        container_statuses=[
            ContainerStatus(name="app", ready=ready, state="running" if ready else "waiting"),
        ],
    )


def make_result(
    kind: str = "Pod",
    name: str = "default/web-1",
    parent: str = "",
    text: str = "Container app of pod web-1 is in CrashLoopBackOff",
) -> Result:
    pod = name.split("/")[-1]
    namespace = name.split("/")[0] if "/" in name else "default"
    return Result(
        kind=kind,
        name=name,
        parent_object=parent,
        errors=[Failure(text=text, sensitive=[Sensitive.of(pod), Sensitive.of(namespace)])],
    )


class FakeAccessor(ClusterAccessor):
    """
    In-memory cluster.

    pod_statuses and workload_pods map a key to a sequence of answers; each
    call consumes the next one and the last answer repeats. An answer that is
    an exception instance is raised instead of returned.
    """

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str, str], dict[str, Any]] = {}
        self.pod_statuses: dict[tuple[str, str], list[Any]] = {}
        self.workload_pods: dict[tuple[str, str, str], list[Any]] = {}
        self.logs: dict[tuple[str, str], list[bytes]] = {}
        self.applied: list[tuple[str, str, bool]] = []
        self.apply_error: Exception | None = None
        self.reachable = True
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self._lock = threading.Lock()

    def add_object(self, kind: str, namespace: str, name: str, spec: dict[str, Any] | None = None, **extra: Any) -> dict[str, Any]:
        obj = {
            "apiVersion": "apps/v1" if kind in ("Deployment", "ReplicaSet") else "v1",
            "kind": kind,
            "metadata": {"name": name, "namespace": namespace, "uid": f"uid-{name}"},
            "spec": spec or {},
            "status": {},
        }
        obj.update(extra)
        self.objects[(kind, namespace, name)] = obj
        return obj

    def _record(self, method: str, *args: Any) -> None:
        with self._lock:
            self.calls.append((method, args))

    def called(self, method: str) -> list[tuple[Any, ...]]:
        return [args for m, args in self.calls if m == method]

    @staticmethod
    def _next(answers: list[Any]) -> Any:
        answer = answers.pop(0) if len(answers) > 1 else answers[0]
        if isinstance(answer, Exception):
            raise answer
        return answer

    def get(self, kind: str, namespace: str | None, name: str) -> dict[str, Any]:
        self._record("get", kind, namespace, name)
        try:
            return self.objects[(kind, namespace or "default", name)]
        except KeyError:
            raise ResourceNotFound(kind, namespace, name) from None

    def list(self, kind: str, namespace: str | None = None, label_selector: str | None = None) -> list[dict[str, Any]]:
        self._record("list", kind, namespace, label_selector)
        return [
            obj
            for (k, ns, _), obj in self.objects.items()
            if k == kind and (namespace is None or ns == namespace)
        ]

    def manifest_yaml(self, kind: str, namespace: str, name: str) -> str:
        self._record("manifest_yaml", kind, namespace, name)
        return yaml.safe_dump(simplify_manifest(self.get(kind, namespace, name)), sort_keys=False)

    def apply(self, manifest: str, field_manager: str, force: bool = True) -> ApplyOutcome:
        self._record("apply", manifest, field_manager, force)
        if self.apply_error is not None:
            raise self.apply_error
        try:
            body = yaml.safe_load(manifest)
        except yaml.YAMLError as e:
            raise ApplyError(f"failed to decode manifest: {e}") from e
        if not isinstance(body, dict):
            raise ApplyError("manifest must be a single object with apiVersion and kind")
        self.applied.append((manifest, field_manager, force))
        meta = body.get("metadata") or {}
        return ApplyOutcome(kind=body["kind"], namespace=meta.get("namespace") or "default", name=meta["name"])

    def pod_status(self, namespace: str, name: str) -> PodStatus:
        self._record("pod_status", namespace, name)
        answers = self.pod_statuses.get((namespace, name))
        if not answers:
            raise ResourceNotFound("Pod", namespace, name)
        return self._next(answers)

    def workload_pod_names(self, kind: str, namespace: str, name: str) -> list[str]:
        self._record("workload_pod_names", kind, namespace, name)
        answers = self.workload_pods.get((kind, namespace, name))
        if not answers:
            raise ResourceNotFound(kind, namespace, name)
        return list(self._next(answers))

    def stream_logs(self, namespace: str, name: str, container: str | None = None) -> Iterator[bytes]:
        self._record("stream_logs", namespace, name, container)
        if (namespace, name) not in self.logs:
            raise ResourceNotFound("Pod", namespace, name)
        return iter(self.logs[(namespace, name)])

    def ping(self) -> bool:
        self._record("ping")
        return self.reachable


class FakeBackend(AIBackend):
    """Returns a canned response (or a response built from the prompt) and counts calls."""

    def __init__(self, response: str | None = None, name: str = "fake", error: Exception | None = None) -> None:
        self.name = name
        self.response = response
        self.error = error
        self.prompts: list[str] = []
        self._lock = threading.Lock()

    @property
    def calls(self) -> int:
        return len(self.prompts)

    def complete(self, prompt: str) -> str:
        with self._lock:
            self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        if self.response is not None:
            return self.response
        # Echo the current manifest back as the "corrected" one
        return prompt.split("Current YAML:\n", 1)[1].split("\n\nIssues Detected:", 1)[0]


@pytest.fixture
def accessor() -> FakeAccessor:
    return FakeAccessor()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def rate_limited_backend() -> FakeBackend:
    return FakeBackend(error=RateLimitedError("fake", "429 Too Many Requests"))


@pytest.fixture
def cache() -> MemoryCache:
    return MemoryCache()
