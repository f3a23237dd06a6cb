"""Structured models for Kubernetes state exchanged with the cluster accessor."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

# Controller-style kinds whose health is judged through their member pods
WORKLOAD_KINDS = frozenset({"Deployment", "ReplicaSet", "StatefulSet", "DaemonSet", "Job", "CronJob"})


class ResourceRef(BaseModel):
    """Identity of one namespaced cluster resource."""

    kind: str
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.kind} {self.namespace}/{self.name}"


class TerminationState(BaseModel):
    """How a container last terminated."""

    reason: str | None = None
    message: str | None = None
    exit_code: int | None = None
    finished_at: datetime | None = None


class ContainerStatus(BaseModel):
    """Container status summary (waiting, running, terminated)."""

    name: str
    image: str = ""
    ready: bool = False
    state: str = "unknown"  # waiting | running | terminated | unknown
    reason: str | None = None
    message: str | None = None
    exit_code: int | None = None
    restart_count: int = 0
    last_state: TerminationState | None = None


class ProbeStatus(BaseModel):
    """Configuration and last observed outcome of one liveness or readiness probe."""

    status: bool = False
    details: str = ""
    success_threshold: int = 0
    failure_threshold: int = 0
    failure_count: int = 0
    failure: str | None = None
    last_probe_time: datetime | None = None


class ProbeResult(BaseModel):
    """Probe results of one container."""

    container_name: str
    liveness: ProbeStatus | None = None
    readiness: ProbeStatus | None = None


class PodCondition(BaseModel):
    """Pod condition summary."""

    type: str
    status: str
    reason: str | None = None
    message: str | None = None
    last_transition: datetime | None = None


class PodStatus(BaseModel):
    """Phase and per-container readiness of one pod."""

    name: str
    namespace: str
    phase: str
    conditions: list[PodCondition] = Field(default_factory=list)
    container_statuses: list[ContainerStatus] = Field(default_factory=list)
    probe_results: list[ProbeResult] = Field(default_factory=list)
    start_time: datetime | None = None
    pod_ip: str | None = None
    host_ip: str | None = None

    @property
    def all_containers_ready(self) -> bool:
        return all(c.ready for c in self.container_statuses)

    @property
    def is_ready(self) -> bool:
        return self.phase == "Running" and self.all_containers_ready


class DeploymentPods(BaseModel):
    """Member pods of a deployment, resolved through its label selector."""

    name: str
    namespace: str
    pod_names: list[str] = Field(default_factory=list)


class ApplyOutcome(BaseModel):
    """Result of a server-side apply."""

    kind: str
    namespace: str
    name: str
    action: Literal["created", "updated", "applied"] = "applied"

    @property
    def target(self) -> ResourceRef:
        return ResourceRef(kind=self.kind, namespace=self.namespace, name=self.name)
