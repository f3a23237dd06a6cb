"""Cluster layer: read, apply and watch Kubernetes resources."""

from sre_remediator.cluster.accessor import DEFAULT_NAMESPACE, ClusterAccessor
from sre_remediator.cluster.kube import KubernetesAccessor
from sre_remediator.cluster.models import (
    WORKLOAD_KINDS,
    ApplyOutcome,
    ContainerStatus,
    DeploymentPods,
    PodStatus,
    ProbeResult,
    ProbeStatus,
    ResourceRef,
)

__all__ = [
    "DEFAULT_NAMESPACE",
    "WORKLOAD_KINDS",
    "ApplyOutcome",
    "ClusterAccessor",
    "ContainerStatus",
    "DeploymentPods",
    "KubernetesAccessor",
    "PodStatus",
    "ProbeResult",
    "ProbeStatus",
    "ResourceRef",
]
