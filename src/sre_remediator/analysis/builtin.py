"""Built-in analyzers for pods and deployments."""

from __future__ import annotations

import logging
from typing import Any

from sre_remediator.analysis.analyzer import AnalysisContext, Analyzer, register_analyzer
from sre_remediator.analysis.models import Failure, Result, Sensitive
from sre_remediator.cluster import DEFAULT_NAMESPACE, ClusterAccessor
from sre_remediator.errors import ClusterError

logger = logging.getLogger(__name__)

# Container waiting reasons that indicate the pod will not recover on its own
FAILING_WAITING_REASONS = frozenset(
    {
        "CrashLoopBackOff",
        "ImagePullBackOff",
        "ErrImagePull",
        "InvalidImageName",
        "CreateContainerConfigError",
        "CreateContainerError",
        "RunContainerError",
    }
)

CONTROLLER_KINDS = frozenset({"Deployment", "StatefulSet", "DaemonSet", "Job", "CronJob"})


def _qualified(obj: dict[str, Any]) -> tuple[str, str]:
    meta = obj.get("metadata") or {}
    return meta.get("namespace") or DEFAULT_NAMESPACE, meta.get("name") or ""


def pod_failures(pod: dict[str, Any]) -> list[Failure]:
    """Failure messages for one pod object (raw API dict)."""
    namespace, name = _qualified(pod)
    sensitive = [Sensitive.of(name), Sensitive.of(namespace)]
    pod = f"{namespace}/{name}"
    status = pod.get("status") or {}
    failures: list[Failure] = []

    if status.get("phase") == "Pending":
        for cond in status.get("conditions") or []:
            if cond.get("type") == "PodScheduled" and cond.get("reason") == "Unschedulable":
                failures.append(Failure(text=f"Pod {pod} is unschedulable: {cond.get('message', '')}", sensitive=sensitive))

    for cs in status.get("containerStatuses") or []:
        container = cs.get("name", "")
        state = cs.get("state") or {}
        waiting = state.get("waiting") or {}
        reason = waiting.get("reason")
        if reason in FAILING_WAITING_REASONS:
            text = f"Container {container} of pod {pod} is in {reason}"
            last = (cs.get("lastState") or {}).get("terminated") or {}
            if reason == "CrashLoopBackOff" and last.get("reason"):
                text += f", the last termination reason is {last['reason']} (exit code {last.get('exitCode')})"
            elif waiting.get("message"):
                text += f": {waiting['message']}"
            failures.append(Failure(text=text, sensitive=sensitive))
            continue
        terminated = state.get("terminated") or {}
        if terminated.get("reason") == "OOMKilled":
            failures.append(Failure(text=f"Container {container} of pod {pod} was OOMKilled", sensitive=sensitive))

    if status.get("phase") == "Failed":
        failures.append(
            Failure(text=f"Pod {pod} failed: {status.get('reason') or ''} {status.get('message') or ''}".rstrip(), sensitive=sensitive)
        )
    return failures


def resolve_parent(accessor: ClusterAccessor, pod: dict[str, Any]) -> str:
    """Return the owning controller of a pod as Kind/name, or "" for a standalone pod."""
    namespace, _ = _qualified(pod)
    for ref in (pod.get("metadata") or {}).get("ownerReferences") or []:
        kind, name = ref.get("kind"), ref.get("name")
        if kind in CONTROLLER_KINDS:
            return f"{kind}/{name}"
        if kind == "ReplicaSet":
            try:
                rs = accessor.get("ReplicaSet", namespace, name)
            except ClusterError as e:
                logger.warning("Cannot resolve owner of ReplicaSet %s/%s: %s", namespace, name, e)
                return f"ReplicaSet/{name}"
            for owner in (rs.get("metadata") or {}).get("ownerReferences") or []:
                if owner.get("kind") == "Deployment":
                    return f"Deployment/{owner.get('name')}"
            return f"ReplicaSet/{name}"
    return ""


@register_analyzer
class PodAnalyzer(Analyzer):
    """Flags pods with crashing, unpullable or unschedulable containers."""

    name = "Pod"

    def analyze(self, context: AnalysisContext) -> list[Result]:
        results: list[Result] = []
        for pod in context.accessor.list("Pod", context.namespace, context.label_selector):
            if context.cancelled:
                break
            failures = pod_failures(pod)
            if not failures:
                continue
            namespace, name = _qualified(pod)
            results.append(
                Result(
                    kind="Pod",
                    name=f"{namespace}/{name}",
                    parent_object=resolve_parent(context.accessor, pod),
                    errors=failures,
                )
            )
        return results


@register_analyzer
class DeploymentAnalyzer(Analyzer):
    """Flags deployments with fewer ready replicas than desired."""

    name = "Deployment"

    def analyze(self, context: AnalysisContext) -> list[Result]:
        results: list[Result] = []
        for dep in context.accessor.list("Deployment", context.namespace, context.label_selector):
            namespace, name = _qualified(dep)
            desired = (dep.get("spec") or {}).get("replicas", 1)
            ready = (dep.get("status") or {}).get("readyReplicas") or 0
            if desired is None or ready >= desired:
                continue
            results.append(
                Result(
                    kind="Deployment",
                    name=f"{namespace}/{name}",
                    errors=[
                        Failure(
                            text=f"Deployment {namespace}/{name} has {ready} ready replica(s) out of {desired} desired",
                            sensitive=[Sensitive.of(name), Sensitive.of(namespace)],
                        )
                    ],
                )
            )
        return results
