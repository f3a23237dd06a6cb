"""Cluster accessor backed by the official Kubernetes Python client."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from datetime import timezone
from typing import Any

import yaml
from kubernetes import client, config, dynamic
from kubernetes.client.rest import ApiException
from kubernetes.dynamic.exceptions import ResourceNotFoundError
from urllib3.exceptions import HTTPError

from sre_remediator.cluster.accessor import DEFAULT_NAMESPACE, ClusterAccessor
from sre_remediator.cluster.models import (
    WORKLOAD_KINDS,
    ApplyOutcome,
    ContainerStatus,
    PodCondition,
    PodStatus,
    ProbeResult,
    ProbeStatus,
    TerminationState,
)
from sre_remediator.errors import ApplyError, ClusterError, InputError, ResourceNotFound

logger = logging.getLogger(__name__)

# apiVersion used to look up a kind through the dynamic client
KIND_API_VERSIONS: dict[str, str] = {
    "Pod": "v1",
    "Service": "v1",
    "ConfigMap": "v1",
    "PersistentVolumeClaim": "v1",
    "Node": "v1",
    "Deployment": "apps/v1",
    "ReplicaSet": "apps/v1",
    "StatefulSet": "apps/v1",
    "DaemonSet": "apps/v1",
    "Job": "batch/v1",
    "CronJob": "batch/v1",
    "Ingress": "networking.k8s.io/v1",
    "HorizontalPodAutoscaler": "autoscaling/v2",
}

LOG_CHUNK_SIZE = 4096
PING_TIMEOUT_SECONDS = 5

# Connection refused, DNS failures, timeouts and exhausted retries
TRANSPORT_ERRORS = (HTTPError, OSError)


def _load_kube_config(kubeconfig_path: str | None, context: str | None) -> client.Configuration:
    """Load in-cluster or kubeconfig-based configuration."""
    try:
        config.load_incluster_config()
        return client.Configuration.get_default_copy()
    except config.ConfigException:
        pass
    kwargs: dict[str, Any] = {}
    if kubeconfig_path:
        kwargs["config_file"] = str(kubeconfig_path)
    if context:
        kwargs["context"] = context
    config.load_kube_config(**kwargs)
    return client.Configuration.get_default_copy()


def _utc(ts: Any) -> Any:
    return ts.replace(tzinfo=timezone.utc) if ts else None


def _parse_last_state(container_status: Any) -> TerminationState | None:
    last = getattr(container_status, "last_state", None)
    terminated = getattr(last, "terminated", None) if last else None
    if terminated is None:
        return None
    return TerminationState(
        reason=terminated.reason,
        message=terminated.message,
        exit_code=terminated.exit_code,
        finished_at=_utc(terminated.finished_at),
    )


def _parse_container_status(container_status: Any) -> ContainerStatus:
    """Extract state and readiness from V1ContainerStatus."""
    state = "unknown"
    reason = None
    message = None
    exit_code = None
    current = container_status.state
    if current and current.waiting:
        state = "waiting"
        reason = current.waiting.reason
        message = current.waiting.message
    elif current and current.running:
        state = "running"
    elif current and current.terminated:
        state = "terminated"
        reason = current.terminated.reason
        message = current.terminated.message
        exit_code = current.terminated.exit_code
    return ContainerStatus(
        name=container_status.name or "",
        image=container_status.image or "",
        ready=bool(container_status.ready),
        state=state,
        reason=reason,
        message=message,
        exit_code=exit_code,
        restart_count=container_status.restart_count or 0,
        last_state=_parse_last_state(container_status),
    )


def format_probe_details(probe: Any) -> str:
    """Describe a V1Probe handler and its timing, e.g. 'http-get :8080/healthz delay=5s timeout=1s period=10s'."""
    if probe is None:
        return ""
    handler = ""
    command = getattr(probe, "_exec", None)
    if command is not None:
        handler = f"exec {' '.join(command.command or [])}"
    elif probe.http_get is not None:
        handler = f"http-get {probe.http_get.host or ''}:{probe.http_get.port}{probe.http_get.path or ''}"
    elif probe.tcp_socket is not None:
        handler = f"tcp-socket {probe.tcp_socket.port}"
    timing = (
        f"delay={probe.initial_delay_seconds or 0}s "
        f"timeout={probe.timeout_seconds or 0}s "
        f"period={probe.period_seconds or 0}s"
    )
    return f"{handler} {timing}" if handler else timing


def _probe_status(probe: Any, container_status: ContainerStatus) -> ProbeStatus:
    return ProbeStatus(
        status=container_status.ready,
        details=format_probe_details(probe),
        success_threshold=probe.success_threshold or 0,
        failure_threshold=probe.failure_threshold or 0,
    )


def build_probe_results(containers: list[Any], statuses: list[ContainerStatus]) -> list[ProbeResult]:
    """Pair each spec container's probes with its observed status."""
    by_name = {s.name: s for s in statuses}
    results = []
    for container in containers:
        result = ProbeResult(container_name=container.name)
        status = by_name.get(container.name)
        if status is not None:
            if container.liveness_probe is not None:
                liveness = _probe_status(container.liveness_probe, status)
                # Liveness failures show up as restarts
                liveness.failure_count = status.restart_count
                if status.last_state is not None:
                    liveness.failure = status.last_state.message
                    liveness.last_probe_time = status.last_state.finished_at
                result.liveness = liveness
            if container.readiness_probe is not None:
                result.readiness = _probe_status(container.readiness_probe, status)
        results.append(result)
    return results


def build_pod_status(pod: Any) -> PodStatus:
    """Build PodStatus from V1Pod."""
    status = pod.status
    conditions = []
    for c in getattr(status, "conditions", []) or []:
        conditions.append(
            PodCondition(
                type=c.type or "",
                status=c.status or "",
                reason=getattr(c, "reason", None),
                message=getattr(c, "message", None),
                last_transition=_utc(c.last_transition_time),
            )
        )
    container_statuses = [_parse_container_status(cs) for cs in getattr(status, "container_statuses", []) or []]
    containers = (pod.spec.containers or []) if pod.spec else []
    return PodStatus(
        name=pod.metadata.name,
        namespace=pod.metadata.namespace or DEFAULT_NAMESPACE,
        phase=getattr(status, "phase", None) or "Unknown",
        conditions=conditions,
        container_statuses=container_statuses,
        probe_results=build_probe_results(containers, container_statuses),
        start_time=_utc(getattr(status, "start_time", None)),
        pod_ip=getattr(status, "pod_ip", None),
        host_ip=getattr(status, "host_ip", None),
    )


def simplify_manifest(obj: dict[str, Any]) -> dict[str, Any]:
    """Strip status and server-managed metadata, keeping what a corrected manifest needs."""
    metadata = obj.get("metadata") or {}
    simplified: dict[str, Any] = {
        "apiVersion": obj.get("apiVersion"),
        "kind": obj.get("kind"),
        "metadata": {"name": metadata.get("name")},
    }
    if metadata.get("namespace"):
        simplified["metadata"]["namespace"] = metadata["namespace"]
    if "spec" in obj:
        simplified["spec"] = obj["spec"]
    elif "data" in obj:
        simplified["data"] = obj["data"]
    return simplified


def label_selector_from(match_labels: dict[str, str] | None, match_expressions: list[dict[str, Any]] | None = None) -> str:
    """Render matchLabels and matchExpressions as a label selector string."""
    terms = [f"{k}={v}" for k, v in sorted((match_labels or {}).items())]
    for expr in match_expressions or []:
        key, operator, values = expr["key"], expr["operator"], expr.get("values") or []
        if operator == "In":
            terms.append(f"{key} in ({','.join(values)})")
        elif operator == "NotIn":
            terms.append(f"{key} notin ({','.join(values)})")
        elif operator == "Exists":
            terms.append(key)
        elif operator == "DoesNotExist":
            terms.append(f"!{key}")
    return ",".join(terms)


def owned_by(obj: dict[str, Any], owner: dict[str, Any]) -> bool:
    """Whether obj carries an owner reference to owner (matched by uid, else kind and name)."""
    owner_meta = owner.get("metadata") or {}
    for ref in (obj.get("metadata") or {}).get("ownerReferences") or []:
        if owner_meta.get("uid") and ref.get("uid"):
            if ref["uid"] == owner_meta["uid"]:
                return True
        elif ref.get("kind") == owner.get("kind") and ref.get("name") == owner_meta.get("name"):
            return True
    return False


def _api_error(e: ApiException, what: str) -> ClusterError:
    return ClusterError(f"{what}: {e.reason} ({e.status})", status=e.status)


def _transport_error(e: Exception, what: str) -> ClusterError:
    return ClusterError(f"{what}: cluster API unreachable: {e}")


class KubernetesAccessor(ClusterAccessor):
    """Reads and applies cluster resources with the typed and dynamic Kubernetes clients."""

    def __init__(
        self,
        kubeconfig: str | None = None,
        context: str | None = None,
        api_client: client.ApiClient | None = None,
    ) -> None:
        if api_client is None:
            api_client = client.ApiClient(_load_kube_config(kubeconfig, context))
        self._api_client = api_client
        self._core = client.CoreV1Api(api_client)
        self._version = client.VersionApi(api_client)
        self._dynamic: dynamic.DynamicClient | None = None

    @property
    def dynamic_client(self) -> dynamic.DynamicClient:
        # Discovery hits the API server, so build lazily
        if self._dynamic is None:
            try:
                self._dynamic = dynamic.DynamicClient(self._api_client)
            except ApiException as e:
                raise _api_error(e, "API discovery failed") from e
            except TRANSPORT_ERRORS as e:
                raise _transport_error(e, "API discovery failed") from e
        return self._dynamic

    def ping(self) -> bool:
        try:
            self._version.get_code(_request_timeout=PING_TIMEOUT_SECONDS)
        except ApiException as e:
            logger.warning("Cluster API not ready: %s (%s)", e.reason, e.status)
            return False
        except TRANSPORT_ERRORS as e:
            logger.warning("Cluster API unreachable: %s", e)
            return False
        return True

    def _resource(self, kind: str, api_version: str | None = None) -> Any:
        version = api_version or KIND_API_VERSIONS.get(kind)
        try:
            if version:
                return self.dynamic_client.resources.get(api_version=version, kind=kind)
            return self.dynamic_client.resources.get(kind=kind)
        except ResourceNotFoundError as e:
            raise InputError(f"unknown resource kind: {kind}") from e
        except ApiException as e:
            raise _api_error(e, f"discovery for {kind} failed") from e
        except TRANSPORT_ERRORS as e:
            raise _transport_error(e, f"discovery for {kind} failed") from e

    def get(self, kind: str, namespace: str | None, name: str) -> dict[str, Any]:
        resource = self._resource(kind)
        try:
            if resource.namespaced:
                obj = resource.get(name=name, namespace=namespace or DEFAULT_NAMESPACE)
            else:
                obj = resource.get(name=name)
        except ApiException as e:
            if e.status == 404:
                raise ResourceNotFound(kind, namespace, name) from e
            raise _api_error(e, f"failed to get {kind} {namespace}/{name}") from e
        except TRANSPORT_ERRORS as e:
            raise _transport_error(e, f"failed to get {kind} {namespace}/{name}") from e
        return obj.to_dict()

    def list(self, kind: str, namespace: str | None = None, label_selector: str | None = None) -> list[dict[str, Any]]:
        resource = self._resource(kind)
        kwargs: dict[str, Any] = {}
        if label_selector:
            kwargs["label_selector"] = label_selector
        if namespace and resource.namespaced:
            kwargs["namespace"] = namespace
        try:
            listing = resource.get(**kwargs)
        except ApiException as e:
            raise _api_error(e, f"failed to list {kind}") from e
        except TRANSPORT_ERRORS as e:
            raise _transport_error(e, f"failed to list {kind}") from e
        items = listing.to_dict().get("items") or []
        for item in items:
            # List items omit kind/apiVersion
            item.setdefault("kind", kind)
            item.setdefault("apiVersion", resource.group_version)
        return items

    def manifest_yaml(self, kind: str, namespace: str, name: str) -> str:
        obj = self.get(kind, namespace, name)
        return yaml.safe_dump(simplify_manifest(obj), sort_keys=False)

    def apply(self, manifest: str, field_manager: str, force: bool = True) -> ApplyOutcome:
        try:
            body = yaml.safe_load(manifest)
        except yaml.YAMLError as e:
            raise ApplyError(f"failed to decode manifest: {e}") from e
        if not isinstance(body, dict) or not body.get("kind") or not body.get("apiVersion"):
            raise ApplyError("manifest must be a single object with apiVersion and kind")
        metadata = body["metadata"] = body.get("metadata") or {}
        name = metadata.get("name")
        if not name:
            raise ApplyError("manifest has no metadata.name")

        resource = self._resource(body["kind"], body["apiVersion"])
        namespace = None
        if resource.namespaced:
            namespace = metadata.get("namespace") or DEFAULT_NAMESPACE
            metadata["namespace"] = namespace
        logger.info("Applying %s %s/%s", body["kind"], namespace, name)
        try:
            resource.server_side_apply(
                body=body,
                name=name,
                namespace=namespace,
                field_manager=field_manager,
                force_conflicts=force,
            )
        except ApiException as e:
            raise ApplyError(f"failed to apply {body['kind']} {namespace}/{name}: {e.reason} ({e.status})", e.status) from e
        except TRANSPORT_ERRORS as e:
            raise _transport_error(e, f"failed to apply {body['kind']} {namespace}/{name}") from e
        return ApplyOutcome(kind=body["kind"], namespace=namespace or "", name=name, action="applied")

    def pod_status(self, namespace: str, name: str) -> PodStatus:
        try:
            pod = self._core.read_namespaced_pod(name=name, namespace=namespace)
        except ApiException as e:
            if e.status == 404:
                raise ResourceNotFound("Pod", namespace, name) from e
            raise _api_error(e, f"failed to get pod {namespace}/{name}") from e
        except TRANSPORT_ERRORS as e:
            raise _transport_error(e, f"failed to get pod {namespace}/{name}") from e
        return build_pod_status(pod)

    def workload_pod_names(self, kind: str, namespace: str, name: str) -> list[str]:
        if kind not in WORKLOAD_KINDS:
            raise InputError(f"{kind} does not own pods")
        workload = self.get(kind, namespace, name)
        if kind == "CronJob":
            # A CronJob has no selector of its own; its pods belong to the Jobs it spawned
            names: list[str] = []
            for job in self.list("Job", namespace):
                if owned_by(job, workload):
                    names.extend(self._selected_pod_names(job, namespace))
            return names
        return self._selected_pod_names(workload, namespace)

    def _selected_pod_names(self, workload: dict[str, Any], namespace: str) -> list[str]:
        selector = (workload.get("spec") or {}).get("selector") or {}
        label_selector = label_selector_from(selector.get("matchLabels"), selector.get("matchExpressions"))
        what = f"{workload.get('kind')} {namespace}/{(workload.get('metadata') or {}).get('name')}"
        if not label_selector:
            # An empty selector would match every pod in the namespace
            logger.warning("%s has no pod selector", what)
            return []
        try:
            pods = self._core.list_namespaced_pod(namespace=namespace, label_selector=label_selector)
        except ApiException as e:
            raise _api_error(e, f"failed to list pods of {what}") from e
        except TRANSPORT_ERRORS as e:
            raise _transport_error(e, f"failed to list pods of {what}") from e
        return [p.metadata.name for p in pods.items]

    def stream_logs(self, namespace: str, name: str, container: str | None = None) -> Iterator[bytes]:
        kwargs: dict[str, Any] = {"_preload_content": False, "follow": False}
        if container:
            kwargs["container"] = container
        try:
            resp = self._core.read_namespaced_pod_log(name=name, namespace=namespace, **kwargs)
        except ApiException as e:
            if e.status == 404:
                raise ResourceNotFound("Pod", namespace, name) from e
            raise _api_error(e, f"failed to get logs of pod {namespace}/{name}") from e
        except TRANSPORT_ERRORS as e:
            raise _transport_error(e, f"failed to get logs of pod {namespace}/{name}") from e
        return self._iter_stream(resp, f"pod {namespace}/{name}")

    @staticmethod
    def _iter_stream(resp: Any, what: str) -> Iterator[bytes]:
        try:
            yield from resp.stream(LOG_CHUNK_SIZE)
        except TRANSPORT_ERRORS as e:
            raise _transport_error(e, f"log stream of {what} broke") from e
        finally:
            resp.release_conn()
