"""FastAPI application exposing apply, pod and deployment endpoints of one cluster."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from starlette.concurrency import run_in_threadpool

from sre_remediator import __version__
from sre_remediator.cluster import (
    DEFAULT_NAMESPACE,
    ApplyOutcome,
    ClusterAccessor,
    DeploymentPods,
    PodStatus,
)
from sre_remediator.config import DEFAULT_FIELD_MANAGER
from sre_remediator.errors import ApplyError, ClusterError, InputError, ResourceNotFound

logger = logging.getLogger(__name__)

YAML_MEDIA_TYPE = "application/yaml"


def _error(status: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status, content={"error": message})


def create_app(
    accessor: ClusterAccessor,
    field_manager: str = DEFAULT_FIELD_MANAGER,
    ready: Callable[[], bool] | None = None,
) -> FastAPI:
    """Build the agent API around one accessor; readiness defaults to a ping of its cluster."""
    ready = ready or accessor.ping
    app = FastAPI(
        title="SRE Remediator Agent",
        description="Apply manifests and read pod and deployment state of the cluster",
        version=__version__,
    )

    @app.exception_handler(ResourceNotFound)
    async def not_found(request: Request, exc: ResourceNotFound) -> JSONResponse:
        logger.info("%s %s: %s", request.method, request.url.path, exc)
        return _error(404, str(exc))

    @app.exception_handler(InputError)
    async def bad_input(request: Request, exc: InputError) -> JSONResponse:
        logger.warning("%s %s: %s", request.method, request.url.path, exc)
        return _error(400, str(exc))

    @app.exception_handler(ClusterError)
    async def cluster_failure(request: Request, exc: ClusterError) -> JSONResponse:
        # Undecodable manifests never reached the API server
        status = 400 if isinstance(exc, ApplyError) and exc.status is None else 500
        logger.error("%s %s: %s", request.method, request.url.path, exc)
        return _error(status, str(exc))

    # ---- PROBES ----
    @app.get("/livez", tags=["probes"])
    def livez() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/readyz", tags=["probes"])
    def readyz() -> JSONResponse:
        if not ready():
            return JSONResponse(status_code=503, content={"status": "not ready"})
        return JSONResponse(content={"status": "ok"})

    # ---- API ----
    @app.post("/apply", tags=["cluster"], response_model=ApplyOutcome)
    async def apply(request: Request) -> ApplyOutcome:
        """Server-side apply the YAML manifest in the request body."""
        body = await request.body()
        try:
            manifest = body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InputError(f"request body is not UTF-8 text: {e}") from e
        outcome = await run_in_threadpool(accessor.apply, manifest, field_manager, True)
        logger.info("Applied %s", outcome.target)
        return outcome

    @app.get("/pods", tags=["cluster"])
    def list_pods(namespace: str = Query(default=DEFAULT_NAMESPACE)) -> dict[str, Any]:
        pods = accessor.list("Pod", namespace or DEFAULT_NAMESPACE)
        logger.info("Listed %d pod(s) in %s", len(pods), namespace)
        return {"kind": "PodList", "apiVersion": "v1", "items": pods}

    @app.get("/pods/{namespace}/{pod}/status", tags=["cluster"], response_model=PodStatus)
    def pod_status(namespace: str, pod: str) -> PodStatus:
        return accessor.pod_status(namespace, pod)

    @app.get("/pods/{namespace}/{pod}/logs", tags=["cluster"])
    def pod_logs(namespace: str, pod: str, container: str | None = None) -> StreamingResponse:
        chunks = accessor.stream_logs(namespace, pod, container)
        return StreamingResponse(chunks, media_type="text/plain")

    @app.get("/pod/{namespace}/{pod}/yaml", tags=["cluster"])
    def pod_yaml(namespace: str, pod: str) -> PlainTextResponse:
        return PlainTextResponse(accessor.manifest_yaml("Pod", namespace, pod), media_type=YAML_MEDIA_TYPE)

    @app.get("/deployment/{namespace}/{name}/yaml", tags=["cluster"])
    def deployment_yaml(namespace: str, name: str) -> PlainTextResponse:
        return PlainTextResponse(accessor.manifest_yaml("Deployment", namespace, name), media_type=YAML_MEDIA_TYPE)

    @app.get("/deployments/{namespace}/{name}/pods", tags=["cluster"], response_model=DeploymentPods)
    def deployment_pods(namespace: str, name: str) -> DeploymentPods:
        names = accessor.workload_pod_names("Deployment", namespace, name)
        return DeploymentPods(name=name, namespace=namespace, pod_names=names)

    return app
