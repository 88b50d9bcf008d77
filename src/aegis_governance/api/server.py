# AEGIS Governance
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
#
# This file is part of AEGIS Governance.
#
# AEGIS Governance is dual-licensed:
#
# 1. Open Source: GNU Affero General Public License v3.0 (AGPL-3.0)
# 2. Commercial: Available from Phoenix Link (Pty) Ltd
#
# Contributions require a signed CLA. See COPYRIGHT.md and CLA.md.
"""
AEGIS Governance -- Orchestrator API

Serves the orchestrator REST surface over any OrchestratorRuntime
(normally an EmbeddedRuntime). ExternalRuntime is the matching client.

    POST /v1/workspaces/{ws}/agents/{id}/start       {spec}            -> {success}
    POST /v1/workspaces/{ws}/agents/{id}/stop                          -> {success}
    GET  /v1/workspaces/{ws}/agents/{id}/status                        -> {status}
    GET  /v1/workspaces/{ws}/agents/statuses?page&limit                -> {agents[], total}
    GET  /v1/workspaces/{ws}/policy/snapshot                           -> PolicySnapshot
    POST /v1/workspaces/{ws}/policy/hotreload        {bundle, actor}   -> {oldHash, newHash, revalidated}
    POST /v1/workspaces/{ws}/policy/revalidate       {agentIds[]}      -> [{agentId, status}]
    GET  /v1/workspaces/{ws}/agents/{id}/governance                    -> {governance: {proofBundle}}
    GET  /metrics                                                      -> Prometheus text

Governance errors are returned as ``{code, message, details}`` with a
matching HTTP status.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from fastapi import APIRouter, FastAPI, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field
from starlette.middleware.base import BaseHTTPMiddleware

from aegis_governance import __version__
from aegis_governance.core.logging import GovernanceLogger, get_logger
from aegis_governance.errors import (
    AdmissionDenied,
    AgentNotFound,
    ConfigError,
    GovernanceError,
    InvalidTransition,
    PolicyMissing,
    SignatureInvalid,
    SignerRevoked,
    SpecTamperDetected,
    StorageUnavailable,
    TransientNetworkError,
    ValidationError,
)
from aegis_governance.governance.metrics import GovernanceMetrics
from aegis_governance.models import Actor, AgentSpec
from aegis_governance.runtime.base import DEFAULT_POLICY_SET, OrchestratorRuntime
from aegis_governance.runtime.external import revalidation_items

logger = logging.getLogger("aegis_governance.api.server")

# Most specific class first.
_STATUS_CODES: list[tuple[type[GovernanceError], int]] = [
    (AgentNotFound, 404),
    (PolicyMissing, 404),
    (InvalidTransition, 409),
    (SpecTamperDetected, 409),
    (ValidationError, 400),
    (AdmissionDenied, 403),
    (SignatureInvalid, 403),
    (SignerRevoked, 403),
    (StorageUnavailable, 503),
    (TransientNetworkError, 503),
    (ConfigError, 500),
]


def status_code_for(exc: GovernanceError) -> int:
    for cls, status in _STATUS_CODES:
        if isinstance(exc, cls):
            return status
    return 500


# =============================================================================
# Request models
# =============================================================================


class StartAgentRequest(BaseModel):
    spec: dict[str, Any] | None = None


class ActorModel(BaseModel):
    type: str = "user"
    id: str = ""
    reason: str = ""


class HotReloadRequest(BaseModel):
    bundle: dict[str, Any]
    actor: ActorModel = Field(default_factory=ActorModel)
    policySet: str = DEFAULT_POLICY_SET


class RevalidateRequest(BaseModel):
    agentIds: list[str] | None = None
    policySet: str = DEFAULT_POLICY_SET


# =============================================================================
# Middleware
# =============================================================================


class BearerAuthMiddleware(BaseHTTPMiddleware):
    """
    Bearer token check.

    With a key configured every request must carry
        Authorization: Bearer <key>
    Health probes are exempt. Without a key all requests pass through.
    """

    _EXEMPT_PATHS = {"/health"}

    def __init__(self, app, api_key: str | None = None):
        super().__init__(app)
        self._api_key = api_key

    async def dispatch(self, request: Request, call_next):
        if not self._api_key or request.url.path in self._EXEMPT_PATHS:
            return await call_next(request)

        auth_header = request.headers.get("authorization", "")
        if not auth_header.startswith("Bearer ") or auth_header[7:] != self._api_key:
            logger.warning("Unauthorized request to %s", request.url.path)
            return JSONResponse(
                status_code=401,
                content={"code": "UNAUTHORIZED", "message": "Invalid or missing API key", "details": {}},
            )
        return await call_next(request)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every HTTP request with method, path, status, and latency."""

    def __init__(self, app, event_log: GovernanceLogger):
        super().__init__(app)
        self._events = event_log

    async def dispatch(self, request: Request, call_next):
        start = time.time()
        response = await call_next(request)
        latency_ms = int((time.time() - start) * 1000)
        if request.url.path != "/health":
            self._events.http_request(
                method=request.method,
                path=request.url.path,
                status=response.status_code,
                latency_ms=latency_ms,
            )
        return response


# =============================================================================
# Routes
# =============================================================================


def build_router(runtime: OrchestratorRuntime) -> APIRouter:
    router = APIRouter(prefix="/v1/workspaces/{workspace_id}", tags=["orchestrator"])

    @router.post("/agents/{agent_id}/start")
    async def start_agent(workspace_id: str, agent_id: str, request: StartAgentRequest | None = None):
        spec = None
        if request is not None and request.spec:
            spec = AgentSpec.from_dict({**request.spec, "id": agent_id, "workspaceId": workspace_id})
        success = await runtime.start_agent(workspace_id, agent_id, spec)
        return {"success": success}

    @router.post("/agents/{agent_id}/stop")
    async def stop_agent(workspace_id: str, agent_id: str):
        return {"success": await runtime.stop_agent(workspace_id, agent_id)}

    @router.get("/agents/statuses")
    async def list_agent_statuses(
        workspace_id: str,
        page: int = Query(1, ge=1),
        limit: int = Query(50, ge=1, le=500),
    ):
        agents, total = await runtime.list_agent_statuses(workspace_id, page=page, limit=limit)
        return {"agents": [a.to_dict() for a in agents], "total": total}

    @router.get("/agents/{agent_id}/status")
    async def get_agent_status(workspace_id: str, agent_id: str):
        status = await runtime.get_agent_status(workspace_id, agent_id)
        return {"status": status.to_dict()}

    @router.get("/agents/{agent_id}/governance")
    async def get_governance(workspace_id: str, agent_id: str):
        explanation = await runtime.get_governance_explanation(workspace_id, agent_id)
        return explanation.to_dict()

    @router.get("/policy/snapshot")
    async def get_policy_snapshot(workspace_id: str, policySet: str = DEFAULT_POLICY_SET):
        snapshot = await runtime.get_policy_snapshot(workspace_id, policySet)
        return snapshot.to_dict()

    @router.post("/policy/hotreload")
    async def hot_reload(workspace_id: str, request: HotReloadRequest):
        actor = Actor(type=request.actor.type, id=request.actor.id, reason=request.actor.reason)
        result = await runtime.hot_reload_policy(workspace_id, request.policySet, request.bundle, actor)
        return result.to_dict()

    @router.post("/policy/revalidate")
    async def revalidate(workspace_id: str, request: RevalidateRequest | None = None):
        request = request or RevalidateRequest()
        result = await runtime.revalidate_agents(workspace_id, request.agentIds, request.policySet)
        return revalidation_items(result)

    return router


def create_app(
    runtime: OrchestratorRuntime,
    api_key: str | None = None,
    event_log: GovernanceLogger | None = None,
    metrics: GovernanceMetrics | None = None,
) -> FastAPI:
    """Build the orchestrator API for a runtime.

    With ``metrics`` the governance counters are served at ``/metrics``.
    """
    app = FastAPI(
        title="AEGIS Governance Orchestrator",
        description="Agent lifecycle, policy hot-reload and governance proofs",
        version=__version__,
    )

    @app.exception_handler(GovernanceError)
    async def _governance_error(request: Request, exc: GovernanceError):
        status = status_code_for(exc)
        if status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=status, content=exc.to_dict())

    @app.get("/health")
    async def health():
        return {"status": "healthy", "version": __version__, "runtime": runtime.mode.value}

    if metrics is not None:

        @app.get("/metrics", response_class=PlainTextResponse)
        async def prometheus_metrics():
            return PlainTextResponse(metrics.to_prometheus(), media_type="text/plain; version=0.0.4")

    app.include_router(build_router(runtime))
    app.add_middleware(BearerAuthMiddleware, api_key=api_key)
    app.add_middleware(RequestLoggingMiddleware, event_log=event_log or get_logger())
    app.state.runtime = runtime
    return app
