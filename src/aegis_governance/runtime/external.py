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
External orchestrator runtime -- REST client with retry.

All calls go to ``{base_url}/v1/workspaces/{workspace_id}/...`` with a
bearer API key. Failures are retried with exponential backoff
(``backoff_base ** attempt`` seconds between attempts); after the last
attempt a TransientNetworkError names how many attempts were made.

Reads are always retried. A mutation (start, stop, hotreload,
revalidate) is only retried when the failure shows the request never
reached the orchestrator (connection refused, connect timeout) or the
orchestrator refused it up front (429, 503), unless ``retry_mutations``
is set. Every mutation carries an ``Idempotency-Key`` that stays the same
across its retries so the orchestrator can deduplicate.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx

from aegis_governance.core.config import ExternalRuntimeSettings
from aegis_governance.core.logging import GovernanceLogger, get_logger
from aegis_governance.errors import (
    AdmissionDenied,
    AgentNotFound,
    ErrorCodes,
    PolicyMissing,
    RemoteRequestError,
    TransientNetworkError,
    ValidationError,
)
from aegis_governance.models import (
    Actor,
    AgentSpec,
    AgentStatus,
    GovernanceExplanation,
    GovernanceStatus,
    HotReloadResult,
    PolicySnapshot,
    RevalidationResult,
    RuntimeMode,
)
from aegis_governance.runtime.base import DEFAULT_POLICY_SET, OrchestratorRuntime

logger = logging.getLogger("aegis_governance.runtime.external")

# Statuses worth retrying for any request.
RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})
# Statuses that prove a mutation was not executed.
UNDELIVERED_STATUSES = frozenset({429, 503})
# Transport errors raised before the request left the client.
UNDELIVERED_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout)


@dataclass
class RetryPolicy:
    """Retry configuration for remote orchestrator calls."""

    max_retries: int = 3
    backoff_base: float = 2.0
    retry_mutations: bool = False

    def get_delay(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        return self.backoff_base**attempt

    def should_retry_error(self, error: httpx.TransportError, mutation: bool) -> bool:
        if not mutation or self.retry_mutations:
            return True
        return isinstance(error, UNDELIVERED_ERRORS)

    def should_retry_status(self, status: int, mutation: bool) -> bool:
        if not mutation or self.retry_mutations:
            return status in RETRYABLE_STATUSES
        return status in UNDELIVERED_STATUSES


class ExternalRuntime(OrchestratorRuntime):
    """OrchestratorRuntime backed by a remote orchestrator's REST API.

    Usage::

        async with ExternalRuntime("https://orch.internal", api_key) as runtime:
            snapshot = await runtime.get_policy_snapshot("ws-1")
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 30.0,
        retry: RetryPolicy | None = None,
        verify: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        event_log: GovernanceLogger | None = None,
    ):
        if not base_url:
            raise ValidationError("ExternalRuntime requires a base_url")
        self._retry = retry or RetryPolicy()
        if self._retry.max_retries < 1:
            raise ValidationError("max_retries must be at least 1")
        self._sleep = sleep
        self._events = event_log or get_logger()
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {api_key}",
            },
            timeout=httpx.Timeout(timeout),
            verify=verify,
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        settings: ExternalRuntimeSettings,
        event_log: GovernanceLogger | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> ExternalRuntime:
        return cls(
            settings.base_url,
            settings.api_key,
            timeout=settings.timeout_seconds,
            retry=RetryPolicy(
                max_retries=settings.max_retries,
                backoff_base=settings.backoff_base,
                retry_mutations=settings.retry_mutations,
            ),
            verify=settings.verify_tls,
            transport=transport,
            event_log=event_log,
        )

    @property
    def mode(self) -> RuntimeMode:
        return RuntimeMode.EXTERNAL

    async def close(self) -> None:
        await self._client.aclose()

    # =========================================================================
    # Transport
    # =========================================================================

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> Any:
        mutation = idempotency_key is not None
        headers = {"Idempotency-Key": idempotency_key} if mutation else None
        max_retries = self._retry.max_retries
        last_error = ""

        for attempt in range(1, max_retries + 1):
            start = time.monotonic()
            try:
                response = await self._client.request(
                    method, path, json=json, params=params, headers=headers
                )
            except httpx.TransportError as exc:
                last_error = f"{type(exc).__name__}: {exc}"
                self._events.remote_call(
                    method, path, attempt=attempt, success=False, error=last_error
                )
                if not self._retry.should_retry_error(exc, mutation):
                    raise TransientNetworkError(
                        f"{method} {path} failed after {attempt} attempt(s) (not retried: "
                        f"request may have been delivered)",
                        attempts=attempt,
                        last_error=last_error,
                    ) from exc
            else:
                latency_ms = int((time.monotonic() - start) * 1000)
                status = response.status_code
                self._events.remote_call(
                    method,
                    path,
                    status=status,
                    attempt=attempt,
                    latency_ms=latency_ms,
                    success=response.is_success,
                )
                if response.is_success:
                    return response.json() if response.content else None
                last_error = f"HTTP {status}"
                if not self._retry.should_retry_status(status, mutation):
                    raise self._error_from_response(response)

            if attempt < max_retries:
                delay = self._retry.get_delay(attempt)
                logger.warning(
                    "[orchestrator] Retrying %s %s in %.1fs (%s, attempt %d/%d)",
                    method,
                    path,
                    delay,
                    last_error,
                    attempt,
                    max_retries,
                )
                await self._sleep(delay)

        raise TransientNetworkError(
            f"Request failed after {max_retries} attempts: {method} {path} ({last_error})",
            attempts=max_retries,
            last_error=last_error,
        )

    @staticmethod
    def _error_from_response(response: httpx.Response) -> Exception:
        """Map an orchestrator error body back to the governance error it reports."""
        try:
            body = response.json()
        except ValueError:
            body = response.text
        code = body.get("code") if isinstance(body, dict) else None
        message = body.get("message", "") if isinstance(body, dict) else str(body)
        details = (body.get("details") if isinstance(body, dict) else None) or {}

        if code == ErrorCodes.AGENT_NOT_FOUND:
            return AgentNotFound(details.get("agentId", ""))
        if code == ErrorCodes.POLICY_MISSING:
            return PolicyMissing(message, details=details)
        if response.status_code == 403 and "codes" in details:
            return AdmissionDenied(details.get("agentId", ""), details.get("reasons", []), details["codes"])
        if code in (ErrorCodes.VALIDATION_FAILED, ErrorCodes.INVALID_TRANSITION):
            return ValidationError(message, errors=details.get("errors"), code=code)
        return RemoteRequestError(
            f"Orchestrator returned HTTP {response.status_code}: {message}",
            status_code=response.status_code,
            body=body,
        )

    @staticmethod
    def _idempotency_key(subject: str, intent: str) -> str:
        return f"{subject}:{intent}:{uuid.uuid4().hex}"

    @staticmethod
    def _ws(workspace_id: str) -> str:
        return f"/v1/workspaces/{workspace_id}"

    # =========================================================================
    # OrchestratorRuntime
    # =========================================================================

    async def start_agent(
        self, workspace_id: str, agent_id: str, spec: AgentSpec | None = None
    ) -> bool:
        data = await self._request(
            "POST",
            f"{self._ws(workspace_id)}/agents/{agent_id}/start",
            json={"spec": spec.to_dict() if spec else None},
            idempotency_key=self._idempotency_key(agent_id, "start"),
        )
        return bool(data and data.get("success"))

    async def stop_agent(self, workspace_id: str, agent_id: str) -> bool:
        data = await self._request(
            "POST",
            f"{self._ws(workspace_id)}/agents/{agent_id}/stop",
            idempotency_key=self._idempotency_key(agent_id, "stop"),
        )
        return bool(data and data.get("success"))

    async def get_agent_status(self, workspace_id: str, agent_id: str) -> AgentStatus:
        data = await self._request("GET", f"{self._ws(workspace_id)}/agents/{agent_id}/status")
        return AgentStatus.from_dict(data["status"])

    async def list_agent_statuses(
        self, workspace_id: str, page: int = 1, limit: int = 50
    ) -> tuple[list[AgentStatus], int]:
        data = await self._request(
            "GET",
            f"{self._ws(workspace_id)}/agents/statuses",
            params={"page": page, "limit": limit},
        )
        agents = [AgentStatus.from_dict(item) for item in data.get("agents", [])]
        return agents, int(data.get("total", len(agents)))

    async def get_policy_snapshot(
        self, workspace_id: str, policy_set: str = DEFAULT_POLICY_SET
    ) -> PolicySnapshot:
        data = await self._request(
            "GET",
            f"{self._ws(workspace_id)}/policy/snapshot",
            params={"policySet": policy_set},
        )
        return PolicySnapshot.from_dict(data)

    async def hot_reload_policy(
        self,
        workspace_id: str,
        policy_set: str,
        bundle: dict[str, Any],
        actor: Actor,
    ) -> HotReloadResult:
        data = await self._request(
            "POST",
            f"{self._ws(workspace_id)}/policy/hotreload",
            json={"bundle": bundle, "actor": actor.to_dict(), "policySet": policy_set},
            idempotency_key=self._idempotency_key(f"{workspace_id}/{policy_set}", "hotreload"),
        )
        return HotReloadResult.from_dict(data)

    async def revalidate_agents(
        self,
        workspace_id: str,
        agent_ids: list[str] | None = None,
        policy_set: str = DEFAULT_POLICY_SET,
    ) -> RevalidationResult:
        data = await self._request(
            "POST",
            f"{self._ws(workspace_id)}/policy/revalidate",
            json={"agentIds": agent_ids, "policySet": policy_set},
            idempotency_key=self._idempotency_key(f"{workspace_id}/{policy_set}", "revalidate"),
        )
        return revalidation_from_items(data or [])

    async def get_governance_explanation(
        self, workspace_id: str, agent_id: str
    ) -> GovernanceExplanation:
        data = await self._request("GET", f"{self._ws(workspace_id)}/agents/{agent_id}/governance")
        return GovernanceExplanation.from_dict(data)


FAILED_STATUS = "FAILED"


def revalidation_items(result: RevalidationResult) -> list[dict[str, Any]]:
    """Wire form of a revalidation: one ``{agentId, status}`` item per agent."""
    items: list[dict[str, Any]] = []
    items += [{"agentId": a, "status": GovernanceStatus.GOVERNED_INVALIDATED.value} for a in result.invalidated]
    items += [{"agentId": a, "status": GovernanceStatus.GOVERNED_RESTRICTED.value} for a in result.restricted]
    items += [{"agentId": a, "status": GovernanceStatus.GOVERNED_VALID.value} for a in result.valid]
    items += [{"agentId": a, "status": GovernanceStatus.EXPIRED.value} for a in result.expired]
    items += [{"agentId": a, "status": FAILED_STATUS, "error": e} for a, e in result.failed.items()]
    return items


def revalidation_from_items(items: list[dict[str, Any]]) -> RevalidationResult:
    result = RevalidationResult()
    for item in items:
        agent_id, status = item["agentId"], item["status"]
        if status == FAILED_STATUS:
            result.failed[agent_id] = item.get("error", "")
        elif status == GovernanceStatus.GOVERNED_VALID.value:
            result.valid.append(agent_id)
        elif status == GovernanceStatus.GOVERNED_RESTRICTED.value:
            result.restricted.append(agent_id)
        elif status == GovernanceStatus.EXPIRED.value:
            result.expired.append(agent_id)
        else:
            result.invalidated.append(agent_id)
    return result
