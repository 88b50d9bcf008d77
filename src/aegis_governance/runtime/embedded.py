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
Embedded orchestrator runtime.

Runs agents in-process and owns the published policy snapshots of every
(workspace, policy set). Hot-reload protocol:

  1. take the (workspace, policy set) reload lock
  2. hash the bundle, pick the next version, commit it (append-only)
  3. publish the new immutable snapshot (one reference swap)
  4. revalidate every governed agent bound to the policy set against it
  5. stop running agents that lost their governance binding
  6. release the lock (on every exit path)

A storage failure in step 2 aborts before anything is published. Agent
failures in step 4 are reported separately and leave the snapshot
published.
"""

from __future__ import annotations

import asyncio
import copy
import dataclasses
import logging
from typing import Any

from aegis_governance.adapters.base import StoredPolicy
from aegis_governance.context import GovernanceContext
from aegis_governance.errors import (
    AdmissionDenied,
    AgentNotFound,
    GovernanceError,
    PolicyMissing,
    ValidationError,
)
from aegis_governance.governance.drift import DriftSummary, detect_drift
from aegis_governance.governance.metrics import (
    AGENT_STARTS_ALLOWED,
    AGENT_STARTS_DENIED,
    POLICY_RELOAD_FAILURE,
    POLICY_RELOAD_SUCCESS,
    PROMOTION_ATTEMPTS,
    PROMOTION_DENIES,
    GovernanceMetrics,
)
from aegis_governance.governance.state_machine import GovernanceStateMachine
from aegis_governance.hashing import compute_policy_hash
from aegis_governance.models import (
    Actor,
    AgentMode,
    AgentRunState,
    AgentSpec,
    AgentStatus,
    EvaluationOutcome,
    GovernanceExplanation,
    GovernanceStatus,
    HotReloadResult,
    PolicySnapshot,
    RevalidationResult,
    RuntimeMode,
)
from aegis_governance.runtime.admission import AdmissionController
from aegis_governance.runtime.base import DEFAULT_POLICY_SET, OrchestratorRuntime

logger = logging.getLogger("aegis_governance.runtime.embedded")

# Governance statuses that force a running agent to stop.
_STOP_STATUSES = (GovernanceStatus.GOVERNED_INVALIDATED, GovernanceStatus.EXPIRED)


class EmbeddedRuntime(OrchestratorRuntime):
    def __init__(self, context: GovernanceContext):
        self._context = context
        self._machine = context.state_machine()
        self._admission = AdmissionController(context.signer)
        self._events = context.event_log
        self._metrics = self._machine.metrics
        self._snapshots: dict[tuple[str, str], PolicySnapshot] = {}
        self._reload_locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._running: dict[str, AgentStatus] = {}

    @property
    def mode(self) -> RuntimeMode:
        return RuntimeMode.EMBEDDED

    @property
    def context(self) -> GovernanceContext:
        return self._context

    @property
    def state_machine(self) -> GovernanceStateMachine:
        return self._machine

    @property
    def metrics(self) -> GovernanceMetrics:
        return self._metrics

    def _reload_lock(self, workspace_id: str, policy_set: str) -> asyncio.Lock:
        key = (workspace_id, policy_set)
        lock = self._reload_locks.get(key)
        if lock is None:
            lock = self._reload_locks[key] = asyncio.Lock()
        return lock

    async def _agent_in_workspace(self, workspace_id: str, agent_id: str) -> AgentSpec:
        agent = await self._context.agents.get_agent(agent_id)
        if agent is None or agent.workspace_id != workspace_id:
            raise AgentNotFound(agent_id)
        return agent

    # =========================================================================
    # Policy snapshots
    # =========================================================================

    def _snapshot_from_stored(self, stored: StoredPolicy) -> PolicySnapshot:
        bundle = copy.deepcopy(stored.bundle)
        return PolicySnapshot(
            workspace_id=stored.workspace_id,
            policy_set=stored.policy_set,
            version=stored.version,
            hash=stored.hash,
            loaded_at=self._context.clock(),
            bundle=bundle,
            revoked_signers=tuple(bundle.get("revokedSigners") or ()),
        )

    async def _current_snapshot(self, workspace_id: str, policy_set: str) -> PolicySnapshot | None:
        """Published snapshot, falling back to the last committed version."""
        key = (workspace_id, policy_set)
        snapshot = self._snapshots.get(key)
        if snapshot is not None:
            return snapshot
        stored = await self._context.policies.get_current_policy(workspace_id, policy_set)
        if stored is None:
            return None
        snapshot = self._snapshot_from_stored(stored)
        self._snapshots[key] = snapshot
        return snapshot

    async def get_policy_snapshot(
        self, workspace_id: str, policy_set: str = DEFAULT_POLICY_SET
    ) -> PolicySnapshot:
        snapshot = await self._current_snapshot(workspace_id, policy_set)
        if snapshot is None:
            raise PolicyMissing(
                f"No policy committed for '{policy_set}' in workspace {workspace_id}",
                details={"workspaceId": workspace_id, "policySet": policy_set},
            )
        return snapshot

    async def hot_reload_policy(
        self,
        workspace_id: str,
        policy_set: str,
        bundle: dict[str, Any],
        actor: Actor,
    ) -> HotReloadResult:
        if not isinstance(bundle, dict) or not bundle:
            self._metrics.inc(POLICY_RELOAD_FAILURE, {"reason": "invalid_bundle"})
            raise ValidationError("Policy bundle must be a non-empty mapping")
        policy_set = policy_set or DEFAULT_POLICY_SET

        async with self._reload_lock(workspace_id, policy_set):
            previous = await self._current_snapshot(workspace_id, policy_set)
            old_hash = previous.hash if previous else None
            new_hash = compute_policy_hash(bundle)

            try:
                versions = await self._context.policies.list_policy_versions(workspace_id, policy_set)
                version = (max(versions) + 1) if versions else 1
                stored = await self._context.policies.store_policy(
                    workspace_id, policy_set, version, copy.deepcopy(bundle), new_hash
                )
            except Exception:
                self._metrics.inc(POLICY_RELOAD_FAILURE, {"reason": "storage"})
                self._events.hot_reload(
                    workspace_id, policy_set, old_hash=old_hash, new_hash=new_hash, success=False
                )
                raise

            snapshot = self._snapshot_from_stored(stored)
            self._snapshots[(workspace_id, policy_set)] = snapshot
            self._metrics.inc(POLICY_RELOAD_SUCCESS)
            self._events.hot_reload(
                workspace_id,
                policy_set,
                version=version,
                old_hash=old_hash,
                new_hash=new_hash,
                actor=f"{actor.type}:{actor.id}",
                reason=actor.reason,
            )

            revalidated = await self._machine.revalidate_all(workspace_id, snapshot)
            self._snapshots[(workspace_id, policy_set)] = dataclasses.replace(
                snapshot, invalidated_agents=tuple(revalidated.invalidated)
            )
            await self._enforce(revalidated)
            self._log_revalidation(workspace_id, policy_set, revalidated)

        return HotReloadResult(
            ok=True,
            old_hash=old_hash,
            new_hash=new_hash,
            version=version,
            revalidated=revalidated,
        )

    async def revalidate_agents(
        self,
        workspace_id: str,
        agent_ids: list[str] | None = None,
        policy_set: str = DEFAULT_POLICY_SET,
    ) -> RevalidationResult:
        policy_set = policy_set or DEFAULT_POLICY_SET
        async with self._reload_lock(workspace_id, policy_set):
            snapshot = await self._current_snapshot(workspace_id, policy_set)
            revalidated = await self._machine.revalidate_all(
                workspace_id, snapshot, agent_ids, policy_set=policy_set
            )
            await self._enforce(revalidated)
            self._log_revalidation(workspace_id, policy_set, revalidated)
        return revalidated

    def _log_revalidation(self, workspace_id: str, policy_set: str, result: RevalidationResult) -> None:
        self._events.revalidation(
            workspace_id,
            policy_set,
            invalidated=len(result.invalidated),
            restricted=len(result.restricted),
            valid=len(result.valid),
            expired=len(result.expired),
            failed=len(result.failed),
        )

    async def _enforce(self, result: RevalidationResult) -> None:
        """Stop running agents that were invalidated or expired."""
        for agent_id in result.invalidated:
            self._halt(agent_id, "governance invalidated")
        for agent_id in result.expired:
            self._halt(agent_id, "expired")

    def _halt(self, agent_id: str, error: str) -> None:
        status = self._running.pop(agent_id, None)
        if status is not None:
            logger.warning("Stopping agent %s: %s", agent_id, error)

    # =========================================================================
    # Agent lifecycle
    # =========================================================================

    async def start_agent(
        self, workspace_id: str, agent_id: str, spec: AgentSpec | None = None
    ) -> bool:
        stored = await self._context.agents.get_agent(agent_id)
        if stored is None:
            if spec is None:
                raise AgentNotFound(agent_id)
            await self._register_sandbox(workspace_id, agent_id, spec)
        elif stored.workspace_id != workspace_id:
            raise AgentNotFound(agent_id)

        agent = await self._machine.verify_integrity(agent_id)
        snapshot = None
        if agent.governance_status.is_governed:
            snapshot = await self._current_snapshot(workspace_id, agent.policy_set)
        decision = await self._admission.check(agent, snapshot, self._context.clock())
        self._events.admission(agent_id, decision.admitted, decision.codes)
        if not decision:
            reason = decision.codes[0] if decision.codes else "UNKNOWN"
            self._metrics.inc(AGENT_STARTS_DENIED, {"reason": reason})
            self._halt(agent_id, "admission denied")
            raise AdmissionDenied(agent_id, decision.reasons, decision.codes)

        self._metrics.inc(AGENT_STARTS_ALLOWED)
        if agent_id in self._running:
            logger.debug("Agent %s already running", agent_id)
            return True
        self._running[agent_id] = AgentStatus(
            agent_id=agent_id,
            state=AgentRunState.RUNNING,
            governance_status=agent.governance_status,
            started_at=self._context.clock(),
        )
        logger.info("Started agent %s in workspace %s", agent_id, workspace_id)
        return True

    async def _register_sandbox(self, workspace_id: str, agent_id: str, spec: AgentSpec) -> None:
        """Persist an unknown agent as sandbox; governance fields are never trusted from callers."""
        fresh = spec.clone()
        fresh.id = agent_id
        fresh.workspace_id = workspace_id
        fresh.mode = AgentMode.SANDBOX
        fresh.governance_status = GovernanceStatus.SANDBOX
        fresh.status_reason = ""
        fresh.status_since = None
        fresh.policy_hash = None
        fresh.spec_hash = None
        fresh.proof = None
        await self._context.agents.create_agent(fresh)

    async def stop_agent(self, workspace_id: str, agent_id: str) -> bool:
        await self._agent_in_workspace(workspace_id, agent_id)
        if agent_id not in self._running:
            return False
        self._running.pop(agent_id)
        logger.info("Stopped agent %s in workspace %s", agent_id, workspace_id)
        return True

    async def _status_of(self, agent_id: str) -> AgentStatus:
        agent = await self._machine.verify_integrity(agent_id)
        if agent.governance_status in _STOP_STATUSES:
            self._halt(agent_id, agent.status_reason or agent.governance_status.value)
        running = self._running.get(agent_id)
        if running is None:
            return AgentStatus(
                agent_id=agent_id,
                state=AgentRunState.STOPPED,
                governance_status=agent.governance_status,
            )
        return dataclasses.replace(running, governance_status=agent.governance_status)

    async def get_agent_status(self, workspace_id: str, agent_id: str) -> AgentStatus:
        await self._agent_in_workspace(workspace_id, agent_id)
        return await self._status_of(agent_id)

    async def list_agent_statuses(
        self, workspace_id: str, page: int = 1, limit: int = 50
    ) -> tuple[list[AgentStatus], int]:
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")
        agents = await self._context.agents.list_agents(workspace_id)
        start = (page - 1) * limit
        statuses = [await self._status_of(a.id) for a in agents[start : start + limit]]
        return statuses, len(agents)

    async def get_governance_explanation(
        self, workspace_id: str, agent_id: str
    ) -> GovernanceExplanation:
        await self._agent_in_workspace(workspace_id, agent_id)
        agent = await self._machine.verify_integrity(agent_id)
        return GovernanceExplanation(
            agent_id=agent.id,
            governance_status=agent.governance_status,
            policy_hash=agent.policy_hash,
            reason=agent.status_reason,
            since=agent.status_since,
            proof=agent.proof,
        )

    # =========================================================================
    # Embedded-only operations
    # =========================================================================

    async def promote_agent(self, workspace_id: str, agent_id: str) -> EvaluationOutcome:
        """Promote a sandbox agent against its policy set's current snapshot.

        Holds the reload lock so a concurrent hot-reload cannot publish a new
        snapshot between the snapshot read and the promotion write.
        """
        agent = await self._agent_in_workspace(workspace_id, agent_id)
        self._metrics.inc(PROMOTION_ATTEMPTS)
        async with self._reload_lock(workspace_id, agent.policy_set):
            snapshot = await self._current_snapshot(workspace_id, agent.policy_set)
            try:
                outcome = await self._machine.promote(agent_id, snapshot)
            except GovernanceError as exc:
                self._metrics.inc(PROMOTION_DENIES, {"reason": exc.code})
                raise
        self._halt(agent_id, "promoted to governed")
        return outcome

    async def override_agent(self, workspace_id: str, agent_id: str, actor: Actor) -> EvaluationOutcome:
        """Operator override of an invalidated agent, followed by re-evaluation."""
        agent = await self._agent_in_workspace(workspace_id, agent_id)
        async with self._reload_lock(workspace_id, agent.policy_set):
            await self._machine.override(agent_id, actor)
            snapshot = await self._current_snapshot(workspace_id, agent.policy_set)
            return await self._machine.evaluate(agent_id, snapshot)

    async def sweep_expired(self, workspace_id: str) -> list[str]:
        expired = await self._machine.sweep_expired(workspace_id)
        for agent_id in expired:
            self._halt(agent_id, "expired")
        return expired

    async def detect_drift(self, workspace_id: str) -> DriftSummary:
        snapshots = {
            policy_set: snapshot
            for (ws, policy_set), snapshot in self._snapshots.items()
            if ws == workspace_id
        }
        return await detect_drift(
            self._context.agents, workspace_id, snapshots, now=self._context.clock()
        )
