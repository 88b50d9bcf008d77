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
"""Governance state machine -- the only writer of ``governance_status``.

Lifecycle:

    SANDBOX --promote--> GOVERNED_PENDING --evaluate--> VALID | RESTRICTED | INVALIDATED
    GOVERNED_* --evaluate--> GOVERNED_*
    any --spec hash mismatch--> GOVERNED_INVALIDATED (spec_tamper, locked until override)
    any --expires_at reached--> EXPIRED (terminal)

Every evaluation is atomic per agent: read, compute, sign, write happen
under a per-agent asyncio.Lock so no other writer interleaves for that id.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime

from aegis_governance.adapters.base import AgentStorageAdapter, SignerAdapter
from aegis_governance.adapters.signing import verify_proof
from aegis_governance.core.logging import GovernanceLogger, get_logger
from aegis_governance.errors import (
    AgentNotFound,
    InvalidTransition,
    SignatureInvalid,
    SignerRevoked,
    SpecTamperDetected,
    ValidationError,
)
from aegis_governance.governance.evaluator import (
    evaluate_agent_compliance,
    extract_policy_rules,
)
from aegis_governance.governance.metrics import AGENT_INVALIDATIONS, GovernanceMetrics
from aegis_governance.governance.proof_log import ProofLedger
from aegis_governance.hashing import compute_spec_hash
from aegis_governance.models import (
    REASON_BELOW_THRESHOLD,
    REASON_COMPLIANT,
    REASON_EXPIRED,
    REASON_OVERRIDE,
    REASON_POLICY_MISSING,
    REASON_POLICY_VIOLATION,
    REASON_PROMOTED,
    REASON_SIGNATURE_INVALID,
    REASON_SIGNER_REVOKED,
    REASON_SPEC_TAMPER,
    Actor,
    AgentMode,
    AgentSpec,
    ComplianceResult,
    EvaluationOutcome,
    GovernanceStatus,
    PolicySnapshot,
    ProofBundle,
    ProofDecision,
    RevalidationResult,
    proof_payload,
    utcnow,
)

logger = logging.getLogger("aegis_governance.governance.state_machine")

DEFAULT_RESTRICTED_THRESHOLD = 70
MAX_TEMPERATURE = 2.0

_GOVERNED = {
    GovernanceStatus.GOVERNED_PENDING,
    GovernanceStatus.GOVERNED_VALID,
    GovernanceStatus.GOVERNED_RESTRICTED,
    GovernanceStatus.GOVERNED_INVALIDATED,
}

VALID_TRANSITIONS: dict[GovernanceStatus, set[GovernanceStatus]] = {
    GovernanceStatus.SANDBOX: {GovernanceStatus.GOVERNED_PENDING, GovernanceStatus.EXPIRED},
    GovernanceStatus.GOVERNED_PENDING: _GOVERNED | {GovernanceStatus.EXPIRED},
    GovernanceStatus.GOVERNED_VALID: _GOVERNED | {GovernanceStatus.EXPIRED},
    GovernanceStatus.GOVERNED_RESTRICTED: _GOVERNED | {GovernanceStatus.EXPIRED},
    GovernanceStatus.GOVERNED_INVALIDATED: _GOVERNED | {GovernanceStatus.EXPIRED},
    GovernanceStatus.EXPIRED: set(),
}


def can_transition(current: GovernanceStatus, target: GovernanceStatus) -> bool:
    return target in VALID_TRANSITIONS.get(current, set())


def is_tamper_locked(agent: AgentSpec) -> bool:
    return (
        agent.governance_status == GovernanceStatus.GOVERNED_INVALIDATED
        and agent.status_reason == REASON_SPEC_TAMPER
    )


def ensure_spec_integrity(agent: AgentSpec) -> str:
    """Return the current spec hash. Raises SpecTamperDetected on divergence."""
    actual = compute_spec_hash(agent)
    if agent.spec_hash != actual:
        raise SpecTamperDetected(agent.id, agent.spec_hash, actual)
    return actual


def validate_promotion(agent: AgentSpec) -> list[str]:
    """Baseline shape an agent needs before it can be governed."""
    errors = []
    if not agent.name.strip():
        errors.append("Agent name is required")
    if not agent.description.strip():
        errors.append("Agent description is required")
    if not agent.role_class.strip():
        errors.append("Role class is required")
    if not agent.system_prompt.strip():
        errors.append("System prompt is required")
    if not 0 <= agent.temperature <= MAX_TEMPERATURE:
        errors.append(f"Temperature must be between 0 and {MAX_TEMPERATURE}")
    return errors


class GovernanceStateMachine:
    """Drives agents through the governance lifecycle.

    Usage::

        machine = GovernanceStateMachine(agent_storage, signer)
        outcome = await machine.promote("agent-1", snapshot)
        result = await machine.revalidate_all("ws-1", snapshot)
    """

    def __init__(
        self,
        agents: AgentStorageAdapter,
        signer: SignerAdapter,
        *,
        restricted_threshold: int = DEFAULT_RESTRICTED_THRESHOLD,
        ledger: ProofLedger | None = None,
        event_log: GovernanceLogger | None = None,
        metrics: GovernanceMetrics | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._agents = agents
        self._signer = signer
        self._threshold = restricted_threshold
        self._ledger = ledger
        self._events = event_log or get_logger()
        self.metrics = metrics or GovernanceMetrics()
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def restricted_threshold(self) -> int:
        return self._threshold

    def _lock_for(self, agent_id: str) -> asyncio.Lock:
        lock = self._locks.get(agent_id)
        if lock is None:
            lock = self._locks[agent_id] = asyncio.Lock()
        return lock

    async def _load(self, agent_id: str) -> AgentSpec:
        agent = await self._agents.get_agent(agent_id)
        if agent is None:
            raise AgentNotFound(agent_id)
        return agent

    async def _write(
        self,
        agent: AgentSpec,
        status: GovernanceStatus,
        reason: str,
        now: datetime,
        **fields,
    ) -> AgentSpec:
        current = agent.governance_status
        if not can_transition(current, status):
            raise InvalidTransition(
                f"Invalid governance transition: {current.value} → {status.value}",
                details={"agentId": agent.id, "from": current.value, "to": status.value},
            )
        updated = await self._agents.update_governance_status(
            agent.id, status, reason, since=now, **fields
        )
        logger.info("Agent %s: %s → %s (%s)", agent.id, current.value, status.value, reason)
        return updated

    # =========================================================================
    # Promotion
    # =========================================================================

    async def promote(self, agent_id: str, snapshot: PolicySnapshot | None) -> EvaluationOutcome:
        """Move a sandbox agent into the governed pipeline and evaluate it."""
        async with self._lock_for(agent_id):
            agent = await self._load(agent_id)
            if agent.governance_status != GovernanceStatus.SANDBOX:
                raise InvalidTransition(
                    f"Only sandbox agents can be promoted (agent {agent_id} is "
                    f"{agent.governance_status.value})"
                )
            now = self._clock()
            errors = validate_promotion(agent)
            if agent.is_expired(now):
                errors.append("Sandbox agent has expired")
            if errors:
                self._events.promotion(agent_id, passed=False, errors=errors)
                raise ValidationError(
                    f"Agent {agent_id} failed promotion checks", errors=errors
                )

            agent = await self._agents.update_agent(agent_id, {"mode": AgentMode.GOVERNED})
            await self._write(
                agent,
                GovernanceStatus.GOVERNED_PENDING,
                REASON_PROMOTED,
                now,
                spec_hash=compute_spec_hash(agent),
                policy_hash=None,
                proof=None,
            )
            self._events.promotion(agent_id, passed=True)
            return await self._evaluate_locked(agent_id, snapshot)

    # =========================================================================
    # Evaluation
    # =========================================================================

    async def evaluate(self, agent_id: str, snapshot: PolicySnapshot | None) -> EvaluationOutcome:
        """Re-evaluate one governed agent against a published snapshot."""
        async with self._lock_for(agent_id):
            return await self._evaluate_locked(agent_id, snapshot)

    async def _evaluate_locked(
        self, agent_id: str, snapshot: PolicySnapshot | None
    ) -> EvaluationOutcome:
        agent = await self._load(agent_id)
        status = agent.governance_status
        now = self._clock()

        if status == GovernanceStatus.SANDBOX:
            raise InvalidTransition(f"Agent {agent_id} is not governed; promote it first")
        if status == GovernanceStatus.EXPIRED or is_tamper_locked(agent):
            return EvaluationOutcome(agent_id, status, agent.status_reason, proof=agent.proof)

        if agent.is_expired(now):
            await self._write(agent, GovernanceStatus.EXPIRED, REASON_EXPIRED, now)
            self._events.decision(agent_id, GovernanceStatus.EXPIRED.value, reason=REASON_EXPIRED)
            return EvaluationOutcome(agent_id, GovernanceStatus.EXPIRED, REASON_EXPIRED, proof=agent.proof)

        if snapshot is not None and (
            snapshot.workspace_id != agent.workspace_id or snapshot.policy_set != agent.policy_set
        ):
            snapshot = None
        bound_hash = snapshot.hash if snapshot else (agent.policy_hash or "")

        try:
            spec_hash = ensure_spec_integrity(agent)
        except SpecTamperDetected as exc:
            self._events.tamper(agent_id, expected=exc.expected, actual=exc.actual)
            return await self._decide(
                agent, GovernanceStatus.GOVERNED_INVALIDATED, REASON_SPEC_TAMPER, bound_hash, exc.actual, now
            )

        rule = extract_policy_rules(snapshot.bundle) if snapshot else None
        if rule is None or rule.is_empty():
            return await self._decide(
                agent, GovernanceStatus.GOVERNED_INVALIDATED, REASON_POLICY_MISSING, bound_hash, spec_hash, now
            )

        prior_failure = None
        if agent.proof is not None:
            try:
                await verify_proof(self._signer, agent.proof, snapshot.revoked_signers)
            except SignerRevoked as exc:
                logger.warning("Prior proof rejected: %s", exc.message)
                prior_failure = REASON_SIGNER_REVOKED
            except SignatureInvalid as exc:
                logger.warning("Prior proof rejected: %s", exc.message)
                prior_failure = REASON_SIGNATURE_INVALID
        if prior_failure:
            return await self._decide(
                agent, GovernanceStatus.GOVERNED_INVALIDATED, prior_failure, snapshot.hash, spec_hash, now
            )

        result = evaluate_agent_compliance(agent, rule)
        if not result.compliant:
            target, reason = GovernanceStatus.GOVERNED_INVALIDATED, REASON_POLICY_VIOLATION
        elif result.score >= self._threshold:
            target, reason = GovernanceStatus.GOVERNED_VALID, REASON_COMPLIANT
        else:
            target, reason = GovernanceStatus.GOVERNED_RESTRICTED, REASON_BELOW_THRESHOLD
        return await self._decide(agent, target, reason, snapshot.hash, spec_hash, now, result)

    async def _decide(
        self,
        agent: AgentSpec,
        status: GovernanceStatus,
        reason: str,
        policy_hash: str,
        spec_hash: str,
        now: datetime,
        result: ComplianceResult | None = None,
    ) -> EvaluationOutcome:
        """Sign a fresh proof for a decision and persist it."""
        decision = (
            ProofDecision.FAIL if status == GovernanceStatus.GOVERNED_INVALIDATED else ProofDecision.PASS
        )
        sig = await self._signer.sign(proof_payload(agent.id, policy_hash, spec_hash, now))
        proof = ProofBundle(
            agent_id=agent.id,
            policy_hash=policy_hash,
            spec_hash=spec_hash,
            signed_at=now,
            authority=self._signer.authority,
            sig=sig,
            decision=decision,
        )
        await self._write(agent, status, reason, now, policy_hash=policy_hash or None, proof=proof)
        if (
            status == GovernanceStatus.GOVERNED_INVALIDATED
            and agent.governance_status != GovernanceStatus.GOVERNED_INVALIDATED
        ):
            self.metrics.inc(AGENT_INVALIDATIONS, {"reason": reason})

        outcome = EvaluationOutcome(
            agent_id=agent.id,
            status=status,
            reason=reason,
            score=result.score if result else None,
            violations=list(result.violations) if result else [],
            warnings=list(result.warnings) if result else [],
            proof=proof,
        )
        self._events.decision(agent.id, status.value, reason=reason, score=outcome.score)
        if self._ledger is not None:
            self._ledger.record(outcome, agent.workspace_id, now)
        return outcome

    # =========================================================================
    # Batch revalidation
    # =========================================================================

    async def revalidate_all(
        self,
        workspace_id: str,
        snapshot: PolicySnapshot | None,
        agent_ids: list[str] | None = None,
        *,
        policy_set: str | None = None,
    ) -> RevalidationResult:
        """Evaluate every governed agent bound to a policy set.

        All agents see the same snapshot instance. With no snapshot (nothing
        committed for ``policy_set``) every agent fails closed. A failure for
        one agent is recorded in ``failed`` and does not stop the batch; a
        failure to list the workspace propagates.
        """
        if snapshot is not None:
            policy_set = snapshot.policy_set
        if not policy_set:
            raise ValidationError("revalidate_all needs a snapshot or a policy set")
        agents = await self._agents.list_agents(workspace_id, {"policy_set": policy_set})
        eligible = [
            a for a in agents if a.governance_status in _GOVERNED
        ]
        result = RevalidationResult()

        if agent_ids is not None:
            wanted = list(dict.fromkeys(agent_ids))
            by_id = {a.id: a for a in eligible}
            for agent_id in wanted:
                if agent_id not in by_id:
                    result.failed[agent_id] = (
                        f"Agent {agent_id} is not a governed agent of policy set {policy_set}"
                    )
            eligible = [by_id[i] for i in wanted if i in by_id]

        outcomes = await asyncio.gather(
            *(self.evaluate(a.id, snapshot) for a in eligible),
            return_exceptions=True,
        )
        for agent, outcome in zip(eligible, outcomes):
            if isinstance(outcome, Exception):
                logger.warning("Revalidation failed for agent %s: %s", agent.id, outcome)
                result.failed[agent.id] = str(outcome)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                result.record(outcome)
        return result

    # =========================================================================
    # Expiry, integrity and override
    # =========================================================================

    async def check_expiry(self, agent_id: str) -> GovernanceStatus:
        """Expire the agent when ``expires_at`` has passed."""
        async with self._lock_for(agent_id):
            agent = await self._load(agent_id)
            if agent.governance_status == GovernanceStatus.EXPIRED:
                return agent.governance_status
            now = self._clock()
            if agent.is_expired(now):
                await self._write(agent, GovernanceStatus.EXPIRED, REASON_EXPIRED, now)
                self._events.decision(agent_id, GovernanceStatus.EXPIRED.value, reason=REASON_EXPIRED)
                return GovernanceStatus.EXPIRED
            return agent.governance_status

    async def sweep_expired(self, workspace_id: str) -> list[str]:
        """Expire every agent of a workspace past its ``expires_at``."""
        expired = []
        for agent in await self._agents.list_agents(workspace_id):
            if agent.governance_status == GovernanceStatus.EXPIRED:
                continue
            if await self.check_expiry(agent.id) == GovernanceStatus.EXPIRED:
                expired.append(agent.id)
        return expired

    async def verify_integrity(self, agent_id: str) -> AgentSpec:
        """Gating read: recompute expiry and the spec hash before trusting the row."""
        async with self._lock_for(agent_id):
            agent = await self._load(agent_id)
            if agent.governance_status == GovernanceStatus.EXPIRED:
                return agent

            now = self._clock()
            if agent.is_expired(now):
                await self._write(agent, GovernanceStatus.EXPIRED, REASON_EXPIRED, now)
                self._events.decision(agent_id, GovernanceStatus.EXPIRED.value, reason=REASON_EXPIRED)
                return await self._load(agent_id)

            if agent.governance_status == GovernanceStatus.SANDBOX or is_tamper_locked(agent):
                return agent
            try:
                ensure_spec_integrity(agent)
            except SpecTamperDetected as exc:
                self._events.tamper(agent_id, expected=exc.expected, actual=exc.actual)
                await self._decide(
                    agent,
                    GovernanceStatus.GOVERNED_INVALIDATED,
                    REASON_SPEC_TAMPER,
                    agent.policy_hash or "",
                    exc.actual,
                    now,
                )
                return await self._load(agent_id)
            return agent

    async def override(self, agent_id: str, actor: Actor) -> AgentSpec:
        """Operator override: GOVERNED_INVALIDATED -> GOVERNED_PENDING.

        Re-baselines the spec hash to the current spec and drops the proof;
        the next evaluation decides the new status.
        """
        async with self._lock_for(agent_id):
            agent = await self._load(agent_id)
            if agent.governance_status != GovernanceStatus.GOVERNED_INVALIDATED:
                raise InvalidTransition(
                    f"Override only applies to invalidated agents (agent {agent_id} is "
                    f"{agent.governance_status.value})"
                )
            if not actor.id:
                raise ValidationError("Override requires an identified actor")
            now = self._clock()
            updated = await self._write(
                agent,
                GovernanceStatus.GOVERNED_PENDING,
                REASON_OVERRIDE,
                now,
                spec_hash=compute_spec_hash(agent),
                policy_hash=None,
                proof=None,
            )
            self._events.info(
                "StateMachine",
                f"Override applied to {agent_id}",
                actor=f"{actor.type}:{actor.id}",
                reason=actor.reason,
                previous_reason=agent.status_reason,
            )
            return updated
