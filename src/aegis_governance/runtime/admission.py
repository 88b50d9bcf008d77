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
"""Admission control for agent start.

Sandbox agents must be unexpired and contained (no external calls, no
persistent writes). Governed agents must carry a proof whose spec hash
matches the persisted spec, whose policy hash matches the published
snapshot, and whose signature verifies under a non-revoked authority.
All failing checks are reported, not just the first.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from aegis_governance.adapters.base import SignerAdapter
from aegis_governance.errors import ErrorCodes
from aegis_governance.hashing import compute_spec_hash
from aegis_governance.models import AgentMode, AgentSpec, GovernanceStatus, PolicySnapshot, to_iso

# Governed statuses that may never run.
BLOCKED_STATUSES = frozenset(
    {
        GovernanceStatus.GOVERNED_PENDING,
        GovernanceStatus.GOVERNED_INVALIDATED,
        GovernanceStatus.EXPIRED,
    }
)


@dataclass
class AdmissionDecision:
    admitted: bool
    reasons: list[str] = field(default_factory=list)
    codes: list[str] = field(default_factory=list)

    def __bool__(self):
        return self.admitted


class AdmissionController:
    def __init__(self, signer: SignerAdapter):
        self._signer = signer

    async def check(
        self, agent: AgentSpec, snapshot: PolicySnapshot | None, now: datetime
    ) -> AdmissionDecision:
        if agent.mode == AgentMode.SANDBOX:
            reasons, codes = self._check_sandbox(agent, now)
        else:
            reasons, codes = await self._check_governed(agent, snapshot)
        return AdmissionDecision(admitted=not codes, reasons=reasons, codes=codes)

    def _check_sandbox(self, agent: AgentSpec, now: datetime) -> tuple[list[str], list[str]]:
        reasons: list[str] = []
        codes: list[str] = []
        if agent.governance_status == GovernanceStatus.EXPIRED or agent.is_expired(now):
            reasons.append(f"Sandbox expired at {to_iso(agent.expires_at)}")
            codes.append(ErrorCodes.SANDBOX_EXPIRED)
        if agent.external_calls:
            reasons.append("Sandbox agents cannot make external calls")
            codes.append(ErrorCodes.CONTAINMENT_VIOLATION)
        if agent.persistent_writes:
            reasons.append("Sandbox agents cannot make persistent writes")
            codes.append(ErrorCodes.CONTAINMENT_VIOLATION)
        return reasons, codes

    async def _check_governed(
        self, agent: AgentSpec, snapshot: PolicySnapshot | None
    ) -> tuple[list[str], list[str]]:
        reasons: list[str] = []
        codes: list[str] = []

        if agent.governance_status in BLOCKED_STATUSES:
            reasons.append(
                f"Governance status {agent.governance_status.value} ({agent.status_reason}) does not permit start"
            )
            codes.append(ErrorCodes.GOVERNANCE_STATUS_BLOCKED)

        proof = agent.proof
        if proof is None:
            reasons.append("Governed agent missing proof bundle")
            codes.append(ErrorCodes.PROOF_MISSING)
            return reasons, codes

        current = compute_spec_hash(agent)
        if proof.spec_hash != current:
            reasons.append(f"Spec hash mismatch: expected {proof.spec_hash}, got {current}")
            codes.append(ErrorCodes.SPEC_HASH_MISMATCH)

        if snapshot is None:
            reasons.append(f"No published policy for policy set '{agent.policy_set}'")
            codes.append(ErrorCodes.POLICY_HASH_MISMATCH)
        elif proof.policy_hash != snapshot.hash:
            reasons.append(f"Policy hash mismatch: expected {snapshot.hash}, got {proof.policy_hash}")
            codes.append(ErrorCodes.POLICY_HASH_MISMATCH)

        revoked = snapshot.revoked_signers if snapshot else ()
        if proof.authority in revoked or await self._signer.is_revoked(proof.authority):
            reasons.append(f"Signer {proof.authority} has been revoked")
            codes.append(ErrorCodes.SIGNER_REVOKED)

        if not await self._signer.verify(proof.signing_payload(), proof.sig, proof.authority):
            reasons.append("Invalid signature")
            codes.append(ErrorCodes.SIGNATURE_INVALID)

        return reasons, codes
