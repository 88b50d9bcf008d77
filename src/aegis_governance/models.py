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
"""Governance data model.

Agents are persisted rows owned by the agent storage adapter; their
``governance_status`` is written only by the state machine. Policy
snapshots and proof bundles are immutable values shared by reference.
Wire (JSON) names are camelCase, Python attributes snake_case.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def parse_iso(value: Any) -> datetime | None:
    """Parse an ISO-8601 string (or pass through a datetime)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================


class AgentMode(str, Enum):
    SANDBOX = "sandbox"
    GOVERNED = "governed"


class GovernanceStatus(str, Enum):
    """Governance lifecycle of an agent."""

    SANDBOX = "SANDBOX"
    GOVERNED_PENDING = "GOVERNED_PENDING"
    GOVERNED_VALID = "GOVERNED_VALID"
    GOVERNED_RESTRICTED = "GOVERNED_RESTRICTED"
    GOVERNED_INVALIDATED = "GOVERNED_INVALIDATED"
    EXPIRED = "EXPIRED"

    @property
    def is_governed(self) -> bool:
        return self.value.startswith("GOVERNED_")


class AgentRunState(str, Enum):
    """Execution state reported by an orchestrator runtime."""

    RUNNING = "RUNNING"
    STOPPED = "STOPPED"
    STARTING = "STARTING"
    ERROR = "ERROR"


class ProofDecision(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"


# Status reasons recorded on the agent row and in proofs.
REASON_SPEC_TAMPER = "spec_tamper"
REASON_POLICY_MISSING = "policy_missing"
REASON_EXPIRED = "expired"
REASON_SIGNER_REVOKED = "signer_revoked"
REASON_SIGNATURE_INVALID = "signature_invalid"
REASON_POLICY_VIOLATION = "policy_violation"
REASON_BELOW_THRESHOLD = "below_threshold"
REASON_COMPLIANT = "compliant"
REASON_PROMOTED = "promoted"
REASON_OVERRIDE = "operator_override"


# =============================================================================
# PROOF BUNDLE
# =============================================================================


@dataclass(frozen=True)
class ProofBundle:
    """Signed attestation binding an agent's spec hash to a policy hash."""

    agent_id: str
    policy_hash: str
    spec_hash: str
    signed_at: datetime
    authority: str
    sig: str
    decision: ProofDecision = ProofDecision.PASS

    def signing_payload(self) -> dict[str, Any]:
        return proof_payload(self.agent_id, self.policy_hash, self.spec_hash, self.signed_at)

    def to_dict(self) -> dict[str, Any]:
        return {
            "agentId": self.agent_id,
            "policyDecision": self.decision.value,
            "policyHash": self.policy_hash,
            "specHash": self.spec_hash,
            "signature": {
                "authority": self.authority,
                "signedAt": to_iso(self.signed_at),
                "sig": self.sig,
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProofBundle:
        signature = data.get("signature") or {}
        return cls(
            agent_id=data.get("agentId", ""),
            policy_hash=data["policyHash"],
            spec_hash=data["specHash"],
            signed_at=parse_iso(signature.get("signedAt")) or utcnow(),
            authority=signature.get("authority", ""),
            sig=signature.get("sig", ""),
            decision=ProofDecision(data.get("policyDecision", "PASS")),
        )


def proof_payload(
    agent_id: str, policy_hash: str, spec_hash: str, signed_at: datetime
) -> dict[str, Any]:
    """The exact mapping covered by a proof signature."""
    return {
        "agentId": agent_id,
        "policyHash": policy_hash,
        "specHash": spec_hash,
        "signedAt": to_iso(signed_at),
    }


# =============================================================================
# AGENT SPEC
# =============================================================================


@dataclass
class AgentSpec:
    """A persisted agent definition plus its governance binding."""

    id: str
    workspace_id: str
    name: str = ""
    description: str = ""
    mode: AgentMode = AgentMode.SANDBOX
    role_class: str = ""
    system_prompt: str = ""
    allowed_tools: list[str] = field(default_factory=list)
    temperature: float = 0.7
    has_document_access: bool = False
    has_tool_access: bool = False
    budget_usd: float | None = None
    policy_set: str = "default"
    external_calls: bool = False
    persistent_writes: bool = False
    governance_status: GovernanceStatus = GovernanceStatus.SANDBOX
    status_reason: str = ""
    status_since: datetime | None = None
    policy_hash: str | None = None
    spec_hash: str | None = None
    proof: ProofBundle | None = None
    created_at: datetime = field(default_factory=utcnow)
    expires_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def clone(self) -> AgentSpec:
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "workspaceId": self.workspace_id,
            "name": self.name,
            "description": self.description,
            "mode": self.mode.value,
            "roleClass": self.role_class,
            "systemPrompt": self.system_prompt,
            "allowedTools": list(self.allowed_tools),
            "temperature": self.temperature,
            "hasDocumentAccess": self.has_document_access,
            "hasToolAccess": self.has_tool_access,
            "budgetUsd": self.budget_usd,
            "policySet": self.policy_set,
            "externalCalls": self.external_calls,
            "persistentWrites": self.persistent_writes,
            "governanceStatus": self.governance_status.value,
            "statusReason": self.status_reason,
            "statusSince": to_iso(self.status_since),
            "policyHash": self.policy_hash,
            "specHash": self.spec_hash,
            "proofBundle": self.proof.to_dict() if self.proof else None,
            "createdAt": to_iso(self.created_at),
            "expiresAt": to_iso(self.expires_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AgentSpec:
        proof = data.get("proofBundle")
        return cls(
            id=data["id"],
            workspace_id=data.get("workspaceId", ""),
            name=data.get("name", ""),
            description=data.get("description", ""),
            mode=AgentMode(data.get("mode", "sandbox")),
            role_class=data.get("roleClass", ""),
            system_prompt=data.get("systemPrompt", ""),
            allowed_tools=list(data.get("allowedTools") or []),
            temperature=float(data.get("temperature", 0.7)),
            has_document_access=bool(data.get("hasDocumentAccess", False)),
            has_tool_access=bool(data.get("hasToolAccess", False)),
            budget_usd=data.get("budgetUsd"),
            policy_set=data.get("policySet") or "default",
            external_calls=bool(data.get("externalCalls", False)),
            persistent_writes=bool(data.get("persistentWrites", False)),
            governance_status=GovernanceStatus(data.get("governanceStatus", "SANDBOX")),
            status_reason=data.get("statusReason", ""),
            status_since=parse_iso(data.get("statusSince")),
            policy_hash=data.get("policyHash"),
            spec_hash=data.get("specHash"),
            proof=ProofBundle.from_dict(proof) if proof else None,
            created_at=parse_iso(data.get("createdAt")) or utcnow(),
            expires_at=parse_iso(data.get("expiresAt")),
        )


# =============================================================================
# POLICY
# =============================================================================


@dataclass(frozen=True)
class PolicySnapshot:
    """An immutable, published view of one committed policy version."""

    workspace_id: str
    policy_set: str
    version: int
    hash: str
    loaded_at: datetime
    bundle: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)
    revoked_signers: tuple[str, ...] = ()
    invalidated_agents: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "workspaceId": self.workspace_id,
            "policySet": self.policy_set,
            "version": self.version,
            "hash": self.hash,
            "loadedAt": to_iso(self.loaded_at),
            "revokedSigners": list(self.revoked_signers),
            "invalidatedAgents": list(self.invalidated_agents),
            "bundle": copy.deepcopy(self.bundle),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PolicySnapshot:
        return cls(
            workspace_id=data.get("workspaceId", ""),
            policy_set=data.get("policySet", "default"),
            version=int(data.get("version", 0)),
            hash=data["hash"],
            loaded_at=parse_iso(data.get("loadedAt")) or utcnow(),
            bundle=copy.deepcopy(data.get("bundle") or {}),
            revoked_signers=tuple(data.get("revokedSigners") or ()),
            invalidated_agents=tuple(data.get("invalidatedAgents") or ()),
        )


@dataclass
class PolicyRule:
    """Constraints extracted from a policy bundle."""

    allowed_roles: list[str] = field(default_factory=list)
    denied_roles: list[str] = field(default_factory=list)
    allow_document_access: bool | None = None
    allow_tool_access: bool | None = None
    max_budget: float | None = None
    max_tokens_per_request: int | None = None
    allowed_actions: list[str] = field(default_factory=list)
    denied_actions: list[str] = field(default_factory=list)
    require_approval: bool | None = None
    max_concurrent_executions: int | None = None

    def is_empty(self) -> bool:
        return not any(
            (
                self.allowed_roles,
                self.denied_roles,
                self.allow_document_access is not None,
                self.allow_tool_access is not None,
                self.max_budget is not None,
                self.max_tokens_per_request is not None,
                self.allowed_actions,
                self.denied_actions,
                self.require_approval is not None,
                self.max_concurrent_executions is not None,
            )
        )


@dataclass
class ComplianceResult:
    """Output of the policy evaluator."""

    compliant: bool
    violations: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    score: int = 100

    def to_dict(self) -> dict[str, Any]:
        return {
            "compliant": self.compliant,
            "violations": list(self.violations),
            "warnings": list(self.warnings),
            "score": self.score,
        }


# =============================================================================
# OPERATION RESULTS
# =============================================================================


@dataclass
class Actor:
    """Who requested a policy change or override."""

    type: str = "user"
    id: str = ""
    reason: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type, "id": self.id, "reason": self.reason}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Actor:
        data = data or {}
        return cls(
            type=str(data.get("type", "user")),
            id=str(data.get("id", "")),
            reason=str(data.get("reason", "")),
        )


@dataclass
class EvaluationOutcome:
    """Result of evaluating one agent against one snapshot."""

    agent_id: str
    status: GovernanceStatus
    reason: str
    score: int | None = None
    violations: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    proof: ProofBundle | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "agentId": self.agent_id,
            "status": self.status.value,
            "reason": self.reason,
            "score": self.score,
            "violations": list(self.violations),
            "warnings": list(self.warnings),
            "proofBundle": self.proof.to_dict() if self.proof else None,
        }


@dataclass
class RevalidationResult:
    """Partition of a revalidation batch.

    Failed ids are never counted as valid. Agents that reached EXPIRED during
    the batch land in ``expired``, not ``invalidated``; tamper-locked agents
    stay in ``invalidated``.
    """

    invalidated: list[str] = field(default_factory=list)
    restricted: list[str] = field(default_factory=list)
    valid: list[str] = field(default_factory=list)
    expired: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    def record(self, outcome: EvaluationOutcome) -> None:
        if outcome.status == GovernanceStatus.GOVERNED_VALID:
            self.valid.append(outcome.agent_id)
        elif outcome.status == GovernanceStatus.GOVERNED_RESTRICTED:
            self.restricted.append(outcome.agent_id)
        elif outcome.status == GovernanceStatus.EXPIRED:
            self.expired.append(outcome.agent_id)
        else:
            self.invalidated.append(outcome.agent_id)

    @property
    def total(self) -> int:
        return (
            len(self.invalidated)
            + len(self.restricted)
            + len(self.valid)
            + len(self.expired)
            + len(self.failed)
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "invalidated": list(self.invalidated),
            "restricted": list(self.restricted),
            "valid": list(self.valid),
            "expired": list(self.expired),
            "failed": dict(self.failed),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> RevalidationResult:
        data = data or {}
        return cls(
            invalidated=list(data.get("invalidated") or []),
            restricted=list(data.get("restricted") or []),
            valid=list(data.get("valid") or []),
            expired=list(data.get("expired") or []),
            failed=dict(data.get("failed") or {}),
        )


@dataclass
class HotReloadResult:
    ok: bool
    old_hash: str | None
    new_hash: str
    version: int
    revalidated: RevalidationResult = field(default_factory=RevalidationResult)

    @property
    def invalidated_agents(self) -> int:
        return len(self.revalidated.invalidated)

    @property
    def restricted_agents(self) -> int:
        return len(self.revalidated.restricted)

    @property
    def valid_agents(self) -> int:
        return len(self.revalidated.valid)

    @property
    def expired_agents(self) -> int:
        return len(self.revalidated.expired)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "oldHash": self.old_hash,
            "newHash": self.new_hash,
            "version": self.version,
            "revalidated": self.revalidated.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HotReloadResult:
        return cls(
            ok=bool(data.get("ok", True)),
            old_hash=data.get("oldHash"),
            new_hash=data["newHash"],
            version=int(data.get("version", 0)),
            revalidated=RevalidationResult.from_dict(data.get("revalidated")),
        )


@dataclass
class AgentStatus:
    """Runtime view of one agent."""

    agent_id: str
    state: AgentRunState
    governance_status: GovernanceStatus | None = None
    started_at: datetime | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "agentId": self.agent_id,
            "status": self.state.value,
            "governanceStatus": self.governance_status.value if self.governance_status else None,
            "startedAt": to_iso(self.started_at),
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AgentStatus:
        governance = data.get("governanceStatus")
        return cls(
            agent_id=data.get("agentId", ""),
            state=AgentRunState(data.get("status", "STOPPED")),
            governance_status=GovernanceStatus(governance) if governance else None,
            started_at=parse_iso(data.get("startedAt")),
            error=data.get("error"),
        )


@dataclass
class GovernanceExplanation:
    """Why an agent holds its current governance status."""

    agent_id: str
    governance_status: GovernanceStatus
    policy_hash: str | None
    reason: str
    since: datetime | None
    proof: ProofBundle | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": True,
            "agentId": self.agent_id,
            "governanceStatus": self.governance_status.value,
            "policyHash": self.policy_hash,
            "reason": self.reason,
            "since": to_iso(self.since),
            "governance": {"proofBundle": self.proof.to_dict() if self.proof else None},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GovernanceExplanation:
        proof = (data.get("governance") or {}).get("proofBundle")
        return cls(
            agent_id=data.get("agentId", ""),
            governance_status=GovernanceStatus(data.get("governanceStatus", "SANDBOX")),
            policy_hash=data.get("policyHash"),
            reason=data.get("reason", ""),
            since=parse_iso(data.get("since")),
            proof=ProofBundle.from_dict(proof) if proof else None,
        )


class RuntimeMode(str, Enum):
    """Where agents are executed: in-process or on a remote orchestrator."""

    EMBEDDED = "embedded"
    EXTERNAL = "external"
