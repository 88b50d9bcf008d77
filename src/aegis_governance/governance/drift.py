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
"""Policy drift detection.

Read-only scan of governed agents that flags the ones whose governance
binding no longer holds. Nothing here changes status; callers decide
whether to revalidate, restrict or stop.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from aegis_governance.adapters.base import AgentStorageAdapter
from aegis_governance.governance.evaluator import evaluate_agent_compliance, extract_policy_rules
from aegis_governance.hashing import compute_spec_hash
from aegis_governance.models import (
    REASON_SPEC_TAMPER,
    AgentMode,
    GovernanceStatus,
    PolicySnapshot,
    to_iso,
    utcnow,
)

logger = logging.getLogger("aegis_governance.governance.drift")

DRIFT_POLICY_CHANGE = "policy_change"
DRIFT_SPEC_TAMPER = "spec_tamper"
DRIFT_EXPIRED = "expired"
DRIFT_INVALID = "invalid"


@dataclass
class DriftReport:
    agent_id: str
    agent_name: str
    drift_type: str
    severity: str  # critical | high | medium | low
    details: str
    detected_at: datetime
    recommended_action: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "agentId": self.agent_id,
            "agentName": self.agent_name,
            "driftType": self.drift_type,
            "severity": self.severity,
            "details": self.details,
            "detectedAt": to_iso(self.detected_at),
            "recommendedAction": self.recommended_action,
        }


@dataclass
class DriftSummary:
    reports: list[DriftReport] = field(default_factory=list)

    @property
    def total_drifted(self) -> int:
        return len(self.reports)

    @property
    def by_type(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for report in self.reports:
            counts[report.drift_type] = counts.get(report.drift_type, 0) + 1
        return counts

    @property
    def by_severity(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for report in self.reports:
            counts[report.severity] = counts.get(report.severity, 0) + 1
        return counts

    def for_agent(self, agent_id: str) -> DriftReport | None:
        return next((r for r in self.reports if r.agent_id == agent_id), None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalDrifted": self.total_drifted,
            "byType": self.by_type,
            "bySeverity": self.by_severity,
            "reports": [r.to_dict() for r in self.reports],
        }


async def detect_drift(
    agents: AgentStorageAdapter,
    workspace_id: str,
    snapshots: Mapping[str, PolicySnapshot],
    now: datetime | None = None,
) -> DriftSummary:
    """Report one drift finding per governed agent, most severe first.

    ``snapshots`` maps policy set name to its published snapshot.
    """
    now = now or utcnow()
    summary = DriftSummary()

    for agent in await agents.list_agents(workspace_id, {"mode": AgentMode.GOVERNED}):
        if agent.governance_status == GovernanceStatus.EXPIRED:
            continue

        def report(drift_type: str, severity: str, details: str, action: str) -> None:
            summary.reports.append(
                DriftReport(agent.id, agent.name, drift_type, severity, details, now, action)
            )

        if agent.spec_hash and compute_spec_hash(agent) != agent.spec_hash:
            report(
                DRIFT_SPEC_TAMPER,
                "critical",
                "Agent specification changed without re-promotion",
                "Investigate and roll back to the last valid version",
            )
            continue

        if agent.is_expired(now):
            report(
                DRIFT_EXPIRED,
                "medium",
                f"Agent expired on {to_iso(agent.expires_at)}",
                "Renew or archive agent",
            )
            continue

        if agent.governance_status == GovernanceStatus.GOVERNED_INVALIDATED:
            locked = agent.status_reason == REASON_SPEC_TAMPER
            report(
                DRIFT_INVALID,
                "high" if locked else "medium",
                f"Agent is invalidated ({agent.status_reason or 'unknown reason'})",
                "Operator override required" if locked else "Fix the agent or the policy and revalidate",
            )
            continue

        snapshot = snapshots.get(agent.policy_set)
        if snapshot is None:
            report(
                DRIFT_POLICY_CHANGE,
                "high",
                f"No published policy for policy set '{agent.policy_set}'",
                "Publish a policy and revalidate",
            )
            continue

        if agent.policy_hash != snapshot.hash:
            result = evaluate_agent_compliance(agent, extract_policy_rules(snapshot.bundle))
            if result.compliant:
                details = f"Agent bound to {agent.policy_hash}, current policy is {snapshot.hash}"
                severity = "low"
            else:
                details = "Agent no longer complies with current policy: " + ", ".join(result.violations)
                severity = "high"
            report(DRIFT_POLICY_CHANGE, severity, details, "Revalidate or restrict agent")

    if summary.reports:
        logger.info(
            "Drift scan of workspace %s: %d drifted (%s)",
            workspace_id,
            summary.total_drifted,
            summary.by_type,
        )
    return summary
