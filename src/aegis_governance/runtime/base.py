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
"""OrchestratorRuntime -- where governed and sandbox agents actually run.

Two implementations share this interface:

  - EmbeddedRuntime  -- in-process; owns the policy snapshots and reload locks
  - ExternalRuntime  -- REST client of a remote orchestrator

Callers pick one through the runtime registry and never branch on the
concrete class.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from aegis_governance.models import (
    Actor,
    AgentSpec,
    AgentStatus,
    GovernanceExplanation,
    HotReloadResult,
    PolicySnapshot,
    RevalidationResult,
    RuntimeMode,
)

DEFAULT_POLICY_SET = "default"


class OrchestratorRuntime(ABC):
    """Abstract orchestrator. Every operation is a suspension point."""

    @property
    @abstractmethod
    def mode(self) -> RuntimeMode: ...

    @abstractmethod
    async def start_agent(
        self, workspace_id: str, agent_id: str, spec: AgentSpec | None = None
    ) -> bool:
        """Start an agent after admission checks. Raises AdmissionDenied."""
        ...

    @abstractmethod
    async def stop_agent(self, workspace_id: str, agent_id: str) -> bool: ...

    @abstractmethod
    async def get_agent_status(self, workspace_id: str, agent_id: str) -> AgentStatus: ...

    @abstractmethod
    async def list_agent_statuses(
        self, workspace_id: str, page: int = 1, limit: int = 50
    ) -> tuple[list[AgentStatus], int]:
        """One page of agent statuses plus the total count."""
        ...

    @abstractmethod
    async def get_policy_snapshot(
        self, workspace_id: str, policy_set: str = DEFAULT_POLICY_SET
    ) -> PolicySnapshot:
        """The published snapshot. Raises PolicyMissing when none is committed."""
        ...

    @abstractmethod
    async def hot_reload_policy(
        self,
        workspace_id: str,
        policy_set: str,
        bundle: dict[str, Any],
        actor: Actor,
    ) -> HotReloadResult:
        """Commit, publish and revalidate a new policy version."""
        ...

    @abstractmethod
    async def revalidate_agents(
        self,
        workspace_id: str,
        agent_ids: list[str] | None = None,
        policy_set: str = DEFAULT_POLICY_SET,
    ) -> RevalidationResult: ...

    @abstractmethod
    async def get_governance_explanation(
        self, workspace_id: str, agent_id: str
    ) -> GovernanceExplanation: ...

    async def close(self) -> None:
        """Release connections. No-op by default."""
        return None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
