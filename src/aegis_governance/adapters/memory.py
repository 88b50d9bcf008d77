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
"""In-memory storage adapters.

Reference implementations for the embedded runtime and for tests. Rows
are copied on the way in and out so callers never share mutable state
with the store.
"""

from __future__ import annotations

import copy
import logging
from datetime import datetime
from typing import Any

from aegis_governance.adapters.base import (
    UNSET,
    AgentStorageAdapter,
    PolicyStorageAdapter,
    StoredPolicy,
)
from aegis_governance.errors import AgentNotFound, ValidationError
from aegis_governance.models import AgentSpec, GovernanceStatus, ProofBundle, utcnow

logger = logging.getLogger("aegis_governance.adapters.memory")

# Written only through update_governance_status.
GOVERNANCE_FIELDS = frozenset(
    {"id", "governance_status", "status_reason", "status_since", "policy_hash", "spec_hash", "proof"}
)


class InMemoryAgentStorage(AgentStorageAdapter):
    def __init__(self) -> None:
        self._agents: dict[str, AgentSpec] = {}

    async def create_agent(self, agent: AgentSpec) -> AgentSpec:
        if agent.id in self._agents:
            raise ValidationError(f"Agent already exists: {agent.id}")
        self._agents[agent.id] = agent.clone()
        logger.debug("Created agent %s in workspace %s", agent.id, agent.workspace_id)
        return agent.clone()

    async def get_agent(self, agent_id: str) -> AgentSpec | None:
        agent = self._agents.get(agent_id)
        return agent.clone() if agent else None

    async def list_agents(
        self,
        workspace_id: str,
        filters: dict[str, Any] | None = None,
    ) -> list[AgentSpec]:
        filters = filters or {}
        result = []
        for agent in self._agents.values():
            if agent.workspace_id != workspace_id:
                continue
            if "mode" in filters and agent.mode != filters["mode"]:
                continue
            if "governance_status" in filters and agent.governance_status != filters["governance_status"]:
                continue
            if "policy_set" in filters and agent.policy_set != filters["policy_set"]:
                continue
            result.append(agent.clone())
        return sorted(result, key=lambda a: (a.created_at, a.id))

    async def update_agent(self, agent_id: str, updates: dict[str, Any]) -> AgentSpec:
        agent = self._agents.get(agent_id)
        if agent is None:
            raise AgentNotFound(agent_id)
        protected = sorted(set(updates) & GOVERNANCE_FIELDS)
        if protected:
            raise ValidationError(
                f"Governance fields cannot be updated directly: {', '.join(protected)}",
                errors=protected,
            )
        unknown = [k for k in updates if not hasattr(agent, k)]
        if unknown:
            raise ValidationError(f"Unknown agent fields: {', '.join(unknown)}", errors=unknown)
        for key, value in updates.items():
            setattr(agent, key, copy.deepcopy(value))
        return agent.clone()

    async def delete_agent(self, agent_id: str) -> bool:
        return self._agents.pop(agent_id, None) is not None

    async def update_governance_status(
        self,
        agent_id: str,
        status: GovernanceStatus,
        reason: str,
        *,
        since: datetime | None = None,
        policy_hash: str | None = UNSET,
        spec_hash: str | None = UNSET,
        proof: ProofBundle | None = UNSET,
    ) -> AgentSpec:
        agent = self._agents.get(agent_id)
        if agent is None:
            raise AgentNotFound(agent_id)
        if agent.governance_status != status:
            agent.status_since = since or utcnow()
        elif agent.status_since is None:
            agent.status_since = since or utcnow()
        agent.governance_status = status
        agent.status_reason = reason
        if policy_hash is not UNSET:
            agent.policy_hash = policy_hash
        if spec_hash is not UNSET:
            agent.spec_hash = spec_hash
        if proof is not UNSET:
            agent.proof = proof
        return agent.clone()


class InMemoryPolicyStorage(PolicyStorageAdapter):
    def __init__(self) -> None:
        self._policies: dict[tuple[str, str], dict[int, StoredPolicy]] = {}

    async def store_policy(
        self,
        workspace_id: str,
        policy_set: str,
        version: int,
        bundle: dict[str, Any],
        hash: str,
    ) -> StoredPolicy:
        versions = self._policies.setdefault((workspace_id, policy_set), {})
        if version in versions:
            raise ValidationError(
                f"Policy {policy_set} v{version} already exists in workspace {workspace_id}"
            )
        stored = StoredPolicy(
            workspace_id=workspace_id,
            policy_set=policy_set,
            version=version,
            bundle=copy.deepcopy(bundle),
            hash=hash,
        )
        versions[version] = stored
        logger.debug("Stored policy %s/%s v%d (%s)", workspace_id, policy_set, version, hash)
        return stored

    async def get_policy(
        self, workspace_id: str, policy_set: str, version: int
    ) -> StoredPolicy | None:
        return self._policies.get((workspace_id, policy_set), {}).get(version)

    async def get_current_policy(self, workspace_id: str, policy_set: str) -> StoredPolicy | None:
        versions = self._policies.get((workspace_id, policy_set))
        if not versions:
            return None
        return versions[max(versions)]

    async def list_policy_versions(self, workspace_id: str, policy_set: str) -> list[int]:
        return sorted(self._policies.get((workspace_id, policy_set), {}))
