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
Collaborator interfaces of the governance core.

Every adapter is async: each call is a suspension point. Implementations
are constructed explicitly and handed to the core through a
GovernanceContext, never looked up from module globals.

Every storage adapter must implement:
- AgentStorageAdapter: create/get/list/update/delete agents, and
  update_governance_status (called only by the state machine)
- PolicyStorageAdapter: append-only policy versions per
  (workspace, policy set)
- SignerAdapter: sign/verify payloads and report revoked authorities

Adapters raise StorageUnavailable when their backing store fails.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from aegis_governance.models import AgentSpec, GovernanceStatus, ProofBundle, utcnow


@dataclass(frozen=True)
class StoredPolicy:
    """One committed policy version."""

    workspace_id: str
    policy_set: str
    version: int
    bundle: dict[str, Any]
    hash: str
    created_at: datetime = field(default_factory=utcnow)


UNSET: Any = object()


class AgentStorageAdapter(ABC):
    """Persistence for agent rows."""

    @abstractmethod
    async def create_agent(self, agent: AgentSpec) -> AgentSpec: ...

    @abstractmethod
    async def get_agent(self, agent_id: str) -> AgentSpec | None:
        """Return the persisted row, or None when it does not exist."""
        ...

    @abstractmethod
    async def list_agents(
        self,
        workspace_id: str,
        filters: dict[str, Any] | None = None,
    ) -> list[AgentSpec]:
        """List agents of a workspace.

        Supported filters: ``mode``, ``governance_status``, ``policy_set``.
        """
        ...

    @abstractmethod
    async def update_agent(self, agent_id: str, updates: dict[str, Any]) -> AgentSpec:
        """Apply attribute updates to a spec. Raises AgentNotFound."""
        ...

    @abstractmethod
    async def delete_agent(self, agent_id: str) -> bool: ...

    @abstractmethod
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
        """Persist a governance decision atomically.

        Keyword fields left unset keep their stored value.
        """
        ...


class PolicyStorageAdapter(ABC):
    """Append-only store of policy versions."""

    @abstractmethod
    async def store_policy(
        self,
        workspace_id: str,
        policy_set: str,
        version: int,
        bundle: dict[str, Any],
        hash: str,
    ) -> StoredPolicy:
        """Commit a new version. Overwriting an existing version is an error."""
        ...

    @abstractmethod
    async def get_policy(
        self, workspace_id: str, policy_set: str, version: int
    ) -> StoredPolicy | None: ...

    @abstractmethod
    async def get_current_policy(self, workspace_id: str, policy_set: str) -> StoredPolicy | None:
        """Return the highest committed version, or None."""
        ...

    @abstractmethod
    async def list_policy_versions(self, workspace_id: str, policy_set: str) -> list[int]:
        """Committed versions in ascending order."""
        ...


class SignerAdapter(ABC):
    """Signs and verifies proof payloads."""

    @property
    @abstractmethod
    def authority(self) -> str:
        """Identity recorded in every signature this signer produces."""
        ...

    @abstractmethod
    async def sign(self, payload: dict[str, Any]) -> str: ...

    @abstractmethod
    async def verify(self, payload: dict[str, Any], sig: str, authority: str) -> bool: ...

    @abstractmethod
    async def is_revoked(self, authority: str) -> bool: ...

    @abstractmethod
    async def revoke(self, authority: str) -> None: ...
