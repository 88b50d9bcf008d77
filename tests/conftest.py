# AEGIS Governance
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
"""Pytest configuration and shared fixtures for aegis-governance tests."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Ensure src/aegis_governance is importable
src_path = str(Path(__file__).parent.parent / "src")
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from aegis_governance.adapters.memory import InMemoryAgentStorage, InMemoryPolicyStorage  # noqa: E402
from aegis_governance.adapters.signing import HmacSigner  # noqa: E402
from aegis_governance.context import GovernanceContext  # noqa: E402
from aegis_governance.core.config import GovernanceSettings  # noqa: E402
from aegis_governance.core.logging import GovernanceLogger  # noqa: E402
from aegis_governance.hashing import compute_policy_hash  # noqa: E402
from aegis_governance.models import AgentSpec, PolicySnapshot  # noqa: E402

SIGNING_KEY = b"test-signing-key"
AUTHORITY = "aegis-test"


class FrozenClock:
    """Deterministic clock; advance it explicitly."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def event_log() -> GovernanceLogger:
    return GovernanceLogger(stderr=False)


@pytest.fixture
def signer() -> HmacSigner:
    return HmacSigner(SIGNING_KEY, authority=AUTHORITY)


@pytest.fixture
def agent_storage() -> InMemoryAgentStorage:
    return InMemoryAgentStorage()


@pytest.fixture
def policy_storage() -> InMemoryPolicyStorage:
    return InMemoryPolicyStorage()


@pytest.fixture
def context(agent_storage, policy_storage, signer, event_log, clock) -> GovernanceContext:
    return GovernanceContext(
        agents=agent_storage,
        policies=policy_storage,
        signer=signer,
        settings=GovernanceSettings(),
        event_log=event_log,
        clock=clock,
    )


@pytest.fixture
def make_agent(clock):
    """Factory for promotable sandbox agents."""

    def _make(agent_id: str = "agent-1", workspace_id: str = "ws-1", **overrides) -> AgentSpec:
        fields = {
            "id": agent_id,
            "workspace_id": workspace_id,
            "name": f"Agent {agent_id}",
            "description": "Answers customer questions",
            "role_class": "assistant",
            "system_prompt": "You are a helpful assistant.",
            "allowed_tools": ["search"],
            "temperature": 0.7,
            "created_at": clock(),
        }
        fields.update(overrides)
        return AgentSpec(**fields)

    return _make


@pytest.fixture
def make_snapshot(clock):
    """Factory for published snapshots built from a bundle."""

    def _make(
        bundle: dict,
        version: int = 1,
        workspace_id: str = "ws-1",
        policy_set: str = "default",
        revoked_signers: tuple = (),
    ) -> PolicySnapshot:
        return PolicySnapshot(
            workspace_id=workspace_id,
            policy_set=policy_set,
            version=version,
            hash=compute_policy_hash(bundle),
            loaded_at=clock(),
            bundle=bundle,
            revoked_signers=revoked_signers,
        )

    return _make
