# AEGIS Governance
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
"""Tests for the governance state machine: promotion, evaluation, revalidation."""

import asyncio
from datetime import timedelta

import pytest

from aegis_governance.adapters.memory import InMemoryAgentStorage
from aegis_governance.adapters.signing import HmacSigner
from aegis_governance.errors import (
    AgentNotFound,
    ErrorCodes,
    InvalidTransition,
    SpecTamperDetected,
    StorageUnavailable,
    ValidationError,
)
from aegis_governance.governance.proof_log import ProofLedger
from aegis_governance.governance.state_machine import (
    VALID_TRANSITIONS,
    GovernanceStateMachine,
    can_transition,
    ensure_spec_integrity,
)
from aegis_governance.hashing import compute_spec_hash
from aegis_governance.models import (
    Actor,
    AgentMode,
    GovernanceStatus,
    ProofDecision,
)

ALLOW_ASSISTANT = {"rules": {"allowedRoles": ["assistant"]}}
ALLOW_ANALYST = {"rules": {"allowedRoles": ["assistant", "analyst"]}}


class FlakyAgentStorage(InMemoryAgentStorage):
    """Fails governance writes for selected agents, or every listing."""

    def __init__(self):
        super().__init__()
        self.fail_writes: set[str] = set()
        self.fail_list = False

    async def update_governance_status(self, agent_id, *args, **kwargs):
        if agent_id in self.fail_writes:
            raise StorageUnavailable(f"write failed for {agent_id}")
        return await super().update_governance_status(agent_id, *args, **kwargs)

    async def list_agents(self, workspace_id, filters=None):
        if self.fail_list:
            raise StorageUnavailable("agent store offline")
        return await super().list_agents(workspace_id, filters)


@pytest.fixture
def machine(agent_storage, signer, event_log, clock) -> GovernanceStateMachine:
    return GovernanceStateMachine(agent_storage, signer, event_log=event_log, clock=clock)


async def _promoted(machine, agent_storage, agent, snapshot):
    await agent_storage.create_agent(agent)
    return await machine.promote(agent.id, snapshot)


class TestTransitionTable:
    def test_expired_is_terminal(self):
        assert VALID_TRANSITIONS[GovernanceStatus.EXPIRED] == set()

    def test_sandbox_only_enters_pending_or_expires(self):
        assert can_transition(GovernanceStatus.SANDBOX, GovernanceStatus.GOVERNED_PENDING)
        assert can_transition(GovernanceStatus.SANDBOX, GovernanceStatus.EXPIRED)
        assert not can_transition(GovernanceStatus.SANDBOX, GovernanceStatus.GOVERNED_VALID)

    def test_governed_states_reach_each_other(self):
        governed = [s for s in GovernanceStatus if s.is_governed]
        for source in governed:
            for target in governed:
                assert can_transition(source, target)
            assert not can_transition(source, GovernanceStatus.SANDBOX)


class TestPromote:
    @pytest.mark.asyncio
    async def test_compliant_agent_becomes_valid(self, machine, agent_storage, make_agent, make_snapshot):
        snapshot = make_snapshot(ALLOW_ASSISTANT)
        outcome = await _promoted(machine, agent_storage, make_agent(), snapshot)

        assert outcome.status == GovernanceStatus.GOVERNED_VALID
        assert outcome.score == 100
        agent = await agent_storage.get_agent("agent-1")
        assert agent.mode == AgentMode.GOVERNED
        assert agent.governance_status == GovernanceStatus.GOVERNED_VALID
        assert agent.policy_hash == snapshot.hash
        assert agent.spec_hash == compute_spec_hash(agent)
        assert agent.proof.decision == ProofDecision.PASS
        assert agent.proof.policy_hash == snapshot.hash

    @pytest.mark.asyncio
    async def test_only_sandbox_agents_can_be_promoted(
        self, machine, agent_storage, make_agent, make_snapshot
    ):
        snapshot = make_snapshot(ALLOW_ASSISTANT)
        await _promoted(machine, agent_storage, make_agent(), snapshot)
        with pytest.raises(InvalidTransition):
            await machine.promote("agent-1", snapshot)

    @pytest.mark.asyncio
    async def test_baseline_shape_rejected_before_any_write(
        self, machine, agent_storage, make_agent, make_snapshot
    ):
        await agent_storage.create_agent(make_agent(description="", temperature=3.0))
        with pytest.raises(ValidationError) as exc_info:
            await machine.promote("agent-1", make_snapshot(ALLOW_ASSISTANT))

        assert len(exc_info.value.errors) == 2
        agent = await agent_storage.get_agent("agent-1")
        assert agent.governance_status == GovernanceStatus.SANDBOX
        assert agent.mode == AgentMode.SANDBOX

    @pytest.mark.asyncio
    async def test_missing_policy_fails_closed(self, machine, agent_storage, make_agent):
        outcome = await _promoted(machine, agent_storage, make_agent(), None)
        assert outcome.status == GovernanceStatus.GOVERNED_INVALIDATED
        assert outcome.reason == "policy_missing"
        assert outcome.proof.decision == ProofDecision.FAIL

    @pytest.mark.asyncio
    async def test_empty_rules_fail_closed(self, machine, agent_storage, make_agent, make_snapshot):
        outcome = await _promoted(machine, agent_storage, make_agent(), make_snapshot({"rules": {}}))
        assert outcome.status == GovernanceStatus.GOVERNED_INVALIDATED
        assert outcome.reason == "policy_missing"

    @pytest.mark.asyncio
    async def test_snapshot_of_other_policy_set_counts_as_missing(
        self, machine, agent_storage, make_agent, make_snapshot
    ):
        snapshot = make_snapshot(ALLOW_ASSISTANT, policy_set="strict")
        outcome = await _promoted(machine, agent_storage, make_agent(), snapshot)
        assert outcome.reason == "policy_missing"

    @pytest.mark.asyncio
    async def test_unknown_agent(self, machine, make_snapshot):
        with pytest.raises(AgentNotFound):
            await machine.promote("ghost", make_snapshot(ALLOW_ASSISTANT))


class TestEvaluate:
    @pytest.mark.asyncio
    async def test_repeated_evaluation_is_idempotent(
        self, machine, agent_storage, make_agent, make_snapshot, clock
    ):
        snapshot = make_snapshot(ALLOW_ASSISTANT)
        first = await _promoted(machine, agent_storage, make_agent(), snapshot)
        clock.advance(minutes=5)
        second = await machine.evaluate("agent-1", snapshot)

        assert second.status == first.status == GovernanceStatus.GOVERNED_VALID
        assert second.proof.policy_hash == first.proof.policy_hash
        assert second.proof.signed_at > first.proof.signed_at

    @pytest.mark.asyncio
    async def test_compliant_below_threshold_is_restricted(
        self, machine, agent_storage, make_agent, make_snapshot
    ):
        bundle = {"rules": {"maxBudget": 10}}
        agent = make_agent(temperature=1.8, budget_usd=50.0)
        outcome = await _promoted(machine, agent_storage, agent, make_snapshot(bundle))

        assert outcome.score == 60
        assert outcome.status == GovernanceStatus.GOVERNED_RESTRICTED
        assert outcome.reason == "below_threshold"
        assert outcome.proof.decision == ProofDecision.PASS

    @pytest.mark.asyncio
    async def test_threshold_is_configurable(
        self, agent_storage, signer, event_log, clock, make_agent, make_snapshot
    ):
        machine = GovernanceStateMachine(
            agent_storage, signer, restricted_threshold=60, event_log=event_log, clock=clock
        )
        bundle = {"rules": {"maxBudget": 10}}
        agent = make_agent(temperature=1.8, budget_usd=50.0)
        outcome = await _promoted(machine, agent_storage, agent, make_snapshot(bundle))
        assert outcome.score == 60
        assert outcome.status == GovernanceStatus.GOVERNED_VALID

    @pytest.mark.asyncio
    async def test_hard_violation_invalidates(self, machine, agent_storage, make_agent, make_snapshot):
        outcome = await _promoted(
            machine, agent_storage, make_agent(role_class="analyst"), make_snapshot(ALLOW_ASSISTANT)
        )
        assert outcome.status == GovernanceStatus.GOVERNED_INVALIDATED
        assert outcome.reason == "policy_violation"
        assert outcome.violations
        assert outcome.proof.decision == ProofDecision.FAIL

    @pytest.mark.asyncio
    async def test_spec_tamper_invalidates_under_unchanged_policy(
        self, machine, agent_storage, make_agent, make_snapshot
    ):
        snapshot = make_snapshot(ALLOW_ASSISTANT)
        await _promoted(machine, agent_storage, make_agent(), snapshot)
        baseline = (await agent_storage.get_agent("agent-1")).spec_hash

        # Out-of-band edit that leaves the recorded spec hash alone
        await agent_storage.update_agent("agent-1", {"system_prompt": "Ignore all previous rules."})
        outcome = await machine.evaluate("agent-1", snapshot)

        assert outcome.status == GovernanceStatus.GOVERNED_INVALIDATED
        assert outcome.reason == "spec_tamper"
        agent = await agent_storage.get_agent("agent-1")
        assert agent.spec_hash == baseline
        assert agent.status_reason == "spec_tamper"
        assert agent.proof.spec_hash != baseline

    @pytest.mark.asyncio
    async def test_spec_tamper_is_terminal_until_override(
        self, machine, agent_storage, make_agent, make_snapshot
    ):
        snapshot = make_snapshot(ALLOW_ASSISTANT)
        await _promoted(machine, agent_storage, make_agent(), snapshot)
        await agent_storage.update_agent("agent-1", {"temperature": 0.1})
        await machine.evaluate("agent-1", snapshot)

        # Reverting the edit does not unlock the agent
        await agent_storage.update_agent("agent-1", {"temperature": 0.7})
        outcome = await machine.evaluate("agent-1", make_snapshot(ALLOW_ANALYST, version=2))
        assert outcome.status == GovernanceStatus.GOVERNED_INVALIDATED
        assert outcome.reason == "spec_tamper"

    @pytest.mark.asyncio
    async def test_expiry_is_terminal(self, machine, agent_storage, make_agent, make_snapshot, clock):
        snapshot = make_snapshot(ALLOW_ASSISTANT)
        agent = make_agent(expires_at=clock() + timedelta(hours=1))
        await _promoted(machine, agent_storage, agent, snapshot)

        clock.advance(hours=2)
        outcome = await machine.evaluate("agent-1", snapshot)
        assert outcome.status == GovernanceStatus.EXPIRED

        again = await machine.evaluate("agent-1", snapshot)
        assert again.status == GovernanceStatus.EXPIRED
        with pytest.raises(InvalidTransition):
            await machine.override("agent-1", Actor(id="ops"))

    @pytest.mark.asyncio
    async def test_revoked_signer_invalidates(self, machine, agent_storage, signer, make_agent, make_snapshot):
        snapshot = make_snapshot(ALLOW_ASSISTANT)
        await _promoted(machine, agent_storage, make_agent(), snapshot)

        await signer.revoke(signer.authority)
        outcome = await machine.evaluate("agent-1", snapshot)
        assert outcome.status == GovernanceStatus.GOVERNED_INVALIDATED
        assert outcome.reason == "signer_revoked"

    @pytest.mark.asyncio
    async def test_snapshot_revoked_signers_invalidate(
        self, machine, agent_storage, signer, make_agent, make_snapshot
    ):
        await _promoted(machine, agent_storage, make_agent(), make_snapshot(ALLOW_ASSISTANT))
        revoking = make_snapshot(ALLOW_ASSISTANT, version=2, revoked_signers=(signer.authority,))
        outcome = await machine.evaluate("agent-1", revoking)
        assert outcome.reason == "signer_revoked"

    @pytest.mark.asyncio
    async def test_forged_signature_invalidates(
        self, agent_storage, event_log, clock, make_agent, make_snapshot
    ):
        snapshot = make_snapshot(ALLOW_ASSISTANT)
        genuine = GovernanceStateMachine(
            agent_storage, HmacSigner(b"key-one", authority="aegis"), event_log=event_log, clock=clock
        )
        await _promoted(genuine, agent_storage, make_agent(), snapshot)

        other = GovernanceStateMachine(
            agent_storage, HmacSigner(b"key-two", authority="aegis"), event_log=event_log, clock=clock
        )
        outcome = await other.evaluate("agent-1", snapshot)
        assert outcome.reason == "signature_invalid"

    @pytest.mark.asyncio
    async def test_sandbox_agent_cannot_be_evaluated(self, machine, agent_storage, make_agent, make_snapshot):
        await agent_storage.create_agent(make_agent())
        with pytest.raises(InvalidTransition):
            await machine.evaluate("agent-1", make_snapshot(ALLOW_ASSISTANT))

    @pytest.mark.asyncio
    async def test_concurrent_evaluations_of_one_agent_serialize(
        self, machine, agent_storage, make_agent, make_snapshot
    ):
        snapshot = make_snapshot(ALLOW_ASSISTANT)
        await _promoted(machine, agent_storage, make_agent(), snapshot)
        outcomes = await asyncio.gather(*(machine.evaluate("agent-1", snapshot) for _ in range(5)))
        assert {o.status for o in outcomes} == {GovernanceStatus.GOVERNED_VALID}


class TestRevalidateAll:
    @pytest.mark.asyncio
    async def test_partitions_agents(self, machine, agent_storage, make_agent, make_snapshot):
        v1 = make_snapshot(ALLOW_ANALYST)
        await _promoted(machine, agent_storage, make_agent("a1"), v1)
        await _promoted(machine, agent_storage, make_agent("a2", role_class="analyst"), v1)
        await _promoted(
            machine,
            agent_storage,
            make_agent("a3", temperature=1.9, budget_usd=50.0),
            v1,
        )
        v2 = make_snapshot(
            {"rules": {"allowedRoles": ["assistant"], "maxBudget": 5}},
            version=2,
        )
        result = await machine.revalidate_all("ws-1", v2)

        assert result.invalidated == ["a2"]
        assert result.restricted == ["a3"]
        assert result.valid == ["a1"]
        assert result.failed == {}

    @pytest.mark.asyncio
    async def test_ignores_sandbox_expired_and_other_policy_sets(
        self, machine, agent_storage, make_agent, make_snapshot, clock
    ):
        snapshot = make_snapshot(ALLOW_ASSISTANT)
        await agent_storage.create_agent(make_agent("sandboxed"))
        await _promoted(machine, agent_storage, make_agent("governed"), snapshot)
        await _promoted(
            machine,
            agent_storage,
            make_agent("strict", policy_set="strict"),
            make_snapshot(ALLOW_ASSISTANT, policy_set="strict"),
        )
        await _promoted(
            machine, agent_storage, make_agent("old", expires_at=clock() + timedelta(minutes=1)), snapshot
        )
        clock.advance(minutes=5)
        await machine.check_expiry("old")

        result = await machine.revalidate_all("ws-1", snapshot)
        assert result.valid == ["governed"]
        assert result.total == 1

    @pytest.mark.asyncio
    async def test_agent_failure_is_reported_not_counted_valid(
        self, signer, event_log, clock, make_agent, make_snapshot
    ):
        storage = FlakyAgentStorage()
        machine = GovernanceStateMachine(storage, signer, event_log=event_log, clock=clock)
        snapshot = make_snapshot(ALLOW_ASSISTANT)
        for agent_id in ("a1", "a2", "a3"):
            await _promoted(machine, storage, make_agent(agent_id), snapshot)

        storage.fail_writes = {"a2"}
        result = await machine.revalidate_all("ws-1", snapshot)

        assert result.valid == ["a1", "a3"]
        assert "a2" in result.failed
        assert "write failed" in result.failed["a2"]

    @pytest.mark.asyncio
    async def test_listing_failure_propagates(self, signer, event_log, clock, make_snapshot):
        storage = FlakyAgentStorage()
        storage.fail_list = True
        machine = GovernanceStateMachine(storage, signer, event_log=event_log, clock=clock)
        with pytest.raises(StorageUnavailable):
            await machine.revalidate_all("ws-1", make_snapshot(ALLOW_ASSISTANT))

    @pytest.mark.asyncio
    async def test_subset_and_unknown_ids(self, machine, agent_storage, make_agent, make_snapshot):
        snapshot = make_snapshot(ALLOW_ASSISTANT)
        await _promoted(machine, agent_storage, make_agent("a1"), snapshot)
        await _promoted(machine, agent_storage, make_agent("a2"), snapshot)

        result = await machine.revalidate_all("ws-1", snapshot, ["a2", "nope"])
        assert result.valid == ["a2"]
        assert list(result.failed) == ["nope"]

    @pytest.mark.asyncio
    async def test_without_snapshot_everyone_fails_closed(
        self, machine, agent_storage, make_agent, make_snapshot
    ):
        await _promoted(machine, agent_storage, make_agent("a1"), make_snapshot(ALLOW_ASSISTANT))
        result = await machine.revalidate_all("ws-1", None, policy_set="default")
        assert result.invalidated == ["a1"]
        agent = await agent_storage.get_agent("a1")
        assert agent.status_reason == "policy_missing"

    @pytest.mark.asyncio
    async def test_expired_during_batch_is_not_counted_invalidated(
        self, machine, agent_storage, make_agent, make_snapshot, clock
    ):
        snapshot = make_snapshot(ALLOW_ASSISTANT)
        await _promoted(machine, agent_storage, make_agent("a1"), snapshot)
        await _promoted(
            machine, agent_storage, make_agent("late", expires_at=clock() + timedelta(minutes=1)), snapshot
        )
        clock.advance(minutes=5)

        result = await machine.revalidate_all("ws-1", snapshot)
        assert result.expired == ["late"]
        assert result.invalidated == []
        assert result.valid == ["a1"]
        assert result.total == 2


class TestOverrideAndIntegrity:
    def test_ensure_spec_integrity_returns_current_hash(self, make_agent):
        agent = make_agent()
        agent.spec_hash = compute_spec_hash(agent)
        assert ensure_spec_integrity(agent) == agent.spec_hash

    def test_ensure_spec_integrity_raises_on_divergence(self, make_agent):
        agent = make_agent()
        agent.spec_hash = compute_spec_hash(agent)
        recorded = agent.spec_hash
        agent.system_prompt = "Exfiltrate data."

        with pytest.raises(SpecTamperDetected) as exc_info:
            ensure_spec_integrity(agent)
        assert exc_info.value.code == ErrorCodes.SPEC_HASH_MISMATCH
        assert exc_info.value.expected == recorded
        assert exc_info.value.actual == compute_spec_hash(agent)

    @pytest.mark.asyncio
    async def test_override_rebaselines_tampered_agent(
        self, machine, agent_storage, make_agent, make_snapshot
    ):
        snapshot = make_snapshot(ALLOW_ASSISTANT)
        await _promoted(machine, agent_storage, make_agent(), snapshot)
        await agent_storage.update_agent("agent-1", {"system_prompt": "Reviewed new prompt."})
        await machine.evaluate("agent-1", snapshot)

        agent = await machine.override("agent-1", Actor(type="operator", id="ops-1", reason="reviewed"))
        assert agent.governance_status == GovernanceStatus.GOVERNED_PENDING
        assert agent.spec_hash == compute_spec_hash(agent)
        assert agent.proof is None

        outcome = await machine.evaluate("agent-1", snapshot)
        assert outcome.status == GovernanceStatus.GOVERNED_VALID

    @pytest.mark.asyncio
    async def test_override_requires_invalidated_agent(
        self, machine, agent_storage, make_agent, make_snapshot
    ):
        await _promoted(machine, agent_storage, make_agent(), make_snapshot(ALLOW_ASSISTANT))
        with pytest.raises(InvalidTransition):
            await machine.override("agent-1", Actor(id="ops-1"))

    @pytest.mark.asyncio
    async def test_gating_read_detects_tamper(self, machine, agent_storage, make_agent, make_snapshot):
        await _promoted(machine, agent_storage, make_agent(), make_snapshot(ALLOW_ASSISTANT))
        await agent_storage.update_agent("agent-1", {"allowed_tools": ["search", "shell"]})

        agent = await machine.verify_integrity("agent-1")
        assert agent.governance_status == GovernanceStatus.GOVERNED_INVALIDATED
        assert agent.status_reason == "spec_tamper"

    @pytest.mark.asyncio
    async def test_gating_read_leaves_intact_agent_alone(
        self, machine, agent_storage, make_agent, make_snapshot
    ):
        await _promoted(machine, agent_storage, make_agent(), make_snapshot(ALLOW_ASSISTANT))
        agent = await machine.verify_integrity("agent-1")
        assert agent.governance_status == GovernanceStatus.GOVERNED_VALID

    @pytest.mark.asyncio
    async def test_sweep_expired(self, machine, agent_storage, make_agent, clock):
        await agent_storage.create_agent(make_agent("short", expires_at=clock() + timedelta(minutes=1)))
        await agent_storage.create_agent(make_agent("long", expires_at=clock() + timedelta(days=1)))
        clock.advance(minutes=10)

        assert await machine.sweep_expired("ws-1") == ["short"]
        assert (await agent_storage.get_agent("short")).governance_status == GovernanceStatus.EXPIRED


class TestProofLedgerIntegration:
    @pytest.mark.asyncio
    async def test_every_decision_is_recorded(
        self, tmp_path, agent_storage, signer, event_log, clock, make_agent, make_snapshot
    ):
        ledger = ProofLedger(tmp_path / "proofs.jsonl", hmac_key=b"ledger-key")
        machine = GovernanceStateMachine(
            agent_storage, signer, ledger=ledger, event_log=event_log, clock=clock
        )
        snapshot = make_snapshot(ALLOW_ASSISTANT)
        await _promoted(machine, agent_storage, make_agent(), snapshot)
        clock.advance(seconds=1)
        await machine.evaluate("agent-1", snapshot)

        history = ledger.history("agent-1")
        assert [e.status for e in history] == ["GOVERNED_VALID", "GOVERNED_VALID"]
        assert history[0].evaluated_at != history[1].evaluated_at
        assert ledger.verify_chain() == (True, 2)
