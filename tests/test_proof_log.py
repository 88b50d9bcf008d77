# AEGIS Governance
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
"""Proof ledger: append-only JSONL with a hash chain."""

import json

import pytest

from aegis_governance.governance.proof_log import GENESIS_HASH, ProofEntry, ProofLedger
from aegis_governance.models import EvaluationOutcome, GovernanceStatus


def _entry(agent_id="agent-1", evaluated_at="2026-01-01T12:00:00+00:00", status="GOVERNED_VALID"):
    return ProofEntry(
        agent_id=agent_id,
        evaluated_at=evaluated_at,
        workspace_id="ws-1",
        status=status,
        reason="compliant",
        policy_hash="sha256:p",
        spec_hash="sha256:s",
        score=100,
    )


@pytest.fixture
def ledger(tmp_path) -> ProofLedger:
    return ProofLedger(tmp_path / "proofs.jsonl", hmac_key=b"ledger-key")


class TestProofLedger:
    def test_empty_ledger_verifies(self, ledger):
        assert ledger.verify_chain() == (True, 0)
        assert ledger.entry_count() == 0

    def test_entries_are_chained(self, ledger):
        first = ledger.append(_entry())
        second = ledger.append(_entry(evaluated_at="2026-01-01T12:05:00+00:00"))

        assert first.prev_hash == GENESIS_HASH
        assert second.prev_hash == first.entry_hash
        assert ledger.verify_chain() == (True, 2)

    def test_lookup_by_agent_and_time(self, ledger):
        ledger.append(_entry())
        ledger.append(_entry(agent_id="agent-2"))
        ledger.append(_entry(evaluated_at="2026-01-02T00:00:00+00:00", status="GOVERNED_INVALIDATED"))

        assert [e.status for e in ledger.history("agent-1")] == ["GOVERNED_VALID", "GOVERNED_INVALIDATED"]
        entry = ledger.get("agent-1", "2026-01-02T00:00:00+00:00")
        assert entry.status == "GOVERNED_INVALIDATED"
        assert ledger.get("agent-1", "1999-01-01T00:00:00+00:00") is None

    def test_rewritten_entry_breaks_chain(self, ledger):
        ledger.append(_entry())
        ledger.append(_entry(evaluated_at="2026-01-01T12:05:00+00:00"))

        lines = ledger.path.read_text().splitlines()
        tampered = json.loads(lines[0])
        tampered["status"] = "GOVERNED_INVALIDATED"
        lines[0] = json.dumps(tampered)
        ledger.path.write_text("\n".join(lines) + "\n")

        valid, _ = ledger.verify_chain()
        assert not valid

    def test_dropped_entry_breaks_chain(self, ledger):
        for minute in range(3):
            ledger.append(_entry(evaluated_at=f"2026-01-01T12:0{minute}:00+00:00"))

        lines = ledger.path.read_text().splitlines()
        ledger.path.write_text("\n".join([lines[0], lines[2]]) + "\n")
        assert ledger.verify_chain() == (False, 1)

    def test_reopened_ledger_continues_chain(self, tmp_path):
        path = tmp_path / "proofs.jsonl"
        ProofLedger(path, hmac_key=b"k").append(_entry())
        reopened = ProofLedger(path, hmac_key=b"k")
        reopened.append(_entry(evaluated_at="2026-01-01T13:00:00+00:00"))
        assert reopened.verify_chain() == (True, 2)

    def test_other_key_fails_verification(self, tmp_path):
        path = tmp_path / "proofs.jsonl"
        ProofLedger(path, hmac_key=b"k1").append(_entry())
        valid, _ = ProofLedger(path, hmac_key=b"k2").verify_chain()
        assert not valid

    def test_record_outcome(self, ledger, clock):
        outcome = EvaluationOutcome(
            agent_id="agent-1",
            status=GovernanceStatus.GOVERNED_RESTRICTED,
            reason="below_threshold",
            score=65,
        )
        entry = ledger.record(outcome, "ws-1", clock())
        assert entry.status == "GOVERNED_RESTRICTED"
        assert entry.score == 65
        assert entry.proof is None
        assert entry.evaluated_at.startswith("2026-01-01T12:00:00")
