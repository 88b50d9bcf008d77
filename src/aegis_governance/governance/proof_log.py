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
"""Append-only proof ledger with HMAC hash chain.

Every governance decision is appended to a JSONL file keyed by
``(agent_id, evaluated_at)``. Each entry carries the SHA-256 hash of the
previous entry and an HMAC-SHA256 signature, so rewriting or dropping a
decision breaks ``verify_chain()``. The agent row only keeps the latest
proof; the ledger keeps all of them.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import platform
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from aegis_governance.models import EvaluationOutcome, to_iso

logger = logging.getLogger("aegis_governance.governance.proof_log")

# Sentinel for the first entry in the chain
GENESIS_HASH = "0" * 64


def _derive_hmac_key(path: Path) -> bytes:
    """Machine- and ledger-specific key used when none is configured."""
    raw = f"aegis-proof-ledger-{platform.node()}-{path.resolve()}".encode()
    return hashlib.sha256(raw).digest()


@dataclass
class ProofEntry:
    """One recorded governance decision."""

    agent_id: str
    evaluated_at: str
    workspace_id: str
    status: str
    reason: str
    policy_hash: str | None = None
    spec_hash: str | None = None
    score: int | None = None
    proof: dict[str, Any] | None = None
    prev_hash: str = GENESIS_HASH
    entry_hash: str = ""
    hmac_sig: str = ""

    @property
    def key(self) -> tuple[str, str]:
        return self.agent_id, self.evaluated_at

    def _payload(self) -> dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "evaluated_at": self.evaluated_at,
            "workspace_id": self.workspace_id,
            "status": self.status,
            "reason": self.reason,
            "policy_hash": self.policy_hash,
            "spec_hash": self.spec_hash,
            "score": self.score,
            "proof": self.proof,
            "prev_hash": self.prev_hash,
        }

    def compute_hash(self) -> str:
        """SHA-256 of this entry (excluding entry_hash and hmac_sig)."""
        raw = json.dumps(self._payload(), sort_keys=True, separators=(",", ":")).encode()
        return hashlib.sha256(raw).hexdigest()

    def compute_hmac(self, key: bytes) -> str:
        payload = self._payload()
        payload["entry_hash"] = self.entry_hash
        raw = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode()
        return hmac.new(key, raw, hashlib.sha256).hexdigest()


class ProofLedger:
    """Append-only, tamper-evident history of governance decisions.

    Usage::

        ledger = ProofLedger(Path("~/.aegis/proofs.jsonl").expanduser())
        ledger.record(outcome, workspace_id="ws-1", evaluated_at=now)
        valid, checked = ledger.verify_chain()
        history = ledger.history("agent-1")
    """

    def __init__(self, path: Path | str, hmac_key: bytes | None = None):
        self._path = Path(path).expanduser()
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._hmac_key = hmac_key or _derive_hmac_key(self._path)
        self._last_hash: str = GENESIS_HASH

        if self._path.exists():
            self._load_last_hash()

    @property
    def path(self) -> Path:
        return self._path

    def _load_last_hash(self) -> None:
        """Read the last entry's hash to continue the chain."""
        last_line = ""
        with open(self._path, encoding="utf-8") as f:
            for line in f:
                stripped = line.strip()
                if stripped:
                    last_line = stripped
        if last_line:
            try:
                self._last_hash = json.loads(last_line).get("entry_hash", GENESIS_HASH)
            except json.JSONDecodeError:
                logger.warning("Proof ledger %s ends with a corrupt line", self._path)

    def append(self, entry: ProofEntry) -> ProofEntry:
        """Chain, sign and persist an entry."""
        entry.prev_hash = self._last_hash
        entry.entry_hash = entry.compute_hash()
        entry.hmac_sig = entry.compute_hmac(self._hmac_key)

        with open(self._path, "a", encoding="utf-8") as f:
            f.write(json.dumps(asdict(entry), sort_keys=True, separators=(",", ":")) + "\n")

        self._last_hash = entry.entry_hash
        logger.debug("Proof: %s %s at %s", entry.agent_id, entry.status, entry.evaluated_at)
        return entry

    def record(
        self, outcome: EvaluationOutcome, workspace_id: str, evaluated_at: datetime
    ) -> ProofEntry:
        """Append the decision described by an evaluation outcome."""
        proof = outcome.proof
        entry = ProofEntry(
            agent_id=outcome.agent_id,
            evaluated_at=to_iso(evaluated_at) or "",
            workspace_id=workspace_id,
            status=outcome.status.value,
            reason=outcome.reason,
            policy_hash=proof.policy_hash if proof else None,
            spec_hash=proof.spec_hash if proof else None,
            score=outcome.score,
            proof=proof.to_dict() if proof else None,
        )
        return self.append(entry)

    def _read(self) -> list[ProofEntry]:
        if not self._path.exists():
            return []
        entries = []
        with open(self._path, encoding="utf-8") as f:
            for line in f:
                stripped = line.strip()
                if stripped:
                    entries.append(ProofEntry(**json.loads(stripped)))
        return entries

    def history(self, agent_id: str) -> list[ProofEntry]:
        """All decisions for one agent, oldest first."""
        return [e for e in self._read() if e.agent_id == agent_id]

    def get(self, agent_id: str, evaluated_at: str) -> ProofEntry | None:
        for entry in self._read():
            if entry.key == (agent_id, evaluated_at):
                return entry
        return None

    def entry_count(self) -> int:
        return len(self._read())

    def verify_chain(self) -> tuple[bool, int]:
        """Verify the integrity of the whole ledger.

        Returns (all_valid, entries_checked).
        """
        if not self._path.exists():
            return True, 0

        entries_checked = 0
        prev_hash = GENESIS_HASH

        with open(self._path, encoding="utf-8") as f:
            for i, line in enumerate(f):
                stripped = line.strip()
                if not stripped:
                    continue
                try:
                    entry = ProofEntry(**json.loads(stripped))
                except (json.JSONDecodeError, TypeError):
                    logger.error("Proof chain broken: unreadable entry at line %d", i + 1)
                    return False, entries_checked

                if entry.prev_hash != prev_hash:
                    logger.error(
                        "Proof chain broken at line %d: prev_hash mismatch (expected %s, got %s)",
                        i + 1,
                        prev_hash[:16],
                        entry.prev_hash[:16],
                    )
                    return False, entries_checked

                if entry.compute_hash() != entry.entry_hash:
                    logger.error("Proof chain broken at line %d: entry_hash mismatch", i + 1)
                    return False, entries_checked

                expected_sig = entry.compute_hmac(self._hmac_key)
                if not hmac.compare_digest(expected_sig, entry.hmac_sig):
                    logger.error("Proof chain broken at line %d: HMAC mismatch", i + 1)
                    return False, entries_checked

                prev_hash = entry.entry_hash
                entries_checked += 1

        return True, entries_checked
