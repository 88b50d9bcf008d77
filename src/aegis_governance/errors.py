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
"""Governance error hierarchy.

Every error carries a stable ``code`` so the HTTP layer and the CLI can
report failures without string matching. Per-agent failures inside a batch
are collected and reported by the caller; everything else propagates.
"""

from __future__ import annotations

from typing import Any


class ErrorCodes:
    """Stable error codes shared by the runtime, the API and the CLI."""

    # Admission
    PROOF_MISSING = "PROOF_MISSING"
    POLICY_HASH_MISMATCH = "POLICY_HASH_MISMATCH"
    SPEC_HASH_MISMATCH = "SPEC_HASH_MISMATCH"
    SIGNATURE_INVALID = "SIGNATURE_INVALID"
    SIGNER_REVOKED = "SIGNER_REVOKED"
    SANDBOX_EXPIRED = "SANDBOX_EXPIRED"
    CONTAINMENT_VIOLATION = "CONTAINMENT_VIOLATION"
    GOVERNANCE_STATUS_BLOCKED = "GOVERNANCE_STATUS_BLOCKED"

    # Policy
    POLICY_MISSING = "POLICY_MISSING"
    POLICY_EVALUATION_FAILED = "POLICY_EVALUATION_FAILED"
    POLICY_DENIED = "POLICY_DENIED"

    # Runtime
    AGENT_NOT_FOUND = "AGENT_NOT_FOUND"
    AGENT_INVALIDATED = "AGENT_INVALIDATED"
    RUNTIME_UNAVAILABLE = "RUNTIME_UNAVAILABLE"
    REMOTE_REQUEST_FAILED = "REMOTE_REQUEST_FAILED"

    # Storage / configuration
    STORAGE_UNAVAILABLE = "STORAGE_UNAVAILABLE"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    INVALID_CONFIG = "INVALID_CONFIG"
    MISSING_SIGNER = "MISSING_SIGNER"


class GovernanceError(Exception):
    """Base class for every error raised by the governance core."""

    code: str = ErrorCodes.POLICY_EVALUATION_FAILED

    def __init__(self, message: str, code: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class ValidationError(GovernanceError, ValueError):
    """Input rejected before any state was written."""

    code = ErrorCodes.VALIDATION_FAILED

    def __init__(self, message: str, errors: list[str] | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.errors = list(errors or [])
        if self.errors:
            self.details.setdefault("errors", self.errors)


class InvalidTransition(ValidationError):
    """A governance status change not permitted by the transition table."""

    code = ErrorCodes.INVALID_TRANSITION


class AgentNotFound(GovernanceError):
    code = ErrorCodes.AGENT_NOT_FOUND

    def __init__(self, agent_id: str):
        super().__init__(f"Agent not found: {agent_id}", details={"agentId": agent_id})
        self.agent_id = agent_id


class StorageUnavailable(GovernanceError):
    """An adapter could not reach or write its backing store."""

    code = ErrorCodes.STORAGE_UNAVAILABLE


class SpecTamperDetected(GovernanceError):
    """The persisted spec no longer hashes to the recorded spec hash."""

    code = ErrorCodes.SPEC_HASH_MISMATCH

    def __init__(self, agent_id: str, expected: str | None, actual: str):
        super().__init__(
            f"Spec hash mismatch for agent {agent_id}",
            details={"agentId": agent_id, "expected": expected, "actual": actual},
        )
        self.agent_id = agent_id
        self.expected = expected
        self.actual = actual


class PolicyMissing(GovernanceError):
    """No committed policy (or an empty rule set) for a workspace/policy set."""

    code = ErrorCodes.POLICY_MISSING


class TransientNetworkError(GovernanceError):
    """A remote orchestrator call failed on every attempt."""

    code = ErrorCodes.RUNTIME_UNAVAILABLE

    def __init__(self, message: str, attempts: int, last_error: str = ""):
        super().__init__(message, details={"attempts": attempts, "lastError": last_error})
        self.attempts = attempts


class RemoteRequestError(GovernanceError):
    """The remote orchestrator answered with a non-retryable error."""

    code = ErrorCodes.REMOTE_REQUEST_FAILED

    def __init__(self, message: str, status_code: int, body: Any = None):
        super().__init__(message, details={"statusCode": status_code, "body": body})
        self.status_code = status_code


class SignatureInvalid(GovernanceError):
    """A proof signature does not verify under its authority."""

    code = ErrorCodes.SIGNATURE_INVALID

    def __init__(self, agent_id: str, authority: str):
        super().__init__(
            f"Invalid proof signature for agent {agent_id} (authority {authority})",
            details={"agentId": agent_id, "authority": authority},
        )
        self.agent_id = agent_id
        self.authority = authority


class SignerRevoked(GovernanceError):
    """A proof was signed by a revoked authority."""

    code = ErrorCodes.SIGNER_REVOKED

    def __init__(self, agent_id: str, authority: str):
        super().__init__(
            f"Proof for agent {agent_id} signed by revoked authority {authority}",
            details={"agentId": agent_id, "authority": authority},
        )
        self.agent_id = agent_id
        self.authority = authority


class AdmissionDenied(GovernanceError):
    """An agent failed one or more admission checks on start."""

    code = ErrorCodes.POLICY_DENIED

    def __init__(self, agent_id: str, reasons: list[str], codes: list[str]):
        super().__init__(
            f"Admission denied for agent {agent_id}: {'; '.join(reasons)}",
            code=codes[0] if codes else None,
            details={"agentId": agent_id, "reasons": reasons, "codes": codes},
        )
        self.reasons = reasons
        self.codes = codes


class ConfigError(GovernanceError, ValueError):
    code = ErrorCodes.INVALID_CONFIG
