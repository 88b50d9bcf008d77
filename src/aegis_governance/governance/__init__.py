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
AEGIS governance core: policy evaluation, the governance state machine,
proof history, drift detection and metrics.
"""

from aegis_governance.governance.drift import DriftReport, DriftSummary, detect_drift
from aegis_governance.governance.evaluator import (
    compliance_score_description,
    evaluate_agent_compliance,
    extract_policy_rules,
)
from aegis_governance.governance.metrics import GovernanceMetrics
from aegis_governance.governance.proof_log import ProofEntry, ProofLedger
from aegis_governance.governance.state_machine import (
    VALID_TRANSITIONS,
    GovernanceStateMachine,
    can_transition,
    validate_promotion,
)

__all__ = [
    "evaluate_agent_compliance",
    "extract_policy_rules",
    "compliance_score_description",
    "GovernanceStateMachine",
    "VALID_TRANSITIONS",
    "can_transition",
    "validate_promotion",
    "ProofLedger",
    "ProofEntry",
    "detect_drift",
    "DriftReport",
    "DriftSummary",
    "GovernanceMetrics",
]
