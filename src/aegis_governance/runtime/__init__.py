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
"""Orchestrator runtimes (embedded and external) and their registry."""

from aegis_governance.runtime.base import DEFAULT_POLICY_SET, OrchestratorRuntime
from aegis_governance.runtime.embedded import EmbeddedRuntime
from aegis_governance.runtime.external import ExternalRuntime, RetryPolicy
from aegis_governance.runtime.registry import RuntimeRegistry, create_runtime, default_registry

__all__ = [
    "DEFAULT_POLICY_SET",
    "OrchestratorRuntime",
    "EmbeddedRuntime",
    "ExternalRuntime",
    "RetryPolicy",
    "RuntimeRegistry",
    "create_runtime",
    "default_registry",
]
