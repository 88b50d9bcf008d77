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
"""Workspace-scoped governance context.

Holds the explicitly constructed collaborators (storage adapters, signer,
decision logger, proof ledger, metrics) that the state machine and runtimes use.
Nothing in the package reaches for module-level adapter singletons; tests
build a context with their own doubles.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from aegis_governance.adapters.base import AgentStorageAdapter, PolicyStorageAdapter, SignerAdapter
from aegis_governance.adapters.memory import InMemoryAgentStorage, InMemoryPolicyStorage
from aegis_governance.adapters.signing import build_signer
from aegis_governance.core.config import GovernanceSettings
from aegis_governance.core.logging import GovernanceLogger, get_logger
from aegis_governance.governance.metrics import GovernanceMetrics
from aegis_governance.governance.proof_log import ProofLedger
from aegis_governance.governance.state_machine import GovernanceStateMachine
from aegis_governance.models import utcnow

logger = logging.getLogger("aegis_governance.context")


@dataclass
class GovernanceContext:
    agents: AgentStorageAdapter
    policies: PolicyStorageAdapter
    signer: SignerAdapter
    settings: GovernanceSettings = field(default_factory=GovernanceSettings)
    event_log: GovernanceLogger = field(default_factory=get_logger)
    ledger: ProofLedger | None = None
    metrics: GovernanceMetrics = field(default_factory=GovernanceMetrics)
    clock: Callable[[], datetime] = utcnow

    @classmethod
    def from_settings(
        cls,
        settings: GovernanceSettings,
        agents: AgentStorageAdapter | None = None,
        policies: PolicyStorageAdapter | None = None,
        signer: SignerAdapter | None = None,
    ) -> GovernanceContext:
        """Build a context from settings, defaulting to in-memory storage."""
        ledger = None
        if settings.proof_log_path:
            ledger = ProofLedger(Path(settings.proof_log_path).expanduser())
        context = cls(
            agents=agents or InMemoryAgentStorage(),
            policies=policies or InMemoryPolicyStorage(),
            signer=signer or build_signer(settings.signing),
            settings=settings,
            event_log=get_logger(settings.log_file or None),
            ledger=ledger,
        )
        logger.debug(
            "Governance context ready (runtime=%s, signer=%s)",
            settings.runtime_mode.value,
            context.signer.authority,
        )
        return context

    def state_machine(self) -> GovernanceStateMachine:
        return GovernanceStateMachine(
            self.agents,
            self.signer,
            restricted_threshold=self.settings.policy.restricted_threshold,
            ledger=self.ledger,
            event_log=self.event_log,
            metrics=self.metrics,
            clock=self.clock,
        )
