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
Runtime registry.

Maps each RuntimeMode to a factory that builds the runtime from a
GovernanceContext. Mode selection happens when settings are parsed, so an
unknown mode never reaches this point.
"""

from __future__ import annotations

from collections.abc import Callable

from aegis_governance.context import GovernanceContext
from aegis_governance.errors import ConfigError
from aegis_governance.models import RuntimeMode
from aegis_governance.runtime.base import OrchestratorRuntime
from aegis_governance.runtime.embedded import EmbeddedRuntime
from aegis_governance.runtime.external import ExternalRuntime

RuntimeFactory = Callable[[GovernanceContext], OrchestratorRuntime]


class RuntimeRegistry:
    """Enum-indexed table of runtime factories."""

    def __init__(self):
        self._factories: dict[RuntimeMode, RuntimeFactory] = {}

    def register(self, mode: RuntimeMode, factory: RuntimeFactory, replace: bool = False) -> bool:
        """Register a factory. Returns False when the mode is taken and ``replace`` is off."""
        if mode in self._factories and not replace:
            return False
        self._factories[mode] = factory
        return True

    def unregister(self, mode: RuntimeMode) -> bool:
        return self._factories.pop(mode, None) is not None

    def modes(self) -> list[RuntimeMode]:
        return list(self._factories)

    def create(self, context: GovernanceContext, mode: RuntimeMode | None = None) -> OrchestratorRuntime:
        mode = mode or context.settings.runtime_mode
        factory = self._factories.get(mode)
        if factory is None:
            raise ConfigError(f"No runtime registered for mode '{mode.value}'")
        return factory(context)


def _external(context: GovernanceContext) -> OrchestratorRuntime:
    return ExternalRuntime.from_settings(context.settings.external, event_log=context.event_log)


def default_registry() -> RuntimeRegistry:
    registry = RuntimeRegistry()
    registry.register(RuntimeMode.EMBEDDED, EmbeddedRuntime)
    registry.register(RuntimeMode.EXTERNAL, _external)
    return registry


def create_runtime(
    context: GovernanceContext,
    mode: RuntimeMode | None = None,
    registry: RuntimeRegistry | None = None,
) -> OrchestratorRuntime:
    """Build the runtime selected by ``mode`` or by the context's settings."""
    return (registry or default_registry()).create(context, mode)
