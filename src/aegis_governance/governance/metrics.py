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
AEGIS Governance -- Governance Metrics

Counters for admission, promotion, invalidation and policy-reload events,
exported in Prometheus exposition format.
"""

from __future__ import annotations

import threading
from collections import defaultdict

AGENT_STARTS_ALLOWED = "agent_starts_allowed_total"
AGENT_STARTS_DENIED = "agent_starts_denied_total"
AGENT_INVALIDATIONS = "agent_invalidation_events_total"
POLICY_RELOAD_SUCCESS = "policy_reload_success_total"
POLICY_RELOAD_FAILURE = "policy_reload_failure_total"
PROMOTION_ATTEMPTS = "promotion_attempts_total"
PROMOTION_DENIES = "promotion_denies_total"

COUNTERS: dict[str, str] = {
    AGENT_STARTS_ALLOWED: "Agent starts allowed by admission control",
    AGENT_STARTS_DENIED: "Agent starts denied by admission control",
    AGENT_INVALIDATIONS: "Agents moved into GOVERNED_INVALIDATED",
    POLICY_RELOAD_SUCCESS: "Successful policy hot-reloads",
    POLICY_RELOAD_FAILURE: "Failed policy hot-reloads",
    PROMOTION_ATTEMPTS: "Sandbox-to-governed promotion attempts",
    PROMOTION_DENIES: "Promotion attempts rejected before evaluation",
}

_LabelKey = tuple[tuple[str, str], ...]


def _label_key(labels: dict[str, str] | None) -> _LabelKey:
    return tuple(sorted((labels or {}).items()))


def _format_labels(key: _LabelKey) -> str:
    if not key:
        return ""
    inner = ",".join(f'{k}="{v}"' for k, v in key)
    return "{" + inner + "}"


class GovernanceMetrics:
    """
    Collects governance counters.

    Every counter in ``COUNTERS`` is exported even at zero. Labelled series
    (``reason`` on denials and invalidations) are created on first use.

    Usage::

        metrics = GovernanceMetrics()
        metrics.inc(AGENT_STARTS_DENIED, {"reason": "PROOF_MISSING"})
        metrics.get(AGENT_STARTS_DENIED)   # sum over all labels
        print(metrics.to_prometheus())
    """

    def __init__(self, namespace: str = "aegis"):
        self.namespace = namespace
        self._counters: dict[str, dict[_LabelKey, int]] = defaultdict(dict)
        self._lock = threading.Lock()

    def inc(self, name: str, labels: dict[str, str] | None = None, amount: int = 1) -> None:
        if name not in COUNTERS:
            raise ValueError(f"Unknown governance counter: {name}")
        if amount < 0:
            raise ValueError("Counters only go up")
        key = _label_key(labels)
        with self._lock:
            series = self._counters[name]
            series[key] = series.get(key, 0) + amount

    def get(self, name: str, labels: dict[str, str] | None = None) -> int:
        """Value of one series, or the sum over every series when ``labels`` is None."""
        with self._lock:
            series = self._counters.get(name, {})
            if labels is None:
                return sum(series.values())
            return series.get(_label_key(labels), 0)

    def to_dict(self) -> dict[str, int]:
        """Totals per counter."""
        return {name: self.get(name) for name in COUNTERS}

    def to_prometheus(self) -> str:
        """Export counters in Prometheus exposition format."""
        lines = []
        with self._lock:
            for name, help_text in COUNTERS.items():
                full = f"{self.namespace}_{name}" if self.namespace else name
                lines.append(f"# HELP {full} {help_text}")
                lines.append(f"# TYPE {full} counter")
                series = self._counters.get(name) or {(): 0}
                for key in sorted(series):
                    lines.append(f"{full}{_format_labels(key)} {series[key]}")
        return "\n".join(lines) + "\n"

    def reset(self) -> None:
        """Reset all counters."""
        with self._lock:
            self._counters.clear()
