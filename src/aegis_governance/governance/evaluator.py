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
AEGIS Governance -- Policy Evaluator

The evaluator is a pure function of (agent, rule):
- no I/O
- no clock
- no state

Hard violations (role, data access, denied actions, prompt size) make
an agent non-compliant. Soft penalties (temperature, budget, unlisted
tools) only lower the score. The state machine decides what a
score means.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from aegis_governance.models import AgentSpec, ComplianceResult, PolicyRule

logger = logging.getLogger("aegis_governance.governance.evaluator")

MAX_SCORE = 100

# Hard violation penalties
DENIED_ROLE_PENALTY = 30
ROLE_NOT_ALLOWED_PENALTY = 25
DENIED_ACTION_PENALTY = 30
DOCUMENT_ACCESS_PENALTY = 20
TOOL_ACCESS_PENALTY = 20
PROMPT_SIZE_PENALTY = 15

# Soft penalties
HIGH_TEMPERATURE_PENALTY = 20
BUDGET_PENALTY = 20
UNLISTED_TOOLS_PENALTY = 10

HIGH_TEMPERATURE = 1.5
CHARS_PER_TOKEN = 4

# camelCase wire name -> PolicyRule attribute
_RULE_KEYS = {
    "allowedRoles": "allowed_roles",
    "deniedRoles": "denied_roles",
    "allowDocumentAccess": "allow_document_access",
    "allowToolAccess": "allow_tool_access",
    "maxBudget": "max_budget",
    "maxTokensPerRequest": "max_tokens_per_request",
    "allowedActions": "allowed_actions",
    "deniedActions": "denied_actions",
    "requireApproval": "require_approval",
    "maxConcurrentExecutions": "max_concurrent_executions",
}
_LIST_FIELDS = {"allowed_roles", "denied_roles", "allowed_actions", "denied_actions"}


def extract_policy_rules(content: Any) -> PolicyRule:
    """Build a PolicyRule from a policy bundle.

    Rules may sit at the top level or under a ``rules`` key, in camelCase
    or snake_case. Anything that is not a mapping yields an empty rule,
    which callers must treat as a missing policy.
    """
    if not isinstance(content, Mapping):
        return PolicyRule()
    source = content.get("rules", content)
    if not isinstance(source, Mapping):
        return PolicyRule()

    values: dict[str, Any] = {}
    for wire_name, attr in _RULE_KEYS.items():
        raw = source.get(wire_name, source.get(attr))
        if raw is None:
            continue
        if attr in _LIST_FIELDS:
            values[attr] = [raw] if isinstance(raw, str) else [str(v) for v in raw]
        elif attr in ("allow_document_access", "allow_tool_access", "require_approval"):
            values[attr] = bool(raw)
        elif attr == "max_budget":
            values[attr] = float(raw)
        else:
            values[attr] = int(raw)
    return PolicyRule(**values)


def evaluate_agent_compliance(agent: AgentSpec, rule: PolicyRule) -> ComplianceResult:
    """Score an agent against a policy rule."""
    violations: list[str] = []
    warnings: list[str] = []
    score = MAX_SCORE

    role = agent.role_class

    # Role restrictions. A denied role wins over any allow-list entry.
    if role in rule.denied_roles:
        violations.append(f"Role '{role}' is explicitly denied by policy")
        score -= DENIED_ROLE_PENALTY
    elif rule.allowed_roles and role not in rule.allowed_roles:
        violations.append(
            f"Role '{role}' is not in allowed roles: {', '.join(rule.allowed_roles)}"
        )
        score -= ROLE_NOT_ALLOWED_PENALTY

    # Data access
    if rule.allow_document_access is False and agent.has_document_access:
        violations.append("Document access is not allowed by policy")
        score -= DOCUMENT_ACCESS_PENALTY
    if rule.allow_tool_access is False and agent.has_tool_access:
        violations.append("Tool access is not allowed by policy")
        score -= TOOL_ACCESS_PENALTY

    # Actions
    denied = set(rule.denied_actions)
    denied_hits = sorted({role, *agent.allowed_tools} & denied) if denied else []
    if denied_hits:
        violations.append(f"Denied actions granted to agent: {', '.join(denied_hits)}")
        score -= DENIED_ACTION_PENALTY

    if rule.allowed_actions and agent.allowed_tools:
        unlisted = [t for t in agent.allowed_tools if t not in rule.allowed_actions and t not in denied]
        if unlisted:
            warnings.append(f"Tools outside allowed actions: {', '.join(unlisted)}")
            score -= UNLISTED_TOOLS_PENALTY

    # Cost and size
    if rule.max_budget is not None:
        if agent.temperature > HIGH_TEMPERATURE:
            warnings.append(
                f"High temperature ({agent.temperature}) may increase costs under a budget policy"
            )
            score -= HIGH_TEMPERATURE_PENALTY
        if agent.budget_usd is not None and agent.budget_usd > rule.max_budget:
            warnings.append(
                f"Agent budget {agent.budget_usd} exceeds policy maximum {rule.max_budget}"
            )
            score -= BUDGET_PENALTY

    if rule.max_tokens_per_request is not None:
        limit = rule.max_tokens_per_request * CHARS_PER_TOKEN
        if len(agent.system_prompt) > limit:
            violations.append(
                f"System prompt ({len(agent.system_prompt)} chars) exceeds the "
                f"{rule.max_tokens_per_request} tokens-per-request limit"
            )
            score -= PROMPT_SIZE_PENALTY

    score = max(0, min(MAX_SCORE, score))
    result = ComplianceResult(
        compliant=not violations,
        violations=violations,
        warnings=warnings,
        score=score,
    )
    if violations:
        logger.debug("Agent %s non-compliant: %s", agent.id, "; ".join(violations))
    return result


def compliance_score_description(score: int) -> str:
    if score >= 90:
        return "Excellent"
    if score >= 75:
        return "Good"
    if score >= 60:
        return "Fair"
    if score >= 40:
        return "Poor"
    return "Critical"
