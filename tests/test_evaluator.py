# AEGIS Governance
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
"""Tests for the policy evaluator -- pure scoring of an agent against a rule."""

import pytest

from aegis_governance.governance.evaluator import (
    compliance_score_description,
    evaluate_agent_compliance,
    extract_policy_rules,
)
from aegis_governance.models import PolicyRule


class TestExtractPolicyRules:
    def test_nested_rules_camel_case(self):
        rule = extract_policy_rules(
            {"rules": {"allowedRoles": ["assistant"], "allowToolAccess": False, "maxBudget": 50}}
        )
        assert rule.allowed_roles == ["assistant"]
        assert rule.allow_tool_access is False
        assert rule.max_budget == 50.0

    def test_flat_snake_case(self):
        rule = extract_policy_rules({"denied_roles": ["admin"], "max_tokens_per_request": 100})
        assert rule.denied_roles == ["admin"]
        assert rule.max_tokens_per_request == 100

    def test_single_string_role_becomes_list(self):
        assert extract_policy_rules({"allowedRoles": "assistant"}).allowed_roles == ["assistant"]

    @pytest.mark.parametrize("content", [None, "rules", 42, [], {}, {"rules": {}}, {"rules": None}])
    def test_missing_or_empty_content_is_empty_rule(self, content):
        assert extract_policy_rules(content).is_empty()

    def test_unrelated_keys_only_is_empty(self):
        assert extract_policy_rules({"revokedSigners": ["x"]}).is_empty()


class TestEvaluateAgentCompliance:
    def test_fully_compliant(self, make_agent):
        result = evaluate_agent_compliance(make_agent(), PolicyRule(allowed_roles=["assistant"]))
        assert result.compliant is True
        assert result.violations == []
        assert result.score == 100

    def test_tool_access_denied(self, make_agent):
        agent = make_agent(has_tool_access=True)
        result = evaluate_agent_compliance(agent, PolicyRule(allow_tool_access=False))
        assert result.compliant is False
        assert any("Tool access" in v for v in result.violations)

    def test_document_access_denied(self, make_agent):
        agent = make_agent(has_document_access=True)
        result = evaluate_agent_compliance(agent, PolicyRule(allow_document_access=False))
        assert result.compliant is False
        assert any("Document access" in v for v in result.violations)

    def test_access_allowed_when_rule_permits(self, make_agent):
        agent = make_agent(has_tool_access=True, has_document_access=True)
        rule = PolicyRule(allow_tool_access=True, allow_document_access=True)
        assert evaluate_agent_compliance(agent, rule).compliant is True

    def test_deny_role_overrides_allow_role(self, make_agent):
        rule = PolicyRule(allowed_roles=["assistant"], denied_roles=["assistant"])
        result = evaluate_agent_compliance(make_agent(), rule)
        assert result.compliant is False
        assert any("explicitly denied" in v for v in result.violations)

    def test_role_not_in_allow_list(self, make_agent):
        result = evaluate_agent_compliance(
            make_agent(role_class="analyst"), PolicyRule(allowed_roles=["assistant"])
        )
        assert result.compliant is False
        assert result.score == 75

    def test_denied_action_granted_as_tool(self, make_agent):
        agent = make_agent(allowed_tools=["search", "shell"])
        result = evaluate_agent_compliance(agent, PolicyRule(denied_actions=["shell"]))
        assert result.compliant is False
        assert any("shell" in v for v in result.violations)

    def test_unlisted_tools_are_soft(self, make_agent):
        agent = make_agent(allowed_tools=["search", "email"])
        result = evaluate_agent_compliance(agent, PolicyRule(allowed_actions=["search"]))
        assert result.compliant is True
        assert result.score == 90
        assert any("email" in w for w in result.warnings)

    def test_high_temperature_under_budget_is_soft(self, make_agent):
        agent = make_agent(temperature=1.8)
        result = evaluate_agent_compliance(agent, PolicyRule(max_budget=10))
        assert result.compliant is True
        assert result.score == 80

    def test_budget_above_maximum_is_soft(self, make_agent):
        agent = make_agent(budget_usd=500.0)
        result = evaluate_agent_compliance(agent, PolicyRule(max_budget=100))
        assert result.compliant is True
        assert result.score == 80

    def test_long_prompt_is_a_hard_violation(self, make_agent):
        agent = make_agent(system_prompt="x" * 401)
        result = evaluate_agent_compliance(agent, PolicyRule(max_tokens_per_request=100))
        assert result.compliant is False
        assert result.score == 85
        assert "tokens-per-request" in result.violations[0]

    def test_prompt_at_limit_is_compliant(self, make_agent):
        agent = make_agent(system_prompt="x" * 400)
        result = evaluate_agent_compliance(agent, PolicyRule(max_tokens_per_request=100))
        assert result.compliant is True
        assert result.score == 100

    def test_score_is_clamped_at_zero(self, make_agent):
        agent = make_agent(
            role_class="admin",
            has_tool_access=True,
            has_document_access=True,
            allowed_tools=["shell", "email"],
            temperature=1.9,
            budget_usd=1000,
            system_prompt="x" * 1000,
        )
        rule = PolicyRule(
            denied_roles=["admin"],
            allow_tool_access=False,
            allow_document_access=False,
            denied_actions=["shell"],
            allowed_actions=["search"],
            max_budget=1,
            max_tokens_per_request=10,
        )
        result = evaluate_agent_compliance(agent, rule)
        assert result.score == 0
        assert result.compliant is False

    def test_adding_a_violation_never_increases_score(self, make_agent):
        base_rule = PolicyRule(allowed_actions=["search"], max_budget=10)
        agent = make_agent(temperature=1.6, allowed_tools=["search", "email"])
        before = evaluate_agent_compliance(agent, base_rule).score
        stricter = PolicyRule(allowed_actions=["search"], max_budget=10, allow_tool_access=False)
        after = evaluate_agent_compliance(make_agent(
            temperature=1.6, allowed_tools=["search", "email"], has_tool_access=True
        ), stricter).score
        assert 0 <= after <= before <= 100

    def test_does_not_mutate_agent(self, make_agent):
        agent = make_agent()
        snapshot = agent.to_dict()
        evaluate_agent_compliance(agent, PolicyRule(denied_roles=["assistant"]))
        assert agent.to_dict() == snapshot


class TestScoreDescription:
    @pytest.mark.parametrize(
        "score,label",
        [(100, "Excellent"), (90, "Excellent"), (75, "Good"), (60, "Fair"), (40, "Poor"), (39, "Critical")],
    )
    def test_bands(self, score, label):
        assert compliance_score_description(score) == label
