# AEGIS Governance
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
"""Governance settings: YAML load/save and validation."""

import pytest

from aegis_governance.core.config import (
    ExternalRuntimeSettings,
    GovernanceSettings,
    load_settings,
    save_settings,
)
from aegis_governance.errors import ConfigError
from aegis_governance.models import RuntimeMode


class TestLoadSettings:
    def test_missing_file_gives_defaults(self, tmp_path):
        settings = load_settings(tmp_path / "nope.yaml")
        assert settings.runtime_mode == RuntimeMode.EMBEDDED
        assert settings.external.max_retries == 3
        assert settings.signing.algorithm == "hmac"
        assert settings.policy.restricted_threshold == 70

    def test_empty_or_non_mapping_gives_defaults(self, tmp_path):
        empty = tmp_path / "empty.yaml"
        empty.write_text("")
        listing = tmp_path / "list.yaml"
        listing.write_text("- a\n- b\n")
        assert load_settings(empty) == GovernanceSettings()
        assert load_settings(listing) == GovernanceSettings()

    def test_unparseable_yaml_gives_defaults(self, tmp_path):
        broken = tmp_path / "broken.yaml"
        broken.write_text("runtime: [unclosed\n")
        assert load_settings(broken) == GovernanceSettings()

    def test_external_runtime(self, tmp_path):
        path = tmp_path / "governance.yaml"
        path.write_text(
            "runtime:\n"
            "  mode: external\n"
            "external:\n"
            "  base_url: https://orch.internal/\n"
            "  max_retries: 5\n"
            "  backoff_base: 1.5\n"
            "policy:\n"
            "  restricted_threshold: 80\n"
        )
        settings = load_settings(path)
        assert settings.runtime_mode == RuntimeMode.EXTERNAL
        assert settings.external.base_url == "https://orch.internal"
        assert settings.external.max_retries == 5
        assert settings.external.backoff_base == 1.5
        assert settings.policy.restricted_threshold == 80

    def test_invalid_values_collected(self, tmp_path):
        path = tmp_path / "governance.yaml"
        path.write_text(
            "runtime:\n"
            "  mode: external\n"
            "external:\n"
            "  max_retries: 0\n"
            "signing:\n"
            "  algorithm: rsa\n"
            "policy:\n"
            "  restricted_threshold: 150\n"
        )
        with pytest.raises(ConfigError) as exc_info:
            load_settings(path)
        assert len(exc_info.value.details["errors"]) == 4

    def test_unknown_mode(self, tmp_path):
        path = tmp_path / "governance.yaml"
        path.write_text("runtime:\n  mode: hybrid\n")
        with pytest.raises(ConfigError):
            load_settings(path)


class TestSaveSettings:
    def test_round_trip(self, tmp_path):
        path = tmp_path / "nested" / "governance.yaml"
        settings = GovernanceSettings(
            runtime_mode=RuntimeMode.EXTERNAL,
            external=ExternalRuntimeSettings(base_url="https://orch.internal", retry_mutations=True),
            proof_log_path="~/.aegis/proofs.jsonl",
        )
        settings.signing.revoked = ["retired-authority"]
        save_settings(settings, path)
        assert load_settings(path) == settings


class TestSecrets:
    def test_api_key_read_from_environment(self, monkeypatch):
        monkeypatch.setenv("ORCH_KEY", "k-123")
        assert ExternalRuntimeSettings(api_key_env="ORCH_KEY").api_key == "k-123"

    def test_api_key_absent(self, monkeypatch):
        monkeypatch.delenv("ORCH_KEY", raising=False)
        assert ExternalRuntimeSettings(api_key_env="ORCH_KEY").api_key == ""
