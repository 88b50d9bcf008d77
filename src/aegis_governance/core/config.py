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
"""Governance configuration.

Settings live in a YAML file on the host:
``$AEGIS_HOME/governance.yaml`` (default ``~/.aegis/governance.yaml``).
Secrets are never stored in the file; it names the environment variables
that hold them.

Example::

    runtime:
      mode: external
    external:
      base_url: https://orchestrator.internal
      api_key_env: AEGIS_ORCHESTRATOR_API_KEY
      timeout_seconds: 30
      max_retries: 3
    signing:
      algorithm: hmac
      authority: aegis-governance
      key_env: AEGIS_SIGNING_KEY
    policy:
      restricted_threshold: 70
    proof_log_path: ~/.aegis/proofs.jsonl
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from aegis_governance.errors import ConfigError
from aegis_governance.models import RuntimeMode

logger = logging.getLogger("aegis_governance.core.config")

_AEGIS_HOME = Path(os.environ.get("AEGIS_HOME", Path.home() / ".aegis"))
DEFAULT_CONFIG_PATH = _AEGIS_HOME / "governance.yaml"

SIGNING_ALGORITHMS = ("hmac", "ed25519")


@dataclass
class ExternalRuntimeSettings:
    """Connection settings for a remote orchestrator."""

    base_url: str = ""
    api_key_env: str = "AEGIS_ORCHESTRATOR_API_KEY"
    timeout_seconds: float = 30.0
    max_retries: int = 3
    backoff_base: float = 2.0
    retry_mutations: bool = False
    verify_tls: bool = True

    @property
    def api_key(self) -> str:
        return os.environ.get(self.api_key_env, "")


@dataclass
class SigningSettings:
    algorithm: str = "hmac"
    authority: str = "aegis-governance"
    key_env: str = "AEGIS_SIGNING_KEY"
    key_file: str = ""
    revoked: list[str] = field(default_factory=list)

    @property
    def key(self) -> str:
        return os.environ.get(self.key_env, "")


@dataclass
class PolicySettings:
    restricted_threshold: int = 70
    default_policy_set: str = "default"


@dataclass
class GovernanceSettings:
    runtime_mode: RuntimeMode = RuntimeMode.EMBEDDED
    external: ExternalRuntimeSettings = field(default_factory=ExternalRuntimeSettings)
    signing: SigningSettings = field(default_factory=SigningSettings)
    policy: PolicySettings = field(default_factory=PolicySettings)
    proof_log_path: str = ""
    log_file: str = ""


def load_settings(path: Path | str | None = None) -> GovernanceSettings:
    """Load governance settings from YAML.

    A missing or unreadable file yields the defaults (embedded runtime,
    HMAC signing). A readable file with invalid values raises ConfigError.
    """
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH

    if not config_path.exists():
        logger.info("No governance config at %s -- using defaults", config_path)
        return GovernanceSettings()

    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        logger.error("Failed to load governance config: %s -- using defaults", exc)
        return GovernanceSettings()

    if raw is None:
        return GovernanceSettings()
    if not isinstance(raw, dict):
        logger.warning("Invalid governance config (not a mapping) -- using defaults")
        return GovernanceSettings()
    return _parse_settings(raw)


def save_settings(settings: GovernanceSettings, path: Path | str | None = None) -> None:
    """Save governance settings to YAML."""
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    config_path.parent.mkdir(parents=True, exist_ok=True)

    data: dict[str, Any] = {
        "runtime": {"mode": settings.runtime_mode.value},
        "external": {
            "base_url": settings.external.base_url,
            "api_key_env": settings.external.api_key_env,
            "timeout_seconds": settings.external.timeout_seconds,
            "max_retries": settings.external.max_retries,
            "backoff_base": settings.external.backoff_base,
            "retry_mutations": settings.external.retry_mutations,
            "verify_tls": settings.external.verify_tls,
        },
        "signing": {
            "algorithm": settings.signing.algorithm,
            "authority": settings.signing.authority,
            "key_env": settings.signing.key_env,
            "key_file": settings.signing.key_file,
            "revoked": list(settings.signing.revoked),
        },
        "policy": {
            "restricted_threshold": settings.policy.restricted_threshold,
            "default_policy_set": settings.policy.default_policy_set,
        },
        "proof_log_path": settings.proof_log_path,
        "log_file": settings.log_file,
    }

    config_path.write_text(
        yaml.dump(data, default_flow_style=False, sort_keys=False),
        encoding="utf-8",
    )
    logger.info("Governance config saved to %s", config_path)


def _parse_settings(raw: dict) -> GovernanceSettings:
    """Parse raw YAML dict into GovernanceSettings."""
    errors: list[str] = []

    runtime_section = raw.get("runtime") or {}
    mode_raw = str(runtime_section.get("mode", RuntimeMode.EMBEDDED.value)).lower()
    try:
        mode = RuntimeMode(mode_raw)
    except ValueError:
        errors.append(f"runtime.mode must be one of {[m.value for m in RuntimeMode]}, got '{mode_raw}'")
        mode = RuntimeMode.EMBEDDED

    ext = raw.get("external") or {}
    external = ExternalRuntimeSettings(
        base_url=str(ext.get("base_url", "")).rstrip("/"),
        api_key_env=ext.get("api_key_env", "AEGIS_ORCHESTRATOR_API_KEY"),
        timeout_seconds=float(ext.get("timeout_seconds", 30.0)),
        max_retries=int(ext.get("max_retries", 3)),
        backoff_base=float(ext.get("backoff_base", 2.0)),
        retry_mutations=bool(ext.get("retry_mutations", False)),
        verify_tls=bool(ext.get("verify_tls", True)),
    )
    if external.max_retries < 1:
        errors.append("external.max_retries must be at least 1")
    if external.timeout_seconds <= 0:
        errors.append("external.timeout_seconds must be positive")
    if mode == RuntimeMode.EXTERNAL and not external.base_url:
        errors.append("external.base_url is required when runtime.mode is external")

    sig = raw.get("signing") or {}
    signing = SigningSettings(
        algorithm=str(sig.get("algorithm", "hmac")).lower(),
        authority=sig.get("authority", "aegis-governance"),
        key_env=sig.get("key_env", "AEGIS_SIGNING_KEY"),
        key_file=sig.get("key_file", ""),
        revoked=[str(s) for s in sig.get("revoked", [])],
    )
    if signing.algorithm not in SIGNING_ALGORITHMS:
        errors.append(f"signing.algorithm must be one of {list(SIGNING_ALGORITHMS)}")

    pol = raw.get("policy") or {}
    policy = PolicySettings(
        restricted_threshold=int(pol.get("restricted_threshold", 70)),
        default_policy_set=pol.get("default_policy_set", "default"),
    )
    if not 0 <= policy.restricted_threshold <= 100:
        errors.append("policy.restricted_threshold must be between 0 and 100")

    if errors:
        raise ConfigError("Invalid governance config", details={"errors": errors})

    return GovernanceSettings(
        runtime_mode=mode,
        external=external,
        signing=signing,
        policy=policy,
        proof_log_path=raw.get("proof_log_path", "") or "",
        log_file=raw.get("log_file", "") or "",
    )
