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
"""Canonical JSON and content hashes.

Hashes are ``sha256:<hex>`` over compact, key-sorted JSON so the same
content always yields the same digest regardless of dict ordering.
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime
from enum import Enum
from typing import Any

from aegis_governance.models import AgentSpec, to_iso

HASH_PREFIX = "sha256:"

# Fields of an agent row that define its behaviour. Bookkeeping written by
# the state machine (status, hashes, proof) and identity fields stay out.
SPEC_HASH_FIELDS = (
    "workspace_id",
    "name",
    "description",
    "mode",
    "role_class",
    "system_prompt",
    "allowed_tools",
    "temperature",
    "has_document_access",
    "has_tool_access",
    "budget_usd",
    "policy_set",
    "external_calls",
    "persistent_writes",
    "expires_at",
)


def _default(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return to_iso(value)
    if isinstance(value, (set, frozenset, tuple)):
        return sorted(value) if isinstance(value, (set, frozenset)) else list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=_default)


def stable_hash(value: Any) -> str:
    digest = hashlib.sha256(canonical_json(value).encode("utf-8")).hexdigest()
    return HASH_PREFIX + digest


def spec_fields(agent: AgentSpec) -> dict[str, Any]:
    fields = {name: getattr(agent, name) for name in SPEC_HASH_FIELDS}
    fields["allowed_tools"] = sorted(fields["allowed_tools"])
    return fields


def compute_spec_hash(agent: AgentSpec) -> str:
    return stable_hash(spec_fields(agent))


def compute_policy_hash(bundle: dict[str, Any]) -> str:
    return stable_hash(bundle)
