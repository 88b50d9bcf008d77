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
"""Storage and signing adapters."""

from aegis_governance.adapters.base import (
    AgentStorageAdapter,
    PolicyStorageAdapter,
    SignerAdapter,
    StoredPolicy,
)
from aegis_governance.adapters.memory import InMemoryAgentStorage, InMemoryPolicyStorage
from aegis_governance.adapters.signing import Ed25519Signer, HmacSigner, build_signer, verify_proof

__all__ = [
    "AgentStorageAdapter",
    "PolicyStorageAdapter",
    "SignerAdapter",
    "StoredPolicy",
    "InMemoryAgentStorage",
    "InMemoryPolicyStorage",
    "HmacSigner",
    "Ed25519Signer",
    "build_signer",
    "verify_proof",
]
