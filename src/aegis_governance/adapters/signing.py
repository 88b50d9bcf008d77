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
"""Proof signers.

Two implementations of SignerAdapter:

  1. HmacSigner    -- HMAC-SHA256 over the canonical payload (shared secret)
  2. Ed25519Signer -- Ed25519 signatures; verification needs only public keys

Both track revoked authorities. A signature from a revoked authority is
reported as revoked by ``is_revoked`` and callers must treat the proof as
invalid regardless of ``verify``.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from pathlib import Path
from typing import Any

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from aegis_governance.adapters.base import SignerAdapter
from aegis_governance.core.config import SigningSettings
from aegis_governance.errors import ConfigError, ErrorCodes, SignatureInvalid, SignerRevoked
from aegis_governance.hashing import canonical_json
from aegis_governance.models import ProofBundle

logger = logging.getLogger("aegis_governance.adapters.signing")


class _RevocationMixin:
    def _init_revocation(self, revoked: list[str] | None) -> None:
        self._revoked: set[str] = set(revoked or [])

    async def is_revoked(self, authority: str) -> bool:
        return authority in self._revoked

    async def revoke(self, authority: str) -> None:
        self._revoked.add(authority)
        logger.warning("Signer authority revoked: %s", authority)


class HmacSigner(_RevocationMixin, SignerAdapter):
    """HMAC-SHA256 signer bound to one authority."""

    def __init__(self, key: bytes | str, authority: str = "aegis-governance", revoked: list[str] | None = None):
        if not key:
            raise ConfigError("HMAC signing key is empty", code=ErrorCodes.MISSING_SIGNER)
        self._key = key.encode("utf-8") if isinstance(key, str) else key
        self._authority = authority
        self._init_revocation(revoked)

    @property
    def authority(self) -> str:
        return self._authority

    def _digest(self, payload: dict[str, Any]) -> str:
        raw = canonical_json(payload).encode("utf-8")
        return hmac.new(self._key, raw, hashlib.sha256).hexdigest()

    async def sign(self, payload: dict[str, Any]) -> str:
        return self._digest(payload)

    async def verify(self, payload: dict[str, Any], sig: str, authority: str) -> bool:
        if authority != self._authority:
            return False
        return hmac.compare_digest(self._digest(payload), sig)


class Ed25519Signer(_RevocationMixin, SignerAdapter):
    """Ed25519 signer.

    ``trusted_keys`` maps other authorities to their public keys so proofs
    signed elsewhere can be verified here.
    """

    def __init__(
        self,
        private_key: Ed25519PrivateKey,
        authority: str = "aegis-governance",
        trusted_keys: dict[str, Ed25519PublicKey] | None = None,
        revoked: list[str] | None = None,
    ):
        self._private_key = private_key
        self._authority = authority
        self._public_keys: dict[str, Ed25519PublicKey] = dict(trusted_keys or {})
        self._public_keys[authority] = private_key.public_key()
        self._init_revocation(revoked)

    @classmethod
    def generate(cls, authority: str = "aegis-governance") -> Ed25519Signer:
        return cls(Ed25519PrivateKey.generate(), authority=authority)

    @classmethod
    def from_pem_file(
        cls,
        path: str | Path,
        authority: str = "aegis-governance",
        revoked: list[str] | None = None,
    ) -> Ed25519Signer:
        data = Path(path).expanduser().read_bytes()
        key = serialization.load_pem_private_key(data, password=None)
        if not isinstance(key, Ed25519PrivateKey):
            raise ConfigError(f"Not an Ed25519 private key: {path}", code=ErrorCodes.MISSING_SIGNER)
        return cls(key, authority=authority, revoked=revoked)

    @property
    def authority(self) -> str:
        return self._authority

    def public_key_pem(self) -> bytes:
        return self._private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )

    def trust(self, authority: str, public_key: Ed25519PublicKey) -> None:
        self._public_keys[authority] = public_key

    async def sign(self, payload: dict[str, Any]) -> str:
        raw = canonical_json(payload).encode("utf-8")
        return base64.urlsafe_b64encode(self._private_key.sign(raw)).decode("ascii")

    async def verify(self, payload: dict[str, Any], sig: str, authority: str) -> bool:
        public_key = self._public_keys.get(authority)
        if public_key is None:
            logger.debug("No public key for authority %s", authority)
            return False
        try:
            signature = base64.urlsafe_b64decode(sig.encode("ascii"))
        except (ValueError, UnicodeEncodeError):
            return False
        try:
            public_key.verify(signature, canonical_json(payload).encode("utf-8"))
        except InvalidSignature:
            return False
        return True


async def verify_proof(
    signer: SignerAdapter, proof: ProofBundle, revoked_signers: tuple[str, ...] | list[str] = ()
) -> None:
    """Re-verify a recorded proof.

    Raises SignerRevoked when the authority is revoked by the signer or by
    ``revoked_signers`` (a snapshot's list), and SignatureInvalid when the
    signature does not match the proof payload.
    """
    if proof.authority in revoked_signers or await signer.is_revoked(proof.authority):
        raise SignerRevoked(proof.agent_id, proof.authority)
    if not await signer.verify(proof.signing_payload(), proof.sig, proof.authority):
        raise SignatureInvalid(proof.agent_id, proof.authority)


def build_signer(settings: SigningSettings) -> SignerAdapter:
    """Create the signer described by SigningSettings.

    Keys come from the environment variable (HMAC) or the PEM file
    (Ed25519) named in the settings.
    """
    if settings.algorithm == "ed25519":
        if not settings.key_file:
            raise ConfigError("signing.key_file is required for ed25519", code=ErrorCodes.MISSING_SIGNER)
        signer: SignerAdapter = Ed25519Signer.from_pem_file(
            settings.key_file, authority=settings.authority, revoked=settings.revoked
        )
    else:
        key = settings.key
        if not key:
            raise ConfigError(
                f"Signing key not set (environment variable {settings.key_env})",
                code=ErrorCodes.MISSING_SIGNER,
            )
        signer = HmacSigner(key, authority=settings.authority, revoked=settings.revoked)
    return signer
