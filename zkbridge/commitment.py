"""
ZKBRIDGE Commitment Scheme

Pure derivations binding a deposit secret to its public artefacts:

    commitment       = SHA256(secret || amount_be64 || chain_id_be16 || recipient20)
    nullifier        = hash_to_field(SHA256(secret || 0x01))
    lockerScriptHash = hash_to_field(SHA256(zero_pad(locker_script, 65)))

The commitment is kept at full 256-bit width because it is compared
byte-for-byte with the OP_RETURN payload of the deposit transaction. The
nullifier and locker hash are public inputs of the proof system, so they
are mapped into the BN254 scalar field with ``hash_to_field``: drop the two
low bits (keep the top 254 bits) and THEN reduce modulo the field prime.
Reducing first and truncating second gives different values.

Nothing in this module performs I/O or keeps state.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from typing import ClassVar, Union

from zkbridge.hardening import Validators, ZkBridgeError


# BN254 scalar field order (Fr)
BN254_SCALAR_FIELD = 21888242871839275222246405745257275088548364400416034343698204186575808495617

SECRET_BYTES = 32
RECIPIENT_BYTES = 20
LOCKER_SCRIPT_BYTES = 65
NULLIFIER_DOMAIN = b"\x01"


# =============================================================================
# FULL-WIDTH / FIELD-REDUCED CONVERSIONS
# =============================================================================

def hash_to_int(digest: bytes) -> int:
    """Full-width big-endian integer of a 32-byte hash. No reduction."""
    if len(digest) != 32:
        raise ValueError(f"Expected 32-byte hash, got {len(digest)} bytes")
    return int.from_bytes(digest, "big")


def hash_to_field(digest: bytes) -> int:
    """Top 254 bits of a 32-byte hash, reduced modulo the BN254 prime."""
    return (hash_to_int(digest) >> 2) % BN254_SCALAR_FIELD


def is_field_element(value: int) -> bool:
    return not isinstance(value, bool) and isinstance(value, int) and 0 <= value < BN254_SCALAR_FIELD


@dataclass(frozen=True)
class FieldElement:
    """
    Element of the BN254 scalar field.

    Represented as a 64-char hex string for serialization. Construction
    rejects values at or above the modulus; use ``from_int`` to reduce.
    """
    value: str  # Hex representation

    FIELD_MODULUS: ClassVar[int] = BN254_SCALAR_FIELD

    def __post_init__(self):
        if not self.value or not all(c in '0123456789abcdef' for c in self.value.lower()):
            raise ValueError("Field element must be hex string")
        if int(self.value, 16) >= self.FIELD_MODULUS:
            raise ValueError("Field element out of range")

    @classmethod
    def zero(cls) -> 'FieldElement':
        return cls("0" * 64)

    @classmethod
    def random(cls) -> 'FieldElement':
        return cls(format(secrets.randbelow(cls.FIELD_MODULUS), '064x'))

    @classmethod
    def from_int(cls, n: int) -> 'FieldElement':
        """Create a field element from an integer, reducing modulo FIELD_MODULUS."""
        return cls(format(n % cls.FIELD_MODULUS, '064x'))

    @classmethod
    def from_hash(cls, digest: bytes) -> 'FieldElement':
        return cls.from_int(hash_to_field(digest))

    def to_int(self) -> int:
        return int(self.value, 16)

    def to_bytes(self) -> bytes:
        return self.to_int().to_bytes(32, "big")

    def __str__(self) -> str:
        return str(self.to_int())

    def __eq__(self, other: object) -> bool:
        if isinstance(other, FieldElement):
            return self.to_int() == other.to_int()
        return False

    def __hash__(self) -> int:
        return hash(self.to_int())


# =============================================================================
# DERIVATIONS
# =============================================================================

def normalize_secret(secret: Union[bytes, str]) -> bytes:
    return Validators.validate_hex_bytes(secret, "secret", SECRET_BYTES).raise_if_invalid(ZkBridgeError)


def normalize_recipient(recipient: Union[bytes, str]) -> bytes:
    return Validators.validate_address(recipient).raise_if_invalid(ZkBridgeError)


def commitment_preimage(secret: bytes, amount: int, chain_id: int, recipient: bytes) -> bytes:
    """secret(32) || amount(8, BE) || chain_id(2, BE) || recipient(20)."""
    Validators.validate_uint(amount, "amount", Validators.UINT64_MAX).raise_if_invalid(ZkBridgeError)
    Validators.validate_uint(chain_id, "chain_id", Validators.UINT16_MAX).raise_if_invalid(ZkBridgeError)
    return (
        normalize_secret(secret)
        + amount.to_bytes(8, "big")
        + chain_id.to_bytes(2, "big")
        + normalize_recipient(recipient)
    )


def compute_commitment(secret: bytes, amount: int, chain_id: int, recipient: Union[bytes, str]) -> bytes:
    """Full-width 32-byte commitment."""
    return hashlib.sha256(commitment_preimage(secret, amount, chain_id, recipient)).digest()


def nullifier_digest(secret: bytes) -> bytes:
    return hashlib.sha256(normalize_secret(secret) + NULLIFIER_DOMAIN).digest()


def compute_nullifier(secret: bytes) -> int:
    """Field-reduced nullifier published at claim time."""
    return hash_to_field(nullifier_digest(secret))


def pad_locker_script(script: bytes, width: int = LOCKER_SCRIPT_BYTES) -> bytes:
    if len(script) > width:
        raise ZkBridgeError(
            f"Locker script is {len(script)} bytes, maximum is {width}",
            script=script.hex(),
        )
    return script + b"\x00" * (width - len(script))


def compute_locker_script_hash(script: bytes, width: int = LOCKER_SCRIPT_BYTES) -> int:
    """Field-reduced hash identifying a locker in the registry."""
    return hash_to_field(hashlib.sha256(pad_locker_script(script, width)).digest())


def recipient_to_field(recipient: Union[bytes, str]) -> int:
    """A 20-byte address read as a big-endian integer (always < 2**160)."""
    return int.from_bytes(normalize_recipient(recipient), "big")
