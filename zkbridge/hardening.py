"""
ZKBRIDGE Error Taxonomy and Hardening Utilities

This module defines every error the bridge raises plus the small set of
defensive primitives shared by the other modules:

1. A single exception hierarchy with stable machine-readable codes
2. Input validators for hashes, addresses and integer ranges
3. Byte-level cryptographic helpers (constant-time compare, double SHA-256)
4. Thread-safety primitives
5. State machine invariant enforcement

Security Model:
    - All inputs are untrusted until validated
    - Hash comparisons use constant-time equality
    - Claim-side state mutations are atomic or rolled back

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import hashlib
import hmac
import re
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set, TypeVar


# =============================================================================
# ERROR HIERARCHY
# =============================================================================

class ZkBridgeError(Exception):
    """Base class for all bridge errors."""

    code = "ZKBRIDGE_ERROR"

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.context = context
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "context": {k: str(v) for k, v in self.context.items()},
        }


class TransactionError(ZkBridgeError):
    """Raw deposit transaction could not be used."""
    code = "TX_ERROR"


class MalformedTransaction(TransactionError):
    """Buffer truncated or structurally invalid."""
    code = "TX_MALFORMED"


class OutputNotFound(TransactionError):
    """No output pays the locker script."""
    code = "TX_OUTPUT_NOT_FOUND"


class CommitmentMissing(TransactionError):
    """No OP_RETURN output carrying a 32-byte commitment."""
    code = "TX_COMMITMENT_MISSING"


class HashMismatch(TransactionError):
    """Recomputed hash differs from the expected one."""
    code = "TX_HASH_MISMATCH"


class InvalidAddress(TransactionError):
    """Address string could not be decoded into an output script."""
    code = "TX_INVALID_ADDRESS"


class WitnessError(ZkBridgeError):
    """Witness vector could not be assembled."""
    code = "WITNESS_ERROR"


class TransactionTooLarge(WitnessError):
    code = "WITNESS_TX_TOO_LARGE"


class MalformedMerkleProof(WitnessError):
    code = "WITNESS_MERKLE_MALFORMED"


class CommitmentMismatch(WitnessError):
    """Deposit data does not reproduce the on-chain commitment."""
    code = "WITNESS_COMMITMENT_MISMATCH"


class ProofError(ZkBridgeError):
    code = "PROOF_ERROR"


class ProofGenerationFailed(ProofError):
    code = "PROOF_GENERATION_FAILED"


class ClaimError(ZkBridgeError):
    """Claim rejected. No state was changed."""
    code = "CLAIM_ERROR"


class ZeroAmountOrRecipient(ClaimError):
    code = "CLAIM_ZERO_AMOUNT_OR_RECIPIENT"


class AlreadyClaimed(ClaimError):
    code = "CLAIM_ALREADY_CLAIMED"


class UnregisteredLocker(ClaimError):
    code = "CLAIM_UNREGISTERED_LOCKER"


class InvalidProof(ClaimError):
    code = "CLAIM_INVALID_PROOF"


class InvalidClaimInput(ClaimError):
    """Public claim value outside its domain (field, uint64, slot count)."""
    code = "CLAIM_INVALID_INPUT"


class MintFailed(ClaimError):
    code = "CLAIM_MINT_FAILED"


class ReentrantClaim(ClaimError):
    code = "CLAIM_REENTRANT"


class Unauthorized(ClaimError):
    code = "CLAIM_UNAUTHORIZED"


class ProviderError(ZkBridgeError):
    """Block-data provider returned an unusable answer."""
    code = "PROVIDER_ERROR"


class ProviderUnavailable(ProviderError):
    """Transient provider failure (network, timeout, 429, 5xx)."""
    code = "PROVIDER_UNAVAILABLE"


class SchemaValidationError(ZkBridgeError):
    code = "SCHEMA_INVALID"

    def __init__(self, message: str, errors: Optional[List[str]] = None, **context: Any):
        self.errors = list(errors or [])
        super().__init__(message, **context)


class ConfigError(ZkBridgeError):
    code = "CONFIG_ERROR"


class InvariantViolation(ZkBridgeError):
    """State machine invariant violated."""
    code = "INVARIANT_VIOLATION"


# =============================================================================
# VALIDATION RESULT
# =============================================================================

@dataclass
class ValidationResult:
    """Result of a validation operation."""
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    sanitized_value: Any = None

    def raise_if_invalid(self, error_cls: type = ZkBridgeError) -> Any:
        """Raise ``error_cls`` if validation failed, else return the value."""
        if not self.is_valid:
            raise error_cls("; ".join(self.errors))
        return self.sanitized_value

    @classmethod
    def success(cls, sanitized_value: Any = None) -> 'ValidationResult':
        return cls(is_valid=True, sanitized_value=sanitized_value)

    @classmethod
    def failure(cls, errors: List[str]) -> 'ValidationResult':
        return cls(is_valid=False, errors=errors)


# =============================================================================
# INPUT VALIDATORS
# =============================================================================

class Validators:
    """Collection of input validators."""

    HEX_PATTERN = re.compile(r'^[a-f0-9]*$')
    HEX64_PATTERN = re.compile(r'^[a-f0-9]{64}$')
    HEX40_PATTERN = re.compile(r'^0x[a-f0-9]{40}$')

    UINT16_MAX = (1 << 16) - 1
    UINT64_MAX = (1 << 64) - 1

    @classmethod
    def validate_hex_bytes(
        cls,
        value: Any,
        field_name: str,
        length: Optional[int] = None,
    ) -> ValidationResult:
        """Validate a hex string (optional 0x prefix) or bytes, return bytes."""
        if isinstance(value, (bytes, bytearray)):
            raw = bytes(value)
        elif isinstance(value, str):
            text = value.strip().lower()
            if text.startswith("0x"):
                text = text[2:]
            if len(text) % 2 or not cls.HEX_PATTERN.match(text):
                return ValidationResult.failure([f"{field_name}: invalid hex string"])
            raw = bytes.fromhex(text)
        else:
            return ValidationResult.failure(
                [f"{field_name}: expected hex or bytes, got {type(value).__name__}"]
            )
        if length is not None and len(raw) != length:
            return ValidationResult.failure(
                [f"{field_name}: expected {length} bytes, got {len(raw)}"]
            )
        return ValidationResult.success(raw)

    @classmethod
    def validate_txid(cls, value: Any, field_name: str = "txid") -> ValidationResult:
        """Validate a display-order transaction id (64 hex chars)."""
        if not isinstance(value, str) or not cls.HEX64_PATTERN.match(value.strip().lower()):
            return ValidationResult.failure([f"{field_name}: must be 64 hex characters"])
        return ValidationResult.success(value.strip().lower())

    @classmethod
    def validate_address(cls, value: Any, field_name: str = "recipient") -> ValidationResult:
        """Validate a 20-byte account address (0x + 40 hex) or raw 20 bytes."""
        if isinstance(value, (bytes, bytearray)):
            if len(value) != 20:
                return ValidationResult.failure([f"{field_name}: expected 20 bytes"])
            return ValidationResult.success(bytes(value))
        if not isinstance(value, str) or not cls.HEX40_PATTERN.match(value.strip().lower()):
            return ValidationResult.failure(
                [f"{field_name}: must be an address (0x + 40 hex)"]
            )
        return ValidationResult.success(bytes.fromhex(value.strip()[2:]))

    @classmethod
    def validate_uint(
        cls,
        value: Any,
        field_name: str,
        max_value: int,
        min_value: int = 0,
    ) -> ValidationResult:
        """Validate an integer in ``[min_value, max_value]``."""
        if isinstance(value, bool) or not isinstance(value, int):
            return ValidationResult.failure(
                [f"{field_name}: expected int, got {type(value).__name__}"]
            )
        if value < min_value or value > max_value:
            return ValidationResult.failure(
                [f"{field_name}: {value} outside [{min_value}, {max_value}]"]
            )
        return ValidationResult.success(value)


# =============================================================================
# CRYPTOGRAPHIC UTILITIES
# =============================================================================

class CryptoUtils:
    """Byte-level hashing helpers."""

    @staticmethod
    def secure_compare(a: bytes, b: bytes) -> bool:
        """Constant-time comparison to prevent timing attacks."""
        return hmac.compare_digest(a, b)

    @staticmethod
    def double_sha256(data: bytes) -> bytes:
        """Bitcoin hash256: SHA256(SHA256(data))."""
        return hashlib.sha256(hashlib.sha256(data).digest()).digest()

    @staticmethod
    def reverse_bytes(data: bytes) -> bytes:
        """Convert between display order and internal order."""
        return bytes(reversed(data))


# =============================================================================
# THREAD SAFETY
# =============================================================================

T = TypeVar('T')


class ThreadSafeDict(Dict[Any, T]):
    """Thread-safe dictionary wrapper."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._lock = threading.RLock()

    def __getitem__(self, key: Any) -> T:
        with self._lock:
            return super().__getitem__(key)

    def __setitem__(self, key: Any, value: T) -> None:
        with self._lock:
            super().__setitem__(key, value)

    def __delitem__(self, key: Any) -> None:
        with self._lock:
            super().__delitem__(key)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return super().__contains__(key)

    def __iter__(self):
        with self._lock:
            return iter(list(super().keys()))

    def __len__(self):
        with self._lock:
            return super().__len__()

    def get(self, key: Any, default: T = None) -> Optional[T]:
        with self._lock:
            return super().get(key, default)

    def pop(self, key: Any, *args) -> T:
        with self._lock:
            return super().pop(key, *args)


class AtomicCounter:
    """Thread-safe counter."""

    def __init__(self, initial: int = 0):
        self._value = initial
        self._lock = threading.Lock()

    def increment(self, delta: int = 1) -> int:
        """Atomically increment and return new value."""
        with self._lock:
            self._value += delta
            return self._value

    def decrement(self, delta: int = 1) -> int:
        """Atomically decrement and return new value."""
        with self._lock:
            self._value -= delta
            return self._value

    def get(self) -> int:
        with self._lock:
            return self._value


# =============================================================================
# STATE MACHINE INVARIANTS
# =============================================================================

class InvariantChecker:
    """Enforces state machine invariants."""

    @staticmethod
    def check_state_transition(
        current_state: Enum,
        target_state: Enum,
        valid_transitions: Dict[Enum, Set[Enum]],
    ) -> None:
        """Verify state transition is valid."""
        valid_targets = valid_transitions.get(current_state, set())
        if target_state not in valid_targets:
            raise InvariantViolation(
                f"Invalid state transition: {current_state.value} -> {target_state.value}. "
                f"Valid targets: {[s.value for s in valid_targets]}"
            )
