"""
ZKBRIDGE Deposits

Client-side creation of a deposit note, and construction of the deposit
transaction shape the claim circuit expects:

    output 0: <amount> -> locker script
    output 1: 0       -> OP_RETURN PUSH32 <commitment>

The secret is drawn from ``secrets`` and never leaves the note. Notes are
persisted as JSON, validated against ``deposit.schema.json`` and written
atomically.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from zkbridge.commitment import (
    SECRET_BYTES,
    compute_commitment,
    compute_nullifier,
    normalize_recipient,
    normalize_secret,
    pad_locker_script,
)
from zkbridge.core import load_json, write_json_atomic
from zkbridge.hardening import CommitmentMismatch, CryptoUtils, Validators, ZkBridgeError
from zkbridge.observability import BridgeLayer, get_logger
from zkbridge.schema import require_valid
from zkbridge.txparser import OP_PUSHBYTES_32, OP_RETURN, encode_varint, resolve_locker


logger = get_logger("deposit", BridgeLayer.COMMITMENT)


def commitment_script(commitment: bytes) -> bytes:
    """OP_RETURN PUSH32 <commitment>."""
    if len(commitment) != 32:
        raise ZkBridgeError(f"Commitment must be 32 bytes, got {len(commitment)}")
    return bytes([OP_RETURN, OP_PUSHBYTES_32]) + commitment


@dataclass(frozen=True)
class Deposit:
    """
    A deposit note.

    ``commitment`` and ``nullifier`` are derived from the other fields and
    re-checked whenever a note is loaded.
    """
    secret: bytes
    amount: int
    chain_id: int
    recipient: bytes
    locker_script: bytes
    commitment: bytes
    nullifier: int
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def commitment_script(self) -> bytes:
        return commitment_script(self.commitment)

    def recipient_hex(self) -> str:
        return "0x" + self.recipient.hex()

    def verify(self) -> None:
        """Raise CommitmentMismatch if derived fields do not match the secret."""
        expected = compute_commitment(self.secret, self.amount, self.chain_id, self.recipient)
        if not CryptoUtils.secure_compare(expected, self.commitment):
            raise CommitmentMismatch(
                "Deposit commitment does not match its secret and parameters",
                commitment=self.commitment.hex(),
            )
        if compute_nullifier(self.secret) != self.nullifier:
            raise CommitmentMismatch("Deposit nullifier does not match its secret")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "secret": self.secret.hex(),
            "amount": self.amount,
            "chain_id": self.chain_id,
            "recipient": self.recipient_hex(),
            "locker_script": self.locker_script.hex(),
            "commitment": self.commitment.hex(),
            "nullifier": str(self.nullifier),
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Deposit':
        require_valid(data, "deposit")
        deposit = cls(
            secret=bytes.fromhex(data["secret"]),
            amount=data["amount"],
            chain_id=data["chain_id"],
            recipient=normalize_recipient(data["recipient"]),
            locker_script=bytes.fromhex(data["locker_script"]),
            commitment=bytes.fromhex(data["commitment"]),
            nullifier=int(data["nullifier"]),
            created_at=data.get("created_at", ""),
        )
        deposit.verify()
        return deposit


def create_deposit(
    amount: int,
    chain_id: int,
    recipient: Union[bytes, str],
    locker: Union[bytes, str],
    secret: Optional[Union[bytes, str]] = None,
) -> Deposit:
    """
    Create a deposit note.

    Args:
        amount: Satoshis to lock; must be positive.
        chain_id: Destination chain id (uint16).
        recipient: 20-byte destination account.
        locker: Locker output script bytes or Bitcoin address.
        secret: Optional fixed secret; a fresh 32-byte secret otherwise.
    """
    Validators.validate_uint(amount, "amount", Validators.UINT64_MAX, min_value=1).raise_if_invalid(ZkBridgeError)
    secret_bytes = normalize_secret(secret) if secret is not None else secrets.token_bytes(SECRET_BYTES)
    recipient_bytes = normalize_recipient(recipient)
    locker_script = resolve_locker(locker)
    pad_locker_script(locker_script)

    deposit = Deposit(
        secret=secret_bytes,
        amount=amount,
        chain_id=chain_id,
        recipient=recipient_bytes,
        locker_script=locker_script,
        commitment=compute_commitment(secret_bytes, amount, chain_id, recipient_bytes),
        nullifier=compute_nullifier(secret_bytes),
    )
    logger.info(
        "Created deposit",
        operation="create_deposit",
        amount=amount,
        chain_id=chain_id,
        commitment=deposit.commitment.hex(),
    )
    return deposit


def save_deposit(deposit: Deposit, path: Union[str, Path]) -> Path:
    return write_json_atomic(path, require_valid(deposit.to_dict(), "deposit"))


def load_deposit(path: Union[str, Path]) -> Deposit:
    return Deposit.from_dict(load_json(path))


# =============================================================================
# TRANSACTION CONSTRUCTION
# =============================================================================

def serialize_output(value: int, script: bytes) -> bytes:
    return value.to_bytes(8, "little") + encode_varint(len(script)) + script


def build_deposit_transaction(
    locker_script: bytes,
    amount: int,
    commitment: bytes,
    prev_txid: bytes = b"\x00" * 32,
    prev_vout: int = 0,
    script_sig: bytes = b"",
    witness: Optional[Sequence[bytes]] = None,
    extra_outputs: Sequence[Tuple[int, bytes]] = (),
    version: int = 2,
    locktime: int = 0,
) -> bytes:
    """
    Build an unsigned one-input deposit transaction.

    Outputs are the locker payment, the commitment marker, then any
    ``extra_outputs`` (e.g. change). When ``witness`` is given the
    transaction is serialized with the segwit marker and one witness stack.
    """
    txin = prev_txid + prev_vout.to_bytes(4, "little") + encode_varint(len(script_sig)) + script_sig
    txin += b"\xff\xff\xff\xff"

    outputs: List[bytes] = [
        serialize_output(amount, locker_script),
        serialize_output(0, commitment_script(commitment)),
    ]
    outputs.extend(serialize_output(v, s) for v, s in extra_outputs)

    body = encode_varint(1) + txin + encode_varint(len(outputs)) + b"".join(outputs)
    head = version.to_bytes(4, "little")
    tail = locktime.to_bytes(4, "little")

    if witness is None:
        return head + body + tail
    stack = encode_varint(len(witness)) + b"".join(encode_varint(len(w)) + w for w in witness)
    return head + b"\x00\x01" + body + stack + tail


def build_transaction_for_deposit(deposit: Deposit, **kwargs: Any) -> bytes:
    return build_deposit_transaction(deposit.locker_script, deposit.amount, deposit.commitment, **kwargs)
