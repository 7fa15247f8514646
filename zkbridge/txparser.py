"""
ZKBRIDGE Transaction Parser

Decodes a raw Bitcoin deposit transaction and locates the two outputs the
claim circuit binds to:

    deposit output     pays the locker script; its 8-byte value field is
                       the claimed amount
    commitment output  OP_RETURN PUSH32 <commitment>

Layout (BIP-144 when the marker is present):

    version(4) [marker 0x00, flag 0x01]
    varint n_in  { prev_txid(32) prev_vout(4) varint script_len script sequence(4) }*
    varint n_out { value(8, LE) varint script_len script }*
    [witness stacks, one per input]
    locktime(4)

The stripped form drops marker, flag and witness stacks. Transaction ids
and the proof input are computed over the stripped form, so every offset
reported here is an offset into ``Transaction.stripped``.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

from zkbridge.address import address_to_script
from zkbridge.hardening import (
    CommitmentMissing,
    CryptoUtils,
    HashMismatch,
    MalformedTransaction,
    OutputNotFound,
    Validators,
)
from zkbridge.observability import BridgeLayer, get_logger


logger = get_logger("txparser", BridgeLayer.PARSER)

OP_RETURN = 0x6A
OP_PUSHBYTES_32 = 0x20
COMMITMENT_SCRIPT_LEN = 34

# value(8) + script length varint(1) + OP_RETURN(1) + PUSH32(1)
COMMITMENT_PAYLOAD_SKIP = 8 + 1 + 2

TXIN_OUTPOINT_BYTES = 32 + 4
SEQUENCE_BYTES = 4
VALUE_BYTES = 8


# =============================================================================
# BYTE READER
# =============================================================================

class ByteReader:
    """Cursor over a byte buffer that raises MalformedTransaction on overrun."""

    def __init__(self, data: bytes, pos: int = 0):
        self.data = data
        self.pos = pos

    def read(self, n: int, field_name: str) -> bytes:
        end = self.pos + n
        if n < 0 or end > len(self.data):
            raise MalformedTransaction(
                f"Truncated transaction while reading {field_name}",
                offset=self.pos,
                needed=n,
                available=len(self.data) - self.pos,
            )
        chunk = self.data[self.pos:end]
        self.pos = end
        return chunk

    def read_uint(self, n: int, field_name: str) -> int:
        return int.from_bytes(self.read(n, field_name), "little")

    def read_varint(self, field_name: str) -> int:
        """Bitcoin CompactSize: 1, 3, 5 or 9 bytes keyed by a leading sentinel."""
        prefix = self.read(1, field_name)[0]
        if prefix < 0xFD:
            return prefix
        if prefix == 0xFD:
            return self.read_uint(2, field_name)
        if prefix == 0xFE:
            return self.read_uint(4, field_name)
        return self.read_uint(8, field_name)

    def remaining(self) -> int:
        return len(self.data) - self.pos


def encode_varint(n: int) -> bytes:
    if n < 0xFD:
        return bytes([n])
    if n <= 0xFFFF:
        return b"\xfd" + n.to_bytes(2, "little")
    if n <= 0xFFFFFFFF:
        return b"\xfe" + n.to_bytes(4, "little")
    return b"\xff" + n.to_bytes(8, "little")


# =============================================================================
# PARSED TYPES
# =============================================================================

@dataclass(frozen=True)
class TxOutput:
    """One output. ``offset`` is the start of its value field in the stripped bytes."""
    index: int
    value: int
    script: bytes
    offset: int

    def is_commitment_marker(self) -> bool:
        return (
            len(self.script) == COMMITMENT_SCRIPT_LEN
            and self.script[0] == OP_RETURN
            and self.script[1] == OP_PUSHBYTES_32
        )


@dataclass(frozen=True)
class TxLayout:
    """Structural decode of a transaction, without any deposit semantics."""
    version: int
    has_witness: bool
    input_count: int
    outputs: Tuple[TxOutput, ...]
    locktime: int
    stripped: bytes


@dataclass(frozen=True)
class Transaction:
    """
    A parsed deposit transaction.

    Immutable; produced only by ``parse_transaction``.
    """
    raw: bytes
    stripped: bytes
    version: int
    has_witness: bool
    input_count: int
    outputs: Tuple[TxOutput, ...]
    locktime: int
    locker_script: bytes
    deposit_output_index: int
    deposit_output_offset: int
    deposit_amount: int
    commitment: bytes
    commitment_output_index: int
    commitment_offset: int

    @property
    def hash(self) -> bytes:
        """Internal-order double SHA-256 of the stripped bytes."""
        return CryptoUtils.double_sha256(self.stripped)

    @property
    def txid(self) -> str:
        """Display-order transaction id, as block explorers show it."""
        return CryptoUtils.reverse_bytes(self.hash).hex()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "txid": self.txid,
            "version": self.version,
            "has_witness": self.has_witness,
            "input_count": self.input_count,
            "output_count": len(self.outputs),
            "stripped_size": len(self.stripped),
            "locker_script": self.locker_script.hex(),
            "deposit_output_index": self.deposit_output_index,
            "deposit_output_offset": self.deposit_output_offset,
            "deposit_amount": self.deposit_amount,
            "commitment": self.commitment.hex(),
            "commitment_output_index": self.commitment_output_index,
            "commitment_offset": self.commitment_offset,
        }


# =============================================================================
# DECODING
# =============================================================================

def decode_layout(raw: bytes) -> TxLayout:
    """Walk the transaction structure and rebuild its stripped form."""
    reader = ByteReader(raw)
    version = reader.read_uint(4, "version")

    has_witness = False
    if reader.remaining() >= 2 and raw[4] == 0x00:
        if raw[5] != 0x01:
            raise MalformedTransaction(
                f"Unsupported witness flag 0x{raw[5]:02x}", offset=5
            )
        has_witness = True
        reader.pos += 2
    body_start = reader.pos

    input_count = reader.read_varint("input count")
    for i in range(input_count):
        reader.read(TXIN_OUTPOINT_BYTES, f"input {i} outpoint")
        script_len = reader.read_varint(f"input {i} script length")
        reader.read(script_len, f"input {i} script")
        reader.read(SEQUENCE_BYTES, f"input {i} sequence")

    # Offsets below are shifted into the stripped frame
    shift = 2 if has_witness else 0
    output_count = reader.read_varint("output count")
    outputs: List[TxOutput] = []
    for i in range(output_count):
        offset = reader.pos - shift
        value = reader.read_uint(VALUE_BYTES, f"output {i} value")
        script_len = reader.read_varint(f"output {i} script length")
        script = reader.read(script_len, f"output {i} script")
        outputs.append(TxOutput(index=i, value=value, script=script, offset=offset))
    body_end = reader.pos

    if has_witness:
        for i in range(input_count):
            items = reader.read_varint(f"witness {i} item count")
            for j in range(items):
                item_len = reader.read_varint(f"witness {i} item {j} length")
                reader.read(item_len, f"witness {i} item {j}")

    locktime_bytes = reader.read(4, "locktime")
    if reader.remaining():
        raise MalformedTransaction(
            f"{reader.remaining()} trailing bytes after locktime", offset=reader.pos
        )

    stripped = raw[:4] + raw[body_start:body_end] + locktime_bytes
    return TxLayout(
        version=version,
        has_witness=has_witness,
        input_count=input_count,
        outputs=tuple(outputs),
        locktime=int.from_bytes(locktime_bytes, "little"),
        stripped=stripped,
    )


def strip_witness(raw: bytes) -> bytes:
    """version || inputs || outputs || locktime."""
    return decode_layout(raw).stripped


def compute_txid(raw: bytes) -> str:
    """Display-order txid of a raw (possibly segwit) transaction."""
    return CryptoUtils.reverse_bytes(CryptoUtils.double_sha256(strip_witness(raw))).hex()


def resolve_locker(locker: Union[bytes, str]) -> bytes:
    """Output script for a locker given as script bytes or an address."""
    if isinstance(locker, (bytes, bytearray)):
        return bytes(locker)
    return address_to_script(locker)


def _coerce_raw(raw: Union[bytes, str]) -> bytes:
    result = Validators.validate_hex_bytes(raw, "raw transaction")
    if not result.is_valid:
        raise MalformedTransaction("; ".join(result.errors))
    return result.sanitized_value


def find_commitment_output(outputs: Tuple[TxOutput, ...]) -> Optional[TxOutput]:
    """Last ``6a20<32>`` output; a later marker supersedes an earlier one."""
    for output in reversed(outputs):
        if output.is_commitment_marker():
            return output
    return None


def parse_transaction(
    raw: Union[bytes, str],
    locker: Union[bytes, str],
    expected_txid: Optional[str] = None,
) -> Transaction:
    """
    Parse a deposit transaction against a locker script or address.

    Args:
        raw: Raw transaction bytes (or hex).
        locker: Locker output script bytes, or a Bitcoin address.
        expected_txid: Display-order txid the bytes must hash to.

    Raises:
        MalformedTransaction: Truncated or structurally invalid buffer.
        HashMismatch: Recomputed txid differs from ``expected_txid``.
        OutputNotFound: No output pays the locker script.
        CommitmentMissing: No ``OP_RETURN PUSH32`` output.
    """
    raw = _coerce_raw(raw)
    locker_script = resolve_locker(locker)
    layout = decode_layout(raw)

    tx_hash = CryptoUtils.double_sha256(layout.stripped)
    txid = CryptoUtils.reverse_bytes(tx_hash).hex()
    if expected_txid is not None:
        expected = Validators.validate_txid(expected_txid).raise_if_invalid(HashMismatch)
        if not CryptoUtils.secure_compare(txid.encode(), expected.encode()):
            raise HashMismatch(
                "Transaction bytes do not hash to the expected txid",
                expected=expected,
                computed=txid,
            )

    deposit = next((o for o in layout.outputs if o.script == locker_script), None)
    if deposit is None:
        raise OutputNotFound(
            "No output pays the locker script",
            locker_script=locker_script.hex(),
            txid=txid,
        )

    marker = find_commitment_output(layout.outputs)
    if marker is None:
        raise CommitmentMissing("No OP_RETURN commitment output found", txid=txid)

    commitment_offset = marker.offset + COMMITMENT_PAYLOAD_SKIP
    logger.debug(
        "Parsed deposit transaction",
        operation="parse_transaction",
        txid=txid,
        has_witness=layout.has_witness,
        deposit_output_offset=deposit.offset,
        commitment_offset=commitment_offset,
    )

    return Transaction(
        raw=raw,
        stripped=layout.stripped,
        version=layout.version,
        has_witness=layout.has_witness,
        input_count=layout.input_count,
        outputs=layout.outputs,
        locktime=layout.locktime,
        locker_script=locker_script,
        deposit_output_index=deposit.index,
        deposit_output_offset=deposit.offset,
        deposit_amount=deposit.value,
        commitment=marker.script[2:],
        commitment_output_index=marker.index,
        commitment_offset=commitment_offset,
    )
