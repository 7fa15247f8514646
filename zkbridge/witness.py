"""
ZKBRIDGE Witness Builder

Assembles the complete input vector of the claim circuit from a deposit
note, its parsed transaction and a Merkle inclusion proof.

Hash representations:
    Type 1, full 256 bits: txid, Merkle siblings and the real Merkle root as
        bit arrays. Must match Bitcoin exactly, no field reduction.
    Type 2, field elements: public inputs (roots, nullifier, locker hash),
        top 254 bits reduced modulo the BN254 prime.

Byte order:
    Block explorers and the Esplora API present hashes in display order,
    which is the reverse of the order used for hashing. Everything sourced
    from a provider is reversed exactly once on entry; parser-derived
    hashes are already internal order.

Hidden-root selection:
    The public input carries ``root_slots`` candidate roots. The real root
    sits in a slot picked uniformly at random; the others are independent
    random field elements.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from zkbridge.commitment import (
    FieldElement,
    compute_commitment,
    compute_locker_script_hash,
    compute_nullifier,
    hash_to_field,
    recipient_to_field,
)
from zkbridge.config import CircuitParameters
from zkbridge.deposit import Deposit
from zkbridge.hardening import (
    CommitmentMismatch,
    CryptoUtils,
    HashMismatch,
    MalformedMerkleProof,
    TransactionTooLarge,
    Validators,
    WitnessError,
)
from zkbridge.observability import BridgeLayer, get_logger, timed_operation
from zkbridge.txparser import Transaction


logger = get_logger("witness", BridgeLayer.WITNESS)

DEFAULT_PARAMETERS = CircuitParameters()
BLOCK_BYTES = 64
ZERO_HASH = b"\x00" * 32


# =============================================================================
# SHA-256 PADDING
# =============================================================================

def sha256_pad(message: bytes) -> bytes:
    """
    FIPS 180-4 padding: message || 0x80 || 0x00* || bitlen_be64.

    The result is the smallest multiple of 512 bits >= len(message)*8 + 65.
    """
    bit_length = len(message) * 8
    padded_len = -(-(bit_length + 65) // 512) * 64
    zeros = padded_len - len(message) - 1 - 8
    return message + b"\x80" + b"\x00" * zeros + bit_length.to_bytes(8, "big")


def pad_for_circuit(message: bytes, target_bits: int) -> Tuple[bytes, int]:
    """Pad correctly, then zero-extend to ``target_bits``.

    Returns (padded bytes, number of 512-bit blocks actually used).
    """
    if target_bits % 512:
        raise WitnessError(f"Target {target_bits} bits must be a multiple of 512")
    padded = sha256_pad(message)
    if len(padded) * 8 > target_bits:
        raise TransactionTooLarge(
            f"Padded message of {len(padded) * 8} bits exceeds target {target_bits} bits",
            message_bytes=len(message),
        )
    num_blocks = len(padded) // BLOCK_BYTES
    return padded + b"\x00" * (target_bits // 8 - len(padded)), num_blocks


def unpad_circuit_message(padded: bytes, num_blocks: int) -> bytes:
    """Recover the original message from a circuit-padded buffer."""
    used = num_blocks * BLOCK_BYTES
    if num_blocks < 1 or used > len(padded):
        raise WitnessError(f"Invalid block count {num_blocks}")
    bit_length = int.from_bytes(padded[used - 8:used], "big")
    if bit_length % 8 or bit_length // 8 > used - 9:
        raise WitnessError(f"Invalid encoded message length {bit_length}")
    message = padded[:bit_length // 8]
    if sha256_pad(message) != padded[:used] or any(padded[used:]):
        raise WitnessError("Padding does not match the encoded message")
    return message


# =============================================================================
# BIT AND BYTE-ORDER HELPERS
# =============================================================================

def bytes_to_bits(data: bytes) -> List[int]:
    """Big-endian bits, most significant bit of each byte first."""
    return [(byte >> (7 - i)) & 1 for byte in data for i in range(8)]


def bits_to_int(bits: Sequence[int]) -> int:
    value = 0
    for bit in bits:
        value = (value << 1) | bit
    return value


def pad_bits(bits: Sequence[int], length: int) -> List[int]:
    if len(bits) > length:
        raise WitnessError(f"{len(bits)} bits do not fit in {length}")
    return list(bits) + [0] * (length - len(bits))


def field_to_root_bytes(value: int) -> bytes:
    """Internal-order 32 bytes whose top 254 bits encode ``value``."""
    return (value << 2).to_bytes(32, "big")


def display_to_internal(display_hex: str, field_name: str = "hash") -> bytes:
    raw = Validators.validate_hex_bytes(display_hex, field_name, 32).raise_if_invalid(MalformedMerkleProof)
    return CryptoUtils.reverse_bytes(raw)


def display_root_to_field(display_root: str) -> int:
    """Display-order root -> reverse -> drop 2 low bits -> mod p."""
    return hash_to_field(display_to_internal(display_root, "root"))


def path_indices(index: int, depth: int, max_depth: int) -> List[int]:
    """Little-endian bits of the leaf index; bit i is 1 when the node at level i is a right child."""
    return [(index >> i) & 1 if i < depth else 0 for i in range(max_depth)]


def compute_merkle_root(leaf: bytes, siblings: Sequence[bytes], index: int) -> bytes:
    """Bitcoin Merkle root (double SHA-256 of left || right), internal order."""
    current = leaf
    for level, sibling in enumerate(siblings):
        if (index >> level) & 1:
            current = CryptoUtils.double_sha256(sibling + current)
        else:
            current = CryptoUtils.double_sha256(current + sibling)
    return current


# =============================================================================
# MERKLE PROOFS
# =============================================================================

@dataclass(frozen=True)
class MerkleProof:
    """Inclusion proof as supplied by a block-data provider (display order)."""
    siblings: Tuple[str, ...]
    index: int
    root: str
    block_height: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "siblings": list(self.siblings),
            "index": self.index,
            "root": self.root,
            "block_height": self.block_height,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MerkleProof':
        return cls(
            siblings=tuple(data["siblings"]),
            index=int(data["index"]),
            root=data["root"],
            block_height=int(data.get("block_height", 0)),
        )


@dataclass(frozen=True)
class MerkleProofBundle:
    """
    Inclusion data in circuit form.

    ``siblings`` are internal order, zero padded to the circuit depth.
    ``root_index`` is private and must never be published.
    """
    siblings: Tuple[bytes, ...]
    path_indices: Tuple[int, ...]
    depth: int
    candidate_roots: Tuple[FieldElement, ...]
    root_bits: Tuple[Tuple[int, ...], ...]
    display_roots: Tuple[str, ...]
    root_index: int
    block_height: int = 0


def build_merkle_bundle(
    tx_hash: bytes,
    proof: MerkleProof,
    params: CircuitParameters = DEFAULT_PARAMETERS,
    root_index: Optional[int] = None,
) -> MerkleProofBundle:
    """
    Normalize a provider proof and place the real root among padding roots.

    Raises:
        MalformedMerkleProof: Depth above the circuit maximum, index out of
            range for the depth, or a sibling that is not 32 bytes.
        HashMismatch: The siblings do not lead from ``tx_hash`` to the root.
    """
    depth = len(proof.siblings)
    if depth > params.merkle_depth:
        raise MalformedMerkleProof(
            f"Merkle depth {depth} exceeds circuit maximum {params.merkle_depth}",
            depth=depth,
        )
    if proof.index < 0 or proof.index >= (1 << depth):
        raise MalformedMerkleProof(
            f"Leaf index {proof.index} out of range for depth {depth}",
            index=proof.index,
        )

    siblings = [display_to_internal(s, f"sibling[{i}]") for i, s in enumerate(proof.siblings)]
    root = display_to_internal(proof.root, "root")

    computed = compute_merkle_root(tx_hash, siblings, proof.index)
    if not CryptoUtils.secure_compare(computed, root):
        raise HashMismatch(
            "Merkle proof does not lead to the block root",
            expected=proof.root,
            computed=CryptoUtils.reverse_bytes(computed).hex(),
        )

    slots = params.root_slots
    if root_index is None:
        root_index = secrets.randbelow(slots)
    if not 0 <= root_index < slots:
        raise WitnessError(f"Root slot {root_index} outside 0..{slots - 1}")

    real_root = FieldElement.from_hash(root)
    candidates: List[FieldElement] = []
    bits: List[Tuple[int, ...]] = []
    for slot in range(slots):
        if slot == root_index:
            candidates.append(real_root)
            bits.append(tuple(bytes_to_bits(root)))
            continue
        padding = FieldElement.random()
        while padding == real_root or padding in candidates:
            padding = FieldElement.random()
        candidates.append(padding)
        bits.append(tuple(bytes_to_bits(field_to_root_bytes(padding.to_int()))))

    display_roots = tuple(
        proof.root.lower() if slot == root_index
        else CryptoUtils.reverse_bytes(field_to_root_bytes(c.to_int())).hex()
        for slot, c in enumerate(candidates)
    )

    return MerkleProofBundle(
        siblings=tuple(siblings + [ZERO_HASH] * (params.merkle_depth - depth)),
        path_indices=tuple(path_indices(proof.index, depth, params.merkle_depth)),
        depth=depth,
        candidate_roots=tuple(candidates),
        root_bits=tuple(bits),
        display_roots=display_roots,
        root_index=root_index,
        block_height=proof.block_height,
    )


# =============================================================================
# WITNESS VECTOR
# =============================================================================

@dataclass(frozen=True)
class WitnessVector:
    """Public and private inputs of one claim."""
    # Public
    candidate_roots: Tuple[FieldElement, ...]
    nullifier: int
    amount: int
    chain_id: int
    recipient: int
    locker_script_hash: int
    # Private
    secret: bytes
    locker_script: bytes
    locker_output_index: int
    locker_output_byte_offset: int
    commitment_byte_offset: int
    merkle: MerkleProofBundle
    padded_transaction: bytes
    num_blocks: int
    tx_hash: bytes
    params: CircuitParameters = DEFAULT_PARAMETERS

    @property
    def txid(self) -> str:
        return CryptoUtils.reverse_bytes(self.tx_hash).hex()

    def public_signals(self) -> List[int]:
        """[roots..., nullifier, amount, chainId, recipient, lockerScriptHash]."""
        return [r.to_int() for r in self.candidate_roots] + [
            self.nullifier,
            self.amount,
            self.chain_id,
            self.recipient,
            self.locker_script_hash,
        ]

    def to_circuit_input(self) -> Dict[str, Any]:
        """JSON input for the compiled circuit (decimal strings and bit lists)."""
        return {
            "merkleRoots": [str(r) for r in self.candidate_roots],
            "nullifier": str(self.nullifier),
            "amount": str(self.amount),
            "chainId": str(self.chain_id),
            "recipient": str(self.recipient),
            "lockerScriptHash": str(self.locker_script_hash),
            "secret": bytes_to_bits(self.secret),
            "lockerScript": pad_bits(bytes_to_bits(self.locker_script), self.params.locker_script_bits),
            "lockerScriptLength": len(self.locker_script),
            "lockerOutputIndex": self.locker_output_index,
            "lockerOutputByteOffset": self.locker_output_byte_offset,
            "commitmentByteOffset": self.commitment_byte_offset,
            "rootIndex": self.merkle.root_index,
            "merkleProof": [bytes_to_bits(s) for s in self.merkle.siblings],
            "merklePathIndices": list(self.merkle.path_indices),
            "merkleDepth": self.merkle.depth,
            "merkleRootBits": [list(b) for b in self.merkle.root_bits],
            "paddedTransaction": bytes_to_bits(self.padded_transaction),
            "numBlocks": self.num_blocks,
            "txId": bytes_to_bits(self.tx_hash),
        }


@timed_operation(logger, "build_witness")
def build_witness(
    deposit: Deposit,
    transaction: Transaction,
    merkle_proof: MerkleProof,
    params: CircuitParameters = DEFAULT_PARAMETERS,
    root_index: Optional[int] = None,
) -> WitnessVector:
    """
    Assemble the witness for one claim.

    Raises:
        TransactionTooLarge: Stripped transaction above ``params.max_tx_bytes``.
        CommitmentMismatch: Deposit note does not reproduce the on-chain
            commitment, amount or locker.
        MalformedMerkleProof, HashMismatch: See ``build_merkle_bundle``.
    """
    stripped = transaction.stripped
    if len(stripped) > params.max_tx_bytes:
        raise TransactionTooLarge(
            f"Transaction too large: {len(stripped)} bytes > {params.max_tx_bytes} max",
            txid=transaction.txid,
        )

    if deposit.amount != transaction.deposit_amount:
        raise CommitmentMismatch(
            "Deposit amount differs from the locker output value",
            deposit_amount=deposit.amount,
            output_value=transaction.deposit_amount,
        )
    if deposit.locker_script != transaction.locker_script:
        raise CommitmentMismatch("Deposit locker differs from the parsed locker output")
    commitment = compute_commitment(deposit.secret, deposit.amount, deposit.chain_id, deposit.recipient)
    if not CryptoUtils.secure_compare(commitment, transaction.commitment):
        raise CommitmentMismatch(
            "Deposit does not reproduce the on-chain commitment",
            expected=transaction.commitment.hex(),
            computed=commitment.hex(),
        )

    merkle = build_merkle_bundle(transaction.hash, merkle_proof, params, root_index)
    padded, num_blocks = pad_for_circuit(stripped, params.max_padded_bits)

    witness = WitnessVector(
        candidate_roots=merkle.candidate_roots,
        nullifier=compute_nullifier(deposit.secret),
        amount=transaction.deposit_amount,
        chain_id=deposit.chain_id,
        recipient=recipient_to_field(deposit.recipient),
        locker_script_hash=compute_locker_script_hash(transaction.locker_script, params.locker_script_bytes),
        secret=deposit.secret,
        locker_script=transaction.locker_script,
        locker_output_index=transaction.deposit_output_index,
        locker_output_byte_offset=transaction.deposit_output_offset,
        commitment_byte_offset=transaction.commitment_offset,
        merkle=merkle,
        padded_transaction=padded,
        num_blocks=num_blocks,
        tx_hash=transaction.hash,
        params=params,
    )
    logger.info(
        "Witness assembled",
        operation="build_witness",
        txid=transaction.txid,
        stripped_bytes=len(stripped),
        num_blocks=num_blocks,
        merkle_depth=merkle.depth,
    )
    return witness


# =============================================================================
# REFERENCE CONSTRAINT CHECK
# =============================================================================

def check_witness(witness: WitnessVector) -> List[str]:
    """
    Evaluate the claim relation over a witness in plain Python.

    Returns the list of violated constraints; empty means satisfiable.
    """
    params = witness.params
    violations: List[str] = []

    if len(witness.padded_transaction) * 8 != params.max_padded_bits:
        return [f"padded transaction must be {params.max_padded_bits} bits"]
    if not 1 <= witness.num_blocks <= params.max_blocks:
        return [f"numBlocks {witness.num_blocks} outside 1..{params.max_blocks}"]
    try:
        message = unpad_circuit_message(witness.padded_transaction, witness.num_blocks)
    except WitnessError as e:
        return [f"padding: {e.message}"]

    if CryptoUtils.double_sha256(message) != witness.tx_hash:
        violations.append("txId is not the double SHA-256 of the padded transaction")

    offset = witness.commitment_byte_offset
    if witness.recipient >= 1 << 160:
        violations.append("recipient exceeds 160 bits")
    elif offset + 32 > len(message):
        violations.append("commitment offset outside transaction")
    else:
        expected = compute_commitment(
            witness.secret,
            witness.amount,
            witness.chain_id,
            witness.recipient.to_bytes(20, "big"),
        )
        if message[offset:offset + 32] != expected:
            violations.append("commitment at offset does not match public inputs")

    offset = witness.locker_output_byte_offset
    script = witness.locker_script
    if offset + 9 + len(script) > len(message):
        violations.append("locker output offset outside transaction")
    else:
        if int.from_bytes(message[offset:offset + 8], "little") != witness.amount:
            violations.append("amount does not match locker output value")
        if message[offset + 8] != len(script) or message[offset + 9:offset + 9 + len(script)] != script:
            violations.append("locker script does not match locker output")

    if compute_locker_script_hash(script, params.locker_script_bytes) != witness.locker_script_hash:
        violations.append("lockerScriptHash does not match locker script")
    if compute_nullifier(witness.secret) != witness.nullifier:
        violations.append("nullifier does not match secret")

    merkle = witness.merkle
    index = bits_to_int(reversed(merkle.path_indices[:merkle.depth]))
    root = compute_merkle_root(witness.tx_hash, merkle.siblings[:merkle.depth], index)
    if not 0 <= merkle.root_index < len(witness.candidate_roots):
        violations.append("rootIndex outside candidate roots")
    else:
        if tuple(bytes_to_bits(root)) != merkle.root_bits[merkle.root_index]:
            violations.append("Merkle path does not reach the selected root")
        if FieldElement.from_hash(root) != witness.candidate_roots[merkle.root_index]:
            violations.append("selected candidate root does not match Merkle root")

    return violations
