"""
Witness assembly: SHA-256 padding, Merkle normalization, hidden-root slots
and the reference constraint check.
"""

import dataclasses
import hashlib

import pytest

from conftest import AMOUNT, CHAIN_ID, LOCKER_SCRIPT, RECIPIENT, ZERO_SECRET
from zkbridge.commitment import (
    BN254_SCALAR_FIELD,
    compute_locker_script_hash,
    compute_nullifier,
    hash_to_field,
    recipient_to_field,
)
from zkbridge.config import CircuitParameters
from zkbridge.deposit import build_transaction_for_deposit, create_deposit
from zkbridge.hardening import (
    CommitmentMismatch,
    HashMismatch,
    MalformedMerkleProof,
    TransactionTooLarge,
    WitnessError,
)
from zkbridge.txparser import parse_transaction
from zkbridge.witness import (
    MerkleProof,
    bits_to_int,
    build_merkle_bundle,
    build_witness,
    bytes_to_bits,
    check_witness,
    compute_merkle_root,
    display_root_to_field,
    pad_for_circuit,
    path_indices,
    sha256_pad,
    unpad_circuit_message,
)


PARAMS = CircuitParameters()


@pytest.fixture
def parsed(deposit, deposit_tx):
    return parse_transaction(deposit_tx, LOCKER_SCRIPT)


@pytest.fixture
def merkle_proof(provider, deposit_txid):
    return provider.fetch_merkle_proof(deposit_txid)


class TestSha256Padding:
    """FIPS 180-4 padding and the circuit's zero extension."""

    @pytest.mark.parametrize("length,blocks", [(0, 1), (55, 1), (56, 2), (64, 2), (119, 2), (120, 3), (512, 9)])
    def test_padded_length(self, length, blocks):
        assert len(sha256_pad(b"\xab" * length)) == blocks * 64

    def test_padding_layout(self):
        padded = sha256_pad(b"abc")
        assert padded[:3] == b"abc"
        assert padded[3] == 0x80
        assert padded[-8:] == (24).to_bytes(8, "big")
        assert not any(padded[4:-8])

    def test_circuit_capacity(self):
        assert PARAMS.max_padded_bits == 4608
        assert PARAMS.max_blocks == 9

    def test_max_size_transaction_fits(self):
        padded, blocks = pad_for_circuit(b"\x00" * 512, PARAMS.max_padded_bits)
        assert len(padded) * 8 == 4608
        assert blocks == 9

    def test_one_byte_over_capacity(self):
        with pytest.raises(TransactionTooLarge):
            pad_for_circuit(b"\x00" * 513, PARAMS.max_padded_bits)

    def test_target_must_be_block_multiple(self):
        with pytest.raises(WitnessError):
            pad_for_circuit(b"", 1000)

    def test_unpad_recovers_message(self):
        message = bytes(range(200))
        padded, blocks = pad_for_circuit(message, PARAMS.max_padded_bits)
        assert unpad_circuit_message(padded, blocks) == message

    def test_unpad_rejects_garbage_after_blocks(self):
        padded, blocks = pad_for_circuit(b"hello", PARAMS.max_padded_bits)
        tampered = padded[:-1] + b"\x01"
        with pytest.raises(WitnessError):
            unpad_circuit_message(tampered, blocks)


class TestMerkle:
    """Provider proofs are display order; the circuit works in internal order."""

    def test_path_indices_little_endian(self):
        assert path_indices(2, 3, 12) == [0, 1, 0] + [0] * 9
        assert path_indices(5, 3, 4) == [1, 0, 1, 0]

    def test_bits_round_trip(self):
        data = bytes([0x80, 0x01])
        assert bytes_to_bits(data) == [1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1]
        assert bits_to_int(bytes_to_bits(data)) == 0x8001

    def test_two_leaf_root(self):
        a, b = hashlib.sha256(b"a").digest(), hashlib.sha256(b"b").digest()
        parent = hashlib.sha256(hashlib.sha256(a + b).digest()).digest()
        assert compute_merkle_root(a, [b], 0) == parent
        assert compute_merkle_root(b, [a], 1) == parent

    def test_bundle_padding(self, parsed, merkle_proof):
        bundle = build_merkle_bundle(parsed.hash, merkle_proof, PARAMS, root_index=0)
        assert bundle.depth == 3
        assert len(bundle.siblings) == 12
        assert bundle.siblings[3:] == (b"\x00" * 32,) * 9
        assert bundle.siblings[0] == bytes.fromhex(merkle_proof.siblings[0])[::-1]
        assert bundle.path_indices == tuple([0, 1, 0] + [0] * 9)
        assert bundle.block_height == 840_000

    def test_tampered_root(self, parsed, merkle_proof):
        bad = dataclasses.replace(merkle_proof, root="00" * 32)
        with pytest.raises(HashMismatch):
            build_merkle_bundle(parsed.hash, bad, PARAMS)

    def test_tampered_sibling(self, parsed, merkle_proof):
        siblings = ("ff" * 32,) + merkle_proof.siblings[1:]
        with pytest.raises(HashMismatch):
            build_merkle_bundle(parsed.hash, dataclasses.replace(merkle_proof, siblings=siblings), PARAMS)

    def test_wrong_index(self, parsed, merkle_proof):
        with pytest.raises(HashMismatch):
            build_merkle_bundle(parsed.hash, dataclasses.replace(merkle_proof, index=3), PARAMS)

    def test_depth_above_maximum(self, parsed, merkle_proof):
        deep = dataclasses.replace(merkle_proof, siblings=("00" * 32,) * 13)
        with pytest.raises(MalformedMerkleProof):
            build_merkle_bundle(parsed.hash, deep, PARAMS)

    def test_index_out_of_range_for_depth(self, parsed, merkle_proof):
        with pytest.raises(MalformedMerkleProof):
            build_merkle_bundle(parsed.hash, dataclasses.replace(merkle_proof, index=8), PARAMS)

    def test_short_sibling(self, parsed, merkle_proof):
        siblings = ("00" * 31,) + merkle_proof.siblings[1:]
        with pytest.raises(MalformedMerkleProof):
            build_merkle_bundle(parsed.hash, dataclasses.replace(merkle_proof, siblings=siblings), PARAMS)

    def test_single_transaction_block(self, deposit_tx):
        parsed = parse_transaction(deposit_tx, LOCKER_SCRIPT)
        proof = MerkleProof(siblings=(), index=0, root=parsed.txid, block_height=1)
        bundle = build_merkle_bundle(parsed.hash, proof, PARAMS, root_index=1)
        assert bundle.depth == 0
        assert bundle.candidate_roots[1].to_int() == hash_to_field(parsed.hash)


class TestHiddenRoot:
    """The real root hides among random padding roots."""

    @pytest.mark.parametrize("slot", [0, 1])
    def test_real_root_in_requested_slot(self, parsed, merkle_proof, slot):
        bundle = build_merkle_bundle(parsed.hash, merkle_proof, PARAMS, root_index=slot)
        real = hash_to_field(bytes.fromhex(merkle_proof.root)[::-1])
        assert bundle.root_index == slot
        assert bundle.candidate_roots[slot].to_int() == real
        assert bundle.candidate_roots[1 - slot].to_int() != real
        assert bundle.display_roots[slot] == merkle_proof.root

    def test_padding_is_not_root_plus_one(self, parsed, merkle_proof):
        bundle = build_merkle_bundle(parsed.hash, merkle_proof, PARAMS, root_index=0)
        real = bundle.candidate_roots[0].to_int()
        assert bundle.candidate_roots[1].to_int() != (real + 1) % BN254_SCALAR_FIELD

    def test_padding_roots_are_fresh(self, parsed, merkle_proof):
        first = build_merkle_bundle(parsed.hash, merkle_proof, PARAMS, root_index=0)
        second = build_merkle_bundle(parsed.hash, merkle_proof, PARAMS, root_index=0)
        assert first.candidate_roots[0] == second.candidate_roots[0]
        assert first.candidate_roots[1] != second.candidate_roots[1]

    def test_display_roots_map_back_to_candidates(self, parsed, merkle_proof):
        for slot in (0, 1):
            bundle = build_merkle_bundle(parsed.hash, merkle_proof, PARAMS, root_index=slot)
            for display, candidate in zip(bundle.display_roots, bundle.candidate_roots):
                assert display_root_to_field(display) == candidate.to_int()

    def test_padding_root_bits_encode_field_element(self, parsed, merkle_proof):
        bundle = build_merkle_bundle(parsed.hash, merkle_proof, PARAMS, root_index=1)
        assert bits_to_int(bundle.root_bits[0]) == bundle.candidate_roots[0].to_int() << 2

    def test_random_slot_covers_both(self, parsed, merkle_proof):
        slots = {build_merkle_bundle(parsed.hash, merkle_proof, PARAMS).root_index for _ in range(64)}
        assert slots == {0, 1}

    def test_slot_out_of_range(self, parsed, merkle_proof):
        with pytest.raises(WitnessError):
            build_merkle_bundle(parsed.hash, merkle_proof, PARAMS, root_index=2)


class TestBuildWitness:
    """End-to-end witness for the synthetic block."""

    @pytest.mark.parametrize("slot", [0, 1])
    def test_witness_satisfies_relation(self, deposit, parsed, merkle_proof, slot):
        witness = build_witness(deposit, parsed, merkle_proof, PARAMS, root_index=slot)
        assert check_witness(witness) == []
        assert witness.txid == parsed.txid

    def test_public_signal_order(self, deposit, parsed, merkle_proof):
        witness = build_witness(deposit, parsed, merkle_proof, PARAMS, root_index=0)
        signals = witness.public_signals()
        assert len(signals) == 7
        assert signals[:2] == [r.to_int() for r in witness.candidate_roots]
        assert signals[2:] == [
            compute_nullifier(ZERO_SECRET),
            AMOUNT,
            CHAIN_ID,
            recipient_to_field(RECIPIENT),
            compute_locker_script_hash(LOCKER_SCRIPT),
        ]

    def test_private_offsets(self, deposit, parsed, merkle_proof):
        witness = build_witness(deposit, parsed, merkle_proof, PARAMS, root_index=0)
        assert witness.locker_output_byte_offset == 47
        assert witness.commitment_byte_offset == 92
        assert witness.num_blocks == 3
        assert len(witness.padded_transaction) == 576

    def test_circuit_input_shapes(self, deposit, parsed, merkle_proof):
        data = build_witness(deposit, parsed, merkle_proof, PARAMS, root_index=1).to_circuit_input()
        assert len(data["merkleRoots"]) == 2
        assert all(isinstance(r, str) for r in data["merkleRoots"])
        assert len(data["paddedTransaction"]) == 4608
        assert len(data["merkleProof"]) == 12
        assert all(len(s) == 256 for s in data["merkleProof"])
        assert len(data["merkleRootBits"]) == 2
        assert len(data["lockerScript"]) == 520
        assert len(data["secret"]) == 256
        assert len(data["txId"]) == 256
        assert data["rootIndex"] == 1
        assert data["numBlocks"] == 3
        assert data["lockerScriptLength"] == 25

    def test_amount_mismatch(self, parsed, merkle_proof):
        other = create_deposit(AMOUNT + 1, CHAIN_ID, RECIPIENT, LOCKER_SCRIPT, secret=ZERO_SECRET)
        with pytest.raises(CommitmentMismatch):
            build_witness(other, parsed, merkle_proof, PARAMS)

    def test_commitment_mismatch(self, parsed, merkle_proof):
        other = create_deposit(AMOUNT, CHAIN_ID, "0x" + "22" * 20, LOCKER_SCRIPT, secret=ZERO_SECRET)
        with pytest.raises(CommitmentMismatch):
            build_witness(other, parsed, merkle_proof, PARAMS)

    def test_oversized_transaction(self, deposit, merkle_proof):
        raw = build_transaction_for_deposit(deposit, extra_outputs=[(1, b"\x51" * 100)] * 5)
        parsed = parse_transaction(raw, LOCKER_SCRIPT)
        assert len(parsed.stripped) > 512
        with pytest.raises(TransactionTooLarge):
            build_witness(deposit, parsed, merkle_proof, PARAMS)

    def test_check_witness_flags_tampering(self, deposit, parsed, merkle_proof):
        witness = build_witness(deposit, parsed, merkle_proof, PARAMS, root_index=0)
        assert check_witness(dataclasses.replace(witness, nullifier=witness.nullifier + 1))
        assert check_witness(dataclasses.replace(witness, amount=witness.amount + 1))
        assert check_witness(dataclasses.replace(witness, commitment_byte_offset=91))
        merkle = dataclasses.replace(witness.merkle, root_index=1)
        assert check_witness(dataclasses.replace(witness, merkle=merkle))
