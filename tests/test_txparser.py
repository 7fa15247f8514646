"""
Deposit transaction parsing: layout, offsets, witness stripping and the
failure modes in the order they are detected.
"""

import hashlib

import pytest

from conftest import AMOUNT, LOCKER_H160, LOCKER_SCRIPT
from zkbridge.address import p2pkh_address
from zkbridge.deposit import build_deposit_transaction, commitment_script, serialize_output
from zkbridge.hardening import (
    CommitmentMissing,
    HashMismatch,
    MalformedTransaction,
    OutputNotFound,
    TransactionError,
)
from zkbridge.txparser import (
    ByteReader,
    compute_txid,
    decode_layout,
    encode_varint,
    parse_transaction,
    strip_witness,
)


COMMITMENT = bytes(range(32))


def _dsha(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def _raw_tx(outputs, version=2, locktime=0) -> bytes:
    txin = b"\x00" * 36 + b"\x00" + b"\xff\xff\xff\xff"
    body = encode_varint(1) + txin + encode_varint(len(outputs))
    body += b"".join(serialize_output(v, s) for v, s in outputs)
    return version.to_bytes(4, "little") + body + locktime.to_bytes(4, "little")


class TestOffsets:
    """Offsets of the locker value field and commitment payload."""

    def test_synthetic_deposit_offsets(self):
        raw = build_deposit_transaction(LOCKER_SCRIPT, AMOUNT, COMMITMENT)
        tx = parse_transaction(raw, LOCKER_SCRIPT)

        assert tx.deposit_output_index == 0
        assert tx.deposit_output_offset == 47
        assert tx.deposit_amount == AMOUNT
        assert tx.commitment_output_index == 1
        assert tx.commitment_offset == 92
        assert tx.commitment == COMMITMENT

    def test_offsets_index_the_stripped_bytes(self):
        raw = build_deposit_transaction(LOCKER_SCRIPT, AMOUNT, COMMITMENT)
        tx = parse_transaction(raw, LOCKER_SCRIPT)

        value = tx.stripped[tx.deposit_output_offset:tx.deposit_output_offset + 8]
        assert int.from_bytes(value, "little") == AMOUNT
        assert tx.stripped[tx.commitment_offset:tx.commitment_offset + 32] == COMMITMENT

    def test_locker_after_commitment(self):
        raw = _raw_tx([(0, commitment_script(COMMITMENT)), (AMOUNT, LOCKER_SCRIPT)])
        tx = parse_transaction(raw, LOCKER_SCRIPT)

        assert tx.commitment_output_index == 0
        assert tx.commitment_offset == 47 + 11
        assert tx.deposit_output_index == 1
        assert tx.deposit_output_offset == 47 + 8 + 1 + 34

    def test_last_marker_wins(self):
        other = b"\xee" * 32
        raw = _raw_tx([
            (AMOUNT, LOCKER_SCRIPT),
            (0, commitment_script(other)),
            (0, commitment_script(COMMITMENT)),
        ])
        tx = parse_transaction(raw, LOCKER_SCRIPT)
        assert tx.commitment == COMMITMENT
        assert tx.commitment_output_index == 2
        assert tx.stripped[tx.commitment_offset:tx.commitment_offset + 32] == COMMITMENT

    def test_first_locker_output_wins(self):
        raw = _raw_tx([
            (5, LOCKER_SCRIPT),
            (AMOUNT, LOCKER_SCRIPT),
            (0, commitment_script(COMMITMENT)),
        ])
        tx = parse_transaction(raw, LOCKER_SCRIPT)
        assert tx.deposit_output_index == 0
        assert tx.deposit_amount == 5

    def test_large_output_count_varint(self):
        outputs = [(1, b"\x51")] * 300 + [(AMOUNT, LOCKER_SCRIPT), (0, commitment_script(COMMITMENT))]
        tx = parse_transaction(_raw_tx(outputs), LOCKER_SCRIPT)
        assert tx.deposit_output_index == 300
        # 3-byte varint for the output count, 10 bytes per filler output
        assert tx.deposit_output_offset == 4 + 1 + 41 + 3 + 300 * 10


class TestWitnessStripping:
    """Segwit transactions hash and index over their stripped form."""

    def test_stripped_form_matches_legacy_encoding(self):
        legacy = build_deposit_transaction(LOCKER_SCRIPT, AMOUNT, COMMITMENT)
        segwit = build_deposit_transaction(
            LOCKER_SCRIPT, AMOUNT, COMMITMENT, witness=[b"\x30" * 71, b"\x02" * 33]
        )
        assert segwit != legacy
        assert strip_witness(segwit) == legacy
        assert compute_txid(segwit) == compute_txid(legacy)

    def test_segwit_offsets_match_legacy(self):
        legacy = parse_transaction(build_deposit_transaction(LOCKER_SCRIPT, AMOUNT, COMMITMENT), LOCKER_SCRIPT)
        segwit = parse_transaction(
            build_deposit_transaction(LOCKER_SCRIPT, AMOUNT, COMMITMENT, witness=[b"\x01" * 64]),
            LOCKER_SCRIPT,
        )
        assert segwit.has_witness
        assert not legacy.has_witness
        assert segwit.deposit_output_offset == legacy.deposit_output_offset == 47
        assert segwit.commitment_offset == legacy.commitment_offset == 92
        assert segwit.txid == legacy.txid

    def test_txid_is_reversed_double_sha(self):
        raw = build_deposit_transaction(LOCKER_SCRIPT, AMOUNT, COMMITMENT)
        tx = parse_transaction(raw, LOCKER_SCRIPT)
        assert tx.hash == _dsha(raw)
        assert tx.txid == _dsha(raw)[::-1].hex()

    def test_unsupported_witness_flag(self):
        raw = bytearray(build_deposit_transaction(LOCKER_SCRIPT, AMOUNT, COMMITMENT, witness=[b"\x01"]))
        raw[5] = 0x02
        with pytest.raises(MalformedTransaction):
            decode_layout(bytes(raw))


class TestFailureModes:
    """Each failure raises its own error, in detection order."""

    def test_every_truncation_is_malformed(self):
        raw = build_deposit_transaction(LOCKER_SCRIPT, AMOUNT, COMMITMENT)
        for cut in range(len(raw)):
            with pytest.raises(MalformedTransaction):
                parse_transaction(raw[:cut], LOCKER_SCRIPT)

    def test_trailing_bytes_are_malformed(self):
        raw = build_deposit_transaction(LOCKER_SCRIPT, AMOUNT, COMMITMENT)
        with pytest.raises(MalformedTransaction, match="trailing"):
            parse_transaction(raw + b"\x00", LOCKER_SCRIPT)

    def test_invalid_hex_is_malformed(self):
        with pytest.raises(MalformedTransaction):
            parse_transaction("zz" * 60, LOCKER_SCRIPT)

    def test_hash_mismatch_before_output_lookup(self):
        raw = build_deposit_transaction(LOCKER_SCRIPT, AMOUNT, COMMITMENT)
        with pytest.raises(HashMismatch):
            parse_transaction(raw, b"\x51", expected_txid="00" * 32)

    def test_output_not_found(self):
        raw = build_deposit_transaction(LOCKER_SCRIPT, AMOUNT, COMMITMENT)
        with pytest.raises(OutputNotFound):
            parse_transaction(raw, bytes.fromhex("a914") + b"\x01" * 20 + b"\x87")

    def test_commitment_missing(self):
        raw = _raw_tx([(AMOUNT, LOCKER_SCRIPT)])
        with pytest.raises(CommitmentMissing):
            parse_transaction(raw, LOCKER_SCRIPT)

    def test_wrong_push_length_is_not_a_marker(self):
        raw = _raw_tx([(AMOUNT, LOCKER_SCRIPT), (0, b"\x6a\x21" + b"\x00" * 33)])
        with pytest.raises(CommitmentMissing):
            parse_transaction(raw, LOCKER_SCRIPT)

    def test_errors_share_a_base(self):
        for cls in (MalformedTransaction, OutputNotFound, CommitmentMissing, HashMismatch):
            assert issubclass(cls, TransactionError)


def test_expected_txid_accepted():
    raw = build_deposit_transaction(LOCKER_SCRIPT, AMOUNT, COMMITMENT)
    txid = compute_txid(raw)
    assert parse_transaction(raw.hex(), LOCKER_SCRIPT, expected_txid=txid.upper()).txid == txid


def test_locker_given_as_address():
    raw = build_deposit_transaction(LOCKER_SCRIPT, AMOUNT, COMMITMENT)
    by_script = parse_transaction(raw, LOCKER_SCRIPT)
    by_address = parse_transaction(raw, p2pkh_address(LOCKER_H160))
    assert by_address.to_dict() == by_script.to_dict()


def test_byte_reader_varints():
    for n in (0, 0xFC, 0xFD, 0xFFFF, 0x10000, 0xFFFFFFFF, 0x100000000):
        assert ByteReader(encode_varint(n)).read_varint("n") == n


def test_byte_reader_reports_offset():
    with pytest.raises(MalformedTransaction) as exc:
        ByteReader(b"\x01\x02", pos=1).read(4, "version")
    assert exc.value.context["offset"] == 1
