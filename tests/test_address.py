"""
Locker addresses: Base58Check and Bech32(m) decoding to output scripts.
"""

import pytest

from zkbridge.address import (
    BECH32_CONST,
    BECH32M_CONST,
    address_to_script,
    b58check_encode,
    b58decode,
    b58encode,
    bech32_encode,
    p2pkh_address,
    p2sh_script,
    segwit_encode,
    witness_script,
)
from zkbridge.hardening import InvalidAddress


def test_genesis_p2pkh():
    script = address_to_script("1A1zP1eP5QGefi2DMPTfTL5SLmv7DivfNa")
    assert script == bytes.fromhex("76a914" "62e907b15cbf27d5425399ebf6f0fb50ebb88f18" "88ac")


def test_p2pkh_round_trip():
    h160 = bytes(range(20))
    assert address_to_script(p2pkh_address(h160)) == bytes.fromhex("76a914") + h160 + bytes.fromhex("88ac")
    assert address_to_script(p2pkh_address(h160, testnet=True)) == address_to_script(p2pkh_address(h160))


def test_p2sh():
    h160 = b"\x42" * 20
    assert address_to_script(b58check_encode(b"\x05" + h160)) == p2sh_script(h160)
    assert address_to_script(b58check_encode(b"\xc4" + h160)) == p2sh_script(h160)


def test_bip173_p2wpkh():
    expected = bytes.fromhex("0014751e76e8199196d454941c45d1b3a323f1433bd6")
    assert address_to_script("bc1qw508d6qejxtdg4c5r3zarvary0c5xw7kv8f3t4") == expected
    assert address_to_script("BC1QW508D6QEJXTDG4C5R3ZARVARY0C5XW7KV8F3T4") == expected


@pytest.mark.parametrize("hrp,version,program", [
    ("bc", 0, b"\x11" * 32),
    ("tb", 0, b"\x22" * 20),
    ("bc", 1, b"\x33" * 32),
    ("bcrt", 1, b"\x44" * 32),
])
def test_segwit_round_trip(hrp, version, program):
    assert address_to_script(segwit_encode(hrp, version, program)) == witness_script(version, program)


def test_taproot_script_opcode():
    assert address_to_script(segwit_encode("bc", 1, b"\x01" * 32))[:2] == b"\x51\x20"


@pytest.mark.parametrize("address", [
    "bc1qw508d6qejxtdg4c5r3zarvary0c5xw7kv8f3t5",
    "bc1qw508d6qejxtdg4c5r3zarvary0c5XW7KV8F3T4",
    "1A1zP1eP5QGefi2DMPTfTL5SLmv7DivfNb",
    "1A1zP1eP5QGefi2DMPTfTL5SLmv7Divf0a",
    "",
    "zz",
])
def test_invalid_addresses(address):
    with pytest.raises(InvalidAddress):
        address_to_script(address)


def test_v0_program_with_bech32m_checksum_rejected():
    from zkbridge.address import _convertbits

    data = [0] + _convertbits(list(b"\x11" * 20), 8, 5, True)
    with pytest.raises(InvalidAddress):
        address_to_script(bech32_encode("bc", data, BECH32M_CONST))
    assert address_to_script(bech32_encode("bc", data, BECH32_CONST)) == witness_script(0, b"\x11" * 20)


def test_unknown_version_byte():
    with pytest.raises(InvalidAddress, match="version byte"):
        address_to_script(b58check_encode(b"\x30" + b"\x00" * 20))


def test_base58_leading_zeros():
    assert b58encode(b"\x00\x00\x01") == "112"
    assert b58decode("112") == b"\x00\x00\x01"
