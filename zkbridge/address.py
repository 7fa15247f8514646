"""Bitcoin address <-> output script conversion.

Supports Base58Check P2PKH / P2SH (mainnet and testnet version bytes) and
Bech32 / Bech32m segwit addresses (BIP-173, BIP-350). Hand-rolled codecs,
no external deps.
"""

from __future__ import annotations

import hashlib
from typing import List, Optional, Tuple

from zkbridge.hardening import InvalidAddress


# ---------------------------------------------------------------------------
# Base58
# ---------------------------------------------------------------------------

B58_ALPHABET = b"123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
B58_MAP = {c: i for i, c in enumerate(B58_ALPHABET)}

P2PKH_VERSIONS = {0x00: "mainnet", 0x6F: "testnet"}
P2SH_VERSIONS = {0x05: "mainnet", 0xC4: "testnet"}


def b58decode(s: str) -> bytes:
    s_bytes = s.encode("ascii")
    num = 0
    for c in s_bytes:
        if c not in B58_MAP:
            raise ValueError("Invalid base58 character")
        num = num * 58 + B58_MAP[c]
    # Count leading zeros
    n_pad = 0
    for c in s_bytes:
        if c == B58_ALPHABET[0]:
            n_pad += 1
        else:
            break
    full = num.to_bytes((num.bit_length() + 7) // 8, "big") if num else b""
    return b"\x00" * n_pad + full


def b58encode(b: bytes) -> str:
    n_pad = 0
    for c in b:
        if c == 0:
            n_pad += 1
        else:
            break
    num = int.from_bytes(b, "big")
    out = bytearray()
    while num > 0:
        num, rem = divmod(num, 58)
        out.append(B58_ALPHABET[rem])
    out.extend(B58_ALPHABET[0] for _ in range(n_pad))
    out.reverse()
    return out.decode("ascii")


def _checksum(payload: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(payload).digest()).digest()[:4]


def b58check_decode(s: str) -> bytes:
    raw = b58decode(s)
    if len(raw) < 5:
        raise ValueError("Base58Check payload too short")
    payload, check = raw[:-4], raw[-4:]
    if _checksum(payload) != check:
        raise ValueError("Base58Check checksum mismatch")
    return payload


def b58check_encode(payload: bytes) -> str:
    return b58encode(payload + _checksum(payload))


# ---------------------------------------------------------------------------
# Bech32 / Bech32m
# ---------------------------------------------------------------------------

BECH32_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
BECH32_CONST = 1
BECH32M_CONST = 0x2BC830A3
SEGWIT_HRPS = ("bc", "tb", "bcrt")


def _polymod(values: List[int]) -> int:
    generator = [0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3]
    chk = 1
    for value in values:
        top = chk >> 25
        chk = (chk & 0x1FFFFFF) << 5 ^ value
        for i in range(5):
            chk ^= generator[i] if ((top >> i) & 1) else 0
    return chk


def _hrp_expand(hrp: str) -> List[int]:
    return [ord(x) >> 5 for x in hrp] + [0] + [ord(x) & 31 for x in hrp]


def _convertbits(data: List[int], frombits: int, tobits: int, pad: bool) -> Optional[List[int]]:
    acc = 0
    bits = 0
    ret = []
    maxv = (1 << tobits) - 1
    for value in data:
        if value < 0 or value >> frombits:
            return None
        acc = (acc << frombits) | value
        bits += frombits
        while bits >= tobits:
            bits -= tobits
            ret.append((acc >> bits) & maxv)
    if pad:
        if bits:
            ret.append((acc << (tobits - bits)) & maxv)
    elif bits >= frombits or ((acc << (tobits - bits)) & maxv):
        return None
    return ret


def bech32_decode(addr: str) -> Tuple[str, List[int], int]:
    """Return (hrp, data without checksum, checksum constant)."""
    if addr.lower() != addr and addr.upper() != addr:
        raise ValueError("Mixed case bech32 string")
    addr = addr.lower()
    pos = addr.rfind("1")
    if pos < 1 or pos + 7 > len(addr) or len(addr) > 90:
        raise ValueError("Invalid bech32 separator position or length")
    hrp = addr[:pos]
    try:
        data = [BECH32_CHARSET.index(c) for c in addr[pos + 1:]]
    except ValueError:
        raise ValueError("Invalid bech32 character") from None
    const = _polymod(_hrp_expand(hrp) + data)
    if const not in (BECH32_CONST, BECH32M_CONST):
        raise ValueError("Bech32 checksum mismatch")
    return hrp, data[:-6], const


def bech32_encode(hrp: str, data: List[int], const: int) -> str:
    values = _hrp_expand(hrp) + data
    polymod = _polymod(values + [0] * 6) ^ const
    checksum = [(polymod >> 5 * (5 - i)) & 31 for i in range(6)]
    return hrp + "1" + "".join(BECH32_CHARSET[d] for d in data + checksum)


def segwit_decode(addr: str) -> Tuple[str, int, bytes]:
    hrp, data, const = bech32_decode(addr)
    if hrp not in SEGWIT_HRPS or not data:
        raise ValueError(f"Unsupported segwit prefix: {hrp}")
    version = data[0]
    program = _convertbits(data[1:], 5, 8, False)
    if program is None or not 2 <= len(program) <= 40 or version > 16:
        raise ValueError("Invalid witness program")
    if version == 0 and len(program) not in (20, 32):
        raise ValueError("Invalid v0 witness program length")
    if (version == 0) != (const == BECH32_CONST):
        raise ValueError("Wrong checksum variant for witness version")
    return hrp, version, bytes(program)


def segwit_encode(hrp: str, version: int, program: bytes) -> str:
    const = BECH32_CONST if version == 0 else BECH32M_CONST
    return bech32_encode(hrp, [version] + _convertbits(list(program), 8, 5, True), const)


# ---------------------------------------------------------------------------
# Scripts
# ---------------------------------------------------------------------------

def p2pkh_script(pubkey_hash: bytes) -> bytes:
    return b"\x76\xa9\x14" + pubkey_hash + b"\x88\xac"


def p2sh_script(script_hash: bytes) -> bytes:
    return b"\xa9\x14" + script_hash + b"\x87"


def witness_script(version: int, program: bytes) -> bytes:
    opcode = 0x00 if version == 0 else 0x50 + version
    return bytes([opcode, len(program)]) + program


def p2pkh_address(pubkey_hash: bytes, testnet: bool = False) -> str:
    return b58check_encode(bytes([0x6F if testnet else 0x00]) + pubkey_hash)


def address_to_script(address: str) -> bytes:
    """Decode a Base58Check or Bech32(m) address into its output script."""
    address = address.strip()
    if address.lower().startswith(tuple(h + "1" for h in SEGWIT_HRPS)):
        try:
            _, version, program = segwit_decode(address)
        except ValueError as e:
            raise InvalidAddress(f"Invalid segwit address: {e}", address=address) from e
        return witness_script(version, program)

    try:
        payload = b58check_decode(address)
    except ValueError as e:
        raise InvalidAddress(f"Invalid base58 address: {e}", address=address) from e
    if len(payload) != 21:
        raise InvalidAddress("Base58 address payload must be 21 bytes", address=address)
    version, body = payload[0], payload[1:]
    if version in P2PKH_VERSIONS:
        return p2pkh_script(body)
    if version in P2SH_VERSIONS:
        return p2sh_script(body)
    raise InvalidAddress(f"Unknown address version byte 0x{version:02x}", address=address)
