"""Bitcoin addresses: bech32/bech32m segwit, base58 legacy and taproot keys."""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass, field
from enum import Enum


class Network(Enum):
    BITCOIN = "bitcoin"
    TESTNET = "testnet"
    SIGNET = "signet"
    REGTEST = "regtest"

    @property
    def hrp(self) -> str:
        return _HRPS[self]

    def __str__(self) -> str:
        return self.value


_HRPS = {
    Network.BITCOIN: "bc",
    Network.TESTNET: "tb",
    Network.SIGNET: "tb",
    Network.REGTEST: "bcrt",
}
_HRP_NETWORKS = {"bc": Network.BITCOIN, "tb": Network.TESTNET, "bcrt": Network.REGTEST}

_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
_BECH32_CONST = 1
_BECH32M_CONST = 0x2BC830A3

_P2PKH_VERSIONS = {0x00: Network.BITCOIN, 0x6F: Network.TESTNET}
_P2SH_VERSIONS = {0x05: Network.BITCOIN, 0xC4: Network.TESTNET}
_B58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


def _polymod(values) -> int:
    generators = (0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3)
    chk = 1
    for value in values:
        top = chk >> 25
        chk = (chk & 0x1FFFFFF) << 5 ^ value
        for bit, gen in enumerate(generators):
            if (top >> bit) & 1:
                chk ^= gen
    return chk


def _hrp_expand(hrp: str) -> list[int]:
    return [ord(c) >> 5 for c in hrp] + [0] + [ord(c) & 31 for c in hrp]


def _convert_bits(data, from_bits: int, to_bits: int, pad: bool) -> list[int]:
    acc = 0
    bits = 0
    result = []
    maxv = (1 << to_bits) - 1
    for value in data:
        if value < 0 or value >> from_bits:
            raise ValueError("invalid value for bit conversion")
        acc = (acc << from_bits) | value
        bits += from_bits
        while bits >= to_bits:
            bits -= to_bits
            result.append((acc >> bits) & maxv)
    if pad:
        if bits:
            result.append((acc << (to_bits - bits)) & maxv)
    elif bits >= from_bits or ((acc << (to_bits - bits)) & maxv):
        raise ValueError("invalid padding")
    return result


def bech32_encode(hrp: str, witness_version: int, program: bytes) -> str:
    """Encode a segwit program, using bech32 for v0 and bech32m otherwise."""
    const = _BECH32_CONST if witness_version == 0 else _BECH32M_CONST
    data = [witness_version] + _convert_bits(program, 8, 5, True)
    polymod = _polymod(_hrp_expand(hrp) + data + [0] * 6) ^ const
    checksum = [(polymod >> 5 * (5 - i)) & 31 for i in range(6)]
    return hrp + "1" + "".join(_CHARSET[d] for d in data + checksum)


def bech32_decode(text: str) -> tuple[str, int, bytes]:
    """Decode a segwit address into (hrp, witness version, program)."""
    if text.lower() != text and text.upper() != text:
        raise ValueError("mixed case in bech32 string")
    text = text.lower()
    pos = text.rfind("1")
    if pos < 1 or pos + 7 > len(text) or len(text) > 90:
        raise ValueError("invalid bech32 separator position")
    hrp = text[:pos]
    try:
        data = [_CHARSET.index(c) for c in text[pos + 1:]]
    except ValueError:
        raise ValueError("invalid bech32 character") from None
    const = _polymod(_hrp_expand(hrp) + data)
    if const not in (_BECH32_CONST, _BECH32M_CONST):
        raise ValueError("invalid bech32 checksum")
    data = data[:-6]
    if not data:
        raise ValueError("empty segwit data")
    version = data[0]
    if version > 16:
        raise ValueError("invalid witness version")
    program = bytes(_convert_bits(data[1:], 5, 8, False))
    if not 2 <= len(program) <= 40:
        raise ValueError("invalid witness program length")
    if version == 0:
        if const != _BECH32_CONST:
            raise ValueError("witness v0 must use bech32")
        if len(program) not in (20, 32):
            raise ValueError("invalid witness v0 program length")
    elif const != _BECH32M_CONST:
        raise ValueError("witness v1+ must use bech32m")
    return hrp, version, program


def _b58decode_check(text: str) -> bytes:
    num = 0
    for char in text:
        index = _B58_ALPHABET.find(char)
        if index < 0:
            raise ValueError(f"invalid base58 character {char!r}")
        num = num * 58 + index
    body = num.to_bytes((num.bit_length() + 7) // 8, "big")
    pad = len(text) - len(text.lstrip("1"))
    raw = b"\x00" * pad + body
    if len(raw) < 5:
        raise ValueError("base58 string too short")
    payload, checksum = raw[:-4], raw[-4:]
    if hashlib.sha256(hashlib.sha256(payload).digest()).digest()[:4] != checksum:
        raise ValueError("invalid base58 checksum")
    return payload


@dataclass(frozen=True, order=True)
class Address:
    """A parsed address, compared and ordered by its text."""

    text: str
    network: Network = field(compare=False)
    kind: str = field(compare=False)
    program: bytes = field(compare=False)
    witness_version: int | None = field(default=None, compare=False)

    def __str__(self) -> str:
        return self.text

    def script_pubkey(self) -> bytes:
        if self.kind == "p2pkh":
            return b"\x76\xa9\x14" + self.program + b"\x88\xac"
        if self.kind == "p2sh":
            return b"\xa9\x14" + self.program + b"\x87"
        opcode = 0 if self.witness_version == 0 else 0x50 + self.witness_version
        return bytes([opcode, len(self.program)]) + self.program

    def is_valid_for_network(self, network: Network) -> bool:
        if self.kind == "segwit":
            return self.network.hrp == network.hrp
        return (self.network == Network.BITCOIN) == (network == Network.BITCOIN)


def parse_address(text: str) -> Address:
    """Parse a bech32, bech32m or base58 address."""
    lowered = text.lower()
    for hrp in sorted(_HRP_NETWORKS, key=len, reverse=True):
        if lowered.startswith(hrp + "1"):
            decoded_hrp, version, program = bech32_decode(text)
            if decoded_hrp != hrp:
                raise ValueError(f"unknown address prefix in {text!r}")
            return Address(lowered, _HRP_NETWORKS[hrp], "segwit", program, version)
    payload = _b58decode_check(text)
    if len(payload) != 21:
        raise ValueError(f"invalid base58 payload length in {text!r}")
    version, program = payload[0], payload[1:]
    if version in _P2PKH_VERSIONS:
        return Address(text, _P2PKH_VERSIONS[version], "p2pkh", program)
    if version in _P2SH_VERSIONS:
        return Address(text, _P2SH_VERSIONS[version], "p2sh", program)
    raise ValueError(f"unknown address version {version}")


# secp256k1 arithmetic for taproot key tweaking.
_P = 2**256 - 2**32 - 977
_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
_G = (
    0x79BE667EF9DCBBAC55A06295CE870B07029BFCDB2DCE28D959F2815B16F81798,
    0x483ADA7726A3C4655DA4FBFC0E1108A8FD17B448A68554199C47D08FFB10D4B8,
)


def _point_add(a, b):
    if a is None:
        return b
    if b is None:
        return a
    if a[0] == b[0] and (a[1] + b[1]) % _P == 0:
        return None
    if a == b:
        slope = 3 * a[0] * a[0] * pow(2 * a[1], -1, _P) % _P
    else:
        slope = (b[1] - a[1]) * pow(b[0] - a[0], -1, _P) % _P
    x = (slope * slope - a[0] - b[0]) % _P
    return x, (slope * (a[0] - x) - a[1]) % _P


def _point_mul(point, scalar: int):
    result = None
    while scalar:
        if scalar & 1:
            result = _point_add(result, point)
        point = _point_add(point, point)
        scalar >>= 1
    return result


def _lift_x(x: int):
    if x >= _P:
        raise ValueError("x coordinate out of range")
    c = (pow(x, 3, _P) + 7) % _P
    y = pow(c, (_P + 1) // 4, _P)
    if y * y % _P != c:
        raise ValueError("not a point on the curve")
    return x, y if y % 2 == 0 else _P - y


def _tagged_hash(tag: str, data: bytes) -> bytes:
    tag_hash = hashlib.sha256(tag.encode()).digest()
    return hashlib.sha256(tag_hash + tag_hash + data).digest()


def tweak_public_key(internal_key: bytes, merkle_root: bytes | None) -> bytes:
    """Return the x-only taproot output key for an x-only internal key."""
    if len(internal_key) != 32:
        raise ValueError("internal key must be 32 bytes")
    point = _lift_x(int.from_bytes(internal_key, "big"))
    tweak = int.from_bytes(
        _tagged_hash("TapTweak", internal_key + (merkle_root or b"")), "big"
    )
    if tweak >= _N:
        raise ValueError("tweak out of range")
    output = _point_add(point, _point_mul(_G, tweak))
    if output is None:
        raise ValueError("tweak produced the point at infinity")
    return output[0].to_bytes(32, "big")


def p2tr_address(output_key: bytes, network: Network) -> Address:
    """Return the pay-to-taproot address for an already tweaked key."""
    if len(output_key) != 32:
        raise ValueError("output key must be 32 bytes")
    text = bech32_encode(network.hrp, 1, output_key)
    return Address(text, network, "segwit", bytes(output_key), 1)


def random_taproot_address(network: Network) -> Address:
    """Return a taproot address for a freshly generated key."""
    secret = secrets.randbelow(_N - 1) + 1
    internal = _point_mul(_G, secret)[0].to_bytes(32, "big")
    return p2tr_address(tweak_public_key(internal, None), network)