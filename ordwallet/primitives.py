"""Transactions, outpoints, satpoints, fee rates and dust limits."""

from __future__ import annotations

import hashlib
import math
from dataclasses import dataclass, field

SEQUENCE_MAX = 0xFFFFFFFF
SEQUENCE_ENABLE_RBF_NO_LOCKTIME = 0xFFFFFFFD
NULL_TXID = "0" * 64
DUST_RELAY_TX_FEE = 3000


def _parse_txid(text: str) -> str:
    if len(text) != 64:
        raise ValueError(f"invalid txid length: {text!r}")
    bytes.fromhex(text)
    return text.lower()


def _parse_u(text: str, bits: int, what: str) -> int:
    if not text.isdigit():
        raise ValueError(f"invalid {what}: {text!r}")
    value = int(text)
    if value >= 1 << bits:
        raise ValueError(f"{what} out of range: {text!r}")
    return value


@dataclass(frozen=True, order=True)
class OutPoint:
    txid: str
    vout: int

    @staticmethod
    def null() -> OutPoint:
        return OutPoint(NULL_TXID, SEQUENCE_MAX)

    def is_null(self) -> bool:
        return self == OutPoint.null()

    def __str__(self) -> str:
        return f"{self.txid}:{self.vout}"


@dataclass(frozen=True, order=True)
class SatPoint:
    outpoint: OutPoint
    offset: int

    def __str__(self) -> str:
        return f"{self.outpoint}:{self.offset}"


@dataclass(frozen=True, order=True)
class InscriptionId:
    txid: str
    index: int

    def __str__(self) -> str:
        return f"{self.txid}i{self.index}"


def parse_outpoint(text: str) -> OutPoint:
    txid, sep, vout = text.partition(":")
    if not sep:
        raise ValueError(f"invalid outpoint: {text!r}")
    return OutPoint(_parse_txid(txid), _parse_u(vout, 32, "vout"))


def parse_satpoint(text: str) -> SatPoint:
    outpoint, sep, offset = text.rpartition(":")
    if not sep:
        raise ValueError(f"invalid satpoint: {text!r}")
    return SatPoint(parse_outpoint(outpoint), _parse_u(offset, 64, "offset"))


def parse_inscription_id(text: str) -> InscriptionId:
    txid, sep, index = text[:64], text[64:65], text[65:]
    if sep != "i":
        raise ValueError(f"invalid inscription id: {text!r}")
    return InscriptionId(_parse_txid(txid), _parse_u(index, 32, "index"))


@dataclass
class TxIn:
    previous_output: OutPoint
    script_sig: bytes = b""
    sequence: int = SEQUENCE_MAX
    witness: list[bytes] = field(default_factory=list)


@dataclass
class TxOut:
    value: int
    script_pubkey: bytes = b""


def _varint(n: int) -> bytes:
    if n < 0xFD:
        return bytes([n])
    if n <= 0xFFFF:
        return b"\xfd" + n.to_bytes(2, "little")
    if n <= 0xFFFFFFFF:
        return b"\xfe" + n.to_bytes(4, "little")
    return b"\xff" + n.to_bytes(8, "little")


def _var_bytes(data: bytes) -> bytes:
    return _varint(len(data)) + data


@dataclass
class Transaction:
    version: int = 1
    lock_time: int = 0
    input: list[TxIn] = field(default_factory=list)
    output: list[TxOut] = field(default_factory=list)

    def _has_witness(self) -> bool:
        return any(txin.witness for txin in self.input)

    def _encode(self, with_witness: bool) -> bytes:
        witness = with_witness and self._has_witness()
        parts = [self.version.to_bytes(4, "little", signed=True)]
        if witness:
            parts.append(b"\x00\x01")
        parts.append(_varint(len(self.input)))
        for txin in self.input:
            parts.append(bytes.fromhex(txin.previous_output.txid)[::-1])
            parts.append(txin.previous_output.vout.to_bytes(4, "little"))
            parts.append(_var_bytes(txin.script_sig))
            parts.append(txin.sequence.to_bytes(4, "little"))
        parts.append(_varint(len(self.output)))
        for txout in self.output:
            parts.append(txout.value.to_bytes(8, "little"))
            parts.append(_var_bytes(txout.script_pubkey))
        if witness:
            for txin in self.input:
                parts.append(_varint(len(txin.witness)))
                parts.extend(_var_bytes(item) for item in txin.witness)
        parts.append(self.lock_time.to_bytes(4, "little"))
        return b"".join(parts)

    def serialize(self) -> bytes:
        return self._encode(True)

    def txid(self) -> str:
        digest = hashlib.sha256(hashlib.sha256(self._encode(False)).digest()).digest()
        return digest[::-1].hex()

    def size(self) -> int:
        return len(self._encode(True))

    def weight(self) -> int:
        return len(self._encode(False)) * 3 + self.size()

    def vsize(self) -> int:
        return (self.weight() + 3) // 4

    def is_explicitly_rbf(self) -> bool:
        return any(txin.sequence < 0xFFFFFFFE for txin in self.input)


class _Reader:
    def __init__(self, data: bytes):
        self.data = data
        self.pos = 0

    def take(self, n: int) -> bytes:
        if self.pos + n > len(self.data):
            raise ValueError("unexpected end of transaction data")
        chunk = self.data[self.pos:self.pos + n]
        self.pos += n
        return chunk

    def uint(self, n: int) -> int:
        return int.from_bytes(self.take(n), "little")

    def varint(self) -> int:
        first = self.uint(1)
        return {0xFD: 2, 0xFE: 4, 0xFF: 8}.get(first) and self.uint(
            {0xFD: 2, 0xFE: 4, 0xFF: 8}[first]
        ) or first if first >= 0xFD else first

    def var_bytes(self) -> bytes:
        return self.take(self.varint())


def deserialize_transaction(data: bytes) -> Transaction:
    """Decode a consensus-serialized transaction, with or without witness."""
    reader = _Reader(bytes(data))
    version = int.from_bytes(reader.take(4), "little", signed=True)
    segwit = reader.data[reader.pos:reader.pos + 2] == b"\x00\x01"
    if segwit:
        reader.take(2)
    inputs = []
    for _ in range(reader.varint()):
        txid = reader.take(32)[::-1].hex()
        vout = reader.uint(4)
        script_sig = reader.var_bytes()
        inputs.append(TxIn(OutPoint(txid, vout), script_sig, reader.uint(4)))
    outputs = [
        TxOut(reader.uint(8), reader.var_bytes()) for _ in range(reader.varint())
    ]
    if segwit:
        for txin in inputs:
            txin.witness = [reader.var_bytes() for _ in range(reader.varint())]
    lock_time = reader.uint(4)
    if reader.pos != len(reader.data):
        raise ValueError("trailing bytes after transaction")
    return Transaction(version, lock_time, inputs, outputs)


@dataclass(frozen=True)
class FeeRate:
    """A fee rate in sats per virtual byte."""

    rate: float

    def __post_init__(self):
        if not math.isfinite(self.rate) or self.rate < 0:
            raise ValueError(f"invalid fee rate: {self.rate}")

    def fee(self, vsize: int) -> int:
        return math.ceil(self.rate * vsize)


def _is_witness_program(script: bytes) -> bool:
    if not 4 <= len(script) <= 42:
        return False
    version_ok = script[0] == 0 or 0x51 <= script[0] <= 0x60
    return version_ok and script[1] == len(script) - 2


def dust_value(script_pubkey: bytes) -> int:
    """Minimum non-dust value for an output paying to ``script_pubkey``."""
    if script_pubkey[:1] == b"\x6a":
        return 0
    encoded = len(_var_bytes(script_pubkey))
    if _is_witness_program(script_pubkey):
        spend = 32 + 4 + 1 + 107 // 4 + 4 + 8 + encoded
    else:
        spend = 32 + 4 + 1 + 107 + 4 + 8 + encoded
    return DUST_RELAY_TX_FEE // 1000 * spend