"""In-memory blockchain state for a simulated bitcoind."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field

from ordwallet.address import Address, Network
from ordwallet.primitives import (
    NULL_TXID,
    SEQUENCE_MAX,
    OutPoint,
    Transaction,
    TxIn,
    TxOut,
)

COIN_VALUE = 100_000_000

_GENESIS_MESSAGE = (
    b"The Times 03/Jan/2009 Chancellor on brink of second bailout for banks"
)
_GENESIS_SCRIPT_SIG = (
    b"\x04\xff\xff\x00\x1d\x01\x04" + bytes([len(_GENESIS_MESSAGE)]) + _GENESIS_MESSAGE
)
_GENESIS_PUBKEY = bytes.fromhex(
    "04678afdb0fe5548271967f1a67130b7105cd6a828e03909a67962e0ea1f61de"
    "b649f6bc3f4cef38c4f35504e51ec112de5c384df7ba0b8d578a4c702b6bf11d5f"
)
_GENESIS_SCRIPT_PUBKEY = bytes([len(_GENESIS_PUBKEY)]) + _GENESIS_PUBKEY + b"\xac"

# (time, bits, nonce) of each network's genesis header.
_GENESIS_PARAMS = {
    Network.BITCOIN: (1231006505, 0x1D00FFFF, 2083236893),
    Network.TESTNET: (1296688602, 0x1D00FFFF, 414098458),
    Network.SIGNET: (1598918400, 0x1E0377AE, 52613770),
    Network.REGTEST: (1296688602, 0x207FFFFF, 2),
}


def _varint(n: int) -> bytes:
    if n < 0xFD:
        return bytes([n])
    if n <= 0xFFFF:
        return b"\xfd" + n.to_bytes(2, "little")
    if n <= 0xFFFFFFFF:
        return b"\xfe" + n.to_bytes(4, "little")
    return b"\xff" + n.to_bytes(8, "little")


def _push_int(n: int) -> bytes:
    """Script that pushes ``n`` the way a script builder encodes integers."""
    if n == 0:
        return b"\x00"
    if n == -1:
        return b"\x4f"
    if 1 <= n <= 16:
        return bytes([0x50 + n])
    magnitude = abs(n)
    encoded = bytearray()
    while magnitude:
        encoded.append(magnitude & 0xFF)
        magnitude >>= 8
    if encoded[-1] & 0x80:
        encoded.append(0x80 if n < 0 else 0x00)
    elif n < 0:
        encoded[-1] |= 0x80
    return bytes([len(encoded)]) + bytes(encoded)


def _hash_hex(data: bytes) -> str:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()[::-1].hex()


@dataclass
class BlockHeader:
    version: int
    prev_blockhash: str
    merkle_root: str
    time: int
    bits: int
    nonce: int

    def serialize(self) -> bytes:
        return b"".join(
            [
                self.version.to_bytes(4, "little", signed=True),
                bytes.fromhex(self.prev_blockhash)[::-1],
                bytes.fromhex(self.merkle_root)[::-1],
                self.time.to_bytes(4, "little"),
                self.bits.to_bytes(4, "little"),
                self.nonce.to_bytes(4, "little"),
            ]
        )

    def block_hash(self) -> str:
        return _hash_hex(self.serialize())


@dataclass
class Block:
    header: BlockHeader
    txdata: list[Transaction] = field(default_factory=list)

    def serialize(self) -> bytes:
        return (
            self.header.serialize()
            + _varint(len(self.txdata))
            + b"".join(tx.serialize() for tx in self.txdata)
        )

    def block_hash(self) -> str:
        return self.header.block_hash()


def genesis_block(network: Network) -> Block:
    """The genesis block of ``network``."""
    coinbase = Transaction(
        version=1,
        lock_time=0,
        input=[TxIn(OutPoint.null(), _GENESIS_SCRIPT_SIG, SEQUENCE_MAX, [])],
        output=[TxOut(50 * COIN_VALUE, _GENESIS_SCRIPT_PUBKEY)],
    )
    time, bits, nonce = _GENESIS_PARAMS[network]
    header = BlockHeader(1, NULL_TXID, coinbase.txid(), time, bits, nonce)
    return Block(header, [coinbase])


@dataclass
class TransactionTemplate:
    """Shape of a transaction to broadcast: inputs as (height, tx index, vout)."""

    fee: int = 0
    inputs: tuple[tuple[int, int, int], ...] = ()
    output_values: tuple[int, ...] = ()
    outputs: int = 1
    witness: list[bytes] = field(default_factory=list)


@dataclass
class Sent:
    amount: float
    address: Address
    locked: list[OutPoint]


@dataclass
class ChainState:
    """Blocks, mempool, UTXOs and wallet bookkeeping of a simulated node."""

    network: Network = Network.BITCOIN
    version: int = 240000
    fail_lock_unspent: bool = False
    blocks: dict[str, Block] = field(default_factory=dict, init=False)
    descriptors: list[str] = field(default_factory=list, init=False)
    hashes: list[str] = field(default_factory=list, init=False)
    loaded_wallets: set[str] = field(default_factory=set, init=False)
    locked: set[OutPoint] = field(default_factory=set, init=False)
    mempool: list[Transaction] = field(default_factory=list, init=False)
    nonce: int = field(default=0, init=False)
    sent: list[Sent] = field(default_factory=list, init=False)
    transactions: dict[str, Transaction] = field(default_factory=dict, init=False)
    utxos: dict[OutPoint, int] = field(default_factory=dict, init=False)
    wallets: set[str] = field(default_factory=set, init=False)

    def __post_init__(self) -> None:
        genesis = genesis_block(self.network)
        genesis_hash = genesis.block_hash()
        self.hashes.append(genesis_hash)
        self.blocks[genesis_hash] = genesis

    def _fee(self, tx: Transaction) -> int:
        spent = sum(
            self.transactions[txin.previous_output.txid]
            .output[txin.previous_output.vout]
            .value
            for txin in tx.input
        )
        fee = spent - sum(txout.value for txout in tx.output)
        if fee < 0:
            raise ValueError(f"transaction {tx.txid()} spends more than its inputs")
        return fee

    def push_block(self, subsidy: int) -> Block:
        """Mine the mempool into a new block whose coinbase pays ``subsidy`` plus fees."""
        fees = 0
        for tx in self.mempool:
            fees += self._fee(tx)
            self.transactions[tx.txid()] = tx

        coinbase = Transaction(
            version=0,
            lock_time=0,
            input=[
                TxIn(OutPoint.null(), _push_int(len(self.blocks)), SEQUENCE_MAX, [])
            ],
            output=[TxOut(subsidy + fees, b"")],
        )
        self.transactions[coinbase.txid()] = coinbase

        header = BlockHeader(
            version=0,
            prev_blockhash=self.hashes[-1],
            merkle_root=NULL_TXID,
            time=len(self.blocks),
            bits=0,
            nonce=self.nonce,
        )
        block = Block(header, [coinbase, *self.mempool])
        self.mempool.clear()

        for tx in block.txdata:
            for txin in tx.input:
                self.utxos.pop(txin.previous_output, None)
            txid = tx.txid()
            for vout, txout in enumerate(tx.output):
                self.utxos[OutPoint(txid, vout)] = txout.value

        block_hash = block.block_hash()
        self.blocks[block_hash] = block
        self.hashes.append(block_hash)
        self.nonce += 1
        return block

    def pop_block(self) -> str:
        """Remove the tip of the chain and return its hash."""
        block_hash = self.hashes.pop()
        self.blocks.pop(block_hash, None)
        return block_hash

    def broadcast_tx(self, template: TransactionTemplate) -> str:
        """Build a transaction from ``template``, add it to the mempool, return its txid."""
        total_value = 0
        inputs = []
        for i, (height, tx_index, vout) in enumerate(template.inputs):
            tx = self.blocks[self.hashes[height]].txdata[tx_index]
            total_value += tx.output[vout].value
            inputs.append(
                TxIn(
                    OutPoint(tx.txid(), vout),
                    b"",
                    SEQUENCE_MAX,
                    list(template.witness) if i == 0 else [],
                )
            )

        if template.fee > total_value:
            raise ValueError("template fee exceeds value of inputs")
        value_per_output = (total_value - template.fee) // template.outputs
        if value_per_output * template.outputs + template.fee != total_value:
            raise ValueError("input value does not split evenly between outputs")

        outputs = [
            TxOut(
                template.output_values[i]
                if i < len(template.output_values)
                else value_per_output,
                b"",
            )
            for i in range(template.outputs)
        ]
        tx = Transaction(version=0, lock_time=0, input=inputs, output=outputs)
        self.mempool.append(tx)
        return tx.txid()

    def get_confirmations(self, tx: Transaction) -> int:
        """Number of blocks from the tip down to the one holding ``tx``, or 0."""
        for depth, block_hash in enumerate(reversed(self.hashes)):
            if tx in self.blocks[block_hash].txdata:
                return depth + 1
        return 0