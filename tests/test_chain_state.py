from datetime import datetime, timezone

import pytest

from ordwallet.address import Network
from ordwallet.chain_state import (
    COIN_VALUE,
    Block,
    ChainState,
    TransactionTemplate,
    genesis_block,
)
from ordwallet.primitives import OutPoint, Transaction, deserialize_transaction

SUBSIDY = 50 * COIN_VALUE


def test_mainnet_genesis_hash():
    assert (
        genesis_block(Network.BITCOIN).block_hash()
        == "000000000019d6689c085ae165831e934ff763ae46a2a6c172b3f1b60a8ce26f"
    )


def test_mainnet_genesis_size_and_timestamp():
    block = genesis_block(Network.BITCOIN)
    assert len(block.serialize()) == 285
    stamp = datetime.fromtimestamp(block.header.time, tz=timezone.utc)
    assert stamp.strftime("%Y-%m-%d %H:%M:%S") == "2009-01-03 18:15:05"


def test_genesis_header_and_merkle_root():
    block = genesis_block(Network.BITCOIN)
    assert len(block.header.serialize()) == 80
    assert block.header.merkle_root == block.txdata[0].txid()
    assert block.txdata[0].output[0].value == SUBSIDY


def test_genesis_coinbase_round_trips():
    coinbase = genesis_block(Network.BITCOIN).txdata[0]
    assert deserialize_transaction(coinbase.serialize()) == coinbase


def test_genesis_differs_per_network():
    hashes = {genesis_block(network).block_hash() for network in Network}
    assert len(hashes) == len(list(Network))


def test_new_state_holds_only_genesis():
    state = ChainState(Network.REGTEST)
    genesis_hash = genesis_block(Network.REGTEST).block_hash()
    assert state.hashes == [genesis_hash]
    assert list(state.blocks) == [genesis_hash]
    assert state.utxos == {}
    assert state.mempool == []


def test_push_block_links_and_pays_subsidy():
    state = ChainState()
    tip = state.hashes[-1]
    block = state.push_block(SUBSIDY)
    assert isinstance(block, Block)
    assert block.header.prev_blockhash == tip
    assert block.header.time == 1
    assert block.header.nonce == 0
    assert state.nonce == 1
    assert state.hashes[-1] == block.block_hash()
    coinbase = block.txdata[0]
    assert coinbase.input[0].script_sig == b"\x51"
    assert coinbase.input[0].previous_output.is_null()
    assert state.utxos == {OutPoint(coinbase.txid(), 0): SUBSIDY}
    assert state.transactions[coinbase.txid()] == coinbase


def test_successive_blocks_have_distinct_coinbases():
    state = ChainState()
    first = state.push_block(SUBSIDY)
    second = state.push_block(SUBSIDY)
    assert first.txdata[0].txid() != second.txdata[0].txid()
    assert second.header.prev_blockhash == first.block_hash()
    assert len(state.hashes) == 3


def test_broadcast_then_mine_collects_fee():
    state = ChainState()
    state.push_block(SUBSIDY)
    funding = state.blocks[state.hashes[1]].txdata[0]
    fee = 1_000
    txid = state.broadcast_tx(TransactionTemplate(fee=fee, inputs=((1, 0, 0),)))
    assert len(state.mempool) == 1
    tx = state.mempool[0]
    assert tx.txid() == txid
    assert tx.input[0].previous_output == OutPoint(funding.txid(), 0)
    assert tx.output[0].value == SUBSIDY - fee

    block = state.push_block(SUBSIDY)
    assert state.mempool == []
    assert block.txdata[1] == tx
    assert block.txdata[0].output[0].value == SUBSIDY + fee
    assert OutPoint(funding.txid(), 0) not in state.utxos
    assert state.utxos[OutPoint(txid, 0)] == SUBSIDY - fee


def test_broadcast_splits_and_uses_output_values():
    state = ChainState()
    state.push_block(SUBSIDY)
    state.broadcast_tx(
        TransactionTemplate(inputs=((1, 0, 0),), outputs=2, output_values=(7,))
    )
    values = [txout.value for txout in state.mempool[0].output]
    assert values == [7, SUBSIDY // 2]


def test_broadcast_witness_only_on_first_input():
    state = ChainState()
    state.push_block(SUBSIDY)
    state.push_block(SUBSIDY)
    state.broadcast_tx(
        TransactionTemplate(
            inputs=((1, 0, 0), (2, 0, 0)), outputs=2, witness=[b"\x01\x02"]
        )
    )
    tx = state.mempool[0]
    assert tx.input[0].witness == [b"\x01\x02"]
    assert tx.input[1].witness == []


def test_broadcast_uneven_split_raises():
    state = ChainState()
    state.push_block(SUBSIDY)
    with pytest.raises(ValueError):
        state.broadcast_tx(TransactionTemplate(inputs=((1, 0, 0),), outputs=3))
    assert state.mempool == []


def test_broadcast_fee_above_inputs_raises():
    state = ChainState()
    state.push_block(SUBSIDY)
    with pytest.raises(ValueError):
        state.broadcast_tx(TransactionTemplate(fee=SUBSIDY + 1, inputs=((1, 0, 0),)))


def test_pop_block_removes_tip():
    state = ChainState()
    block = state.push_block(SUBSIDY)
    popped = state.pop_block()
    assert popped == block.block_hash()
    assert popped not in state.blocks
    assert len(state.hashes) == 1


def test_confirmations_count_from_tip():
    state = ChainState()
    block = state.push_block(SUBSIDY)
    coinbase = block.txdata[0]
    assert state.get_confirmations(coinbase) == 1
    state.push_block(SUBSIDY)
    assert state.get_confirmations(coinbase) == 2


def test_confirmations_of_unknown_transaction_is_zero():
    state = ChainState()
    state.push_block(SUBSIDY)
    assert state.get_confirmations(Transaction(version=2)) == 0