# ordwallet

Ordinal-aware Bitcoin transaction construction, plus an in-memory chain and a
JSON-RPC service that answers like a bitcoind node, for testing wallet code.

## Modules

- `ordwallet.transaction_builder`: builds unsigned transactions that send one
  sat (a `SatPoint`) to a recipient. The outgoing sat lands at the first
  position of the recipient's output, an alignment output is split off (and
  padded above the dust limit) when the sat is not at offset 0, inscribed
  UTXOs are never used as funding, excess value goes back to change, and the
  fee is paid at the given `FeeRate`.
  - `build_transaction_with_postage(outgoing, inscriptions, amounts, recipient, change, fee_rate)`
    keeps the recipient output at or below 20,000 sats, cutting it to
    10,000 sats when stripping the excess is worth an extra output.
  - `build_transaction_with_value(..., output_value)` aims for an output of
    exactly `output_value` sats, and raises `DustError` when that is below the
    recipient's dust limit.
  - `TransactionBuilder` exposes the individual steps (`select_outgoing`,
    `align_outgoing`, `pad_alignment_output`, `add_value`, `strip_value`,
    `deduct_fee`, `build_transaction`).
- `ordwallet.builder_state`: the builder's state (`BuilderState`), the
  `Target` (postage or exact value), `estimate_vbytes_with`, and the errors.
  All reported failures derive from `TransactionBuilderError`:
  `DuplicateAddressError`, `DustError`, `NotEnoughCardinalUtxosError`,
  `NotInWalletError`, `OutOfRangeError`,
  `UtxoContainsAdditionalInscriptionError`, `ValueOverflowError`.
  `BuilderState.build()` checks every construction invariant and raises
  `InvariantViolation` (an `AssertionError`) when one is broken.
- `ordwallet.primitives`: `OutPoint`, `SatPoint`, `InscriptionId` and their
  parsers, `TxIn`, `TxOut`, `Transaction` (consensus serialization, `txid`,
  `size`, `weight`, `vsize`, `is_explicitly_rbf`), `deserialize_transaction`,
  `FeeRate` and `dust_value`.
- `ordwallet.address`: `Network`, `Address`, `parse_address` (bech32,
  bech32m and base58 P2PKH/P2SH), `bech32_encode`/`bech32_decode`, taproot
  key tweaking and `random_taproot_address`.
- `ordwallet.chain_state`: `ChainState`, an in-memory chain with blocks,
  mempool, UTXOs, wallets, descriptors and locked outputs. `push_block`
  mines the mempool with a coinbase of subsidy plus fees, `pop_block` drops
  the tip, `broadcast_tx` builds a transaction from a `TransactionTemplate`.
  Also `Block`, `BlockHeader` and `genesis_block(network)`.
- `ordwallet.rpc_server`: `RpcService`, which implements node RPC methods
  (`getblockcount`, `getblock`, `listunspent`, `lockunspent`,
  `sendrawtransaction`, `createwallet`, `loadwallet`, ...) against a
  `ChainState`. `dispatch(method, params)` takes positional or named
  parameters; failures raise `RpcError` with its JSON-RPC code (`-8` for
  unknown blocks, transactions and wallets, `-32601` for unknown methods).
- `ordwallet.tally`: `tally(noun, count)` gives `"1 foo"`, `"2 foos"`.

## Building a transaction

```python
from ordwallet.address import parse_address
from ordwallet.primitives import FeeRate, parse_outpoint, parse_satpoint
from ordwallet.transaction_builder import build_transaction_with_postage

outpoint = parse_outpoint("1" * 64 + ":1")
tx = build_transaction_with_postage(
    parse_satpoint("1" * 64 + ":1:0"),
    {},
    {outpoint: 5_000},
    parse_address("tb1q6en7qjxgw4ev8xwx94pzdry6a6ky7wlfeqzunz"),
    [
        parse_address("tb1qjsv26lap3ffssj6hfy8mzn0lg5vte6a42j75ww"),
        parse_address("tb1qakxxzv9n7706kc3xdcycrtfv8cqv62hnwexc0l"),
    ],
    FeeRate(1.0),
)
print(tx.serialize().hex())
```

## Simulating a node

```python
from ordwallet.chain_state import COIN_VALUE, ChainState, TransactionTemplate
from ordwallet.rpc_server import RpcService

state = ChainState()
state.push_block(50 * COIN_VALUE)
state.broadcast_tx(TransactionTemplate(inputs=((1, 0, 0),)))

service = RpcService(state)
service.dispatch("createwallet", ["ord"])
service.dispatch("loadwallet", ["ord"])
print(service.dispatch("getblockcount"))  # 1
```

## What it does not do

- There is no network listener: `RpcService` is called in-process through
  `dispatch` or its methods; serving it over HTTP is left to the caller.
- There is no command-line program and nothing is stored on disk.
- Nothing is really signed: `signrawtransactionwithwallet` fills each input's
  witness with 64 zero bytes, and transactions are not validated.

## Tests

```
pip install -e .[test]
pytest
```