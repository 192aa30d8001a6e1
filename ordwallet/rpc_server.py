"""A JSON-RPC service that answers like a bitcoind node, backed by ``ChainState``."""

from __future__ import annotations

import threading
from collections.abc import Mapping
from typing import Any

from ordwallet.address import Address, Network, parse_address, random_taproot_address
from ordwallet.chain_state import COIN_VALUE, ChainState, Sent
from ordwallet.primitives import (
    NULL_TXID,
    SEQUENCE_MAX,
    OutPoint,
    Transaction,
    TxIn,
    TxOut,
    deserialize_transaction,
)

_CHAIN_NAMES = {
    Network.BITCOIN: "main",
    Network.TESTNET: "test",
    Network.SIGNET: "signet",
    Network.REGTEST: "regtest",
}


class RpcError(Exception):
    """A JSON-RPC error with its numeric code."""

    def __init__(self, code: int, message: str):
        super().__init__(code, message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"RPC error {self.code}: {self.message}"

    def to_json(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}


def _not_found() -> RpcError:
    return RpcError(-8, "Server error")


def _require_unset(value: Any, name: str) -> None:
    if value is not None:
        raise ValueError(f"{name} param not supported")


def _btc(sats: int) -> float:
    return sats / COIN_VALUE


def _outpoint_from_json(value: Any) -> OutPoint:
    if isinstance(value, OutPoint):
        return value
    return OutPoint(str(value["txid"]).lower(), int(value["vout"]))


def _outpoint_to_json(outpoint: OutPoint) -> dict[str, Any]:
    return {"txid": outpoint.txid, "vout": outpoint.vout}


class RpcService:
    """Implements the node's RPC methods against a shared ``ChainState``."""

    def __init__(self, state: ChainState, lock: threading.RLock | None = None):
        self.state = state
        self.network = state.network
        self._lock = lock if lock is not None else threading.RLock()
        self._methods = {
            "getblockchaininfo": self.get_blockchain_info,
            "getnetworkinfo": self.get_network_info,
            "getbalances": self.get_balances,
            "getblockhash": self.get_block_hash,
            "getblockheader": self.get_block_header,
            "getblock": self.get_block,
            "getblockcount": self.get_block_count,
            "getwalletinfo": self.get_wallet_info,
            "createrawtransaction": self.create_raw_transaction,
            "createwallet": self.create_wallet,
            "signrawtransactionwithwallet": self.sign_raw_transaction_with_wallet,
            "sendrawtransaction": self.send_raw_transaction,
            "sendtoaddress": self.send_to_address,
            "gettransaction": self.get_transaction,
            "getrawtransaction": self.get_raw_transaction,
            "listunspent": self.list_unspent,
            "listlockunspent": self.list_lock_unspent,
            "getrawchangeaddress": self.get_raw_change_address,
            "getdescriptorinfo": self.get_descriptor_info,
            "importdescriptors": self.import_descriptors,
            "getnewaddress": self.get_new_address,
            "listtransactions": self.list_transactions,
            "lockunspent": self.lock_unspent,
            "listdescriptors": self.list_descriptors,
            "loadwallet": self.load_wallet,
            "listwallets": self.list_wallets,
        }

    def dispatch(self, method: str, params: Any = None) -> Any:
        """Call the RPC method named ``method`` with positional or named params."""
        handler = self._methods.get(method)
        if handler is None:
            raise RpcError(-32601, "Method not found")
        try:
            if params is None:
                return handler()
            if isinstance(params, Mapping):
                return handler(**params)
            return handler(*params)
        except TypeError as err:
            raise RpcError(-32602, f"Invalid params: {err}") from None

    def get_blockchain_info(self) -> dict[str, Any]:
        with self._lock:
            return {
                "chain": _CHAIN_NAMES[self.network],
                "blocks": 0,
                "headers": 0,
                "bestblockhash": self.state.hashes[0],
                "difficulty": 0.0,
                "mediantime": 0,
                "verificationprogress": 0.0,
                "initialblockdownload": False,
                "chainwork": "",
                "size_on_disk": 0,
                "pruned": False,
                "softforks": {},
                "warnings": "",
            }

    def get_network_info(self) -> dict[str, Any]:
        with self._lock:
            return {
                "version": self.state.version,
                "subversion": "",
                "protocolversion": 0,
                "localservices": "",
                "localrelay": False,
                "timeoffset": 0,
                "connections": 0,
                "networkactive": True,
                "networks": [],
                "relayfee": 0.0,
                "incrementalfee": 0.0,
                "localaddresses": [],
                "warnings": "",
            }

    def get_balances(self) -> dict[str, Any]:
        with self._lock:
            trusted = sum(
                amount
                for outpoint, amount in self.state.utxos.items()
                if outpoint not in self.state.locked
            )
            return {
                "mine": {
                    "trusted": _btc(trusted),
                    "untrusted_pending": 0.0,
                    "immature": 0.0,
                },
                "watchonly": None,
            }

    def get_block_hash(self, height: int) -> str:
        with self._lock:
            if 0 <= height < len(self.state.hashes):
                return self.state.hashes[height]
            raise _not_found()

    def get_block_header(self, block_hash: str, verbose: bool = True) -> Any:
        with self._lock:
            if verbose:
                if block_hash not in self.state.hashes:
                    raise _not_found()
                return {
                    "hash": block_hash,
                    "confirmations": 0,
                    "height": self.state.hashes.index(block_hash),
                    "version": 0,
                    "versionHex": "00000000",
                    "merkleroot": NULL_TXID,
                    "time": 0,
                    "mediantime": None,
                    "nonce": 0,
                    "bits": "",
                    "difficulty": 0.0,
                    "chainwork": "",
                    "nTx": 0,
                    "previousblockhash": None,
                    "nextblockhash": None,
                }
            block = self.state.blocks.get(block_hash)
            if block is None:
                raise _not_found()
            return block.header.serialize().hex()

    def get_block(self, block_hash: str, verbosity: int = 0) -> str:
        if verbosity != 0:
            raise ValueError(f"Verbosity level {verbosity} is unsupported")
        with self._lock:
            block = self.state.blocks.get(block_hash)
            if block is None:
                raise _not_found()
            return block.serialize().hex()

    def get_block_count(self) -> int:
        with self._lock:
            return max(len(self.state.hashes) - 1, 0)

    def get_wallet_info(self) -> dict[str, Any]:
        with self._lock:
            if not self.state.loaded_wallets:
                raise _not_found()
            return {
                "walletname": min(self.state.loaded_wallets),
                "walletversion": 0,
                "balance": 0.0,
                "unconfirmed_balance": 0.0,
                "immature_balance": 0.0,
                "txcount": 0,
                "keypoolsize": 0,
                "keypoolsize_hd_internal": 0,
                "paytxfee": 0.0,
                "private_keys_enabled": False,
            }

    def create_raw_transaction(
        self,
        utxos: list[Any],
        outs: Mapping[str, float],
        locktime: int | None = None,
        replaceable: bool | None = None,
    ) -> str:
        _require_unset(locktime, "locktime")
        _require_unset(replaceable, "replaceable")
        tx = Transaction(
            version=0,
            lock_time=0,
            input=[
                TxIn(_outpoint_from_json(utxo), b"", SEQUENCE_MAX, []) for utxo in utxos
            ],
            output=[TxOut(int(amount * COIN_VALUE), b"") for amount in outs.values()],
        )
        return tx.serialize().hex()

    def create_wallet(
        self,
        name: str,
        disable_private_keys: bool | None = None,
        blank: bool | None = None,
        passphrase: str | None = None,
        avoid_reuse: bool | None = None,
    ) -> dict[str, Any]:
        with self._lock:
            self.state.wallets.add(name)
        return {"name": name, "warning": None}

    def sign_raw_transaction_with_wallet(
        self, tx: str, utxos: Any = None, sighash_type: Any = None
    ) -> dict[str, Any]:
        _require_unset(utxos, "utxos")
        _require_unset(sighash_type, "sighash_type")
        transaction = deserialize_transaction(bytes.fromhex(tx))
        for txin in transaction.input:
            txin.witness = [bytes(64)]
        return {"hex": transaction.serialize().hex(), "complete": True, "errors": None}

    def send_raw_transaction(self, tx: str) -> str:
        transaction = deserialize_transaction(bytes.fromhex(tx))
        with self._lock:
            self.state.mempool.append(transaction)
        return transaction.txid()

    def send_to_address(
        self,
        address: Address | str,
        amount: float,
        comment: str | None = None,
        comment_to: str | None = None,
        subtract_fee: bool | None = None,
        replaceable: bool | None = None,
        confirmation_target: int | None = None,
        estimate_mode: str | None = None,
    ) -> str:
        _require_unset(comment, "comment")
        _require_unset(comment_to, "comment_to")
        _require_unset(subtract_fee, "subtract_fee")
        _require_unset(replaceable, "replaceable")
        _require_unset(confirmation_target, "confirmation_target")
        _require_unset(estimate_mode, "estimate_mode")
        if not isinstance(address, Address):
            address = parse_address(address)
        with self._lock:
            locked = sorted(self.state.locked)
            self.state.sent.append(Sent(amount, address, locked))
        return NULL_TXID

    def get_transaction(
        self, txid: str, include_watchonly: bool | None = None
    ) -> dict[str, Any]:
        with self._lock:
            tx = self.state.transactions.get(txid)
            if tx is None:
                raise _not_found()
            return {
                "txid": txid,
                "confirmations": 0,
                "time": 0,
                "timereceived": 0,
                "walletconflicts": [],
                "bip125-replaceable": "unknown",
                "amount": 0.0,
                "fee": None,
                "details": [],
                "hex": tx.serialize().hex(),
            }

    def get_raw_transaction(
        self, txid: str, verbose: bool | None = None, blockhash: str | None = None
    ) -> Any:
        if blockhash is not None:
            raise ValueError("Blockhash param is unsupported")
        with self._lock:
            tx = self.state.transactions.get(txid)
            if tx is None:
                raise _not_found()
            if verbose:
                return {
                    "in_active_chain": True,
                    "hex": "",
                    "txid": NULL_TXID,
                    "hash": NULL_TXID,
                    "size": 0,
                    "vsize": 0,
                    "version": 0,
                    "locktime": 0,
                    "vin": [],
                    "vout": [],
                    "blockhash": None,
                    "confirmations": 1,
                    "time": None,
                    "blocktime": None,
                }
            return tx.serialize().hex()

    def list_unspent(
        self,
        minconf: int | None = None,
        maxconf: int | None = None,
        address: str | None = None,
        include_unsafe: bool | None = None,
        query_options: Any = None,
    ) -> list[dict[str, Any]]:
        _require_unset(minconf, "minconf")
        _require_unset(maxconf, "maxconf")
        _require_unset(address, "address")
        _require_unset(include_unsafe, "include_unsafe")
        _require_unset(query_options, "query_options")
        with self._lock:
            return [
                {
                    "txid": outpoint.txid,
                    "vout": outpoint.vout,
                    "scriptPubKey": "",
                    "amount": _btc(amount),
                    "confirmations": 0,
                    "spendable": True,
                    "solvable": True,
                    "safe": True,
                }
                for outpoint, amount in sorted(self.state.utxos.items())
                if outpoint not in self.state.locked
            ]

    def list_lock_unspent(self) -> list[dict[str, Any]]:
        with self._lock:
            return [_outpoint_to_json(outpoint) for outpoint in sorted(self.state.locked)]

    def get_raw_change_address(self, address_type: str | None = None) -> str:
        return str(random_taproot_address(self.network))

    def get_descriptor_info(self, desc: str) -> dict[str, Any]:
        return {
            "descriptor": desc,
            "checksum": "",
            "isrange": False,
            "issolvable": False,
            "hasprivatekeys": True,
        }

    def import_descriptors(self, req: list[Mapping[str, Any]]) -> list[dict[str, Any]]:
        with self._lock:
            self.state.descriptors.extend(params["desc"] for params in req)
        return [{"success": True, "warnings": [], "error": None}]

    def get_new_address(
        self, label: str | None = None, address_type: str | None = None
    ) -> str:
        return str(random_taproot_address(self.network))

    def list_transactions(
        self,
        label: str | None = None,
        count: int | None = None,
        skip: int | None = None,
        include_watchonly: bool | None = None,
    ) -> list[dict[str, Any]]:
        limit = 0xFFFF if count is None else count
        with self._lock:
            confirmed = sorted(self.state.transactions.items())[:limit]
            pending = [(tx.txid(), tx) for tx in self.state.mempool]
            return [
                {
                    "txid": txid,
                    "confirmations": self.state.get_confirmations(tx),
                    "time": 0,
                    "timereceived": 0,
                    "walletconflicts": [],
                    "bip125-replaceable": "unknown",
                    "category": "immature",
                    "amount": 0.0,
                    "vout": 0,
                    "fee": 0.0,
                }
                for txid, tx in confirmed + pending
            ]

    def lock_unspent(self, unlock: bool, outputs: list[Any]) -> bool:
        if unlock:
            raise ValueError("unlocking outputs is not supported")
        with self._lock:
            if self.state.fail_lock_unspent:
                return False
            for output in outputs:
                outpoint = _outpoint_from_json(output)
                if outpoint not in self.state.utxos:
                    raise ValueError(f"output {outpoint} is not unspent")
                self.state.locked.add(outpoint)
        return True

    def list_descriptors(self) -> dict[str, Any]:
        with self._lock:
            return {
                "wallet_name": "ord",
                "descriptors": [
                    {"desc": desc, "timestamp": "now", "active": True}
                    for desc in self.state.descriptors
                ],
            }

    def load_wallet(self, wallet: str) -> dict[str, Any]:
        with self._lock:
            if wallet not in self.state.wallets:
                raise _not_found()
            self.state.loaded_wallets.add(wallet)
        return {"name": wallet, "warning": None}

    def list_wallets(self) -> list[str]:
        with self._lock:
            return sorted(self.state.loaded_wallets)