"""JSON-RPC front end answering a subset of the bitcoind wallet and chain API."""

from __future__ import annotations

import dataclasses
import json
import threading
from typing import Any, Callable

from .primitives import (
    COIN_VALUE,
    ZERO_HASH,
    Network,
    OutPoint,
    Transaction,
    TxIn,
    TxOut,
    random_taproot_address,
)
from .state import Sent, State

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
NOT_FOUND = -8


class RpcError(Exception):
    """An error reported to the RPC client with a JSON-RPC error code."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def to_json(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error


@dataclasses.dataclass(frozen=True)
class _Method:
    function: Callable[..., Any]
    params: tuple[str, ...] = ()
    required: int = 0

    def check(self, args: list[Any], kwargs: dict[str, Any]) -> None:
        if len(args) > len(self.params):
            raise RpcError(
                INVALID_PARAMS,
                f"Invalid params: expected at most {len(self.params)} arguments, got {len(args)}",
            )
        unknown = sorted(set(kwargs) - set(self.params))
        if unknown:
            raise RpcError(INVALID_PARAMS, f"Invalid params: unexpected argument {unknown[0]!r}")
        given = set(self.params[: len(args)]) | set(kwargs)
        missing = [name for name in self.params[: self.required] if name not in given]
        if missing:
            raise RpcError(INVALID_PARAMS, f"Invalid params: missing argument {missing[0]!r}")


def _not_found() -> RpcError:
    return RpcError(NOT_FOUND, "Server error")


def _btc(sats: int) -> float:
    return sats / COIN_VALUE


def _require_hash(value: Any, name: str) -> str:
    if not isinstance(value, str) or len(value) != 64:
        raise RpcError(INVALID_PARAMS, f"Invalid params: {name} must be a 64-character hex string")
    try:
        bytes.fromhex(value)
    except ValueError:
        raise RpcError(INVALID_PARAMS, f"Invalid params: {name} is not hex") from None
    return value.lower()


def _require_absent(value: Any, message: str) -> None:
    if value is not None:
        raise ValueError(message)


def _decode_tx(tx_hex: str) -> Transaction:
    try:
        return Transaction.deserialize(bytes.fromhex(tx_hex))
    except (TypeError, ValueError) as err:
        raise RpcError(INVALID_PARAMS, f"Invalid params: cannot decode transaction: {err}") from None


def _txid_key(txid: str) -> bytes:
    return bytes.fromhex(txid)[::-1]


def _wallet_tx_info(txid: str, confirmations: int) -> dict[str, Any]:
    return {
        "confirmations": confirmations,
        "blockhash": None,
        "blockindex": None,
        "blocktime": None,
        "blockheight": None,
        "txid": txid,
        "time": 0,
        "timereceived": 0,
        "bip125-replaceable": "unknown",
        "walletconflicts": [],
    }


class Server:
    """Answers RPC calls against a shared :class:`State`."""

    def __init__(self, state: State, lock: threading.RLock | None = None) -> None:
        self.state = state
        self.network: Network = state.network
        self._lock = lock if lock is not None else threading.RLock()
        self._methods: dict[str, _Method] = {
            "getblockchaininfo": _Method(self.get_blockchain_info),
            "getnetworkinfo": _Method(self.get_network_info),
            "getbalances": _Method(self.get_balances),
            "getblockhash": _Method(self.get_block_hash, ("height",), 1),
            "getblockheader": _Method(self.get_block_header, ("block_hash", "verbose"), 2),
            "getblock": _Method(self.get_block, ("block_hash", "verbosity"), 2),
            "getblockcount": _Method(self.get_block_count),
            "getwalletinfo": _Method(self.get_wallet_info),
            "createrawtransaction": _Method(
                self.create_raw_transaction, ("utxos", "outs", "locktime", "replaceable"), 2
            ),
            "createwallet": _Method(
                self.create_wallet,
                ("name", "disable_private_keys", "blank", "passphrase", "avoid_reuse"),
                1,
            ),
            "signrawtransactionwithwallet": _Method(
                self.sign_raw_transaction_with_wallet, ("tx", "utxos", "sighash_type"), 1
            ),
            "sendrawtransaction": _Method(self.send_raw_transaction, ("tx",), 1),
            "sendtoaddress": _Method(
                self.send_to_address,
                (
                    "address",
                    "amount",
                    "comment",
                    "comment_to",
                    "subtract_fee",
                    "replaceable",
                    "confirmation_target",
                    "estimate_mode",
                ),
                2,
            ),
            "gettransaction": _Method(self.get_transaction, ("txid", "include_watchonly"), 1),
            "getrawtransaction": _Method(
                self.get_raw_transaction, ("txid", "verbose", "blockhash"), 1
            ),
            "listunspent": _Method(
                self.list_unspent,
                ("minconf", "maxconf", "address", "include_unsafe", "query_options"),
                0,
            ),
            "listlockunspent": _Method(self.list_lock_unspent),
            "getrawchangeaddress": _Method(self.get_raw_change_address, ("address_type",), 0),
            "getdescriptorinfo": _Method(self.get_descriptor_info, ("desc",), 1),
            "importdescriptors": _Method(self.import_descriptors, ("req",), 1),
            "getnewaddress": _Method(self.get_new_address, ("label", "address_type"), 0),
            "listtransactions": _Method(
                self.list_transactions, ("label", "count", "skip", "include_watchonly"), 0
            ),
            "lockunspent": _Method(self.lock_unspent, ("unlock", "outputs"), 2),
            "listdescriptors": _Method(self.list_descriptors),
            "loadwallet": _Method(self.load_wallet, ("wallet",), 1),
            "listwallets": _Method(self.list_wallets),
        }

    # ----- request plumbing -------------------------------------------------

    def dispatch(self, method: str, params: Any = None) -> Any:
        """Call the RPC ``method`` with positional (list) or named (dict) ``params``."""
        try:
            entry = self._methods[method]
        except KeyError:
            raise RpcError(METHOD_NOT_FOUND, "Method not found") from None

        if params is None:
            args, kwargs = [], {}
        elif isinstance(params, list):
            args, kwargs = params, {}
        elif isinstance(params, dict):
            args, kwargs = [], params
        else:
            raise RpcError(INVALID_PARAMS, "Invalid params: params must be an array or object")

        entry.check(args, kwargs)
        return entry.function(*args, **kwargs)

    def _respond(self, request: Any) -> dict[str, Any]:
        if not isinstance(request, dict) or not isinstance(request.get("method"), str):
            return {
                "jsonrpc": "2.0",
                "error": RpcError(INVALID_REQUEST, "Invalid request").to_json(),
                "id": None,
            }
        request_id = request.get("id")
        try:
            result = self.dispatch(request["method"], request.get("params"))
        except RpcError as err:
            return {"jsonrpc": "2.0", "error": err.to_json(), "id": request_id}
        except Exception as err:  # a failed expectation inside a handler
            error = RpcError(INTERNAL_ERROR, "Internal error", str(err))
            return {"jsonrpc": "2.0", "error": error.to_json(), "id": request_id}
        return {"jsonrpc": "2.0", "result": result, "id": request_id}

    def handle_request(self, body: bytes | str) -> bytes:
        """Answer one JSON-RPC request body, single or batch, with a JSON response body."""
        try:
            request = json.loads(body)
        except (ValueError, UnicodeDecodeError):
            response: Any = {
                "jsonrpc": "2.0",
                "error": RpcError(PARSE_ERROR, "Parse error").to_json(),
                "id": None,
            }
        else:
            if isinstance(request, list):
                if request:
                    response = [self._respond(item) for item in request]
                else:
                    response = {
                        "jsonrpc": "2.0",
                        "error": RpcError(INVALID_REQUEST, "Invalid request").to_json(),
                        "id": None,
                    }
            else:
                response = self._respond(request)
        return json.dumps(response).encode()

    # ----- chain ------------------------------------------------------------

    def get_balances(self) -> dict[str, Any]:
        with self._lock:
            trusted = sum(entry["amount"] for entry in self.list_unspent())
        return {
            "mine": {"trusted": trusted, "untrusted_pending": 0.0, "immature": 0.0},
            "watchonly": None,
        }

    def get_blockchain_info(self) -> dict[str, Any]:
        with self._lock:
            best = self.state.hashes[0]
        return {
            "chain": self.network.chain(),
            "blocks": 0,
            "headers": 0,
            "bestblockhash": best,
            "difficulty": 0.0,
            "mediantime": 0,
            "verificationprogress": 0.0,
            "initialblockdownload": False,
            "chainwork": "",
            "size_on_disk": 0,
            "pruned": False,
            "pruneheight": None,
            "automatic_pruning": None,
            "prune_target_size": None,
            "softforks": {},
            "warnings": "",
        }

    def get_network_info(self) -> dict[str, Any]:
        with self._lock:
            version = self.state.version
        return {
            "version": version,
            "subversion": "",
            "protocolversion": 0,
            "localservices": "",
            "localrelay": False,
            "timeoffset": 0,
            "connections": 0,
            "connections_in": None,
            "connections_out": None,
            "networkactive": True,
            "networks": [],
            "relayfee": 0.0,
            "incrementalfee": 0.0,
            "localaddresses": [],
            "warnings": "",
        }

    def get_block_hash(self, height: int) -> str:
        if not isinstance(height, int) or isinstance(height, bool) or height < 0:
            raise RpcError(INVALID_PARAMS, "Invalid params: height must be a non-negative integer")
        with self._lock:
            if height >= len(self.state.hashes):
                raise _not_found()
            return self.state.hashes[height]

    def get_block_header(self, block_hash: str, verbose: bool) -> Any:
        block_hash = _require_hash(block_hash, "block_hash")
        with self._lock:
            if verbose:
                try:
                    height = self.state.hashes.index(block_hash)
                except ValueError:
                    raise _not_found() from None
                return {
                    "hash": block_hash,
                    "confirmations": 0,
                    "height": height,
                    "version": 0,
                    "versionHex": "00000000",
                    "merkleroot": ZERO_HASH,
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

    def get_block(self, block_hash: str, verbosity: int) -> str:
        if verbosity != 0:
            raise ValueError(f"Verbosity level {verbosity} is unsupported")
        block_hash = _require_hash(block_hash, "blockhash")
        with self._lock:
            block = self.state.blocks.get(block_hash)
            if block is None:
                raise _not_found()
            return block.serialize().hex()

    def get_block_count(self) -> int:
        with self._lock:
            return max(len(self.state.hashes) - 1, 0)

    # ----- wallets ----------------------------------------------------------

    def get_wallet_info(self) -> dict[str, Any]:
        with self._lock:
            if not self.state.loaded_wallets:
                raise _not_found()
            wallet_name = min(self.state.loaded_wallets)
        return {
            "walletname": wallet_name,
            "walletversion": 0,
            "balance": 0.0,
            "unconfirmed_balance": 0.0,
            "immature_balance": 0.0,
            "txcount": 0,
            "keypoololdest": None,
            "keypoolsize": 0,
            "keypoolsize_hd_internal": 0,
            "unlocked_until": None,
            "paytxfee": 0.0,
            "hdseedid": None,
            "private_keys_enabled": False,
            "avoid_reuse": None,
            "scanning": None,
        }

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

    def load_wallet(self, wallet: str) -> dict[str, Any]:
        with self._lock:
            if wallet not in self.state.wallets:
                raise _not_found()
            self.state.loaded_wallets.add(wallet)
        return {"name": wallet, "warning": None}

    def list_wallets(self) -> list[str]:
        with self._lock:
            return sorted(self.state.loaded_wallets)

    # ----- transactions -----------------------------------------------------

    def create_raw_transaction(
        self,
        utxos: list[dict[str, Any]],
        outs: dict[str, float],
        locktime: int | None = None,
        replaceable: bool | None = None,
    ) -> str:
        _require_absent(locktime, "locktime param not supported")
        _require_absent(replaceable, "replaceable param not supported")
        try:
            inputs = [
                TxIn(OutPoint(_require_hash(utxo["txid"], "txid"), int(utxo["vout"])))
                for utxo in utxos
            ]
        except (KeyError, TypeError) as err:
            raise RpcError(INVALID_PARAMS, f"Invalid params: bad input {err}") from None
        outputs = [TxOut(int(amount * COIN_VALUE), b"") for amount in outs.values()]
        tx = Transaction(version=0, lock_time=0, inputs=inputs, outputs=outputs)
        return tx.serialize().hex()

    def sign_raw_transaction_with_wallet(
        self, tx: str, utxos: Any = None, sighash_type: Any = None
    ) -> dict[str, Any]:
        _require_absent(utxos, "utxos param not supported")
        _require_absent(sighash_type, "sighash_type param not supported")
        transaction = _decode_tx(tx)
        signed = dataclasses.replace(
            transaction,
            inputs=[
                dataclasses.replace(txin, witness=(bytes(64),)) for txin in transaction.inputs
            ],
        )
        return {"hex": signed.serialize().hex(), "complete": True, "errors": None}

    def send_raw_transaction(self, tx: str) -> str:
        transaction = _decode_tx(tx)
        with self._lock:
            self.state.mempool.append(transaction)
        return transaction.txid()

    def send_to_address(
        self,
        address: str,
        amount: float,
        comment: str | None = None,
        comment_to: str | None = None,
        subtract_fee: bool | None = None,
        replaceable: bool | None = None,
        confirmation_target: int | None = None,
        estimate_mode: str | None = None,
    ) -> str:
        _require_absent(comment, "comment param not supported")
        _require_absent(comment_to, "comment_to param not supported")
        _require_absent(subtract_fee, "subtract_fee param not supported")
        _require_absent(replaceable, "replaceable param not supported")
        _require_absent(confirmation_target, "confirmation_target param not supported")
        _require_absent(estimate_mode, "estimate_mode param not supported")
        with self._lock:
            locked = sorted(self.state.locked)
            self.state.sent.append(Sent(amount=amount, address=address, locked=locked))
        return ZERO_HASH

    def get_transaction(self, txid: str, include_watchonly: bool | None = None) -> dict[str, Any]:
        txid = _require_hash(txid, "txid")
        with self._lock:
            tx = self.state.transactions.get(txid)
            if tx is None:
                raise _not_found()
        return {
            **_wallet_tx_info(txid, 0),
            "amount": 0.0,
            "fee": None,
            "details": [],
            "hex": tx.serialize().hex(),
        }

    def get_raw_transaction(
        self, txid: str, verbose: bool | None = None, blockhash: str | None = None
    ) -> Any:
        _require_absent(blockhash, "Blockhash param is unsupported")
        txid = _require_hash(txid, "txid")
        with self._lock:
            tx = self.state.transactions.get(txid)
        if tx is None:
            raise _not_found()
        if verbose:
            return {
                "in_active_chain": True,
                "hex": "",
                "txid": ZERO_HASH,
                "hash": ZERO_HASH,
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
        _require_absent(minconf, "minconf param not supported")
        _require_absent(maxconf, "maxconf param not supported")
        _require_absent(address, "address param not supported")
        _require_absent(include_unsafe, "include_unsafe param not supported")
        _require_absent(query_options, "query_options param not supported")
        with self._lock:
            return [
                {
                    "txid": outpoint.txid,
                    "vout": outpoint.vout,
                    "address": None,
                    "label": None,
                    "redeemScript": None,
                    "witnessScript": None,
                    "scriptPubKey": "",
                    "amount": _btc(amount),
                    "confirmations": 0,
                    "spendable": True,
                    "solvable": True,
                    "desc": None,
                    "safe": True,
                }
                for outpoint, amount in sorted(self.state.utxos.items())
                if outpoint not in self.state.locked
            ]

    def list_lock_unspent(self) -> list[dict[str, Any]]:
        with self._lock:
            return [
                {"txid": outpoint.txid, "vout": outpoint.vout}
                for outpoint in sorted(self.state.locked)
            ]

    def lock_unspent(self, unlock: bool, outputs: list[dict[str, Any]]) -> bool:
        if unlock:
            raise ValueError("unlocking outputs is not supported")
        with self._lock:
            if self.state.fail_lock_unspent:
                return False
            for output in outputs:
                outpoint = OutPoint(_require_hash(output["txid"], "txid"), int(output["vout"]))
                if outpoint not in self.state.utxos:
                    raise ValueError(f"output {outpoint} is not unspent")
                self.state.locked.add(outpoint)
        return True

    def list_transactions(
        self,
        label: str | None = None,
        count: int | None = None,
        skip: int | None = None,
        include_watchonly: bool | None = None,
    ) -> list[dict[str, Any]]:
        limit = 0xFFFF if count is None else count
        with self._lock:
            confirmed = sorted(self.state.transactions.items(), key=lambda item: _txid_key(item[0]))
            pairs = confirmed[:limit] + [(tx.txid(), tx) for tx in self.state.mempool]
            return [
                {
                    **_wallet_tx_info(txid, self.state.get_confirmations(tx)),
                    "address": None,
                    "category": "immature",
                    "amount": 0.0,
                    "label": None,
                    "vout": 0,
                    "fee": 0.0,
                    "abandoned": None,
                    "trusted": None,
                    "comment": None,
                }
                for txid, tx in pairs
            ]

    # ----- addresses and descriptors ----------------------------------------

    def get_raw_change_address(self, address_type: str | None = None) -> str:
        return random_taproot_address(self.network)

    def get_new_address(self, label: str | None = None, address_type: str | None = None) -> str:
        return random_taproot_address(self.network)

    def get_descriptor_info(self, desc: str) -> dict[str, Any]:
        return {
            "descriptor": desc,
            "checksum": "",
            "isrange": False,
            "issolvable": False,
            "hasprivatekeys": True,
        }

    def import_descriptors(self, req: list[dict[str, Any]]) -> list[dict[str, Any]]:
        try:
            descriptors = [params["desc"] for params in req]
        except (KeyError, TypeError):
            raise RpcError(INVALID_PARAMS, "Invalid params: each request needs a desc") from None
        with self._lock:
            self.state.descriptors.extend(descriptors)
        return [{"success": True, "warnings": [], "error": None}]

    def list_descriptors(self) -> dict[str, Any]:
        with self._lock:
            descriptors = list(self.state.descriptors)
        return {
            "wallet_name": "ord",
            "descriptors": [
                {
                    "desc": desc,
                    "timestamp": "now",
                    "active": True,
                    "internal": None,
                    "range": None,
                    "next": None,
                }
                for desc in descriptors
            ],
        }