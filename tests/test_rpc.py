import json

import pytest

from mockbitcoind.primitives import (
    COIN_VALUE,
    ZERO_HASH,
    Network,
    OutPoint,
    Transaction,
    TxIn,
    TxOut,
)
from mockbitcoind.rpc import RpcError, Server
from mockbitcoind.state import State

GENESIS_HASH = "000000000019d6689c085ae165831e934ff763ae46a2a6c172b3f1b60a8ce26f"
SUBSIDY = 50 * COIN_VALUE


@pytest.fixture
def state():
    return State(Network.BITCOIN, 240000)


@pytest.fixture
def server(state):
    return Server(state)


def coinbase_outpoint(block):
    return OutPoint(block.txdata[0].txid(), 0)


def test_block_hash_of_genesis(server):
    assert server.get_block_hash(0) == GENESIS_HASH


def test_block_hash_out_of_range(server):
    with pytest.raises(RpcError) as info:
        server.get_block_hash(1)
    assert info.value.code == -8


def test_block_count_follows_chain(server, state):
    assert server.get_block_count() == 0
    state.push_block(SUBSIDY)
    state.push_block(SUBSIDY)
    assert server.get_block_count() == 2


def test_blockchain_info_chain_names():
    assert Server(State(Network.BITCOIN, 1)).get_blockchain_info()["chain"] == "main"
    regtest = Server(State(Network.REGTEST, 1)).get_blockchain_info()
    assert regtest["chain"] == "regtest"
    assert regtest["bestblockhash"] == regtest["bestblockhash"].lower()


def test_network_info_version(server):
    assert server.get_network_info()["version"] == 240000


def test_block_header_raw_and_verbose(server, state):
    block = state.push_block(SUBSIDY)
    block_hash = block.block_hash()
    assert server.get_block_header(block_hash, False) == block.header.serialize().hex()
    assert server.get_block_header(block_hash, True)["height"] == 1


def test_block_header_unknown(server):
    with pytest.raises(RpcError) as info:
        server.get_block_header(ZERO_HASH, True)
    assert info.value.code == -8


def test_get_block(server, state):
    block = state.push_block(SUBSIDY)
    assert server.get_block(block.block_hash(), 0) == block.serialize().hex()
    with pytest.raises(ValueError, match="Verbosity level 1 is unsupported"):
        server.get_block(block.block_hash(), 1)


def test_wallets(server, state):
    with pytest.raises(RpcError):
        server.get_wallet_info()
    assert server.create_wallet("ord") == {"name": "ord", "warning": None}
    assert state.wallets == {"ord"}
    with pytest.raises(RpcError):
        server.load_wallet("missing")
    server.load_wallet("ord")
    assert server.get_wallet_info()["walletname"] == "ord"
    assert server.list_wallets() == ["ord"]


def test_create_raw_transaction(server):
    txid = "ab" * 32
    raw = server.create_raw_transaction([{"txid": txid, "vout": 3}], {"addr": 1.0})
    tx = Transaction.deserialize(bytes.fromhex(raw))
    assert tx.inputs[0].previous_output == OutPoint(txid, 3)
    assert tx.outputs[0].value == COIN_VALUE


def test_create_raw_transaction_rejects_locktime(server):
    with pytest.raises(ValueError, match="locktime"):
        server.create_raw_transaction([], {}, 5)


def test_sign_adds_witness(server):
    tx = Transaction(0, 0, [TxIn(OutPoint("cd" * 32, 0))], [TxOut(10, b"")])
    signed = server.sign_raw_transaction_with_wallet(tx.serialize().hex())
    decoded = Transaction.deserialize(bytes.fromhex(signed["hex"]))
    assert signed["complete"] is True
    assert decoded.inputs[0].witness == (bytes(64),)
    assert decoded.txid() == tx.txid()


def test_send_raw_transaction(server, state):
    tx = Transaction(0, 0, [TxIn(OutPoint("cd" * 32, 0))], [TxOut(10, b"")])
    assert server.send_raw_transaction(tx.serialize().hex()) == tx.txid()
    assert state.mempool == [tx]


def test_unspent_and_locking(server, state):
    block = state.push_block(SUBSIDY)
    outpoint = coinbase_outpoint(block)
    unspent = server.list_unspent()
    assert [(e["txid"], e["vout"], e["amount"]) for e in unspent] == [
        (outpoint.txid, 0, 50.0)
    ]
    assert server.get_balances()["mine"]["trusted"] == 50.0
    assert server.lock_unspent(False, [{"txid": outpoint.txid, "vout": 0}]) is True
    assert server.list_unspent() == []
    assert server.list_lock_unspent() == [{"txid": outpoint.txid, "vout": 0}]


def test_lock_unspent_errors(server, state):
    with pytest.raises(ValueError):
        server.lock_unspent(True, [])
    with pytest.raises(ValueError):
        server.lock_unspent(False, [{"txid": "ef" * 32, "vout": 0}])


def test_lock_unspent_can_fail():
    state = State(Network.BITCOIN, 240000, fail_lock_unspent=True)
    block = state.push_block(SUBSIDY)
    outpoint = coinbase_outpoint(block)
    assert Server(state).lock_unspent(False, [{"txid": outpoint.txid, "vout": 0}]) is False
    assert state.locked == set()


def test_send_to_address_records_locked(server, state):
    outpoint = coinbase_outpoint(state.push_block(SUBSIDY))
    state.locked.add(outpoint)
    address = "bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4"
    assert server.send_to_address(address, 1.0) == ZERO_HASH
    assert state.sent[0].address == address
    assert state.sent[0].amount == 1.0
    assert state.sent[0].locked == [outpoint]


def test_get_transaction(server, state):
    coinbase = state.push_block(SUBSIDY).txdata[0]
    result = server.get_transaction(coinbase.txid())
    assert Transaction.deserialize(bytes.fromhex(result["hex"])) == coinbase
    assert result["txid"] == coinbase.txid()
    with pytest.raises(RpcError):
        server.get_transaction("ef" * 32)


def test_get_raw_transaction(server, state):
    coinbase = state.push_block(SUBSIDY).txdata[0]
    assert server.get_raw_transaction(coinbase.txid()) == coinbase.serialize().hex()
    assert server.get_raw_transaction(coinbase.txid(), True)["confirmations"] == 1
    with pytest.raises(ValueError):
        server.get_raw_transaction(coinbase.txid(), False, GENESIS_HASH)


def test_new_addresses_are_taproot(server):
    address = server.get_new_address()
    assert address.startswith("bc1p")
    assert len(address) == 62
    assert server.get_raw_change_address() != address


def test_descriptors(server, state):
    info = server.get_descriptor_info("tr(key)")
    assert info["descriptor"] == "tr(key)"
    result = server.import_descriptors([{"desc": "a"}, {"desc": "b"}])
    assert result == [{"success": True, "warnings": [], "error": None}]
    listed = server.list_descriptors()
    assert listed["wallet_name"] == "ord"
    assert [d["desc"] for d in listed["descriptors"]] == ["a", "b"]


def test_list_transactions_confirmations(server, state):
    first = state.push_block(SUBSIDY).txdata[0]
    second = state.push_block(SUBSIDY).txdata[0]
    confirmations = {e["txid"]: e["confirmations"] for e in server.list_transactions()}
    assert confirmations == {first.txid(): 2, second.txid(): 1}
    assert len(server.list_transactions(None, 1)) == 1


def test_list_transactions_includes_mempool(server, state):
    state.push_block(SUBSIDY)
    tx = Transaction(0, 0, [TxIn(OutPoint("cd" * 32, 0))], [TxOut(10, b"")])
    state.mempool.append(tx)
    entries = server.list_transactions()
    assert entries[-1]["txid"] == tx.txid()
    assert entries[-1]["confirmations"] == 0


def test_dispatch_errors(server):
    with pytest.raises(RpcError) as info:
        server.dispatch("nosuchmethod", [])
    assert info.value.code == -32601
    with pytest.raises(RpcError) as info:
        server.dispatch("getblockhash", [])
    assert info.value.code == -32602


def test_dispatch_named_params(server):
    assert server.dispatch("getblockhash", {"height": 0}) == GENESIS_HASH


def test_handle_request(server):
    body = json.dumps({"jsonrpc": "2.0", "id": 7, "method": "getblockcount", "params": []})
    response = json.loads(server.handle_request(body.encode()))
    assert response["result"] == 0
    assert response["id"] == 7


def test_handle_request_parse_error(server):
    response = json.loads(server.handle_request(b"{not json"))
    assert response["error"]["code"] == -32700


def test_handle_request_batch_and_errors(server):
    body = json.dumps(
        [
            {"id": 1, "method": "getblockhash", "params": [0]},
            {"id": 2, "method": "getblockhash", "params": [9]},
            {"id": 3, "method": "getblock", "params": [GENESIS_HASH, 2]},
        ]
    )
    responses = json.loads(server.handle_request(body))
    assert responses[0]["result"] == GENESIS_HASH
    assert responses[1]["error"]["code"] == -8
    assert responses[2]["error"]["code"] == -32603