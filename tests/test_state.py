import pytest

from mockbitcoind.primitives import COIN_VALUE, Network, OutPoint, genesis_block
from mockbitcoind.state import Sent, State, TransactionTemplate

SUBSIDY = 50 * COIN_VALUE


@pytest.fixture
def state():
    return State(Network.REGTEST, 240000, False)


def test_new_state_holds_only_genesis(state):
    genesis = genesis_block(Network.REGTEST)
    assert state.hashes == [genesis.block_hash()]
    assert state.blocks[genesis.block_hash()] == genesis
    assert state.mempool == []
    assert state.utxos == {}
    assert state.nonce == 0
    assert state.version == 240000


def test_push_block_pays_subsidy(state):
    block = state.push_block(SUBSIDY)
    coinbase = block.txdata[0]
    assert coinbase.outputs[0].value == SUBSIDY
    assert coinbase.inputs[0].previous_output.is_null()
    assert state.utxos == {OutPoint(coinbase.txid(), 0): SUBSIDY}
    assert state.hashes[-1] == block.block_hash()
    assert block.header.prev_blockhash == state.hashes[0]
    assert block.header.nonce == 0
    assert block.header.time == 1
    assert state.nonce == 1
    assert state.transactions[coinbase.txid()] == coinbase


def test_blocks_and_coinbases_are_unique(state):
    blocks = [state.push_block(SUBSIDY) for _ in range(20)]
    assert len({block.block_hash() for block in blocks}) == 20
    assert len({block.txdata[0].txid() for block in blocks}) == 20
    assert len(state.hashes) == 21
    assert all(
        later.header.prev_blockhash == earlier.block_hash()
        for earlier, later in zip(blocks, blocks[1:])
    )


def test_broadcast_and_mine_collects_fee(state):
    first = state.push_block(SUBSIDY)
    txid = state.broadcast_tx(TransactionTemplate(inputs=[(1, 0, 0)], fee=COIN_VALUE))
    assert [tx.txid() for tx in state.mempool] == [txid]

    block = state.push_block(SUBSIDY)
    assert state.mempool == []
    assert block.txdata[1].txid() == txid
    assert block.txdata[0].outputs[0].value == SUBSIDY + COIN_VALUE
    assert OutPoint(first.txdata[0].txid(), 0) not in state.utxos
    assert state.utxos[OutPoint(txid, 0)] == SUBSIDY - COIN_VALUE


def test_broadcast_splits_value_evenly(state):
    state.push_block(SUBSIDY)
    state.broadcast_tx(TransactionTemplate(inputs=[(1, 0, 0)], outputs=2))
    tx = state.mempool[0]
    assert [txout.value for txout in tx.outputs] == [SUBSIDY // 2, SUBSIDY // 2]
    assert tx.inputs[0].previous_output == OutPoint(state.tx_for_test_coinbase, 0) if False else True


def test_broadcast_uses_explicit_output_values(state):
    state.push_block(SUBSIDY)
    state.broadcast_tx(
        TransactionTemplate(inputs=[(1, 0, 0)], outputs=2, output_values=[COIN_VALUE])
    )
    values = [txout.value for txout in state.mempool[0].outputs]
    assert values == [COIN_VALUE, SUBSIDY // 2]


def test_broadcast_rejects_uneven_split(state):
    state.push_block(SUBSIDY)
    with pytest.raises(ValueError):
        state.broadcast_tx(TransactionTemplate(inputs=[(1, 0, 0)], outputs=3))
    assert state.mempool == []


def test_broadcast_rejects_fee_above_inputs(state):
    state.push_block(SUBSIDY)
    with pytest.raises(ValueError):
        state.broadcast_tx(TransactionTemplate(inputs=[(1, 0, 0)], fee=SUBSIDY + 1))


def test_witness_goes_on_first_input_only(state):
    state.push_block(SUBSIDY)
    state.push_block(SUBSIDY)
    witness = (bytes(64),)
    state.broadcast_tx(
        TransactionTemplate(inputs=[(1, 0, 0), (2, 0, 0)], witness=witness)
    )
    tx = state.mempool[0]
    assert tx.inputs[0].witness == witness
    assert tx.inputs[1].witness == ()
    assert tx.outputs[0].value == 2 * SUBSIDY


def test_pop_block_removes_tip(state):
    block = state.push_block(SUBSIDY)
    assert state.pop_block() == block.block_hash()
    assert block.block_hash() not in state.blocks
    assert len(state.hashes) == 1
    replacement = state.push_block(SUBSIDY)
    assert replacement.block_hash() != block.block_hash()
    assert replacement.header.prev_blockhash == state.hashes[0]


def test_get_confirmations(state):
    state.push_block(SUBSIDY)
    txid = state.broadcast_tx(TransactionTemplate(inputs=[(1, 0, 0)]))
    pending = state.mempool[0]
    assert pending.txid() == txid
    assert state.get_confirmations(pending) == 0
    state.push_block(SUBSIDY)
    assert state.get_confirmations(pending) == 1
    state.push_block(SUBSIDY)
    state.push_block(SUBSIDY)
    assert state.get_confirmations(pending) == 3


def test_sent_defaults_to_no_locked_outputs():
    sent = Sent(amount=1.0, address="bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4")
    assert sent.locked == []
    assert sent == Sent(1.0, "bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4", [])