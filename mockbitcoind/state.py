"""The in-memory chain, mempool and wallet state behind the mock node."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from .primitives import (
    ZERO_HASH,
    Block,
    BlockHeader,
    Network,
    OutPoint,
    Transaction,
    TxIn,
    TxOut,
    genesis_block,
    script_push_int,
)


@dataclass
class TransactionTemplate:
    """A transaction to build; each input is ``(block height, tx index, output index)``."""

    fee: int = 0
    inputs: Sequence[tuple[int, int, int]] = ()
    output_values: Sequence[int] = ()
    outputs: int = 1
    witness: Sequence[bytes] = ()


@dataclass
class Sent:
    """A payment requested through ``sendtoaddress``."""

    amount: float
    address: str
    locked: list[OutPoint] = field(default_factory=list)


@dataclass
class State:
    network: Network
    version: int
    fail_lock_unspent: bool = False
    blocks: dict[str, Block] = field(default_factory=dict, init=False)
    descriptors: list[str] = field(default_factory=list, init=False)
    hashes: list[str] = field(default_factory=list, init=False)
    locked: set[OutPoint] = field(default_factory=set, init=False)
    mempool: list[Transaction] = field(default_factory=list, init=False)
    nonce: int = field(default=0, init=False)
    sent: list[Sent] = field(default_factory=list, init=False)
    transactions: dict[str, Transaction] = field(default_factory=dict, init=False)
    utxos: dict[OutPoint, int] = field(default_factory=dict, init=False)
    wallets: set[str] = field(default_factory=set, init=False)
    loaded_wallets: set[str] = field(default_factory=set, init=False)

    def __post_init__(self) -> None:
        genesis = genesis_block(self.network)
        self.hashes.append(genesis.block_hash())
        self.blocks[genesis.block_hash()] = genesis

    def push_block(self, subsidy: int) -> Block:
        """Mine the mempool into a new block paying ``subsidy`` plus fees."""
        fees = 0
        for tx in self.mempool:
            spent = sum(
                self.transactions[txin.previous_output.txid].outputs[txin.previous_output.vout].value
                for txin in tx.inputs
            )
            fees += spent - sum(txout.value for txout in tx.outputs)
            self.transactions[tx.txid()] = tx

        coinbase = Transaction(
            0, 0, [TxIn(OutPoint.null(), script_push_int(len(self.blocks)))],
            [TxOut(subsidy + fees)],
        )
        self.transactions[coinbase.txid()] = coinbase

        header = BlockHeader(0, self.hashes[-1], ZERO_HASH, len(self.blocks), 0, self.nonce)
        block = Block(header, [coinbase, *self.mempool])
        self.mempool.clear()

        for tx in block.txdata:
            for txin in tx.inputs:
                self.utxos.pop(txin.previous_output, None)
            for vout, txout in enumerate(tx.outputs):
                self.utxos[OutPoint(tx.txid(), vout)] = txout.value

        self.blocks[block.block_hash()] = block
        self.hashes.append(block.block_hash())
        self.nonce += 1
        return block

    def pop_block(self) -> str:
        """Drop the chain tip and return its hash."""
        block_hash = self.hashes.pop()
        del self.blocks[block_hash]
        return block_hash

    def broadcast_tx(self, template: TransactionTemplate) -> str:
        """Build a transaction from ``template``, add it to the mempool, return its txid."""
        total_value = 0
        inputs = []
        for i, (height, tx_index, vout) in enumerate(template.inputs):
            tx = self.blocks[self.hashes[height]].txdata[tx_index]
            total_value += tx.outputs[vout].value
            witness = tuple(template.witness) if i == 0 else ()
            inputs.append(TxIn(OutPoint(tx.txid(), vout), witness=witness))

        value_per_output = (total_value - template.fee) // template.outputs
        if template.fee > total_value or (
            value_per_output * template.outputs + template.fee != total_value
        ):
            raise ValueError(
                f"input value {total_value} minus fee {template.fee} "
                f"does not split evenly into {template.outputs} outputs"
            )

        values = list(template.output_values)
        values += [value_per_output] * (template.outputs - len(values))
        tx = Transaction(0, 0, inputs, [TxOut(value) for value in values[:template.outputs]])
        self.mempool.append(tx)
        return tx.txid()

    def get_confirmations(self, tx: Transaction) -> int:
        """Number of blocks from the tip down to the one holding ``tx``, or 0."""
        for depth, block_hash in enumerate(reversed(self.hashes), start=1):
            if tx in self.blocks[block_hash].txdata:
                return depth
        return 0