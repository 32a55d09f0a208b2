# mockbitcoind

A small stand-in for a Bitcoin Core node that runs inside your test process.
It is meant for integration tests of wallet and indexer software. It serves
part of the Bitcoin Core JSON-RPC interface over HTTP on `127.0.0.1`. Behind
it is an in-memory chain that your test controls directly. The test can mine
blocks, broadcast template transactions, invalidate the tip, lock outputs and
look at what the client sent.

It needs nothing outside the standard library.

## Quick start

```python
from mockbitcoind.handle import spawn

with spawn() as handle:          # mainnet, version 240000
    blocks = handle.mine_blocks(1)
    coinbase = blocks[0].txdata[0]
    print(handle.url())          # e.g. http://127.0.0.1:54321
    # point the program under test at handle.url() ...
    print(handle.wallets(), handle.sent())
```

`spawn()` returns a running `Handle`. Call `handle.close()` to stop the server,
or use the handle as a context manager. Closing a second time does nothing.

Use `builder()` to configure the node before it starts:

```python
from mockbitcoind.handle import builder
from mockbitcoind.primitives import Network

handle = (
    builder()
    .network(Network.SIGNET)
    .version(230000)
    .fail_lock_unspent(True)   # make `lockunspent` answer false
    .build()
)
```

`build()` starts the server on a free port. It waits until the server answers
and raises `RuntimeError` if the server never does.

## Driving the chain

`Handle` (in `mockbitcoind.handle`) gives the test access to the node's state:

- `mine_blocks(n)` and `mine_blocks_with_subsidy(n, subsidy)` mine blocks.
  Each new block holds a coinbase plus the whole mempool, and the coinbase is
  paid the subsidy plus the mempool's fees. The default subsidy is 50 BTC.
  Both return the mined `Block` objects.
- `broadcast_tx(template)` builds a transaction from a `TransactionTemplate`
  (in `mockbitcoind.state`), adds it to the mempool and returns its txid.
  - Each template input is `(block height, tx index, output index)`.
  - The input value minus `fee` is split evenly over `outputs` outputs, unless
    `output_values` gives the values. If it does not divide evenly, a
    `ValueError` is raised.
- `invalidate_tip()` drops the newest block and returns its hash.
- The chain can be read with these methods:
  - `tx(block_index, tx_index)`
  - `mempool()`
  - `get_utxo_amount(outpoint)`, in satoshis, or `None`
- Wallet state can be read and changed with these methods:
  - `descriptors()` and `import_descriptor(desc)`
  - `wallets()` and `loaded_wallets()`
  - `sent()`, which lists the `Sent` records made by `sendtoaddress`
  - `lock(outpoint)`
  - `network()`, which returns `"mainnet"`, `"testnet"`, `"signet"` or `"regtest"`

`mockbitcoind.primitives` holds the data types and helpers used throughout:

- `Network`, `OutPoint`, `TxIn`, `TxOut`, `Transaction`, `BlockHeader` and
  `Block`, with consensus serialization, txid/wtxid and vsize
- `genesis_block(network)`
- `segwit_address(hrp, version, program)`, which writes bech32 and bech32m
  addresses
- `random_taproot_address(network)`

## Supported RPC methods

- Chain: `getblockchaininfo`, `getnetworkinfo`, `getblockhash`,
  `getblockheader`, `getblock` (verbosity 0 only), `getblockcount`.
- Wallets: `getbalances`, `getwalletinfo`, `createwallet`, `loadwallet`,
  `listwallets`.
- Transactions: `createrawtransaction`, `signrawtransactionwithwallet`,
  `sendrawtransaction`, `sendtoaddress`, `gettransaction`, `getrawtransaction`,
  `listtransactions`.
- Unspent outputs: `listunspent`, `listlockunspent`, `lockunspent`.
- Addresses and descriptors: `getrawchangeaddress`, `getnewaddress`,
  `getdescriptorinfo`, `importdescriptors`, `listdescriptors`.

How errors are reported:

- Looking up an unknown block, transaction or wallet fails with JSON-RPC
  error code `-8`.
- Passing an optional parameter that the mock does not support fails with
  `-32603`. The reason is given in the error's `data`.

Requests may be single or batched, and params may be positional or named.
You can also handle requests without HTTP through `mockbitcoind.rpc.Server`:

- `Server.dispatch(method, params)` calls one method.
- `Server.handle_request(body)` answers a raw JSON-RPC body.

## What it does not do

This is a test fixture, not a node. It has the following limits:

- **No networking or validation.** It has no peer-to-peer networking, no
  script or signature checking and no proof of work.
- **Fake signing.** `signrawtransactionwithwallet` puts a 64-byte zero
  witness on every input.
- **No payments.** `sendtoaddress` only records the request and returns an
  all-zero txid.
- **Fresh addresses.** New addresses are random key-path taproot addresses.
  They are not derived from the imported descriptors.
- **Fixed values.** Many result fields are fixed placeholders.
  - `getblockchaininfo` always reports the genesis hash and zero blocks.
  - The verbose `getrawtransaction` result is mostly empty.
- **No persistence.** Nothing is saved; all state is lost when the handle
  is closed.
- **No command.** There is no command-line program. The node is started from
  Python only.