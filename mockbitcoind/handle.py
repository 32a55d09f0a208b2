"""Starting, driving and stopping a mock bitcoind served over HTTP."""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
import urllib.error
import urllib.request
import weakref
from http.server import BaseHTTPRequestHandler, HTTPServer

from .primitives import COIN_VALUE, Block, Network, OutPoint, Transaction
from .rpc import Server
from .state import Sent, State, TransactionTemplate

_log = logging.getLogger(__name__)


class _RpcRequestHandler(BaseHTTPRequestHandler):
    def do_POST(self) -> None:
        body = self.rfile.read(int(self.headers.get("Content-Length") or 0))
        response = self.server.rpc.handle_request(body)
        self.send_response(200)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(response)))
        self.end_headers()
        self.wfile.write(response)

    def log_message(self, format: str, *args: object) -> None:
        _log.debug(format, *args)


def _shutdown(httpd: HTTPServer, thread: threading.Thread) -> None:
    httpd.shutdown()
    httpd.server_close()
    thread.join()


def _wait_until_up(url: str) -> None:
    for attempt in range(401):
        try:
            with urllib.request.urlopen(url + "/", timeout=1):
                return
        except urllib.error.HTTPError:
            return
        except OSError as err:
            if attempt == 400:
                raise RuntimeError(f"Server failed to start: {err}") from err
        time.sleep(0.025)


@dataclasses.dataclass(frozen=True)
class Builder:
    """Configures a mock node before it is started with :meth:`build`."""

    _fail_lock_unspent: bool = False
    _network: Network = Network.BITCOIN
    _version: int = 240000

    def fail_lock_unspent(self, fail_lock_unspent: bool) -> Builder:
        return dataclasses.replace(self, _fail_lock_unspent=fail_lock_unspent)

    def network(self, network: Network) -> Builder:
        return dataclasses.replace(self, _network=network)

    def version(self, version: int) -> Builder:
        return dataclasses.replace(self, _version=version)

    def build(self) -> Handle:
        """Start the node on a free local port and wait until it answers."""
        state = State(self._network, self._version, self._fail_lock_unspent)
        lock = threading.RLock()
        httpd = HTTPServer(("127.0.0.1", 0), _RpcRequestHandler)
        httpd.rpc = Server(state, lock)
        thread = threading.Thread(target=httpd.serve_forever, daemon=True)
        thread.start()
        handle = Handle(state, lock, httpd, thread)
        try:
            _wait_until_up(handle.url())
        except RuntimeError:
            handle.close()
            raise
        return handle


class Handle:
    """A running mock node; closing it stops the server."""

    def __init__(self, state: State, lock, httpd: HTTPServer, thread: threading.Thread) -> None:
        self._state = state
        self._lock = lock
        self._port = httpd.server_address[1]
        self._finalizer = weakref.finalize(self, _shutdown, httpd, thread)

    def __enter__(self) -> Handle:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Stop serving; calling it again does nothing."""
        self._finalizer()

    def url(self) -> str:
        return f"http://127.0.0.1:{self._port}"

    def wallets(self) -> set[str]:
        with self._lock:
            return set(self._state.wallets)

    def mine_blocks(self, n: int) -> list[Block]:
        return self.mine_blocks_with_subsidy(n, 50 * COIN_VALUE)

    def mine_blocks_with_subsidy(self, n: int, subsidy: int) -> list[Block]:
        with self._lock:
            return [self._state.push_block(subsidy) for _ in range(n)]

    def broadcast_tx(self, template: TransactionTemplate) -> str:
        with self._lock:
            return self._state.broadcast_tx(template)

    def invalidate_tip(self) -> str:
        with self._lock:
            return self._state.pop_block()

    def get_utxo_amount(self, outpoint: OutPoint) -> int | None:
        with self._lock:
            return self._state.utxos.get(outpoint)

    def tx(self, bi: int, ti: int) -> Transaction:
        with self._lock:
            return self._state.blocks[self._state.hashes[bi]].txdata[ti]

    def mempool(self) -> list[Transaction]:
        with self._lock:
            return list(self._state.mempool)

    def descriptors(self) -> list[str]:
        with self._lock:
            return list(self._state.descriptors)

    def import_descriptor(self, desc: str) -> None:
        with self._lock:
            self._state.descriptors.append(desc)

    def sent(self) -> list[Sent]:
        with self._lock:
            return [dataclasses.replace(s, locked=list(s.locked)) for s in self._state.sent]

    def lock(self, output: OutPoint) -> None:
        with self._lock:
            self._state.locked.add(output)

    def network(self) -> str:
        network = self._state.network
        return "mainnet" if network is Network.BITCOIN else str(network)

    def loaded_wallets(self) -> set[str]:
        with self._lock:
            return set(self._state.loaded_wallets)


def builder() -> Builder:
    return Builder()


def spawn() -> Handle:
    return builder().build()