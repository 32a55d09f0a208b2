"""Bitcoin data structures, consensus serialization and address encoding."""

from __future__ import annotations

import enum
import functools
import hashlib
import secrets
import struct
from dataclasses import dataclass

COIN_VALUE = 100_000_000
ZERO_HASH = "0" * 64
SEQUENCE_MAX = 0xFFFFFFFF


class Network(enum.Enum):
    """The chains a node can run on."""

    BITCOIN = "bitcoin"
    TESTNET = "testnet"
    SIGNET = "signet"
    REGTEST = "regtest"

    def __str__(self) -> str:
        return self.value

    def chain(self) -> str:
        """Chain name as reported by ``getblockchaininfo``."""
        return {"bitcoin": "main", "testnet": "test"}.get(self.value, self.value)

    def hrp(self) -> str:
        """Human-readable part of segwit addresses on this network."""
        return {"bitcoin": "bc", "regtest": "bcrt"}.get(self.value, "tb")


def _sha256d(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def _hash_to_hex(digest: bytes) -> str:
    return digest[::-1].hex()


def _hex_to_hash(value: str) -> bytes:
    raw = bytes.fromhex(value)
    if len(raw) != 32:
        raise ValueError(f"hash must be 32 bytes, got {len(raw)}")
    return raw[::-1]


def _varint(n: int) -> bytes:
    if n < 0xFD:
        return bytes([n])
    if n <= 0xFFFF:
        return b"\xfd" + struct.pack("<H", n)
    if n <= 0xFFFFFFFF:
        return b"\xfe" + struct.pack("<I", n)
    return b"\xff" + struct.pack("<Q", n)


def _var_bytes(data: bytes) -> bytes:
    return _varint(len(data)) + data


class _Reader:
    def __init__(self, data: bytes) -> None:
        self.data = data
        self.pos = 0

    def take(self, n: int) -> bytes:
        if self.pos + n > len(self.data):
            raise ValueError("unexpected end of data")
        chunk = self.data[self.pos:self.pos + n]
        self.pos += n
        return chunk

    def unpack(self, fmt: str) -> int:
        return struct.unpack(fmt, self.take(struct.calcsize(fmt)))[0]

    def varint(self) -> int:
        first = self.take(1)[0]
        if first < 0xFD:
            return first
        return self.unpack({0xFD: "<H", 0xFE: "<I", 0xFF: "<Q"}[first])

    def var_bytes(self) -> bytes:
        return self.take(self.varint())


@functools.total_ordering
@dataclass(frozen=True)
class OutPoint:
    """A reference to one output of a transaction; ordered as txids are stored."""

    txid: str
    vout: int

    @classmethod
    def null(cls) -> OutPoint:
        return cls(ZERO_HASH, 0xFFFFFFFF)

    def is_null(self) -> bool:
        return self == OutPoint.null()

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, OutPoint):
            return NotImplemented
        return (_hex_to_hash(self.txid), self.vout) < (_hex_to_hash(other.txid), other.vout)

    def __str__(self) -> str:
        return f"{self.txid}:{self.vout}"


@dataclass(frozen=True)
class TxIn:
    previous_output: OutPoint
    script_sig: bytes = b""
    sequence: int = SEQUENCE_MAX
    witness: tuple[bytes, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "witness", tuple(self.witness))


@dataclass(frozen=True)
class TxOut:
    value: int
    script_pubkey: bytes = b""


@dataclass(frozen=True)
class Transaction:
    version: int
    lock_time: int
    inputs: tuple[TxIn, ...]
    outputs: tuple[TxOut, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "inputs", tuple(self.inputs))
        object.__setattr__(self, "outputs", tuple(self.outputs))

    def _encode(self, with_witness: bool) -> bytes:
        parts = [struct.pack("<i", self.version)]
        if with_witness:
            parts.append(b"\x00\x01")
        parts.append(_varint(len(self.inputs)))
        for txin in self.inputs:
            parts.append(_hex_to_hash(txin.previous_output.txid))
            parts.append(struct.pack("<I", txin.previous_output.vout))
            parts.append(_var_bytes(txin.script_sig))
            parts.append(struct.pack("<I", txin.sequence))
        parts.append(_varint(len(self.outputs)))
        for txout in self.outputs:
            parts.append(struct.pack("<Q", txout.value) + _var_bytes(txout.script_pubkey))
        if with_witness:
            for txin in self.inputs:
                parts.append(_varint(len(txin.witness)))
                parts.extend(_var_bytes(item) for item in txin.witness)
        parts.append(struct.pack("<I", self.lock_time))
        return b"".join(parts)

    def serialize(self) -> bytes:
        """Consensus encoding, in segwit form when any input has a witness."""
        segwit = not self.inputs or any(txin.witness for txin in self.inputs)
        return self._encode(segwit)

    @classmethod
    def deserialize(cls, data: bytes) -> Transaction:
        """Decode a transaction; the data must hold exactly one."""
        reader = _Reader(data)
        version = reader.unpack("<i")
        count = reader.varint()
        segwit = count == 0
        if segwit:
            flag = reader.take(1)[0]
            if flag != 1:
                raise ValueError(f"unsupported segwit flag {flag}")
            count = reader.varint()
        raw_inputs = [
            (OutPoint(_hash_to_hex(reader.take(32)), reader.unpack("<I")),
             reader.var_bytes(), reader.unpack("<I"))
            for _ in range(count)
        ]
        outputs = [TxOut(reader.unpack("<Q"), reader.var_bytes()) for _ in range(reader.varint())]
        witnesses = [
            tuple(reader.var_bytes() for _ in range(reader.varint())) if segwit else ()
            for _ in raw_inputs
        ]
        lock_time = reader.unpack("<I")
        if reader.pos != len(data):
            raise ValueError("data not consumed entirely when decoding transaction")
        inputs = [TxIn(*raw, witness) for raw, witness in zip(raw_inputs, witnesses)]
        return cls(version, lock_time, inputs, outputs)

    def txid(self) -> str:
        return _hash_to_hex(_sha256d(self._encode(False)))

    def wtxid(self) -> str:
        return _hash_to_hex(_sha256d(self.serialize()))

    def vsize(self) -> int:
        weight = 3 * len(self._encode(False)) + len(self.serialize())
        return (weight + 3) // 4


@dataclass(frozen=True)
class BlockHeader:
    version: int
    prev_blockhash: str
    merkle_root: str
    time: int
    bits: int
    nonce: int

    def serialize(self) -> bytes:
        return (
            struct.pack("<i", self.version)
            + _hex_to_hash(self.prev_blockhash)
            + _hex_to_hash(self.merkle_root)
            + struct.pack("<III", self.time, self.bits, self.nonce)
        )


@dataclass(frozen=True)
class Block:
    header: BlockHeader
    txdata: tuple[Transaction, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "txdata", tuple(self.txdata))

    def serialize(self) -> bytes:
        return (
            self.header.serialize()
            + _varint(len(self.txdata))
            + b"".join(tx.serialize() for tx in self.txdata)
        )

    def block_hash(self) -> str:
        return _hash_to_hex(_sha256d(self.header.serialize()))


_GENESIS_MESSAGE = b"The Times 03/Jan/2009 Chancellor on brink of second bailout for banks"
_GENESIS_PUBKEY = bytes.fromhex(
    "04678afdb0fe5548271967f1a67130b7105cd6a828e03909a67962e0ea1f61de"
    "b649f6bc3f4cef38c4f35504e51ec112de5c384df7ba0b8d578a4c702b6bf11d5f"
)
_GENESIS_PARAMS = {
    Network.BITCOIN: (1231006505, 0x1D00FFFF, 2083236893),
    Network.TESTNET: (1296688602, 0x1D00FFFF, 414098458),
    Network.SIGNET: (1598918400, 0x1E0377AE, 52613770),
    Network.REGTEST: (1296688602, 0x207FFFFF, 2),
}


def genesis_block(network: Network) -> Block:
    """The hard-coded first block of the given network."""
    script_sig = b"\x04\xff\xff\x00\x1d\x01\x04" + _var_bytes(_GENESIS_MESSAGE)
    script_pubkey = _var_bytes(_GENESIS_PUBKEY) + b"\xac"
    coinbase = Transaction(
        1, 0, [TxIn(OutPoint.null(), script_sig)], [TxOut(50 * COIN_VALUE, script_pubkey)]
    )
    time, bits, nonce = _GENESIS_PARAMS[network]
    return Block(BlockHeader(1, ZERO_HASH, coinbase.txid(), time, bits, nonce), [coinbase])


def script_push_int(n: int) -> bytes:
    """A script that pushes the non-negative integer ``n`` in minimal form."""
    if n == 0:
        return b"\x00"
    if n <= 16:
        return bytes([0x50 + n])
    data = n.to_bytes((n.bit_length() + 8) // 8, "little")
    return bytes([len(data)]) + data


_BECH32_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"


def _bech32_polymod(values: list[int]) -> int:
    generators = (0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3)
    checksum = 1
    for value in values:
        top = checksum >> 25
        checksum = (checksum & 0x1FFFFFF) << 5 ^ value
        for bit, generator in enumerate(generators):
            if (top >> bit) & 1:
                checksum ^= generator
    return checksum


def segwit_address(hrp: str, version: int, program: bytes) -> str:
    """Encode a witness program as a bech32 (v0) or bech32m (v1+) address."""
    if not 0 <= version <= 16 or not 2 <= len(program) <= 40:
        raise ValueError("invalid witness version or program length")
    hrp = hrp.lower()
    bits = int.from_bytes(program, "big") << (-8 * len(program)) % 5
    groups = (8 * len(program) + 4) // 5
    data = [version] + [(bits >> 5 * i) & 31 for i in reversed(range(groups))]
    expanded = [ord(c) >> 5 for c in hrp] + [0] + [ord(c) & 31 for c in hrp]
    const = 1 if version == 0 else 0x2BC830A3
    polymod = _bech32_polymod(expanded + data + [0] * 6) ^ const
    checksum = [(polymod >> 5 * (5 - i)) & 31 for i in range(6)]
    return hrp + "1" + "".join(_BECH32_CHARSET[d] for d in data + checksum)


_P = 2**256 - 2**32 - 977
_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
_G = (
    0x79BE667EF9DCBBAC55A06295CE870B07029BFCDB2DCE28D959F2815B16F81798,
    0x483ADA7726A3C4655DA4FBFC0E1108A8FD17B448A68554199C47D08FFB10D4B8,
)


def _point_add(a, b):
    if a is None or b is None:
        return a or b
    (x1, y1), (x2, y2) = a, b
    if x1 == x2 and (y1 + y2) % _P == 0:
        return None
    if a == b:
        slope = 3 * x1 * x1 * pow(2 * y1, -1, _P) % _P
    else:
        slope = (y2 - y1) * pow(x2 - x1, -1, _P) % _P
    x3 = (slope * slope - x1 - x2) % _P
    return x3, (slope * (x1 - x3) - y1) % _P


def _point_mul(k: int, point=_G):
    result = None
    while k:
        if k & 1:
            result = _point_add(result, point)
        point = _point_add(point, point)
        k >>= 1
    return result


def random_taproot_address(network: Network) -> str:
    """A key-path-only pay-to-taproot address for a freshly generated key."""
    tag = hashlib.sha256(b"TapTweak").digest()
    while True:
        x, y = _point_mul(secrets.randbelow(_N - 1) + 1)
        internal = (x, y if y % 2 == 0 else _P - y)
        tweak = int.from_bytes(hashlib.sha256(tag + tag + x.to_bytes(32, "big")).digest(), "big")
        output = _point_add(internal, _point_mul(tweak)) if tweak < _N else None
        if output is not None:
            return segwit_address(network.hrp(), 1, output[0].to_bytes(32, "big"))