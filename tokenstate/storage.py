"""Key layout and record encoding for token state.

State keys are prefixed by a single byte that names the record kind:

* ``0x0`` balance:  ``[owner|asset] => balance``
* ``0x1`` asset:    ``[asset] => metadataLen|metadata|supply|owner|warp``
* ``0x2`` order:    ``[txID] => in|inTick|out|outTick|remaining|owner``
* ``0x3`` loan:     ``[asset|destination] => amount``
* ``0x4`` height
* ``0x5`` incoming warp messages
* ``0x6`` outgoing warp messages

Transaction metadata lives in a separate store under prefix ``0x0``:
``[txID] => timestamp|success|units``.

A database is any object with ``get_value(key)`` (raising ``KeyError`` for a
missing key), ``insert(key, value)`` and ``remove(key)``.  A read-state
callable takes a list of keys and returns a list of values, with ``None``
for each key that is absent.
"""

from __future__ import annotations

import struct
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Optional, Protocol

ID_LEN = 32
PUBLIC_KEY_LEN = 32
UINT64_LEN = 8
UINT16_LEN = 2
MAX_UINT64 = (1 << 64) - 1
MAX_UINT16 = (1 << 16) - 1

TX_PREFIX = 0x0

BALANCE_PREFIX = 0x0
ASSET_PREFIX = 0x1
ORDER_PREFIX = 0x2
LOAN_PREFIX = 0x3
HEIGHT_PREFIX = 0x4
INCOMING_WARP_PREFIX = 0x5
OUTGOING_WARP_PREFIX = 0x6

FAILURE_BYTE = 0x0
SUCCESS_BYTE = 0x1

_HEIGHT_KEY = bytes([HEIGHT_PREFIX])

ReadState = Callable[[Sequence[bytes]], Sequence[Optional[bytes]]]


class InvalidBalanceError(ValueError):
    """Raised when a balance or loan would overflow or go below zero."""

    def __init__(self, detail: str) -> None:
        super().__init__(f"invalid balance: {detail}")
        self.detail = detail


class _Database(Protocol):
    def get_value(self, key: bytes) -> bytes: ...

    def insert(self, key: bytes, value: bytes) -> None: ...

    def remove(self, key: bytes) -> None: ...


class MemoryDatabase:
    """A dictionary-backed key/value store."""

    def __init__(self) -> None:
        self._data: dict[bytes, bytes] = {}

    def get_value(self, key: bytes) -> bytes:
        """Return the value stored under ``key``; raise ``KeyError`` if absent."""
        return self._data[bytes(key)]

    def insert(self, key: bytes, value: bytes) -> None:
        self._data[bytes(key)] = bytes(value)

    def remove(self, key: bytes) -> None:
        """Delete ``key`` if present."""
        self._data.pop(bytes(key), None)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, (bytes, bytearray)) and bytes(key) in self._data

    def __len__(self) -> int:
        return len(self._data)


@dataclass(frozen=True)
class TransactionRecord:
    timestamp: int
    success: bool
    units: int


@dataclass(frozen=True)
class AssetRecord:
    metadata: bytes
    supply: int
    owner: bytes
    warp: bool


@dataclass(frozen=True)
class OrderRecord:
    in_asset: bytes
    in_tick: int
    out_asset: bytes
    out_tick: int
    remaining: int
    owner: bytes


def _check_len(name: str, value: bytes, length: int) -> bytes:
    value = bytes(value)
    if len(value) != length:
        raise ValueError(f"{name} must be {length} bytes, got {len(value)}")
    return value


def _id(name: str, value: bytes) -> bytes:
    return _check_len(name, value, ID_LEN)


def _pk(name: str, value: bytes) -> bytes:
    return _check_len(name, value, PUBLIC_KEY_LEN)


def _u64(name: str, value: int) -> bytes:
    if not 0 <= value <= MAX_UINT64:
        raise ValueError(f"{name} out of uint64 range: {value}")
    return struct.pack(">Q", value)


def _read_u64(value: Optional[bytes]) -> int:
    if value is None:
        return 0
    return struct.unpack_from(">Q", value)[0]


def _lookup(db: _Database, key: bytes) -> Optional[bytes]:
    try:
        return db.get_value(key)
    except KeyError:
        return None


# Transactions


def prefix_tx_key(tx_id: bytes) -> bytes:
    """``[txPrefix] + [txID]``"""
    return bytes([TX_PREFIX]) + _id("tx_id", tx_id)


def store_transaction(
    db: _Database, tx_id: bytes, timestamp: int, success: bool, units: int
) -> None:
    if not -(1 << 63) <= timestamp < (1 << 63):
        raise ValueError(f"timestamp out of int64 range: {timestamp}")
    value = (
        struct.pack(">q", timestamp)
        + bytes([SUCCESS_BYTE if success else FAILURE_BYTE])
        + _u64("units", units)
    )
    db.insert(prefix_tx_key(tx_id), value)


def get_transaction(db: _Database, tx_id: bytes) -> Optional[TransactionRecord]:
    """Return the stored transaction result, or ``None`` if unknown."""
    value = _lookup(db, prefix_tx_key(tx_id))
    if value is None:
        return None
    timestamp = struct.unpack_from(">q", value)[0]
    success = value[UINT64_LEN] != FAILURE_BYTE
    units = struct.unpack_from(">Q", value, UINT64_LEN + 1)[0]
    return TransactionRecord(timestamp, success, units)


# Balances


def prefix_balance_key(pk: bytes, asset: bytes) -> bytes:
    """``[balancePrefix] + [address] + [asset]``"""
    return bytes([BALANCE_PREFIX]) + _pk("pk", pk) + _id("asset", asset)


def get_balance(db: _Database, pk: bytes, asset: bytes) -> int:
    """Return the balance; a missing account has balance 0."""
    return _read_u64(_lookup(db, prefix_balance_key(pk, asset)))


def get_balance_from_state(read_state: ReadState, pk: bytes, asset: bytes) -> int:
    """Balance lookup used to serve RPC queries."""
    values = read_state([prefix_balance_key(pk, asset)])
    return _read_u64(values[0])


def set_balance(db: _Database, pk: bytes, asset: bytes, balance: int) -> None:
    db.insert(prefix_balance_key(pk, asset), _u64("balance", balance))


def delete_balance(db: _Database, pk: bytes, asset: bytes) -> None:
    db.remove(prefix_balance_key(pk, asset))


def add_balance(db: _Database, pk: bytes, asset: bytes, amount: int) -> None:
    key = prefix_balance_key(pk, asset)
    balance = _read_u64(_lookup(db, key))
    new_balance = balance + amount
    if amount < 0 or new_balance > MAX_UINT64:
        raise InvalidBalanceError(
            f"could not add balance (asset={bytes(asset).hex()}, bal={balance}, "
            f"addr={bytes(pk).hex()}, amount={amount})"
        )
    db.insert(key, _u64("balance", new_balance))


def sub_balance(db: _Database, pk: bytes, asset: bytes, amount: int) -> None:
    key = prefix_balance_key(pk, asset)
    balance = _read_u64(_lookup(db, key))
    if amount < 0 or amount > balance:
        raise InvalidBalanceError(
            f"could not subtract balance (asset={bytes(asset).hex()}, bal={balance}, "
            f"addr={bytes(pk).hex()}, amount={amount})"
        )
    new_balance = balance - amount
    if new_balance == 0:
        # An empty balance is deleted rather than stored as zero.
        db.remove(key)
    else:
        db.insert(key, _u64("balance", new_balance))


# Assets


def prefix_asset_key(asset: bytes) -> bytes:
    """``[assetPrefix] + [asset]``"""
    return bytes([ASSET_PREFIX]) + _id("asset", asset)


def _decode_asset(value: Optional[bytes]) -> Optional[AssetRecord]:
    if value is None:
        return None
    metadata_len = struct.unpack_from(">H", value)[0]
    offset = UINT16_LEN
    metadata = bytes(value[offset : offset + metadata_len])
    offset += metadata_len
    supply = struct.unpack_from(">Q", value, offset)[0]
    offset += UINT64_LEN
    owner = bytes(value[offset : offset + PUBLIC_KEY_LEN])
    offset += PUBLIC_KEY_LEN
    warp = value[offset] == 0x1
    return AssetRecord(metadata, supply, owner, warp)


def get_asset(db: _Database, asset: bytes) -> Optional[AssetRecord]:
    """Return the asset record, or ``None`` if the asset does not exist."""
    return _decode_asset(_lookup(db, prefix_asset_key(asset)))


def get_asset_from_state(read_state: ReadState, asset: bytes) -> Optional[AssetRecord]:
    """Asset lookup used to serve RPC queries."""
    values = read_state([prefix_asset_key(asset)])
    return _decode_asset(values[0])


def set_asset(
    db: _Database,
    asset: bytes,
    metadata: bytes,
    supply: int,
    owner: bytes,
    warp: bool,
) -> None:
    metadata = bytes(metadata)
    if len(metadata) > MAX_UINT16:
        raise ValueError(f"metadata too long: {len(metadata)} bytes")
    value = (
        struct.pack(">H", len(metadata))
        + metadata
        + _u64("supply", supply)
        + _pk("owner", owner)
        + bytes([0x1 if warp else 0x0])
    )
    db.insert(prefix_asset_key(asset), value)


def delete_asset(db: _Database, asset: bytes) -> None:
    db.remove(prefix_asset_key(asset))


# Orders


def prefix_order_key(tx_id: bytes) -> bytes:
    """``[orderPrefix] + [txID]``"""
    return bytes([ORDER_PREFIX]) + _id("tx_id", tx_id)


def set_order(
    db: _Database,
    tx_id: bytes,
    in_asset: bytes,
    in_tick: int,
    out_asset: bytes,
    out_tick: int,
    supply: int,
    owner: bytes,
) -> None:
    value = (
        _id("in_asset", in_asset)
        + _u64("in_tick", in_tick)
        + _id("out_asset", out_asset)
        + _u64("out_tick", out_tick)
        + _u64("supply", supply)
        + _pk("owner", owner)
    )
    db.insert(prefix_order_key(tx_id), value)


def get_order(db: _Database, order: bytes) -> Optional[OrderRecord]:
    """Return the order, or ``None`` if it does not exist."""
    value = _lookup(db, prefix_order_key(order))
    if value is None:
        return None
    in_asset = bytes(value[:ID_LEN])
    in_tick = struct.unpack_from(">Q", value, ID_LEN)[0]
    out_start = ID_LEN + UINT64_LEN
    out_asset = bytes(value[out_start : out_start + ID_LEN])
    out_tick, remaining = struct.unpack_from(">QQ", value, out_start + ID_LEN)
    owner_start = ID_LEN * 2 + UINT64_LEN * 3
    owner = bytes(value[owner_start : owner_start + PUBLIC_KEY_LEN])
    return OrderRecord(in_asset, in_tick, out_asset, out_tick, remaining, owner)


def delete_order(db: _Database, order: bytes) -> None:
    db.remove(prefix_order_key(order))


# Loans


def prefix_loan_key(asset: bytes, destination: bytes) -> bytes:
    """``[loanPrefix] + [asset] + [destination]``"""
    return bytes([LOAN_PREFIX]) + _id("asset", asset) + _id("destination", destination)


def get_loan(db: _Database, asset: bytes, destination: bytes) -> int:
    return _read_u64(_lookup(db, prefix_loan_key(asset, destination)))


def get_loan_from_state(read_state: ReadState, asset: bytes, destination: bytes) -> int:
    """Loan lookup used to serve RPC queries."""
    values = read_state([prefix_loan_key(asset, destination)])
    return _read_u64(values[0])


def set_loan(db: _Database, asset: bytes, destination: bytes, amount: int) -> None:
    db.insert(prefix_loan_key(asset, destination), _u64("amount", amount))


def add_loan(db: _Database, asset: bytes, destination: bytes, amount: int) -> None:
    loan = get_loan(db, asset, destination)
    new_loan = loan + amount
    if amount < 0 or new_loan > MAX_UINT64:
        raise InvalidBalanceError(
            f"could not add loan (asset={bytes(asset).hex()}, "
            f"destination={bytes(destination).hex()}, amount={amount})"
        )
    set_loan(db, asset, destination, new_loan)


def sub_loan(db: _Database, asset: bytes, destination: bytes, amount: int) -> None:
    loan = get_loan(db, asset, destination)
    if amount < 0 or amount > loan:
        raise InvalidBalanceError(
            f"could not subtract loan (asset={bytes(asset).hex()}, "
            f"destination={bytes(destination).hex()}, amount={amount})"
        )
    new_loan = loan - amount
    if new_loan == 0:
        # An empty loan is deleted rather than stored as zero.
        db.remove(prefix_loan_key(asset, destination))
    else:
        set_loan(db, asset, destination, new_loan)


# Miscellaneous keys


def height_key() -> bytes:
    return _HEIGHT_KEY


def incoming_warp_key_prefix(source_chain_id: bytes, msg_id: bytes) -> bytes:
    return (
        bytes([INCOMING_WARP_PREFIX])
        + _id("source_chain_id", source_chain_id)
        + _id("msg_id", msg_id)
    )


def outgoing_warp_key_prefix(tx_id: bytes) -> bytes:
    return bytes([OUTGOING_WARP_PREFIX]) + _id("tx_id", tx_id)