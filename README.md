# tokenstate

`tokenstate` stores the state of a simple token ledger in a flat key-value
store. It also answers read-only queries about that state over JSON-RPC 2.0.

The package has three modules:

- **`tokenstate.storage`** holds the key layout and the binary value encoding
  for transaction results, balances, assets, orders and loans. It also holds
  the keys for block height and for incoming and outgoing warp messages.
  Integers are stored big-endian.
- **`tokenstate.rpc_server`** provides `JSONRPCServer`. It answers `genesis`,
  `tx`, `asset`, `balance`, `orders` and `loan` queries by asking a
  `Controller` for the data.
- **`tokenstate.rpc_client`** provides `JSONRPCClient`. It sends those queries
  to a server and can poll until a balance is reached or a transaction is
  found.

## Installing

```
pip install tokenstate
```

The package needs nothing outside the standard library. To run the tests,
install the `test` extra and run pytest:

```
pip install "tokenstate[test]"
pytest
```

## Storage

The database can be any object that has these three methods:

- `get_value(key)`, which raises `KeyError` when the key is missing
- `insert(key, value)`
- `remove(key)`

`MemoryDatabase` is a dict-backed database of this kind. It also supports
`in` and `len()`.

```python
from tokenstate.storage import (
    InvalidBalanceError,
    MemoryDatabase,
    add_balance,
    get_balance,
    sub_balance,
)

db = MemoryDatabase()
owner = bytes(range(32))   # a 32-byte public key
asset = bytes(32)          # a 32-byte asset id

add_balance(db, owner, asset, 500)
sub_balance(db, owner, asset, 200)
print(get_balance(db, owner, asset))   # 300

try:
    sub_balance(db, owner, asset, 1_000)
except InvalidBalanceError as exc:
    print(exc)   # invalid balance: could not subtract balance (...)
```

### Rules

- Ids and public keys must be exactly 32 bytes, or `ValueError` is raised.
- A missing balance or loan reads as `0`.
- When a balance or loan is brought down to exactly zero, its record is
  removed. A zero is never stored.
- Adding past the unsigned 64-bit limit, subtracting more than is held, or
  passing a negative amount raises `InvalidBalanceError`. This is a subclass
  of `ValueError`.

### Records and lookups

These functions read entries back as frozen dataclasses:

| Function | Returns | When the entry is missing |
|---|---|---|
| `get_transaction` | `TransactionRecord` (`timestamp`, `success`, `units`) | `None` |
| `get_asset` | `AssetRecord` (`metadata`, `supply`, `owner`, `warp`) | `None` |
| `get_order` | `OrderRecord` (`in_asset`, `in_tick`, `out_asset`, `out_tick`, `remaining`, `owner`) | `None` |

The matching writers are `store_transaction`, `set_asset` and `set_order`.
`set_asset` rejects metadata longer than 65535 bytes. The deleters are
`delete_asset`, `delete_order` and `delete_balance`.

Loans have their own functions: `get_loan`, `set_loan`, `add_loan` and
`sub_loan`.

### Reading through a batch function

Some lookups read through a batch function instead of a database:

- `get_balance_from_state`
- `get_asset_from_state`
- `get_loan_from_state`

The batch function takes a list of keys. It returns a list of values, with
`None` for each key that is absent. These lookups are the ones a query server
uses.

### Keys

These functions build the raw keys:

- `prefix_tx_key`
- `prefix_balance_key`
- `prefix_asset_key`
- `prefix_order_key`
- `prefix_loan_key`
- `height_key`
- `incoming_warp_key_prefix`
- `outgoing_warp_key_prefix`

## JSON-RPC server

`JSONRPCServer(controller)` takes a `Controller`. The controller supplies:

- the genesis
- transaction results
- assets
- balances
- orders
- loans

Each query is also a method on the server:

- `tx` raises `TxNotFoundError` when the transaction is unknown.
- `asset` raises `AssetNotFoundError` when the asset does not exist.
- `orders` asks the controller for at most 128 orders for the pair.

Addresses are hex-encoded public keys by default. To change this, pass
`format_address` and `parse_address` to the constructor.

`handle(request)` takes one request, given as a dict or as JSON text or bytes,
and returns the response dict. Ids in the request params are hex strings, and
byte fields in results are base64. A method name may carry a service prefix,
such as `tokenvm.balance`. Errors come back as JSON-RPC error objects:

- parse error
- invalid request
- method not found
- a server error carrying the exception message

## JSON-RPC client

`JSONRPCClient(uri, chain_id)` sends queries to `uri + "/tokenapi"`. It uses
plain HTTP POST by default. To send requests another way, pass
`transport=callable(url, payload) -> response_dict`.

- `tx` returns a `TxStatus` (`success`, `timestamp`). It returns `None` when
  the server reports the transaction is not found.
- `asset` returns an `AssetInfo` (`metadata`, `supply`, `owner`, `warp`). It
  returns `None` when the asset does not exist.
- `balance`, `loan` and `orders` return the server's values.
- `genesis` is fetched once and then cached.
- `wait_for_balance` and `wait_for_transaction` poll every `poll_interval`
  seconds until their condition holds. When `timeout` is set, they raise
  `TimeoutError` once it runs out. `wait_for_transaction` returns whether the
  transaction succeeded.

## What this package does not do

The package does not do any of the following:

- It does not listen on a network port. `JSONRPCServer.handle` answers one
  request object, and putting it behind an HTTP server is up to you.
- It does not build, sign, submit or execute transactions.
- It does not keep a chain or an order book. The `Controller` you supply must
  provide those.
- Addresses are plain hex public keys unless you supply your own formatting
  functions.