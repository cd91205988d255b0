"""JSON-RPC service that answers queries about token state."""

from __future__ import annotations

import base64
import dataclasses
import json
from collections.abc import Callable
from typing import Any, Optional, Protocol, Union

from tokenstate.storage import (
    ID_LEN,
    PUBLIC_KEY_LEN,
    AssetRecord,
    TransactionRecord,
)

JSONRPC_ENDPOINT = "/tokenapi"
ORDERS_TO_SEND = 128

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
SERVER_ERROR = -32000


class TxNotFoundError(LookupError):
    """Raised when a transaction is not known to the node."""

    def __init__(self) -> None:
        super().__init__("tx not found")


class AssetNotFoundError(LookupError):
    """Raised when an asset does not exist."""

    def __init__(self) -> None:
        super().__init__("asset not found")


class Controller(Protocol):
    """What the server needs from the running chain."""

    def genesis(self) -> Any: ...

    def get_transaction(self, tx_id: bytes) -> Optional[TransactionRecord]: ...

    def get_asset_from_state(self, asset: bytes) -> Optional[AssetRecord]: ...

    def get_balance_from_state(self, pk: bytes, asset: bytes) -> int: ...

    def orders(self, pair: str, limit: int) -> list[Any]: ...

    def get_loan_from_state(self, asset: bytes, destination: bytes) -> int: ...


def _hex_address(pk: bytes) -> str:
    return bytes(pk).hex()


def _parse_hex_address(address: str) -> bytes:
    try:
        pk = bytes.fromhex(address)
    except (TypeError, ValueError):
        raise ValueError(f"invalid address: {address!r}") from None
    if len(pk) != PUBLIC_KEY_LEN:
        raise ValueError(f"invalid address: {address!r}")
    return pk


def _decode_id(value: Any, field: str) -> bytes:
    if not isinstance(value, str):
        raise ValueError(f"{field} must be a hex string")
    try:
        raw = bytes.fromhex(value)
    except ValueError:
        raise ValueError(f"{field} is not valid hex") from None
    if len(raw) != ID_LEN:
        raise ValueError(f"{field} must be {ID_LEN} bytes, got {len(raw)}")
    return raw


def _encode_json(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    raise TypeError(f"cannot encode {type(value).__name__} as JSON")


class JSONRPCServer:
    """Token queries served over JSON-RPC 2.0."""

    def __init__(
        self,
        controller: Controller,
        format_address: Callable[[bytes], str] = _hex_address,
        parse_address: Callable[[str], bytes] = _parse_hex_address,
    ) -> None:
        self._controller = controller
        self._format_address = format_address
        self._parse_address = parse_address

    def genesis(self) -> Any:
        return self._controller.genesis()

    def tx(self, tx_id: bytes) -> dict[str, Any]:
        record = self._controller.get_transaction(tx_id)
        if record is None:
            raise TxNotFoundError()
        return {
            "timestamp": record.timestamp,
            "success": record.success,
            "units": record.units,
        }

    def asset(self, asset: bytes) -> dict[str, Any]:
        record = self._controller.get_asset_from_state(asset)
        if record is None:
            raise AssetNotFoundError()
        return {
            "metadata": record.metadata,
            "supply": record.supply,
            "owner": self._format_address(record.owner),
            "warp": record.warp,
        }

    def balance(self, address: str, asset: bytes) -> dict[str, Any]:
        pk = self._parse_address(address)
        return {"amount": self._controller.get_balance_from_state(pk, asset)}

    def orders(self, pair: str) -> dict[str, Any]:
        return {"orders": list(self._controller.orders(pair, ORDERS_TO_SEND))}

    def loan(self, asset: bytes, destination: bytes) -> dict[str, Any]:
        return {"amount": self._controller.get_loan_from_state(asset, destination)}

    def _dispatch(self, method: str, params: dict[str, Any]) -> Any:
        if method == "genesis":
            return {"genesis": self.genesis()}
        if method == "tx":
            return self.tx(_decode_id(params.get("txId"), "txId"))
        if method == "asset":
            return self.asset(_decode_id(params.get("asset"), "asset"))
        if method == "balance":
            address = params.get("address")
            if not isinstance(address, str):
                raise ValueError("address must be a string")
            return self.balance(address, _decode_id(params.get("asset"), "asset"))
        if method == "orders":
            pair = params.get("pair", "")
            if not isinstance(pair, str):
                raise ValueError("pair must be a string")
            return self.orders(pair)
        if method == "loan":
            return self.loan(
                _decode_id(params.get("asset"), "asset"),
                _decode_id(params.get("destination"), "destination"),
            )
        raise KeyError(method)

    def handle(self, request: Union[dict[str, Any], str, bytes]) -> dict[str, Any]:
        """Answer one JSON-RPC request and return the response object."""
        if isinstance(request, (str, bytes, bytearray)):
            try:
                request = json.loads(request)
            except ValueError as exc:
                return _error(None, PARSE_ERROR, f"parse error: {exc}")
        if not isinstance(request, dict):
            return _error(None, INVALID_REQUEST, "request must be an object")

        request_id = request.get("id")
        method = request.get("method")
        if not isinstance(method, str):
            return _error(request_id, INVALID_REQUEST, "missing method")
        name = method.rsplit(".", 1)[-1]

        params = request.get("params", {})
        if isinstance(params, list):
            params = params[0] if params else {}
        if params is None:
            params = {}
        if not isinstance(params, dict):
            return _error(request_id, INVALID_REQUEST, "params must be an object")

        try:
            result = self._dispatch(name, params)
        except KeyError as exc:
            if exc.args == (name,):
                return _error(request_id, METHOD_NOT_FOUND, f"method not found: {method}")
            return _error(request_id, SERVER_ERROR, str(exc))
        except Exception as exc:  # every failure is reported to the caller
            return _error(request_id, SERVER_ERROR, str(exc))

        encoded = json.loads(json.dumps(result, default=_encode_json))
        return {"jsonrpc": "2.0", "result": encoded, "id": request_id}


def _error(request_id: Any, code: int, message: str) -> dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "error": {"code": code, "message": message},
        "id": request_id,
    }