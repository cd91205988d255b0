"""Client for the token JSON-RPC service."""

from __future__ import annotations

import base64
import itertools
import json
import logging
import time
import urllib.error
import urllib.request
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Optional

from tokenstate.rpc_server import JSONRPC_ENDPOINT

log = logging.getLogger(__name__)

Transport = Callable[[str, dict[str, Any]], dict[str, Any]]

_TX_NOT_FOUND = "tx not found"
_ASSET_NOT_FOUND = "asset not found"


class _RemoteError(RuntimeError):
    """An error reported by the server."""


@dataclass(frozen=True)
class TxStatus:
    success: bool
    timestamp: int


@dataclass(frozen=True)
class AssetInfo:
    metadata: bytes
    supply: int
    owner: str
    warp: bool


def _http_transport(url: str, payload: dict[str, Any]) -> dict[str, Any]:
    data = json.dumps(payload).encode("utf-8")
    request = urllib.request.Request(
        url,
        data=data,
        headers={"Content-Type": "application/json"},
        method="POST",
    )
    try:
        with urllib.request.urlopen(request) as response:
            body = response.read()
    except urllib.error.HTTPError as exc:
        body = exc.read()
        if not body:
            raise
    return json.loads(body)


class JSONRPCClient:
    """Queries a node's token API."""

    def __init__(
        self,
        uri: str,
        chain_id: bytes,
        *,
        name: str = "tokenvm",
        transport: Optional[Transport] = None,
        poll_interval: float = 1.0,
        timeout: Optional[float] = None,
    ) -> None:
        self.url = uri.removesuffix("/") + JSONRPC_ENDPOINT
        self.chain_id = bytes(chain_id)
        self._name = name
        self._transport = transport or _http_transport
        self._poll_interval = poll_interval
        self._timeout = timeout
        self._ids = itertools.count(1)
        self._genesis: Any = None

    def _request(self, method: str, params: Optional[dict[str, Any]] = None) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "method": f"{self._name}.{method}",
            "params": [params or {}],
            "id": next(self._ids),
        }
        response = self._transport(self.url, payload)
        error = response.get("error")
        if error is not None:
            message = error.get("message", "") if isinstance(error, dict) else str(error)
            raise _RemoteError(message)
        return response.get("result")

    def genesis(self) -> Any:
        """Return the chain's genesis, fetched once and then cached."""
        if self._genesis is None:
            self._genesis = self._request("genesis")["genesis"]
        return self._genesis

    def tx(self, tx_id: bytes) -> Optional[TxStatus]:
        """Return the transaction's status, or ``None`` if it is not known yet."""
        try:
            reply = self._request("tx", {"txId": bytes(tx_id).hex()})
        except _RemoteError as exc:
            # The server's error type does not survive the wire; match its text.
            if _TX_NOT_FOUND in str(exc):
                return None
            raise
        return TxStatus(success=reply["success"], timestamp=reply["timestamp"])

    def asset(self, asset: bytes) -> Optional[AssetInfo]:
        """Return the asset, or ``None`` if it does not exist."""
        try:
            reply = self._request("asset", {"asset": bytes(asset).hex()})
        except _RemoteError as exc:
            if _ASSET_NOT_FOUND in str(exc):
                return None
            raise
        metadata = reply.get("metadata") or ""
        return AssetInfo(
            metadata=base64.b64decode(metadata),
            supply=reply["supply"],
            owner=reply["owner"],
            warp=reply["warp"],
        )

    def balance(self, address: str, asset: bytes) -> int:
        reply = self._request("balance", {"address": address, "asset": bytes(asset).hex()})
        return reply["amount"]

    def orders(self, pair: str) -> list[Any]:
        reply = self._request("orders", {"pair": pair})
        return reply.get("orders") or []

    def loan(self, asset: bytes, destination: bytes) -> int:
        reply = self._request(
            "loan",
            {"asset": bytes(asset).hex(), "destination": bytes(destination).hex()},
        )
        return reply["amount"]

    def _wait(self, done: Callable[[], bool]) -> None:
        deadline = None if self._timeout is None else time.monotonic() + self._timeout
        while not done():
            if deadline is not None and time.monotonic() >= deadline:
                raise TimeoutError("timed out waiting for condition")
            time.sleep(self._poll_interval)

    def wait_for_balance(self, address: str, asset: bytes, minimum: int) -> None:
        """Block until ``address`` holds at least ``minimum`` of ``asset``."""

        def reached() -> bool:
            if self.balance(address, asset) >= minimum:
                return True
            log.info("waiting for %d balance: %s", minimum, address)
            return False

        self._wait(reached)

    def wait_for_transaction(self, tx_id: bytes) -> bool:
        """Block until the transaction is known; return whether it succeeded."""
        found: list[TxStatus] = []

        def accepted() -> bool:
            status = self.tx(tx_id)
            if status is None:
                return False
            found.append(status)
            return True

        self._wait(accepted)
        return found[-1].success