import pytest

from tokenstate import storage
from tokenstate.rpc_client import AssetInfo, JSONRPCClient, TxStatus
from tokenstate.rpc_server import JSONRPCServer

CHAIN = bytes([1]) * 32
TX_ID = bytes(range(32))
ASSET = bytes([7]) * 32
DEST = bytes([9]) * 32
PK = bytes([3]) * 32


class FakeController:
    def __init__(self):
        self.state = storage.MemoryDatabase()
        self.txs = storage.MemoryDatabase()
        self.book = {}
        self.genesis_calls = 0
        self.tx_failure = None

    def _read(self, keys):
        values = []
        for key in keys:
            try:
                values.append(self.state.get_value(key))
            except KeyError:
                values.append(None)
        return values

    def genesis(self):
        self.genesis_calls += 1
        return {"symbol": "TKN"}

    def get_transaction(self, tx_id):
        if self.tx_failure is not None:
            raise self.tx_failure
        return storage.get_transaction(self.txs, tx_id)

    def get_asset_from_state(self, asset):
        return storage.get_asset_from_state(self._read, asset)

    def get_balance_from_state(self, pk, asset):
        return storage.get_balance_from_state(self._read, pk, asset)

    def orders(self, pair, limit):
        return self.book.get(pair, [])[:limit]

    def get_loan_from_state(self, asset, destination):
        return storage.get_loan_from_state(self._read, asset, destination)


class Recorder:
    def __init__(self, server):
        self.server = server
        self.urls = []
        self.payloads = []
        self.hooks = []

    def __call__(self, url, payload):
        self.urls.append(url)
        self.payloads.append(payload)
        for hook in self.hooks:
            hook()
        return self.server.handle(payload)


@pytest.fixture
def controller():
    return FakeController()


@pytest.fixture
def transport(controller):
    return Recorder(JSONRPCServer(controller))


@pytest.fixture
def client(transport):
    return JSONRPCClient(
        "http://node.example.com/ext/bc/chain/", CHAIN, transport=transport, poll_interval=0
    )


def test_url_and_method_name(client, transport):
    assert client.url == "http://node.example.com/ext/bc/chain/tokenapi"
    client.balance(PK.hex(), ASSET)
    assert transport.urls == ["http://node.example.com/ext/bc/chain/tokenapi"]
    assert transport.payloads[0]["method"] == "tokenvm.balance"


def test_genesis_is_cached(client, controller):
    assert client.genesis() == {"symbol": "TKN"}
    assert client.genesis() == {"symbol": "TKN"}
    assert controller.genesis_calls == 1


def test_tx_found(client, controller):
    storage.store_transaction(controller.txs, TX_ID, 1700, False, 472)
    assert client.tx(TX_ID) == TxStatus(success=False, timestamp=1700)


def test_tx_missing(client):
    assert client.tx(TX_ID) is None


def test_tx_other_error_raises(client, controller):
    controller.tx_failure = OSError("disk failure")
    with pytest.raises(RuntimeError, match="disk failure"):
        client.tx(TX_ID)


def test_asset_round_trip(client, controller):
    storage.set_asset(controller.state, ASSET, b"coin\x00", 500, PK, True)
    assert client.asset(ASSET) == AssetInfo(b"coin\x00", 500, PK.hex(), True)


def test_asset_empty_metadata(client, controller):
    storage.set_asset(controller.state, ASSET, b"", 0, PK, False)
    info = client.asset(ASSET)
    assert info.metadata == b""
    assert info.warp is False


def test_asset_missing(client):
    assert client.asset(ASSET) is None


def test_balance_and_loan(client, controller):
    storage.set_balance(controller.state, PK, ASSET, 5000)
    storage.set_loan(controller.state, ASSET, DEST, 110)
    assert client.balance(PK.hex(), ASSET) == 5000
    assert client.loan(ASSET, DEST) == 110
    assert client.loan(DEST, ASSET) == 0


def test_balance_bad_address_raises(client):
    with pytest.raises(RuntimeError, match="invalid address"):
        client.balance("not-an-address", ASSET)


def test_orders(client, controller):
    controller.book["a-b"] = [{"remaining": 4}, {"remaining": 1}]
    assert client.orders("a-b") == [{"remaining": 4}, {"remaining": 1}]
    assert client.orders("none") == []


def test_wait_for_balance(client, controller, transport):
    def credit():
        storage.add_balance(controller.state, PK, ASSET, 10)

    transport.hooks.append(credit)
    client.wait_for_balance(PK.hex(), ASSET, 30)
    assert storage.get_balance(controller.state, PK, ASSET) >= 30
    assert len(transport.payloads) == 3


def test_wait_for_balance_times_out(controller, transport):
    client = JSONRPCClient(
        "http://node.example.com", CHAIN, transport=transport, poll_interval=0, timeout=0
    )
    with pytest.raises(TimeoutError):
        client.wait_for_balance(PK.hex(), ASSET, 1)


def test_wait_for_transaction(client, controller, transport):
    def accept_later():
        if len(transport.payloads) == 3:
            storage.store_transaction(controller.txs, TX_ID, 1, True, 2)

    transport.hooks.append(accept_later)
    assert client.wait_for_transaction(TX_ID) is True
    assert len(transport.payloads) == 3


def test_wait_for_failed_transaction(client, controller):
    storage.store_transaction(controller.txs, TX_ID, 1, False, 2)
    assert client.wait_for_transaction(TX_ID) is False