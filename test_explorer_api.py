"""
Kaspa Explorer API Tests
Endpoint behavior against a fake node client
"""

import json
from unittest.mock import Mock

import pytest

from explorer_api import app
from halving import format_timestamp
from node_rpc_client import (
    NodeConnectionError,
    NodeDisconnectError,
    NodeRequestError,
    NodeRpcClient,
    connect_node_client,
)

TIP_HASH = "ab" * 32
ADDRESS = "kaspa:qqkqkzjvr7zwxxmjxjkmxxdwju9kjs6e9u82uh59z07vgaks6gg62v8707g73"

LATEST_BLOCK = {
    "header": {"hash": TIP_HASH, "daaScore": 15519600},
    "transactions": [
        {"outputs": [{"value": 41530469757}, {"value": 1000}]},
        {"outputs": [{"value": 5}]},
    ],
}


@pytest.fixture
def node():
    """Connected fake node client"""
    fake = Mock(spec=NodeRpcClient)
    fake.get_block_dag_info.return_value = {"tipHashes": [TIP_HASH], "blockCount": 42}
    fake.get_block.return_value = LATEST_BLOCK
    return fake


@pytest.fixture
def factory(node):
    return Mock(return_value=node)


@pytest.fixture
def client(factory):
    app.config["TESTING"] = True
    app.config["NODE_CLIENT_FACTORY"] = factory
    with app.test_client() as c:
        yield c
    app.config["NODE_CLIENT_FACTORY"] = connect_node_client


def _body(resp):
    return json.loads(resp.data.decode())


class TestConfiguration:
    """Test configuration loading"""

    def test_config_import(self):
        from config import config

        assert config.NODE_WRPC_URL.startswith("ws")
        assert config.HASHRATE_WINDOW_SIZE == 6000
        assert config.SOMPI_PER_KASPA == 100000000

    def test_config_validation(self):
        from config import Config

        Config.validate()

    def test_config_validation_rejects_bad_url(self, monkeypatch):
        from config import Config

        monkeypatch.setattr(Config, "NODE_WRPC_URL", "http://localhost:18110")
        with pytest.raises(ValueError, match="NODE_WRPC_URL"):
            Config.validate()

    def test_config_validation_rejects_bad_port(self, monkeypatch):
        from config import Config

        monkeypatch.setattr(Config, "WS_PORT", 70000)
        with pytest.raises(ValueError, match="WS_PORT"):
            Config.validate()

    def test_config_validation_rejects_empty_prefixes(self, monkeypatch):
        from config import Config

        monkeypatch.setattr(Config, "ADDRESS_PREFIXES", ())
        with pytest.raises(ValueError, match="ADDRESS_PREFIXES"):
            Config.validate()


class TestBlockEndpoints:
    """Test block and transaction lookups"""

    def test_get_block(self, client, node):
        resp = client.get(f"/blocks/{TIP_HASH}")

        assert resp.status_code == 200
        assert _body(resp) == LATEST_BLOCK
        node.get_block.assert_called_once_with(TIP_HASH, True)
        node.disconnect.assert_called_once()

    def test_get_block_normalizes_hash(self, client, node):
        client.get(f"/blocks/{TIP_HASH.upper()}")
        node.get_block.assert_called_once_with(TIP_HASH, True)

    def test_transaction_uses_block_lookup(self, client, node):
        resp = client.get(f"/transactions/{TIP_HASH}")

        assert resp.status_code == 200
        assert _body(resp) == LATEST_BLOCK
        node.get_block.assert_called_once_with(TIP_HASH, True)

    @pytest.mark.parametrize("path", [
        "/blocks/nothex",
        "/transactions/1234",
        f"/blocks/{TIP_HASH}%0A",
        f"/transactions/{TIP_HASH}%0A",
    ])
    def test_invalid_hash_rejected_before_connect(self, client, factory, path):
        resp = client.get(path)

        assert resp.status_code == 400
        assert isinstance(_body(resp), str)
        factory.assert_not_called()

    def test_block_not_found(self, client, node):
        node.get_block.side_effect = NodeRequestError("getBlock", "block not found")
        resp = client.get(f"/blocks/{TIP_HASH}")

        assert resp.status_code == 500
        assert "block not found" in _body(resp)
        node.disconnect.assert_called_once()


class TestInfoEndpoints:
    """Test node info endpoints"""

    def test_block_dag_info(self, client, node):
        resp = client.get("/info/blockdag")

        assert resp.status_code == 200
        assert _body(resp)["blockCount"] == 42
        node.disconnect.assert_called_once()

    def test_kaspad_info(self, client, node):
        node.get_info.return_value = {"serverVersion": "0.15.0", "isSynced": True}
        resp = client.get("/info/kaspad")

        assert resp.status_code == 200
        assert _body(resp)["isSynced"] is True

    def test_max_hashrate(self, client, node):
        node.estimate_network_hashes_per_second.return_value = 123456789
        resp = client.get("/info/hashrate/max")

        assert resp.status_code == 200
        assert _body(resp) == 123456789
        node.get_block.assert_called_once_with(TIP_HASH, False)
        node.estimate_network_hashes_per_second.assert_called_once_with(6000, TIP_HASH)

    def test_coin_supply(self, client, node):
        node.get_coin_supply.return_value = {
            "circulatingSompi": 2412345678901234567,
            "maxSompi": 2900000000000000000,
        }
        resp = client.get("/info/coinsupply")

        assert resp.status_code == 200
        assert _body(resp) == "2412345678901234567"

    def test_coin_supply_missing_field(self, client, node):
        node.get_coin_supply.return_value = {}
        resp = client.get("/info/coinsupply")
        assert resp.status_code == 500

    @pytest.mark.parametrize("value", ["lots", [1], {"sompi": 1}])
    def test_coin_supply_non_numeric(self, client, node, value):
        node.get_coin_supply.return_value = {"circulatingSompi": value}
        resp = client.get("/info/coinsupply")

        assert resp.status_code == 500
        assert "circulatingSompi" in _body(resp)
        node.disconnect.assert_called_once()

    def test_no_tip_hashes(self, client, node):
        node.get_block_dag_info.return_value = {"tipHashes": []}
        resp = client.get("/info/hashrate/max")

        assert resp.status_code == 500
        assert "no tip hashes" in _body(resp)
        node.disconnect.assert_called_once()


class TestHalvingEndpoint:
    """Test halving projection endpoint"""

    def test_halving(self, client, node, monkeypatch):
        monkeypatch.setattr("halving.time.time", lambda: 1700000000)
        resp = client.get("/info/halving")

        assert resp.status_code == 200
        body = _body(resp)
        assert body == {
            "next_halving_timestamp": 1700000000 + 2629800,
            "next_halving_date": format_timestamp(1700000000 + 2629800),
            "next_halving_amount": 415.30469757,
        }
        node.disconnect.assert_called_once()

    def test_halving_past_schedule(self, client, node):
        node.get_block.return_value = {"header": {"hash": TIP_HASH, "daaScore": 900000000}}
        resp = client.get("/info/halving")

        assert resp.status_code == 200
        body = _body(resp)
        assert set(body) == {"next_halving_timestamp", "next_halving_date", "next_halving_amount"}
        assert body["next_halving_amount"] == 0.0

    def test_halving_header_without_score(self, client, node):
        node.get_block.return_value = {"header": {"hash": TIP_HASH}}
        resp = client.get("/info/halving")
        assert resp.status_code == 500


class TestBlockRewardEndpoint:
    """Test block reward endpoint"""

    def test_block_reward(self, client, node):
        resp = client.get("/info/blockreward")

        assert resp.status_code == 200
        assert _body(resp) == {"block_hash": TIP_HASH, "block_reward": 415.30469757}
        node.get_block.assert_called_once_with(TIP_HASH, True)

    def test_block_without_transactions(self, client, node):
        node.get_block.return_value = {"header": {"hash": TIP_HASH}, "transactions": []}
        resp = client.get("/info/blockreward")

        assert resp.status_code == 500
        assert "No coinbase transaction found" in _body(resp)

    def test_coinbase_without_outputs(self, client, node):
        node.get_block.return_value = {"transactions": [{"outputs": []}]}
        resp = client.get("/info/blockreward")

        assert resp.status_code == 200
        assert _body(resp)["block_reward"] == 0.0

    @pytest.mark.parametrize("transactions", [
        ["coinbase"],
        [{"outputs": ["41530469757"]}],
        [{"outputs": [{"value": "lots"}]}],
        {"coinbase": {}},
    ])
    def test_malformed_coinbase(self, client, node, transactions):
        node.get_block.return_value = {"header": {"hash": TIP_HASH}, "transactions": transactions}
        resp = client.get("/info/blockreward")

        assert resp.status_code == 500
        assert "malformed coinbase transaction" in _body(resp)
        node.disconnect.assert_called_once()


class TestAddressEndpoints:
    """Test balance lookups"""

    def test_balance(self, client, node):
        node.get_balance_by_address.return_value = 12500000000
        resp = client.get(f"/addresses/{ADDRESS}/balance")

        assert resp.status_code == 200
        assert _body(resp) == {"balance": "12500000000"}
        node.get_balance_by_address.assert_called_once_with(ADDRESS)

    def test_invalid_address(self, client, factory):
        resp = client.get("/addresses/notanaddress/balance")

        assert resp.status_code == 400
        factory.assert_not_called()


class TestClientLifecycle:
    """Test per-request connection handling"""

    def test_connect_failure(self, client, factory):
        factory.side_effect = NodeConnectionError("Failed to connect to Kaspa node")
        resp = client.get("/info/blockdag")

        assert resp.status_code == 500
        assert _body(resp) == "Failed to connect to Kaspa node"

    def test_fresh_client_per_request(self, client, factory):
        client.get("/info/blockdag")
        client.get("/info/blockdag")
        assert factory.call_count == 2

    def test_disconnect_failure_surfaces(self, client, node):
        node.disconnect.side_effect = NodeDisconnectError("Failed to disconnect: broken pipe")
        resp = client.get("/info/blockdag")

        assert resp.status_code == 500
        assert _body(resp) == "Failed to disconnect: broken pipe"

    def test_disconnect_failure_after_error_keeps_original(self, client, node):
        node.get_block_dag_info.side_effect = NodeRequestError("getBlockDagInfo", "boom")
        node.disconnect.side_effect = NodeDisconnectError("Failed to disconnect: broken pipe")
        resp = client.get("/info/blockdag")

        assert resp.status_code == 500
        assert "boom" in _body(resp)


class TestHealth:
    """Test health endpoint"""

    def test_health_ok(self, client, node):
        resp = client.get("/health")

        assert resp.status_code == 200
        assert _body(resp)["status"] == "healthy"
        node.disconnect.assert_called_once()

    def test_health_degraded(self, client, factory):
        factory.side_effect = NodeConnectionError("refused")
        resp = client.get("/health")

        assert resp.status_code == 200
        body = _body(resp)
        assert body["status"] == "degraded"
        assert body["node"]["reachable"] is False
