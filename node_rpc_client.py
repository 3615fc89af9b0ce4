"""
Kaspa node wRPC client
Minimal JSON-over-WebSocket client for the kaspad queries the explorer API needs
"""

from __future__ import annotations

import itertools
import json
import logging
import re
from typing import Any, Dict, Optional, Sequence

from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.sync.client import ClientConnection, connect

from config import config

logger = logging.getLogger(__name__)


# ==================== ERRORS ====================


class NodeRpcError(Exception):
    """Base class for node RPC failures"""


class NodeConnectionError(NodeRpcError):
    """Connection to the node could not be established or was lost"""


class NodeRequestError(NodeRpcError):
    """The node rejected a call or answered with something unusable"""

    def __init__(self, method: str, message: str):
        super().__init__(f"{method} failed: {message}")
        self.method = method


class NodeDisconnectError(NodeRpcError):
    """Closing the node connection failed"""


class InvalidInputError(ValueError):
    """Malformed hash or address supplied by the caller"""


# ==================== INPUT VALIDATION ====================

ADDRESS_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
ADDRESS_CHECKSUM_LENGTH = 8

_HASH_RE = re.compile(r"[0-9a-fA-F]{64}")


def validate_block_hash(value: str) -> str:
    """Return the lower-case hash or raise InvalidInputError"""
    if not _HASH_RE.fullmatch(value or ""):
        raise InvalidInputError(f"Invalid block hash: {value!r}")
    return value.lower()


def validate_address(value: str, prefixes: Optional[Sequence[str]] = None) -> str:
    """
    Check the shape of a Kaspa address (prefix, charset, minimum length)

    Prefixes default to config.ADDRESS_PREFIXES. The checksum itself is
    verified by the node.
    """
    if prefixes is None:
        prefixes = config.ADDRESS_PREFIXES

    prefix, sep, payload = (value or "").partition(":")
    if not sep or prefix not in prefixes:
        raise InvalidInputError(f"Invalid address prefix: {value!r}")

    if len(payload) <= ADDRESS_CHECKSUM_LENGTH:
        raise InvalidInputError(f"Address payload too short: {value!r}")

    bad = set(payload) - set(ADDRESS_CHARSET)
    if bad:
        raise InvalidInputError(
            f"Invalid address characters {''.join(sorted(bad))!r} in {value!r}"
        )

    return value


# ==================== NODE RPC CLIENT ====================


class NodeRpcClient:
    """
    Synchronous wRPC (serde-json encoding) client for a single kaspad node

    One instance owns one WebSocket connection. Calls are strictly
    request/response; notifications arriving on the socket are skipped.
    """

    def __init__(
        self,
        url: str,
        connect_timeout: float = 5,
        rpc_timeout: float = 10,
    ):
        """
        Initialize node client

        Args:
            url: wRPC endpoint (e.g., ws://localhost:18110)
            connect_timeout: Seconds allowed for the WebSocket handshake
            rpc_timeout: Seconds allowed for each call's response
        """
        self.url = url
        self.connect_timeout = connect_timeout
        self.rpc_timeout = rpc_timeout
        self.ws: Optional[ClientConnection] = None
        self._ids = itertools.count(1)

    def __enter__(self) -> NodeRpcClient:
        if self.ws is None:
            self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.disconnect()

    @property
    def connected(self) -> bool:
        return self.ws is not None

    def connect(self) -> None:
        """Open the WebSocket connection"""
        try:
            self.ws = connect(self.url, open_timeout=self.connect_timeout)
        except (OSError, TimeoutError, WebSocketException) as e:
            logger.error(f"Failed to connect to node {self.url}: {e}")
            raise NodeConnectionError(f"Failed to connect to Kaspa node: {e}") from e
        logger.debug(f"Connected to node {self.url}")

    def disconnect(self) -> None:
        """Close the WebSocket connection, a no-op if not connected"""
        ws, self.ws = self.ws, None
        if ws is None:
            return
        try:
            ws.close()
        except (OSError, WebSocketException) as e:
            raise NodeDisconnectError(f"Failed to disconnect: {e}") from e
        logger.debug(f"Disconnected from node {self.url}")

    def _call(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Send one request and wait for the response with the same id"""
        if self.ws is None:
            raise NodeConnectionError("Not connected to Kaspa node")

        request_id = next(self._ids)
        frame = json.dumps({"id": request_id, "method": method, "params": params or {}})

        try:
            self.ws.send(frame)
            while True:
                raw = self.ws.recv(timeout=self.rpc_timeout)
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError as e:
                    raise NodeRequestError(method, f"malformed response: {e}") from e
                if not isinstance(message, dict) or message.get("id") != request_id:
                    continue
                break
        except TimeoutError as e:
            raise NodeRequestError(method, "timed out waiting for response") from e
        except ConnectionClosed as e:
            raise NodeConnectionError(f"Node connection closed during {method}: {e}") from e

        error = message.get("error")
        if error:
            detail = error.get("message", error) if isinstance(error, dict) else error
            logger.error(f"Node returned error for {method}: {detail}")
            raise NodeRequestError(method, str(detail))

        result = message.get("params")
        if not isinstance(result, dict):
            raise NodeRequestError(method, "response carried no params")
        return result

    # ==================== QUERIES ====================

    def get_info(self) -> Dict[str, Any]:
        """Get general node info"""
        return self._call("getInfo")

    def get_block_dag_info(self) -> Dict[str, Any]:
        """Get DAG state (tip hashes, counts, difficulty, virtual DAA score)"""
        return self._call("getBlockDagInfo")

    def get_block(self, block_hash: str, include_transactions: bool) -> Dict[str, Any]:
        """Get a block by hash"""
        response = self._call(
            "getBlock", {"hash": block_hash, "includeTransactions": include_transactions}
        )
        block = response.get("block")
        if not isinstance(block, dict):
            raise NodeRequestError("getBlock", "response carried no block")
        return block

    def get_blocks(
        self, low_hash: Optional[str], include_blocks: bool, include_transactions: bool
    ) -> Dict[str, Any]:
        """Get blocks from low_hash up to the virtual selected parent"""
        return self._call(
            "getBlocks",
            {
                "lowHash": low_hash,
                "includeBlocks": include_blocks,
                "includeTransactions": include_transactions,
            },
        )

    def get_balance_by_address(self, address: str) -> int:
        """Get spendable balance in sompi"""
        response = self._call("getBalanceByAddress", {"address": address})
        try:
            return int(response["balance"])
        except (KeyError, TypeError, ValueError) as e:
            raise NodeRequestError("getBalanceByAddress", f"bad balance: {e}") from e

    def get_coin_supply(self) -> Dict[str, Any]:
        """Get circulating and max supply in sompi"""
        return self._call("getCoinSupply")

    def estimate_network_hashes_per_second(
        self, window_size: int, start_hash: Optional[str] = None
    ) -> int:
        """Estimate network hashrate over a window of blocks ending at start_hash"""
        response = self._call(
            "estimateNetworkHashesPerSecond",
            {"windowSize": window_size, "startHash": start_hash},
        )
        try:
            return int(response["networkHashesPerSecond"])
        except (KeyError, TypeError, ValueError) as e:
            raise NodeRequestError(
                "estimateNetworkHashesPerSecond", f"bad estimate: {e}"
            ) from e


def connect_node_client() -> NodeRpcClient:
    """Create and connect a client using the active configuration"""
    client = NodeRpcClient(
        config.NODE_WRPC_URL,
        connect_timeout=config.NODE_CONNECT_TIMEOUT,
        rpc_timeout=config.NODE_RPC_TIMEOUT,
    )
    client.connect()
    return client


def latest_tip_hash(client: NodeRpcClient) -> str:
    """First tip hash reported by the node"""
    tips = client.get_block_dag_info().get("tipHashes") or []
    if not tips:
        raise NodeRequestError("getBlockDagInfo", "Node reported no tip hashes")
    return tips[0]
