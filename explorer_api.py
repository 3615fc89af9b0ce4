"""
Kaspa Explorer API
Read-only HTTP endpoints over a kaspad node: blocks, DAG info, balances, supply, hashrate, halving
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, TypeVar

from flask import Flask, current_app, jsonify
from flask_cors import CORS
from flasgger import Swagger

import halving
from config import config
from node_rpc_client import (
    InvalidInputError,
    NodeRequestError,
    NodeRpcClient,
    NodeRpcError,
    connect_node_client,
    latest_tip_hash,
    validate_address,
    validate_block_hash,
)

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL),
    format=config.LOG_FORMAT
)
logger = logging.getLogger(__name__)

T = TypeVar("T")


# ==================== NODE ACCESS ====================

def query_node(operation: Callable[[NodeRpcClient], T]) -> T:
    """
    Run operation against a freshly connected node client

    The client is disconnected before returning on every path. A disconnect
    failure after a successful operation is raised; one that follows an
    earlier failure is logged so the original error is reported.
    """
    client = current_app.config["NODE_CLIENT_FACTORY"]()
    try:
        result = operation(client)
    except Exception:
        try:
            client.disconnect()
        except NodeRpcError as e:
            logger.warning(f"Disconnect after failed request also failed: {e}")
        raise

    client.disconnect()
    return result


def _header_field(block: Dict[str, Any], name: str) -> Any:
    value = (block.get("header") or {}).get(name)
    if value is None:
        raise NodeRequestError("getBlock", f"block header has no {name}")
    return value


def _latest_block(client: NodeRpcClient, include_transactions: bool) -> Dict[str, Any]:
    return client.get_block(latest_tip_hash(client), include_transactions)


def _hashrate(client: NodeRpcClient) -> int:
    block = _latest_block(client, include_transactions=False)
    return client.estimate_network_hashes_per_second(
        config.HASHRATE_WINDOW_SIZE, _header_field(block, "hash")
    )


def _halving(client: NodeRpcClient) -> halving.HalvingProjection:
    block = _latest_block(client, include_transactions=False)
    try:
        daa_score = int(_header_field(block, "daaScore"))
    except (TypeError, ValueError) as e:
        raise NodeRequestError("getBlock", f"bad daaScore: {e}") from e
    return halving.project(daa_score)


def _block_reward(client: NodeRpcClient) -> Dict[str, Any]:
    tip = latest_tip_hash(client)
    block = client.get_block(tip, True)

    transactions = block.get("transactions") or []
    if not transactions:
        raise NodeRequestError("getBlock", "No coinbase transaction found")

    try:
        outputs = transactions[0].get("outputs") or []
        reward_sompi = int(outputs[0].get("value", 0)) if outputs else 0
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise NodeRequestError("getBlock", f"malformed coinbase transaction: {e}") from e
    logger.debug(f"Coinbase output of {tip}: {reward_sompi} sompi")

    return {
        "block_hash": tip,
        "block_reward": reward_sompi / config.SOMPI_PER_KASPA,
    }


# ==================== FLASK APP ====================

app = Flask(__name__)
app.config["NODE_CLIENT_FACTORY"] = connect_node_client
CORS(app, origins=config.CORS_ORIGINS)

# ==================== SWAGGER CONFIGURATION ====================

swagger_template = {
    "info": {
        "title": "Kaspa Explorer API",
        "description": "Read-only API over a kaspad node - blocks, DAG info, balances, supply, hashrate and halving schedule",
        "version": "1.0.0",
    },
    "basePath": "/",
    "schemes": ["http", "https"],
    "tags": [
        {"name": "Health", "description": "Health check endpoints"},
        {"name": "Blocks", "description": "Block data endpoints"},
        {"name": "Info", "description": "Network information endpoints"},
        {"name": "Addresses", "description": "Address endpoints"},
    ]
}

swagger = Swagger(app, template=swagger_template)


# ==================== ERROR HANDLERS ====================

@app.errorhandler(InvalidInputError)
def handle_invalid_input(error: InvalidInputError):
    logger.info(f"Rejected request input: {error}")
    return jsonify(str(error)), 400


@app.errorhandler(NodeRpcError)
def handle_node_error(error: NodeRpcError):
    logger.error(f"Node RPC failure: {error}")
    return jsonify(str(error)), 500


# ==================== BLOCK ENDPOINTS ====================

@app.route("/blocks/<block_hash>", methods=["GET"])
def get_block(block_hash):
    """
    Get block by hash, including its transactions
    ---
    tags:
      - Blocks
    parameters:
      - name: block_hash
        in: path
        type: string
        required: true
        description: 64 character hex block hash
    responses:
      200:
        description: Block as returned by the node
      400:
        description: Malformed block hash
      500:
        description: Node error
    """
    block_hash = validate_block_hash(block_hash)
    block = query_node(lambda client: client.get_block(block_hash, True))
    return jsonify(block)


@app.route("/transactions/<tx_hash>", methods=["GET"])
def get_transaction(tx_hash):
    """
    Get transaction by hash

    Resolves the hash as a block hash and returns that block.
    ---
    tags:
      - Blocks
    parameters:
      - name: tx_hash
        in: path
        type: string
        required: true
    responses:
      200:
        description: Block as returned by the node
      400:
        description: Malformed hash
      500:
        description: Node error
    """
    tx_hash = validate_block_hash(tx_hash)
    block = query_node(lambda client: client.get_block(tx_hash, True))
    return jsonify(block)


# ==================== INFO ENDPOINTS ====================

@app.route("/info/blockdag", methods=["GET"])
def get_block_dag_info():
    """
    Get block DAG info
    ---
    tags:
      - Info
    responses:
      200:
        description: DAG state (network, block count, tip hashes, virtual DAA score)
      500:
        description: Node error
    """
    return jsonify(query_node(lambda client: client.get_block_dag_info()))


@app.route("/info/kaspad", methods=["GET"])
def get_kaspad_info():
    """
    Get node info
    ---
    tags:
      - Info
    responses:
      200:
        description: kaspad version, sync state and mempool size
      500:
        description: Node error
    """
    return jsonify(query_node(lambda client: client.get_info()))


@app.route("/info/hashrate/max", methods=["GET"])
def get_max_hashrate():
    """
    Estimate network hashrate at the latest block
    ---
    tags:
      - Info
    responses:
      200:
        description: Hashes per second
        schema:
          type: integer
      500:
        description: Node error
    """
    return jsonify(query_node(_hashrate))


@app.route("/info/coinsupply", methods=["GET"])
def get_coin_supply():
    """
    Get circulating supply in sompi
    ---
    tags:
      - Info
    responses:
      200:
        description: Circulating supply as a decimal string
        schema:
          type: string
      500:
        description: Node error
    """
    supply = query_node(lambda client: client.get_coin_supply())
    circulating = supply.get("circulatingSompi")
    if circulating is None:
        raise NodeRequestError("getCoinSupply", "response has no circulatingSompi")
    try:
        circulating = int(circulating)
    except (TypeError, ValueError) as e:
        raise NodeRequestError("getCoinSupply", f"bad circulatingSompi: {e}") from e
    return jsonify(str(circulating))


@app.route("/info/halving", methods=["GET"])
def get_halving():
    """
    Project the next halving from the latest block's DAA score
    ---
    tags:
      - Info
    responses:
      200:
        description: Next halving projection
        schema:
          type: object
          properties:
            next_halving_timestamp:
              type: integer
              description: Unix timestamp (seconds)
            next_halving_date:
              type: string
              description: UTC date of the timestamp
            next_halving_amount:
              type: number
              description: Block subsidy in KAS after the halving
      500:
        description: Node error
    """
    projection = query_node(_halving)
    return jsonify(projection.to_dict())


@app.route("/info/blockreward", methods=["GET"])
def get_block_reward():
    """
    Get the coinbase reward of the latest block
    ---
    tags:
      - Info
    responses:
      200:
        description: Latest block hash and reward in KAS
        schema:
          type: object
          properties:
            block_hash:
              type: string
            block_reward:
              type: number
      500:
        description: Node error
    """
    return jsonify(query_node(_block_reward))


# ==================== ADDRESS ENDPOINTS ====================

@app.route("/addresses/<addr>/balance", methods=["GET"])
def get_balance_by_address(addr):
    """
    Get address balance in sompi
    ---
    tags:
      - Addresses
    parameters:
      - name: addr
        in: path
        type: string
        required: true
        description: Kaspa address including prefix (kaspa:...)
    responses:
      200:
        description: Balance
        schema:
          type: object
          properties:
            balance:
              type: string
      400:
        description: Malformed address
      500:
        description: Node error
    """
    address = validate_address(addr)
    balance = query_node(lambda client: client.get_balance_by_address(address))
    return jsonify({"balance": str(balance)})


# ==================== HEALTH CHECK ====================

@app.route("/health", methods=["GET"])
def health_check():
    """
    Health check
    ---
    tags:
      - Health
    responses:
      200:
        description: Health status
        schema:
          type: object
          properties:
            status:
              type: string
              description: Overall health status (healthy/degraded)
            node:
              type: object
              properties:
                reachable:
                  type: boolean
                url:
                  type: string
            timestamp:
              type: number
    """
    try:
        query_node(lambda client: None)
        node_status = True
    except NodeRpcError as e:
        logger.warning(f"Node health degraded: {e}")
        node_status = False

    return jsonify({
        "status": "healthy" if node_status else "degraded",
        "node": {
            "reachable": node_status,
            "url": config.NODE_WRPC_URL
        },
        "timestamp": time.time()
    }), 200


def main() -> None:
    logger.info("Starting Kaspa Explorer API")
    logger.info(f"Node wRPC URL: {config.NODE_WRPC_URL}")
    logger.info(f"Listening on {config.API_HOST}:{config.API_PORT}")
    logger.debug(f"Configuration: {config.to_dict()}")

    app.run(
        host=config.API_HOST,
        port=config.API_PORT,
        debug=config.DEBUG,
        threaded=True
    )


if __name__ == "__main__":
    main()
