"""
WebSocket service for latest-block pushes
Each socket gets its own node connection, held until the socket closes
"""

import asyncio
import json
import logging
from typing import Any, Callable, Dict, Optional, Set

from websockets.exceptions import ConnectionClosed
from websockets.asyncio.server import Server, ServerConnection, serve

from config import config
from node_rpc_client import NodeRpcClient, NodeRpcError, connect_node_client, latest_tip_hash

logger = logging.getLogger(__name__)

LAST_BLOCKS = "last-blocks"
JOIN_ROOM = "join-room"
JOIN_ROOM_ACK = "Joined room"


def fetch_last_blocks(client: NodeRpcClient) -> Dict[str, Any]:
    """Blocks from the current tip, with transactions"""
    return client.get_blocks(latest_tip_hash(client), True, True)


class LastBlocksServer:
    """Pushes the latest blocks to WebSocket clients on connect and on request"""

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 18910,
        client_factory: Callable[[], NodeRpcClient] = connect_node_client,
    ):
        self.host = host
        self.port = port
        self.client_factory = client_factory
        self.clients: Set[ServerConnection] = set()
        self.server: Optional[Server] = None

    async def push_last_blocks(self, websocket: ServerConnection, client: NodeRpcClient) -> bool:
        """Send the latest blocks, or an error envelope; returns False on failure"""
        try:
            blocks = await asyncio.to_thread(fetch_last_blocks, client)
        except NodeRpcError as e:
            logger.error(f"Failed to fetch blocks: {e}")
            await websocket.send(json.dumps({
                "status": "error",
                "message": f"Failed to fetch blocks: {e}",
            }))
            return False

        await websocket.send(json.dumps({"status": "success", LAST_BLOCKS: blocks}))
        return True

    async def handle_connection(self, websocket: ServerConnection) -> None:
        """Serve one client until it disconnects"""
        self.clients.add(websocket)
        logger.info(f"Client connected. Total clients: {len(self.clients)}")

        client: Optional[NodeRpcClient] = None
        try:
            try:
                client = await asyncio.to_thread(self.client_factory)
            except NodeRpcError as e:
                logger.error(f"Node unavailable for WebSocket client: {e}")
                await websocket.send(json.dumps({"status": "error", "message": str(e)}))
                return

            if not await self.push_last_blocks(websocket, client):
                return

            async for message in websocket:
                if not isinstance(message, str):
                    continue
                logger.debug(f"Received message: {message}")

                if message == JOIN_ROOM:
                    await websocket.send(JOIN_ROOM_ACK)
                elif message == LAST_BLOCKS:
                    if not await self.push_last_blocks(websocket, client):
                        return

        except ConnectionClosed:
            pass
        finally:
            self.clients.discard(websocket)
            if client is not None:
                try:
                    await asyncio.to_thread(client.disconnect)
                except NodeRpcError as e:
                    logger.warning(f"Failed to release node client: {e}")
            logger.info(f"Client disconnected. Total clients: {len(self.clients)}")

    async def start(self) -> None:
        """Start WebSocket server"""
        self.server = await serve(self.handle_connection, self.host, self.port)
        logger.info(f"WebSocket server is running on ws://{self.host}:{self.port}")

    async def stop(self) -> None:
        """Stop WebSocket server"""
        if self.server:
            self.server.close()
            await self.server.wait_closed()
        logger.info("WebSocket server stopped")

    async def run(self) -> None:
        await self.start()
        try:
            await self.server.serve_forever()
        finally:
            await self.stop()


async def serve_last_blocks() -> None:
    server = LastBlocksServer(config.WS_HOST, config.WS_PORT)
    await server.run()


def main() -> None:
    """Entry point for the standalone WebSocket service"""
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL),
        format=config.LOG_FORMAT
    )
    try:
        asyncio.run(serve_last_blocks())
    except KeyboardInterrupt:
        logger.info("Received shutdown signal")


if __name__ == "__main__":
    main()
