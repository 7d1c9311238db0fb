"""FastAPI gateway for the raffle service.

External collaborators reach the raffle through this surface: the trigger
source probes ``GET /api/upkeep`` and acts on ``POST /api/upkeep/perform``,
the oracle relay delivers words on ``POST /api/vrf/fulfill``. The relay and
admin routes only act when ``vrf.callback_token`` is configured and the
caller presents it in ``X-VRF-Token``.
"""

from __future__ import annotations

import asyncio
import hmac
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from fastapi import FastAPI, Header, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from vrf_raffle import __version__
from vrf_raffle.blockchain.client import BlockchainClient
from vrf_raffle.lottery.engine import Raffle
from vrf_raffle.lottery.errors import RaffleError
from vrf_raffle.lottery.operator import UpkeepOperator
from vrf_raffle.utils.logger import get_logger

logger = get_logger(__name__)


class EnterRequest(BaseModel):
    player: str = Field(min_length=1)
    amount: int = Field(ge=0)


class FulfillRequest(BaseModel):
    request_id: int = Field(alias="requestId")
    random_words: List[int] = Field(alias="randomWords", min_length=1)


class RaffleWebServer:
    """HTTP and WebSocket gateway for the raffle."""

    def __init__(
        self,
        config: Dict[str, Any],
        raffle: Raffle,
        operator: Optional[UpkeepOperator] = None,
        blockchain_client: Optional[BlockchainClient] = None,
    ) -> None:
        self.config = config
        self.raffle = raffle
        self.operator = operator
        self.blockchain_client = blockchain_client
        self._callback_token: str = str(config.get("vrf", {}).get("callback_token") or "")

        self.app = FastAPI(
            title="VRF Raffle API",
            description="Entry, upkeep and randomness callback surface of the raffle",
            version=__version__,
        )

        self._broadcast_queue: Optional[asyncio.Queue] = None
        self._broadcast_task: Optional[asyncio.Task] = None
        self._listener_registered = False
        self._websockets: Set[WebSocket] = set()

        self._setup_middleware()
        self._setup_exception_handlers()
        self._setup_routes()

    # ------------------------------------------------------------------
    # FastAPI scaffolding
    # ------------------------------------------------------------------
    def _setup_middleware(self) -> None:
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    def _setup_exception_handlers(self) -> None:
        @self.app.exception_handler(RaffleError)
        async def raffle_error_handler(request: Request, exc: RaffleError) -> JSONResponse:
            logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
            return JSONResponse(status_code=exc.http_status, content=exc.to_payload())

    def _check_callback_token(self, token: Optional[str]) -> None:
        if not self._callback_token:
            raise HTTPException(status_code=503, detail="Callback relay disabled: vrf.callback_token is not configured")
        if not token or not hmac.compare_digest(token, self._callback_token):
            raise HTTPException(status_code=401, detail="Invalid callback token")

    def _setup_routes(self) -> None:
        # ------------------------------------------------------------------
        # Health & status
        # ------------------------------------------------------------------
        @self.app.get("/api/health")
        async def health_check() -> Dict[str, Any]:
            blockchain_health: Dict[str, Any] | None = None
            if self.blockchain_client:
                blockchain_health = {
                    **self.blockchain_client.get_client_status(),
                    **await self.blockchain_client.health_check(),
                }
            return {
                "status": "ok",
                "timestamp": datetime.utcnow().isoformat(),
                "components": {
                    "web": True,
                    "operator": self.operator.get_status() if self.operator else {"status": "external"},
                    "blockchain": blockchain_health or {"status": "unavailable"},
                    "raffle": self.raffle.raffle_state.name,
                },
            }

        @self.app.get("/api/raffle")
        async def get_raffle() -> Dict[str, Any]:
            return self.raffle.snapshot()

        @self.app.get("/api/raffle/players")
        async def get_players() -> Dict[str, Any]:
            players = self.raffle.players
            return {"players": players, "totalPlayers": len(players)}

        @self.app.get("/api/raffle/players/{index}")
        async def get_player(index: int) -> Dict[str, Any]:
            return {"index": index, "player": self.raffle.get_player(index)}

        @self.app.post("/api/raffle/enter")
        async def enter_raffle(request: EnterRequest) -> Dict[str, Any]:
            player_count = await self.raffle.enter_raffle(request.player, request.amount)
            return {"success": True, "player": request.player, "playerCount": player_count}

        # ------------------------------------------------------------------
        # Trigger source
        # ------------------------------------------------------------------
        @self.app.get("/api/upkeep")
        async def check_upkeep() -> Dict[str, Any]:
            return self.raffle.check_upkeep().to_dict()

        @self.app.post("/api/upkeep/perform")
        async def perform_upkeep() -> Dict[str, Any]:
            request_id = await self.raffle.perform_upkeep()
            return {"success": True, "requestId": request_id}

        # ------------------------------------------------------------------
        # Randomness oracle callback
        # ------------------------------------------------------------------
        @self.app.post("/api/vrf/fulfill")
        async def fulfill(
            request: FulfillRequest,
            x_vrf_token: Optional[str] = Header(default=None),
        ) -> Dict[str, Any]:
            self._check_callback_token(x_vrf_token)
            winner = await self.raffle.fulfill_random_words(request.request_id, request.random_words)
            return {"success": True, "requestId": request.request_id, "winner": winner}

        @self.app.post("/api/admin/retry-payout")
        async def retry_payout(x_vrf_token: Optional[str] = Header(default=None)) -> Dict[str, Any]:
            self._check_callback_token(x_vrf_token)
            winner = await self.raffle.retry_payout()
            return {"success": True, "winner": winner}

        # ------------------------------------------------------------------
        # History & feed
        # ------------------------------------------------------------------
        @self.app.get("/api/history")
        async def get_history(limit: int = 20) -> Dict[str, Any]:
            return {"rounds": self.raffle.store.serialize_history(limit)}

        @self.app.get("/api/activities")
        async def get_activities(limit: int = 50) -> Dict[str, Any]:
            return {"activities": self.raffle.store.serialize_feed(limit)}

        @self.app.websocket("/ws/raffle")
        async def websocket_endpoint(websocket: WebSocket) -> None:
            await websocket.accept()
            self._websockets.add(websocket)
            try:
                await websocket.send_json({"type": "snapshot", "data": self.raffle.snapshot()})
                while True:
                    await websocket.receive_text()
            except WebSocketDisconnect:
                pass
            finally:
                self._websockets.discard(websocket)

    # ------------------------------------------------------------------
    # Lifecycle management
    # ------------------------------------------------------------------
    async def start(self, host: str = "0.0.0.0", port: int = 6080) -> None:
        import uvicorn

        logger.info("Starting raffle web server on %s:%s", host, port)
        self._broadcast_queue = asyncio.Queue()
        if not self._listener_registered:
            self.raffle.store.add_listener("*", self._enqueue_broadcast)
            self._listener_registered = True
        self._broadcast_task = asyncio.create_task(self._broadcast_loop(), name="raffle-web-broadcast")

        config = uvicorn.Config(self.app, host=host, port=port, log_level="info", access_log=True)
        server = uvicorn.Server(config)
        try:
            await server.serve()
        finally:
            logger.info("Raffle web server stopped")

    async def stop(self) -> None:
        logger.info("Stopping raffle web server")
        if self._listener_registered:
            self.raffle.store.remove_listener("*", self._enqueue_broadcast)
            self._listener_registered = False
        if self._broadcast_task:
            self._broadcast_task.cancel()
            try:
                await self._broadcast_task
            except asyncio.CancelledError:
                pass
            self._broadcast_task = None
        for websocket in list(self._websockets):
            try:
                await websocket.close(code=1001, reason="Server shutdown")
            except RuntimeError as exc:
                logger.debug("Error closing websocket: %s", exc)
        self._websockets.clear()

    # ------------------------------------------------------------------
    # Broadcasting
    # ------------------------------------------------------------------
    def _enqueue_broadcast(self, payload: Dict[str, Any]) -> None:
        if self._broadcast_queue is not None:
            self._broadcast_queue.put_nowait(payload)

    async def _broadcast_loop(self) -> None:
        assert self._broadcast_queue is not None
        while True:
            payload = await self._broadcast_queue.get()
            for websocket in list(self._websockets):
                try:
                    await websocket.send_json({"type": "event", "data": payload})
                except (RuntimeError, WebSocketDisconnect) as exc:
                    logger.debug("Dropping websocket after send failure: %s", exc)
                    self._websockets.discard(websocket)
