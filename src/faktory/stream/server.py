"""WebSocket event stream server."""

from __future__ import annotations

import asyncio
import json
import logging
import weakref
from typing import TYPE_CHECKING, Any, Optional

from aiohttp import WSCloseCode, WSMsgType, web

from faktory.stream.broadcaster import Subscription

if TYPE_CHECKING:
    from faktory.orchestrator.engine import AgentEngine

logger = logging.getLogger(__name__)


class EventStreamServer:
    """
    Streams agent events to WebSocket subscribers.

    A new connection receives a ``status`` message, then the replay buffer
    (oldest first), then live events. Clients may send
    ``{"type": "requestAnalysis", "positionId": "..."}`` to queue an
    out-of-band analysis. Read-only ``/status``, ``/decisions`` and
    ``/health`` endpoints expose the engine state as JSON.
    """

    def __init__(
        self,
        engine: AgentEngine,
        host: str = "0.0.0.0",
        port: int = 8080,
        heartbeat_seconds: Optional[float] = 30.0,
    ) -> None:
        self.engine = engine
        self.host = host
        self.port = port
        self.heartbeat_seconds = heartbeat_seconds
        self.runner: web.AppRunner | None = None
        self.site: web.TCPSite | None = None
        self._sockets: weakref.WeakSet[web.WebSocketResponse] = weakref.WeakSet()

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/", self._handle_stream)
        app.router.add_get("/ws", self._handle_stream)
        app.router.add_get("/status", self._handle_status)
        app.router.add_get("/decisions", self._handle_decisions)
        app.router.add_get("/health", self._handle_health)
        app.on_shutdown.append(self._close_sockets)
        return app

    async def start(self) -> None:
        self.runner = web.AppRunner(self.build_app())
        await self.runner.setup()
        self.site = web.TCPSite(self.runner, self.host, self.port)
        await self.site.start()
        logger.info(f"Event stream listening on ws://{self.host}:{self.port}")

    async def stop(self) -> None:
        if self.runner:
            await self.runner.cleanup()
            self.runner = None
            self.site = None
            logger.info("Event stream stopped")

    # ── Handlers ───────────────────────────────────────────────────────

    async def _handle_stream(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(heartbeat=self.heartbeat_seconds)
        await ws.prepare(request)
        self._sockets.add(ws)

        broadcaster = self.engine.broadcaster
        subscription: Optional[Subscription] = None
        sender: Optional[asyncio.Task[None]] = None
        try:
            subscription = broadcaster.subscribe()
            logger.info(
                f"Subscriber connected from {request.remote} "
                f"({broadcaster.subscriber_count} connected)"
            )

            await ws.send_str(
                broadcaster.status_message("connected", running=self.engine.running).to_json()
            )
            sender = asyncio.create_task(self._pump(ws, subscription))

            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    self._handle_client_message(msg.data)
                elif msg.type == WSMsgType.ERROR:
                    logger.warning(f"WebSocket error: {ws.exception()}")
        finally:
            if subscription is not None:
                subscription.close()
            if sender is not None:
                # A dropped subscriber's pump is sending the close frame
                if not (subscription is not None and subscription.dropped):
                    sender.cancel()
                await asyncio.gather(sender, return_exceptions=True)
            logger.info(
                f"Subscriber disconnected from {request.remote} "
                f"({broadcaster.subscriber_count} connected)"
            )

        return ws

    async def _pump(self, ws: web.WebSocketResponse, subscription: Subscription) -> None:
        """Forward subscription messages to the socket until either side closes."""
        try:
            async for message in subscription:
                await ws.send_str(message.to_json())
        except ConnectionResetError:
            subscription.close()
            return

        if subscription.dropped and not ws.closed:
            await ws.close(code=WSCloseCode.TRY_AGAIN_LATER, message=b"subscriber too slow")

    def _handle_client_message(self, raw: str) -> None:
        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Invalid message received: {raw[:200]}")
            return

        if not isinstance(message, dict):
            logger.warning(f"Ignoring non-object message: {raw[:200]}")
            return

        if message.get("type") == "requestAnalysis":
            position_id = message.get("positionId") or message.get("tokenId")
            if position_id:
                self.engine.request_analysis(str(position_id))
            else:
                logger.warning("requestAnalysis message without positionId")
        else:
            logger.debug(f"Ignoring message of type {message.get('type')!r}")

    async def _handle_status(self, request: web.Request) -> web.Response:
        return web.json_response(self.engine.status())

    async def _handle_decisions(self, request: web.Request) -> web.Response:
        try:
            limit = int(request.query.get("limit", "50"))
        except ValueError:
            return web.json_response({"ok": False, "error": "invalid_limit"}, status=400)
        decisions = self.engine.recent_decisions(limit=max(limit, 0))
        payload: list[dict[str, Any]] = [d.model_dump(mode="json") for d in decisions]
        return web.json_response({"decisions": payload, "stats": self.engine.decision_stats()})

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({"ok": True, "running": self.engine.running})

    async def _close_sockets(self, app: web.Application) -> None:
        for ws in list(self._sockets):
            await ws.close(code=WSCloseCode.GOING_AWAY, message=b"server shutdown")
