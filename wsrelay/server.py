"""aiohttp server hosting the relay.

Routes:
- ``{echo_path}``: diagnostic echo WebSocket
- everything else: WebSocket upgrades become tunnels, plain HTTP requests are
  redirected to a randomly chosen fallback site
"""

import random
import logging
from typing import Optional, Set

from aiohttp import web, WSMsgType, WSCloseCode

from wsrelay.core.config import RelayConfig
from wsrelay.core.models import TunnelSession
from wsrelay.core.pipeline import RelayPipeline
from wsrelay.network.upstream import UpstreamConnector

logger = logging.getLogger(__name__)


CONFIG_KEY = web.AppKey("config", RelayConfig)
CONNECTOR_KEY = web.AppKey("connector", UpstreamConnector)
PIPELINES_KEY = web.AppKey("pipelines", set)

ECHO_GREETING = "Echo server connected. Send a message!"


class WebSocketChannel:
    """Adapt an aiohttp WebSocket to the pipeline's client channel."""

    def __init__(self, ws: web.WebSocketResponse):
        self._ws = ws

    async def receive(self) -> Optional[bytes]:
        msg = await self._ws.receive()

        if msg.type == WSMsgType.BINARY:
            return msg.data
        if msg.type == WSMsgType.TEXT:
            return msg.data.encode("utf-8")
        if msg.type == WSMsgType.ERROR:
            raise ConnectionError(f"WebSocket error: {self._ws.exception()}")
        # CLOSE, CLOSING, CLOSED
        return None

    async def send(self, data: bytes) -> None:
        await self._ws.send_bytes(data)

    async def close(self, code: int, reason: str = "") -> None:
        if self._ws.closed:
            return
        await self._ws.close(code=code, message=reason.encode("utf-8"))

    @property
    def closed(self) -> bool:
        return self._ws.closed


def is_websocket_upgrade(request: web.Request) -> bool:
    return request.headers.get("Upgrade", "").lower() == "websocket"


def fallback_url(request: web.Request, domains) -> str:
    """Decoy URL on a random fallback domain, keeping path and query."""
    target = random.choice(domains)
    url = f"https://{target}{request.rel_url.path}"
    if request.rel_url.query_string:
        url = f"{url}?{request.rel_url.query_string}"
    return url


async def handle_tunnel(request: web.Request) -> web.StreamResponse:
    """Upgrade to a WebSocket and run a relay session over it."""
    config = request.app[CONFIG_KEY]

    ws = web.WebSocketResponse(max_msg_size=config.server.max_msg_size)
    if not ws.can_prepare(request).ok:
        logger.warning("WebSocket upgrade failed from %s", request.remote)
        return web.Response(text="WebSocket upgrade failed", status=400)
    await ws.prepare(request)

    pipelines: Set[RelayPipeline] = request.app[PIPELINES_KEY]

    def forget(session: TunnelSession) -> None:
        pipelines.discard(pipeline)

    pipeline = RelayPipeline(
        WebSocketChannel(ws),
        config.trust,
        connector=request.app[CONNECTOR_KEY],
        chunk_size=config.upstream.chunk_size,
        on_close=forget,
    )
    pipelines.add(pipeline)
    logger.debug("Tunnel %s accepted from %s", pipeline.session.session_id, request.remote)

    await pipeline.run()
    return ws


async def handle_root(request: web.Request) -> web.StreamResponse:
    if is_websocket_upgrade(request):
        return await handle_tunnel(request)

    config = request.app[CONFIG_KEY]
    raise web.HTTPFound(fallback_url(request, config.server.fallback_domains))


async def handle_echo(request: web.Request) -> web.StreamResponse:
    if not is_websocket_upgrade(request):
        return web.Response(text="Please use a WebSocket client.", status=400)

    ws = web.WebSocketResponse()
    await ws.prepare(request)
    logger.info("Echo connection established")
    await ws.send_str(ECHO_GREETING)

    async for msg in ws:
        if msg.type == WSMsgType.TEXT:
            await ws.send_str(f"Echo: {msg.data}")
        elif msg.type == WSMsgType.BINARY:
            await ws.send_bytes(msg.data)
        elif msg.type == WSMsgType.ERROR:
            logger.error("Echo WebSocket error: %s", ws.exception())

    logger.info("Echo connection closed")
    return ws


async def close_pipelines(app: web.Application) -> None:
    """Close every live tunnel on shutdown."""
    pipelines = list(app[PIPELINES_KEY])
    if pipelines:
        logger.info("Closing %d active tunnel(s)", len(pipelines))
    for pipeline in pipelines:
        await pipeline.close(WSCloseCode.GOING_AWAY, "Server shutting down")


def create_app(
    config: RelayConfig,
    connector: Optional[UpstreamConnector] = None,
) -> web.Application:
    """Build the aiohttp application serving the relay."""
    app = web.Application()
    app[CONFIG_KEY] = config
    app[CONNECTOR_KEY] = connector or UpstreamConnector(config.upstream)
    app[PIPELINES_KEY] = set()

    if config.server.echo_path:
        app.router.add_get(config.server.echo_path, handle_echo)
    app.router.add_route("*", "/{tail:.*}", handle_root)

    app.on_shutdown.append(close_pipelines)
    return app
