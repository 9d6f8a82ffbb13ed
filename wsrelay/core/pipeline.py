"""Relay pipeline for WS-Relay.

Owns the lifecycle of one tunnel:
1. Wait for the first client frame
2. Detect the protocol and destination
3. Connect upstream (and acknowledge, for VLESS)
4. Copy bytes in both directions until either side ends
5. Tear everything down exactly once
"""

import asyncio
import uuid
from typing import Optional, Callable, Awaitable, Set, Any, Protocol

from aiohttp import WSCloseCode

from wsrelay.core.config import TrustConfig
from wsrelay.core.exceptions import (
    RelayIOError,
    UnknownFormatError,
    UpstreamUnreachableError,
)
from wsrelay.core.models import ParsedRequest, ProtocolKind, SessionState, TunnelSession
from wsrelay.network.upstream import UpstreamChannel, UpstreamConnector
from wsrelay.protocol.detector import ProtocolDetector
from wsrelay.utils.logging import get_logger

logger = get_logger(__name__)


VLESS_ACK = b"\x00\x00"

CLIENT_TO_UPSTREAM = "client->upstream"
UPSTREAM_TO_CLIENT = "upstream->client"


class _Interrupted(Exception):
    """Teardown cancelled the step being awaited."""


class ClientChannel(Protocol):
    """Inbound side of a tunnel (the WebSocket)."""

    async def receive(self) -> Optional[bytes]:
        """Next frame, or None once the peer has closed."""
        ...

    async def send(self, data: bytes) -> None:
        ...

    async def close(self, code: int, reason: str = "") -> None:
        """Close the channel. Must be safe to call more than once."""
        ...


class RelayPipeline:
    """Bridge one client channel to one upstream TCP connection."""

    def __init__(
        self,
        client: ClientChannel,
        trust: TrustConfig,
        connector: Optional[UpstreamConnector] = None,
        chunk_size: int = 65536,
        on_close: Optional[Callable[[TunnelSession], Any]] = None,
        session_id: Optional[str] = None,
    ):
        self.session = TunnelSession(
            session_id=session_id or uuid.uuid4().hex[:12],
            client=client,
        )
        self.detector = ProtocolDetector(trust)
        self.connector = connector or UpstreamConnector()
        self.chunk_size = chunk_size
        self._on_close = on_close
        self._tasks: Set[asyncio.Task] = set()
        self.log = logger.bind(session_id=self.session.session_id)

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def closed(self) -> bool:
        return self.session.closed

    async def run(self) -> None:
        """Drive the session until it reaches ``CLOSED``."""
        try:
            await self._run()
        except _Interrupted:
            return
        except asyncio.CancelledError:
            await self.close(WSCloseCode.GOING_AWAY, "Session cancelled")
            raise

    async def _run(self) -> None:
        client = self.session.client

        frame = await self._step(client.receive())
        if self.closed:
            return
        if frame is None:
            self.log.debug("Client closed before first frame")
            await self.close(WSCloseCode.OK)
            return

        try:
            request = self.detector.detect(frame)
        except UnknownFormatError:
            self.log.warning("Rejected first frame", frame_length=len(frame))
            await self.close(WSCloseCode.PROTOCOL_ERROR, "Invalid data format")
            return

        self.session.request = request
        self.session.state = SessionState.CONNECTING
        self.log.info(
            "Connecting upstream",
            protocol=request.protocol.value,
            target=request.target,
        )

        try:
            upstream = await self._step(
                self.connector.connect(request.address, request.port)
            )
        except UpstreamUnreachableError as e:
            self.log.warning("Upstream connection failed", error=str(e))
            await self.close(WSCloseCode.INTERNAL_ERROR, "Upstream connection failed")
            return

        self.session.upstream = upstream
        if self.closed:
            # Torn down while the connect was completing
            await upstream.close()
            return

        try:
            await self._start(request, upstream)
        except OSError as e:
            self.log.info("Relay setup failed", error=str(e))
            await self.close(WSCloseCode.INTERNAL_ERROR, "Relay error")
            return

        await self._relay(upstream)

    async def _start(self, request: ParsedRequest, upstream: UpstreamChannel) -> None:
        """Acknowledge the client and flush the leftover payload upstream."""
        if request.protocol == ProtocolKind.VLESS:
            await self._step(self.session.client.send(VLESS_ACK))
        if self.closed:
            return

        self.session.state = SessionState.RELAYING
        self.session.started = True

        if request.payload:
            await self._step(upstream.write(request.payload))

    async def _relay(self, upstream: UpstreamChannel) -> None:
        if self.closed:
            return
        outbound = self._spawn(self._client_to_upstream(upstream))
        inbound = self._spawn(self._upstream_to_client(upstream))

        done, _ = await asyncio.wait(
            {outbound, inbound}, return_when=asyncio.FIRST_COMPLETED
        )

        error = None
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                error = task.exception()

        if error is not None:
            self.log.info("Relay ended with error", error=str(error))
            await self.close(WSCloseCode.INTERNAL_ERROR, "Relay error")
        else:
            self.log.info("Relay finished")
            await self.close(WSCloseCode.OK)

    async def _client_to_upstream(self, upstream: UpstreamChannel) -> None:
        client = self.session.client
        try:
            while True:
                chunk = await client.receive()
                if chunk is None:
                    return
                if chunk:
                    await upstream.write(chunk)
        except OSError as e:
            raise RelayIOError(CLIENT_TO_UPSTREAM, e) from e

    async def _upstream_to_client(self, upstream: UpstreamChannel) -> None:
        client = self.session.client
        try:
            while True:
                chunk = await upstream.read(self.chunk_size)
                if not chunk:
                    return
                await client.send(chunk)
        except OSError as e:
            raise RelayIOError(UPSTREAM_TO_CLIENT, e) from e

    def _spawn(self, coro: Awaitable) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _step(self, coro: Awaitable) -> Any:
        """Await ``coro`` as a task that teardown can cancel.

        Cancelling the caller leaves the step running for ``close()`` to
        reap; cancellation by ``close()`` raises ``_Interrupted``.
        """
        task = self._spawn(coro)
        await asyncio.wait({task})
        if task.cancelled():
            raise _Interrupted()
        return task.result()

    async def close(self, code: int = WSCloseCode.OK, reason: str = "") -> None:
        """Tear down the session. Only the first call has any effect."""
        if self.session.state == SessionState.CLOSED:
            return
        previous = self.session.state
        self.session.state = SessionState.CLOSED

        current = asyncio.current_task()
        pending = [t for t in self._tasks if t is not current and not t.done()]
        for task in pending:
            task.cancel()

        try:
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
            if self.session.upstream is not None:
                await self.session.upstream.close()
        finally:
            # Runs even if the closing task is itself cancelled
            try:
                await self.session.client.close(code, reason)
            except OSError as e:
                self.log.debug("Client close failed", error=str(e))
            finally:
                self.log.debug(
                    "Session closed", previous_state=previous.value, code=int(code)
                )
                if self._on_close is not None:
                    self._on_close(self.session)
