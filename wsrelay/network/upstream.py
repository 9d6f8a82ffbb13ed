"""Upstream TCP connector for relayed sessions.

A single connect attempt is made per session. Failures are surfaced
immediately as ``UpstreamUnreachableError``; retry and timeout policy belong
to whoever hosts the relay.
"""

import asyncio
import socket
import logging
from typing import Optional, Callable, Awaitable, Tuple

from wsrelay.core.config import UpstreamConfig
from wsrelay.core.exceptions import UpstreamUnreachableError

logger = logging.getLogger(__name__)


OpenConnection = Callable[..., Awaitable[Tuple[asyncio.StreamReader, asyncio.StreamWriter]]]


class UpstreamChannel:
    """Duplex byte stream to the upstream destination."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        host: str,
        port: int,
    ):
        self._reader = reader
        self._writer = writer
        self.host = host
        self.port = port
        self._closed = False

    async def read(self, n: int) -> bytes:
        """Read up to ``n`` bytes; empty bytes on EOF."""
        return await self._reader.read(n)

    async def write(self, data: bytes) -> None:
        """Write ``data`` and wait until the transport accepts more."""
        self._writer.write(data)
        await self._writer.drain()

    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True

        transport = self._writer.transport
        if transport.get_write_buffer_size():
            # A graceful close waits for the peer to drain the buffer
            logger.debug(
                "Aborting %s:%d with %d unsent bytes",
                self.host, self.port, transport.get_write_buffer_size(),
            )
            transport.abort()
        else:
            self._writer.close()
        try:
            await self._writer.wait_closed()
        except OSError:
            pass

    @property
    def buffered(self) -> int:
        """Bytes accepted by write() but not yet handed to the socket."""
        return self._writer.transport.get_write_buffer_size()

    @property
    def closed(self) -> bool:
        return self._closed

    def __repr__(self) -> str:
        return f"<UpstreamChannel {self.host}:{self.port} closed={self._closed}>"


class UpstreamConnector:
    """Open TCP connections to destinations named in tunnel headers."""

    def __init__(
        self,
        config: Optional[UpstreamConfig] = None,
        open_connection: Optional[OpenConnection] = None,
    ):
        self.config = config or UpstreamConfig()
        self._open_connection = open_connection or asyncio.open_connection

    async def connect(self, host: str, port: int) -> UpstreamChannel:
        """Connect to ``host``:``port``.

        Raises:
            UpstreamUnreachableError: the connection could not be established
        """
        try:
            if self.config.connect_timeout is not None:
                reader, writer = await asyncio.wait_for(
                    self._open_connection(host, port),
                    timeout=self.config.connect_timeout,
                )
            else:
                reader, writer = await self._open_connection(host, port)
        except (asyncio.TimeoutError, OSError) as e:
            raise UpstreamUnreachableError(host, port, e) from e

        if self.config.tcp_nodelay:
            sock = writer.get_extra_info("socket")
            if sock is not None and sock.family in (socket.AF_INET, socket.AF_INET6):
                sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

        logger.debug("Connected upstream %s:%d", host, port)
        return UpstreamChannel(reader, writer, host, port)
