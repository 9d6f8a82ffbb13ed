"""Pytest configuration and fixtures for WS-Relay tests."""

import asyncio
import socket
from typing import Callable, List, Optional, Tuple

import pytest

from wsrelay.core.config import RelayConfig, ServerConfig, TrustConfig, UpstreamConfig
from wsrelay.core.exceptions import UpstreamUnreachableError


IDENTIFIER = "d342d11e-d424-4583-b36e-524ab1f0afa4"
SHARED_SECRET = "correct horse battery staple"


def unused_port() -> int:
    """Return a local port with nothing listening on it."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


async def start_echo_server():
    """Start a TCP echo server on an ephemeral port."""

    async def echo(reader, writer):
        while True:
            data = await reader.read(4096)
            if not data:
                break
            writer.write(data)
            await writer.drain()
        writer.close()

    server = await asyncio.start_server(echo, "127.0.0.1", 0)
    return server, server.sockets[0].getsockname()[1]


async def start_stalled_server():
    """Start a TCP server that accepts connections but never reads from them."""
    peers: List[asyncio.StreamWriter] = []

    async def hold(reader, writer):
        peers.append(writer)

    server = await asyncio.start_server(hold, "127.0.0.1", 0)
    return server, server.sockets[0].getsockname()[1], peers


async def stop_stalled_server(server, peers) -> None:
    for writer in peers:
        writer.transport.abort()
    server.close()
    await server.wait_closed()


class FakeClientChannel:
    """In-memory stand-in for the WebSocket side of a tunnel."""

    def __init__(self):
        self._frames: Optional[asyncio.Queue] = None
        self._pending: List[Optional[bytes]] = []
        self.sent: List[bytes] = []
        self.close_calls: List[Tuple[int, str]] = []
        self.closed = False

    @property
    def frames(self) -> asyncio.Queue:
        # Created lazily so the queue binds to the running test loop
        if self._frames is None:
            self._frames = asyncio.Queue()
            for item in self._pending:
                self._frames.put_nowait(item)
        return self._frames

    def feed(self, data: bytes) -> None:
        if self._frames is None:
            self._pending.append(data)
        else:
            self._frames.put_nowait(data)

    def disconnect(self) -> None:
        self.feed(None)

    async def receive(self) -> Optional[bytes]:
        if self.closed:
            return None
        return await self.frames.get()

    async def send(self, data: bytes) -> None:
        if self.closed:
            raise ConnectionResetError("client channel closed")
        self.sent.append(bytes(data))

    async def close(self, code: int, reason: str = "") -> None:
        self.close_calls.append((code, reason))
        self.closed = True


class FakeUpstream:
    """In-memory stand-in for an upstream TCP connection."""

    def __init__(self):
        self._incoming: Optional[asyncio.Queue] = None
        self.writes: List[bytes] = []
        self.close_count = 0
        self.read_error: Optional[Exception] = None

    @property
    def incoming(self) -> asyncio.Queue:
        if self._incoming is None:
            self._incoming = asyncio.Queue()
        return self._incoming

    @property
    def written(self) -> bytes:
        return b"".join(self.writes)

    @property
    def closed(self) -> bool:
        return self.close_count > 0

    def push(self, data: bytes) -> None:
        self.incoming.put_nowait(data)

    def eof(self) -> None:
        self.incoming.put_nowait(b"")

    def fail(self, error: Exception) -> None:
        self.read_error = error
        self.incoming.put_nowait(None)

    async def read(self, n: int) -> bytes:
        data = await self.incoming.get()
        if data is None and self.read_error is not None:
            raise self.read_error
        return data

    async def write(self, data: bytes) -> None:
        self.writes.append(bytes(data))

    async def close(self) -> None:
        self.close_count += 1


class RecordingConnector:
    """Connector that records attempts and hands out a fake upstream."""

    def __init__(self, upstream: Optional[FakeUpstream] = None, error: Optional[Exception] = None):
        self.upstream = upstream or FakeUpstream()
        self.error = error
        self.attempts: List[Tuple[str, int]] = []

    async def connect(self, host: str, port: int):
        self.attempts.append((host, port))
        if self.error is not None:
            raise UpstreamUnreachableError(host, port, self.error)
        return self.upstream


@pytest.fixture
def trust() -> TrustConfig:
    """Trust configuration shared by the test suite."""
    return TrustConfig(identifier=IDENTIFIER, shared_secret=SHARED_SECRET)


@pytest.fixture
def relay_config(trust) -> RelayConfig:
    """Relay configuration bound to an ephemeral port."""
    return RelayConfig(
        trust=trust,
        upstream=UpstreamConfig(connect_timeout=5.0),
        server=ServerConfig(host="127.0.0.1", port=0, fallback_domains=["example.org"]),
    )


@pytest.fixture
def client_channel() -> FakeClientChannel:
    return FakeClientChannel()


@pytest.fixture
def fake_upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def connector(fake_upstream) -> RecordingConnector:
    return RecordingConnector(fake_upstream)


@pytest.fixture
def eventually() -> Callable:
    """Poll a condition until it holds or the timeout expires."""

    async def wait(condition: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not condition():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.005)

    return wait
