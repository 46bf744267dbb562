"""
Agent Socket Handle.

This module owns the connection to the local agent process. It is responsible for:
- Opening the `SOCK_SEQPACKET` unix socket, retrying until the agent is reachable.
- Sending the registration messages the agent needs after every (re)connect.
- Sharing the single live connection between the inbound and outbound loops.
- Swapping in a fresh connection when the agent closes the old one.

Access follows a readers/writer discipline: `send` and `receive` hold the
reader side of an `aiorwlock.RWLock` and may overlap, while `reconnect` holds
the writer side for the whole swap.
"""
import asyncio
import logging
import socket
from typing import Awaitable, Callable, Iterable, Optional

import aiorwlock

from agent2mqtt.bridge.models import AgentRequest, BOOTSTRAP_MESSAGES

logger = logging.getLogger(__name__)


class SeqpacketConnection:
    """A non-blocking AF_UNIX/SOCK_SEQPACKET socket driven by the running loop."""

    def __init__(self, sock: socket.socket):
        sock.setblocking(False)
        self._sock = sock

    @classmethod
    async def open(cls, path: str) -> "SeqpacketConnection":
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_SEQPACKET)
        sock.setblocking(False)
        try:
            await asyncio.get_running_loop().sock_connect(sock, path)
        except BaseException:
            sock.close()
            raise
        return cls(sock)

    async def send(self, data: bytes) -> None:
        await asyncio.get_running_loop().sock_sendall(self._sock, data)

    async def recv(self, size: int) -> bytes:
        return await asyncio.get_running_loop().sock_recv(self._sock, size)

    def close(self) -> None:
        self._sock.close()


Connector = Callable[[str], Awaitable[SeqpacketConnection]]


class AgentSocket:
    path: str
    retry_interval: float
    buffer_size: int

    """
    Lock-protected handle to the one live connection to the agent.
    """
    def __init__(self,
                 path: str,
                 retry_interval: float = 0.5,
                 buffer_size: int = 4096,
                 bootstrap: Iterable[AgentRequest] = BOOTSTRAP_MESSAGES,
                 connector: Connector = SeqpacketConnection.open):
        self.path = path
        self.retry_interval = retry_interval
        self.buffer_size = buffer_size
        self._bootstrap = tuple(bootstrap)
        self._connector = connector
        self._lock = aiorwlock.RWLock()
        self._conn: Optional[SeqpacketConnection] = None

    @property
    def connected(self) -> bool:
        return self._conn is not None

    async def connect(self):
        """
        Establishes the first connection. Blocks until the agent is reachable.
        """
        async with self._lock.writer_lock:
            self._conn = await self._open()

    async def reconnect(self):
        """
        Replaces the current connection with a fresh one.

        Waits for in-flight `send`/`receive` calls to finish and holds off new
        ones until the new connection is registered with the agent.
        """
        async with self._lock.writer_lock:
            old_conn = self._conn
            self._conn = None
            if old_conn is not None:
                old_conn.close()
            self._conn = await self._open()

    async def send(self, data: bytes):
        """
        Sends one datagram. Errors are raised to the caller, never retried here.
        """
        async with self._lock.reader_lock:
            if self._conn is None:
                raise ConnectionError("agent socket is not connected")
            await self._conn.send(data)

    async def receive(self) -> bytes:
        """
        Reads the next datagram. An empty result means the agent closed the connection.
        """
        async with self._lock.reader_lock:
            if self._conn is None:
                return b""
            try:
                return await self._conn.recv(self.buffer_size)
            except OSError as e:
                logger.warning(f"Error reading from agent socket: {e}")
                return b""

    async def close(self):
        async with self._lock.writer_lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                logger.info("Agent socket closed.")

    async def _open(self) -> SeqpacketConnection:
        logger.info(f"Connecting to the agent socket at '{self.path}'...")
        while True:
            try:
                conn = await self._connector(self.path)
            except OSError as e:
                logger.debug(f"Agent socket not available ({e}). Retrying in {self.retry_interval}s...")
                await asyncio.sleep(self.retry_interval)
                continue

            logger.info("Successfully connected to agent socket")
            await self._register(conn)
            return conn

    async def _register(self, conn: SeqpacketConnection):
        for request in self._bootstrap:
            try:
                await conn.send(request.to_bytes())
            except OSError as e:
                logger.warning(f"Failed to send {request.to_json()} to agent: {e}")
