"""
Pytest Configuration and Fixtures for the agent2mqtt project.

The broker side is replaced by a scripted fake of `aiomqtt.Client`, the agent
side by real `SOCK_SEQPACKET` socket pairs, so the tests need neither a
running broker nor a running agent.
"""

import asyncio
import logging
import socket
import sys
from typing import List, Optional

import pytest

from agent2mqtt.bridge.agent_socket import SeqpacketConnection
from agent2mqtt.bridge.config import BridgeConfig


@pytest.fixture(scope="session", autouse=True)
def setup_test_logging():
    """
    Configures the Python logging framework globally for all tests.
    Because tests bypass main.py, this ensures our logs are formatted
    and visible during test runs.
    """
    formatter = logging.Formatter(fmt="%(levelname)-8s %(message)s - %(funcName)s:%(lineno)d ")
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(formatter)
    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)
    logger.addHandler(handler)

# --- Broker side ---

class FakeMQTTClient:
    """Stands in for aiomqtt.Client. Inbound messages are fed through `incoming`."""

    def __init__(self, hostname, port, **kwargs):
        self.hostname = hostname
        self.port = port
        self.kwargs = kwargs
        self.connect_error: Optional[Exception] = None
        self.subscribe_error: Optional[Exception] = None
        self.publish_error: Optional[Exception] = None
        self.granted = [0]
        self.entered = False
        self.exited = False
        self.subscriptions = []
        self.published = []
        self.incoming: asyncio.Queue = asyncio.Queue()

    async def __aenter__(self):
        if self.connect_error is not None:
            raise self.connect_error
        self.entered = True
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.exited = True

    async def subscribe(self, topic, qos=0, **kwargs):
        self.subscriptions.append((topic, qos))
        if self.subscribe_error is not None:
            raise self.subscribe_error
        return self.granted

    async def publish(self, topic, payload=None, qos=0, retain=False, **kwargs):
        if self.publish_error is not None:
            raise self.publish_error
        self.published.append((topic, payload, qos))

    @property
    def messages(self):
        return self._iterate()

    async def _iterate(self):
        # An exception put on the queue simulates the connection dropping.
        while True:
            item = await self.incoming.get()
            if isinstance(item, Exception):
                raise item
            yield item


class FakeClientFactory:
    """
    Builds FakeMQTTClients for BrokerLink. `connect_errors` are consumed one
    per connection attempt; `granted` is the SUBACK every new client returns.
    """

    def __init__(self):
        self.clients: List[FakeMQTTClient] = []
        self.connect_errors: List[Exception] = []
        self.granted = [0]

    def __call__(self, hostname, port, **kwargs):
        client = FakeMQTTClient(hostname, port, **kwargs)
        if self.connect_errors:
            client.connect_error = self.connect_errors.pop(0)
        client.granted = self.granted
        self.clients.append(client)
        return client

    @property
    def current(self) -> FakeMQTTClient:
        return self.clients[-1]


@pytest.fixture
def client_factory():
    return FakeClientFactory()


@pytest.fixture
def config():
    """Default configuration with instant retries."""
    return BridgeConfig(retry_interval=0)

# --- Agent side ---

class PairConnector:
    """
    Connector for AgentSocket that hands out connected seqpacket socket pairs.
    The far ends play the agent and are kept in `agent_ends`.
    """

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.attempts = 0
        self.paths: List[str] = []
        self.agent_ends: List[SeqpacketConnection] = []
        self.bridge_ends: List[SeqpacketConnection] = []
        self.gate: Optional[asyncio.Event] = None

    async def __call__(self, path: str) -> SeqpacketConnection:
        self.attempts += 1
        self.paths.append(path)
        if self.gate is not None:
            await self.gate.wait()
        if self.failures:
            self.failures -= 1
            raise ConnectionRefusedError(111, "Connection refused")
        ours, theirs = socket.socketpair(socket.AF_UNIX, socket.SOCK_SEQPACKET)
        self.agent_ends.append(SeqpacketConnection(theirs))
        conn = SeqpacketConnection(ours)
        self.bridge_ends.append(conn)
        return conn

    @property
    def agent(self) -> SeqpacketConnection:
        return self.agent_ends[-1]

    def close(self):
        for conn in self.agent_ends + self.bridge_ends:
            conn.close()


@pytest.fixture
def connector():
    pair_connector = PairConnector()
    yield pair_connector
    pair_connector.close()


@pytest.fixture
def registration():
    """The datagrams the agent must see first on every connection, in order."""
    return [
        b'{"address":256,"method":"bind"}',
        b'{"key":"auto.report","method":"register"}',
        b'{"key":"auto.forward","method":"register"}',
        b'{"key":"lanbox.event","method":"register"}',
    ]


@pytest.fixture
def eventually():
    """Polls a condition on the running loop until it holds or the timeout expires."""
    async def _eventually(predicate, timeout: float = 2.0):
        async def _poll():
            while not predicate():
                await asyncio.sleep(0.01)
        await asyncio.wait_for(_poll(), timeout=timeout)
    return _eventually


@pytest.fixture
def agent_recv():
    """Reads one datagram from an agent end, failing instead of hanging."""
    async def _recv(conn: SeqpacketConnection, timeout: float = 2.0) -> bytes:
        return await asyncio.wait_for(conn.recv(4096), timeout=timeout)
    return _recv
