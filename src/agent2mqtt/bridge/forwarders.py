"""
The two forwarding loops of the bridge.

- InboundForwarder: broker -> agent socket.
- OutboundForwarder: agent socket -> broker.

They never talk to each other directly. The only shared state is the
AgentSocket handle, which serialises reconnects against sends and reads.
"""
import logging
from typing import Optional

from agent2mqtt.bridge.agent_socket import AgentSocket
from agent2mqtt.bridge.models import Message
from agent2mqtt.bridge.mqtt import BrokerLink

logger = logging.getLogger(__name__)


class InboundForwarder:
    """Forwards command topic payloads into the agent socket."""

    def __init__(self, broker: BrokerLink, agent_socket: AgentSocket, command_topic: str):
        self.broker = broker
        self.agent_socket = agent_socket
        self.command_topic = command_topic

    async def run(self):
        async for item in self.broker.messages():
            await self.handle(item)

    async def handle(self, item: Optional[Message]):
        if item is None:
            logger.info("MQTT Connection lost. Reconnecting...")
            await self.broker.reconnect()
            return

        if item.topic != self.command_topic:
            logger.debug(f"Ignoring message on topic '{item.topic}'")
            return

        try:
            await self.agent_socket.send(item.payload)
            logger.debug(f"Forwarded {len(item.payload)} bytes to agent")
        except OSError as e:
            # Lost commands are not retried
            logger.warning(f"Dropped command for agent: {e}")


class OutboundForwarder:
    """Publishes everything the agent emits to the response topic."""

    def __init__(self, agent_socket: AgentSocket, broker: BrokerLink, response_topic: str):
        self.agent_socket = agent_socket
        self.broker = broker
        self.response_topic = response_topic

    async def run(self):
        while True:
            await self.step()

    async def step(self):
        data = await self.agent_socket.receive()

        if not data:
            logger.warning("Error reading from agent socket. Try reconnecting...")
            await self.agent_socket.reconnect()
            return

        await self.broker.publish(Message(topic=self.response_topic, payload=data))
