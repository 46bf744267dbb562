"""
MQTT Broker Link.

This module is responsible for:
- Connecting to the MQTT broker with the bridge's fixed identity and options.
- Holding the single command topic subscription across reconnects.
- Publishing agent output (fire-and-forget).
- Exposing inbound messages as a stream where `None` marks a lost connection.
"""
import asyncio
import logging
from typing import Any, AsyncIterator, Callable, Optional

from aiomqtt import Client as MQTTClient, MqttError

from agent2mqtt.bridge.config import BridgeConfig
from agent2mqtt.bridge.errors import BrokerConnectionError, SubscriptionError
from agent2mqtt.bridge.models import ConnectionState, Message, Subscription

logger = logging.getLogger(__name__)

# SUBACK reason codes at or above this value are failures (MQTT 3.1.1 uses 0x80, v5 0x80-0xA2)
SUBACK_FAILURE = 0x80


def _payload_bytes(payload: Any) -> bytes:
    if payload is None:
        return b""
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload)
    return str(payload).encode('utf-8')


class BrokerLink:
    config: BridgeConfig
    subscription: Subscription
    state: ConnectionState
    _client: Optional[MQTTClient]

    """
    Owns the connection to the MQTT broker.

    A new aiomqtt client is built for every connection attempt; only the
    BrokerLink itself lives for the whole process.
    """
    def __init__(self, config: BridgeConfig, client_factory: Callable[..., MQTTClient] = MQTTClient):
        self.config = config
        self.subscription = Subscription(topic=config.command_topic)
        self.state = ConnectionState.DISCONNECTED
        self._client_factory = client_factory
        self._client = None

    async def connect(self):
        """
        Initial connection. Any failure here is fatal for the bridge.
        """
        logger.info(f"Connecting to the MQTT broker at '{self.config.mqtt_uri}'...")
        try:
            await self._open()
        except MqttError as e:
            raise BrokerConnectionError(self.config.mqtt_uri, e) from e

        logger.info(f"Connected to: '{self.config.mqtt_uri}' as {self.config.client_id}")
        await self.subscribe()

    async def subscribe(self):
        """
        Subscribes to the command topic and checks that the broker granted it.

        A refused subscription is a configuration problem, so the client is
        disconnected and SubscriptionError raised instead of retrying.
        """
        topic = self.subscription.topic
        try:
            granted = await self._client.subscribe(topic, qos=int(self.subscription.qos))
        except MqttError as e:
            reason = str(e)
        else:
            reason = self._check_granted(granted)

        if reason is None:
            logger.info(f"Subscribed to '{topic}'")
            return

        await self.disconnect()
        raise SubscriptionError(topic, reason)

    async def reconnect(self):
        """
        Retries the connection at a fixed interval until it succeeds, then re-subscribes.
        """
        # Release the dead client before building new ones
        await self.disconnect()
        logger.info(f"Reconnecting to the MQTT broker at '{self.config.mqtt_uri}'...")
        while True:
            try:
                await self._open()
            except MqttError as e:
                logger.debug(f"Reconnect failed: {e}. Retrying in {self.config.retry_interval}s...")
                await asyncio.sleep(self.config.retry_interval)
                continue

            await self.subscribe()
            logger.info("Successfully reconnected")
            return

    async def publish(self, message: Message):
        """
        Fire-and-forget publish. Failures are logged, never raised.
        """
        if self._client is None:
            logger.warning(f"Dropping message for '{message.topic}': not connected")
            return
        try:
            await self._client.publish(**message.to_aiomqtt_args())
            logger.debug(f"Published {len(message.payload)} bytes to '{message.topic}'")
        except MqttError as e:
            logger.warning(f"Failed to publish to '{message.topic}': {e}")

    async def messages(self) -> AsyncIterator[Optional[Message]]:
        """
        Infinite stream of inbound messages.

        Yields `None` whenever the connection is lost. The consumer is expected
        to call `reconnect()` before pulling the next element.
        """
        while True:
            try:
                async for message in self._client.messages:
                    yield Message(topic=str(message.topic), payload=_payload_bytes(message.payload))
            except MqttError as e:
                logger.warning(f"MQTT Connection lost: {e}")
            else:
                logger.warning("MQTT message stream ended")
            self.state = ConnectionState.DISCONNECTED
            yield None

    async def disconnect(self):
        client, self._client = self._client, None
        self.state = ConnectionState.DISCONNECTED
        if client is None:
            return
        try:
            await client.__aexit__(None, None, None)
            logger.info("Disconnected from the MQTT broker.")
        except MqttError as e:
            logger.warning(f"Error while disconnecting from the MQTT broker: {e}")

    async def _open(self) -> MQTTClient:
        self.state = ConnectionState.CONNECTING
        client = self._client_factory(
            self.config.mqtt_host,
            self.config.mqtt_port,
            identifier=self.config.client_id,
            keepalive=self.config.keepalive,
            clean_session=self.config.clean_session,
        )
        try:
            await client.__aenter__()
        except MqttError:
            self.state = ConnectionState.DISCONNECTED
            raise
        self._client = client
        self.state = ConnectionState.CONNECTED
        return client

    @staticmethod
    def _check_granted(granted) -> Optional[str]:
        """Returns why a SUBACK is unusable, or None if it grants the subscription."""
        if not granted:
            return "Bad response"
        for code in granted:
            value = int(getattr(code, "value", code))
            if value >= SUBACK_FAILURE:
                return f"subscription refused (reason code {value:#04x})"
        return None
