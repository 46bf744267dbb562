"""
Main entry point for the agent2mqtt bridge.

This module is responsible for:
- Parsing the command line into a BridgeConfig.
- Connecting the agent socket and the MQTT broker.
- Running the inbound and outbound forwarders as two independent tasks.
- Managing the overall application lifecycle (start, signals, fatal exit).
"""

import asyncio
import logging
import signal
import sys
from typing import List, Optional

from agent2mqtt.bridge.agent_socket import AgentSocket
from agent2mqtt.bridge.config import BridgeConfig, parse_args
from agent2mqtt.bridge.errors import BridgeError
from agent2mqtt.bridge.forwarders import InboundForwarder, OutboundForwarder
from agent2mqtt.bridge.mqtt import BrokerLink


def setup_logging():
    """
    Configures the global logging settings for the entire application.
    This should be called as early as possible during startup.
    """
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s [%(levelname)-8s] %(name)s.%(funcName)s: %(message)s'
    )

logger = logging.getLogger(__name__)


class Bridge:
    config: BridgeConfig
    broker: BrokerLink
    agent_socket: AgentSocket
    _tasks: List[asyncio.Task]

    """
    Process-level composition of the broker link, the agent socket and both forwarders.
    """
    def __init__(self, config: BridgeConfig, broker: Optional[BrokerLink] = None, agent_socket: Optional[AgentSocket] = None):
        self.config = config
        self.broker = broker or BrokerLink(config)
        self.agent_socket = agent_socket or AgentSocket(
            config.socket_path,
            retry_interval=config.retry_interval,
            buffer_size=config.buffer_size,
        )
        self.inbound = InboundForwarder(self.broker, self.agent_socket, config.command_topic)
        self.outbound = OutboundForwarder(self.agent_socket, self.broker, config.response_topic)
        self._tasks = []

    async def start(self):
        """
        Connects both sides and launches the forwarders in the background.
        Raises BridgeError if the broker cannot be reached or refuses the subscription.
        """
        await self.agent_socket.connect()
        await self.broker.connect()

        self._tasks = [
            asyncio.create_task(self.inbound.run(), name="inbound-forwarder"),
            asyncio.create_task(self.outbound.run(), name="outbound-forwarder"),
        ]

    async def run(self):
        """
        Starts the bridge and blocks for as long as both forwarders run.
        Cancelling it, even while start() is still waiting for the agent, closes both sides.
        """
        try:
            await self.start()
            logger.info("Bridge is fully operational.")
            await asyncio.gather(*self._tasks)
        finally:
            await self.stop()

    async def stop(self):
        tasks = [t for t in self._tasks if not t.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks = []

        await self.agent_socket.close()
        await self.broker.disconnect()


async def shutdown(signal_name: str, bridge_task: asyncio.Task):
    """Cancels the running bridge, which stops the forwarders and closes both connections."""
    logger.info(f"Received exit signal {signal_name}...")
    bridge_task.cancel()
    await asyncio.gather(bridge_task, return_exceptions=True)


async def main_application_runner(argv: Optional[List[str]] = None):
    setup_logging()
    config = parse_args(argv)
    logger.info("Starting agent2mqtt...")

    bridge = Bridge(config)
    bridge_task = asyncio.create_task(bridge.run(), name="bridge")

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(
            sig,
            lambda s=sig: asyncio.create_task(shutdown(s.name, bridge_task))
        )

    try:
        await bridge_task
    except asyncio.CancelledError:
        logger.info("Bridge stopped.")
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)


def main(argv: Optional[List[str]] = None):
    try:
        asyncio.run(main_application_runner(argv))
    except BridgeError as e:
        logger.critical(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        # Handled by the signal handler, but good to catch here just in case.
        pass


if __name__ == "__main__":
    main()
