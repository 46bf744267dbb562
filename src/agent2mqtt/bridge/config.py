"""
Bridge Configuration.

All constants of the bridge live in one frozen dataclass. The only runtime
overrides are the two optional positional command-line arguments.
"""
import argparse
import logging
from dataclasses import dataclass
from typing import List, Optional

logger = logging.getLogger(__name__)

DEFAULT_MQTT_HOST = "localhost"
DEFAULT_SOCKET_PATH = "/tmp/miio_agent.socket"


@dataclass(frozen=True)
class BridgeConfig:
    mqtt_host: str = DEFAULT_MQTT_HOST
    mqtt_port: int = 1883
    client_id: str = "agent2mqtt"
    command_topic: str = "agent/command"
    response_topic: str = "agent/response"
    keepalive: int = 20  # seconds
    clean_session: bool = True
    socket_path: str = DEFAULT_SOCKET_PATH
    buffer_size: int = 4096
    retry_interval: float = 0.5  # seconds, for both reconnect loops

    @property
    def mqtt_uri(self) -> str:
        return f"mqtt://{self.mqtt_host}:{self.mqtt_port}"


def parse_args(argv: Optional[List[str]] = None) -> BridgeConfig:
    """
    Builds a BridgeConfig from the command line.

    Usage: agent2mqtt [host] [socket_path]
    """
    parser = argparse.ArgumentParser(
        prog="agent2mqtt",
        description="Bridge an MQTT broker to the local agent socket.",
    )
    parser.add_argument("host", nargs="?", default=DEFAULT_MQTT_HOST,
                        help=f"MQTT broker host (default: {DEFAULT_MQTT_HOST})")
    parser.add_argument("socket_path", nargs="?", default=DEFAULT_SOCKET_PATH,
                        help=f"agent socket path (default: {DEFAULT_SOCKET_PATH})")
    args = parser.parse_args(argv)

    config = BridgeConfig(mqtt_host=args.host, socket_path=args.socket_path)
    logger.debug(f"Using configuration: {config}")
    return config
