"""
Data Models for the Bridge.

Defines the values that flow between the MQTT broker and the agent socket,
plus the fixed registration payloads the agent expects on every connection.
"""
from dataclasses import dataclass, field, asdict
from enum import Enum, IntEnum
import json
from typing import Tuple


class QoS(IntEnum):
    AT_MOST_ONCE = 0


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"

# --- The "Envelope" (broker side) ---

@dataclass(frozen=True)
class Message:
    """
    A single MQTT message travelling through the bridge.

    The payload is opaque: the bridge never decodes or validates it.
    """
    topic: str
    payload: bytes
    qos: QoS = QoS.AT_MOST_ONCE

    def to_aiomqtt_args(self) -> dict:
        """Returns dict suitable for client.publish(**args)"""
        return {
            "topic": self.topic,
            "payload": self.payload,
            "qos": int(self.qos),
        }


@dataclass(frozen=True)
class Subscription:
    """The one subscription the bridge holds on every broker connection."""
    topic: str
    qos: QoS = QoS.AT_MOST_ONCE

# --- Agent registration payloads ---

@dataclass(frozen=True, kw_only=True)
class AgentRequest:
    """Base class for JSON requests written to the agent socket."""

    def to_json(self) -> str:
        # The agent expects compact JSON, keys in field order.
        return json.dumps(asdict(self), separators=(",", ":"))

    def to_bytes(self) -> bytes:
        return self.to_json().encode('utf-8')


@dataclass(frozen=True, kw_only=True)
class BindRequest(AgentRequest):
    """Binds the bridge to a fixed agent address."""
    address: int
    method: str = field(default="bind")


@dataclass(frozen=True, kw_only=True)
class RegisterRequest(AgentRequest):
    """Asks the agent to deliver events for `key` to this connection."""
    key: str
    method: str = field(default="register")


BIND_ADDRESS = 256

BOOTSTRAP_MESSAGES: Tuple[AgentRequest, ...] = (
    BindRequest(address=BIND_ADDRESS),
    RegisterRequest(key="auto.report"),
    RegisterRequest(key="auto.forward"),
    RegisterRequest(key="lanbox.event"),
)
