"""
Bridge Exceptions.

Only fatal conditions get their own exception type. Transient connectivity
problems are retried where they happen and never reach the caller.
"""


class BridgeError(Exception):
    """Base exception for fatal bridge errors."""
    pass


class BrokerConnectionError(BridgeError):
    """Raised when the initial connection to the MQTT broker fails."""

    def __init__(self, uri: str, reason: Exception):
        self.uri = uri
        self.reason = reason
        super().__init__(f"Could not connect to the MQTT broker at {uri}: {reason}")


class SubscriptionError(BridgeError):
    """Raised when the broker refuses or fails the command topic subscription."""

    def __init__(self, topic: str, reason: str):
        self.topic = topic
        self.reason = reason
        super().__init__(f"Error subscribing to '{topic}': {reason}")
