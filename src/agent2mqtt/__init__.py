"""
agent2mqtt

This package bridges an MQTT broker to the local agent's unix socket,
forwarding commands in and agent events out, and reconnecting either
side whenever it drops.
"""
__version__ = "0.1.0"
