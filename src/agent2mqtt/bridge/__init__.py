"""
Bridge process components: broker link, agent socket handle and the two forwarders.
"""
