"""Outbound routing: delivery clients and the EventBridge wire format."""
