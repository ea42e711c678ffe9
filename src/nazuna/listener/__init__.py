"""Consumers subscribed to the primary session's group and message events."""
