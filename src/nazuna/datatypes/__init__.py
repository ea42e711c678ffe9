"""Typed records exchanged with the protocol library and session enums."""
