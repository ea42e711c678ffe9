"""
Session lifecycle.

- **credential_store.py**: Per-session credential directory on disk.
- **transport.py**: Protocol client boundary and connector loading.
- **event_bus.py**: Per-session event fan-out with one ordered queue per
  subscriber.
- **session_manager.py**: Bootstrap, state machine, reconnection and
  dual-mode dispatch.
"""
