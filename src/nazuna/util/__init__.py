"""
Utility functions and helpers for Nazuna.

- **logger.py**: Centralized logging configuration with colored console
  output through prompt_toolkit, rotating file handlers and per-session log
  files. Quiets verbose third-party libraries.
"""
