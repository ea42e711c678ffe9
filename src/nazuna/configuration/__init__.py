"""
Configuration management for Nazuna.

- **app_configuration.py**: YAML loader for global settings (prefix, bot
  name, owner, paths, cache and timeout tunables, reconnect backoff,
  moderation policy defaults, connector and command router paths). Falls
  back to defaults on a missing or malformed file.

- **group_config.py**: Read-only access to the per-group JSON documents
  written by the command layer (``<groups_dir>/<group id>.json``).
"""
