"""
In-memory caches shared by the sessions.

- **group_metadata_cache.py**: Group metadata keyed by group id with a TTL
  measured from the last write. Misses are fetched through the protocol
  client under a timeout.

- **message_cache.py**: Latest payload per message id, cleared wholesale on
  a fixed interval. Serves message lookups requested by the protocol library.

- **retry_counter_cache.py**: Short-lived per-message retry counters handed
  to the protocol library.
"""
