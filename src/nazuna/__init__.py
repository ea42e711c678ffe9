"""
Nazuna - messaging bot core

Nazuna keeps one or two authenticated sessions against a chat network alive
and moderates the groups it belongs to.

Core Components:

- **Session Manager**: Bootstraps sessions (QR token or pairing code),
  persists their credentials, reconnects forever with backoff and purges
  credentials that the server has revoked
- **Dual Mode**: An optional secondary session shares the message load with
  the primary through a round robin
- **Group Policy Engine**: Applies per-group moderation rules to membership
  changes (admin-change announcements, anti-fake, anti-PT, blacklist,
  welcome and exit messages)
- **Caches**: Group metadata with a TTL and a periodically cleared message
  cache used for retries and deduplication

Usage:
    from nazuna.main import main
    main()  # Starts the bot
"""
