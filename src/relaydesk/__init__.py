"""
relaydesk - Admin control plane for a self-hosted Nostr relay.

Reads and maintains the relay's SQLite event store alongside relaydesk's
own control store: filtered browsing, retention, deletion requests,
dashboard statistics and export.
"""

__version__ = "0.1.0"
