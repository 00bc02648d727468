"""
relaydesk CLI command modules.

Each module exposes register_parsers(subparsers) and cmd_* handlers that
return a JSON-serializable dict.
"""
