"""
relaydesk services.

Storage access lives in relaydesk.services.storage; the modules here
compose it into maintenance jobs (retention, deletion processing,
vacuum and integrity checks).
"""
