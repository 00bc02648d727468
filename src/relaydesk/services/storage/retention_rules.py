"""
Retention exception rules.

Rules are stored as plain strings in the control store:

    kind:0              keep every kind 0 event
    pubkey:<64 hex>     keep every event by this author
    pubkey:operator     keep every event by the configured operator

Malformed rules are skipped so one bad entry cannot block a retention run.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from ...core.logging import get_logger
from .errors import InvalidIdentifierError
from .query import decode_hex_id

logger = get_logger(__name__)

OPERATOR_TOKEN = "operator"


@dataclass(frozen=True)
class ExceptionRule:
    """One parsed retention exception."""

    kind: int | None = None
    pubkey: str | None = None
    operator: bool = False

    def __str__(self) -> str:
        if self.kind is not None:
            return f"kind:{self.kind}"
        if self.operator:
            return f"pubkey:{OPERATOR_TOKEN}"
        return f"pubkey:{self.pubkey}"


def parse_exception_rule(text: str) -> ExceptionRule | None:
    """
    Parse one rule string.

    Returns:
        The rule, or None if the text is not a recognizable rule.
    """
    if not isinstance(text, str):
        logger.debug("Skipping non-string retention exception: %r", text)
        return None

    prefix, sep, value = text.strip().partition(":")
    value = value.strip()
    if not sep or not value:
        logger.debug("Skipping malformed retention exception: %r", text)
        return None

    prefix = prefix.strip().lower()
    if prefix == "kind":
        try:
            kind = int(value)
        except ValueError:
            logger.debug("Skipping retention exception with bad kind: %r", text)
            return None
        if kind < 0:
            logger.debug("Skipping retention exception with negative kind: %r", text)
            return None
        return ExceptionRule(kind=kind)

    if prefix == "pubkey":
        if value.lower() == OPERATOR_TOKEN:
            return ExceptionRule(operator=True)
        try:
            decode_hex_id(value, "pubkey")
        except InvalidIdentifierError:
            logger.debug("Skipping retention exception with bad pubkey: %r", text)
            return None
        return ExceptionRule(pubkey=value.lower())

    logger.debug("Skipping retention exception with unknown prefix: %r", text)
    return None


def parse_exception_rules(texts: Iterable[str]) -> list[ExceptionRule]:
    """Parse every rule, dropping malformed entries and duplicates."""
    rules: list[ExceptionRule] = []
    for text in texts:
        rule = parse_exception_rule(text)
        if rule is not None and rule not in rules:
            rules.append(rule)
    return rules


def resolve_exclusions(
    rules: Iterable[ExceptionRule],
    operator_pubkey: str | None,
) -> tuple[list[int], list[bytes]]:
    """
    Turn rules into the kinds and raw author ids a deletion must skip.

    The operator rule resolves against operator_pubkey as given now. An
    unset or invalid operator pubkey contributes no exclusion.

    Returns:
        (kinds, authors) with duplicates removed, in first-seen order.
    """
    kinds: list[int] = []
    authors: list[bytes] = []

    operator_raw: bytes | None = None
    if operator_pubkey:
        try:
            operator_raw = decode_hex_id(operator_pubkey, "operator pubkey")
        except InvalidIdentifierError:
            logger.debug("Operator pubkey is not valid hex, ignoring operator rule")

    for rule in rules:
        if rule.kind is not None:
            if rule.kind not in kinds:
                kinds.append(rule.kind)
            continue

        raw = operator_raw if rule.operator else decode_hex_id(rule.pubkey or "", "pubkey")
        if raw is not None and raw not in authors:
            authors.append(raw)

    return kinds, authors
