"""Tests for retention exception rule parsing."""

from __future__ import annotations

import logging

import pytest

from relaydesk.services.storage.retention_rules import (
    ExceptionRule,
    parse_exception_rule,
    parse_exception_rules,
    resolve_exclusions,
)

PUBKEY = "ab" * 32
OPERATOR = "0f" * 32


class TestParseExceptionRule:
    """Tests for parse_exception_rule."""

    def test_kind_rule(self) -> None:
        assert parse_exception_rule("kind:0") == ExceptionRule(kind=0)

    def test_pubkey_rule_is_lowercased(self) -> None:
        assert parse_exception_rule(f"pubkey:{PUBKEY.upper()}") == ExceptionRule(pubkey=PUBKEY)

    def test_operator_rule(self) -> None:
        assert parse_exception_rule("pubkey:operator") == ExceptionRule(operator=True)

    def test_whitespace_is_tolerated(self) -> None:
        assert parse_exception_rule("  kind : 3 ") == ExceptionRule(kind=3)

    @pytest.mark.parametrize(
        "text",
        ["kind:abc", "kind:", "kind:-1", "pubkey:xyz", "pubkey:abcd", "tag:p", "kind", "", 7],
    )
    def test_malformed_rules_are_skipped(self, text) -> None:
        assert parse_exception_rule(text) is None

    def test_malformed_rule_logs_at_debug(self, caplog: pytest.LogCaptureFixture) -> None:
        caplog.set_level(logging.DEBUG, logger="relaydesk")
        parse_exception_rule("kind:abc")
        assert any("kind:abc" in r.getMessage() for r in caplog.records)

    def test_str_round_trip(self) -> None:
        for text in ("kind:7", f"pubkey:{PUBKEY}", "pubkey:operator"):
            assert str(parse_exception_rule(text)) == text


class TestParseExceptionRules:
    def test_drops_bad_and_duplicate_rules(self) -> None:
        rules = parse_exception_rules(["kind:0", "kind:abc", "kind:0", "pubkey:operator"])
        assert rules == [ExceptionRule(kind=0), ExceptionRule(operator=True)]


class TestResolveExclusions:
    """Tests for resolve_exclusions."""

    def test_kinds_and_pubkeys(self) -> None:
        rules = parse_exception_rules(["kind:0", "kind:3", f"pubkey:{PUBKEY}"])
        kinds, authors = resolve_exclusions(rules, None)
        assert kinds == [0, 3]
        assert authors == [bytes.fromhex(PUBKEY)]

    def test_operator_resolves_at_call_time(self) -> None:
        rules = parse_exception_rules(["pubkey:operator"])
        _, authors = resolve_exclusions(rules, OPERATOR)
        assert authors == [bytes.fromhex(OPERATOR)]

    @pytest.mark.parametrize("operator", [None, "", "not-hex"])
    def test_unset_operator_contributes_nothing(self, operator) -> None:
        rules = parse_exception_rules(["pubkey:operator"])
        kinds, authors = resolve_exclusions(rules, operator)
        assert kinds == []
        assert authors == []

    def test_operator_and_explicit_pubkey_deduplicated(self) -> None:
        rules = parse_exception_rules(["pubkey:operator", f"pubkey:{OPERATOR}"])
        _, authors = resolve_exclusions(rules, OPERATOR)
        assert authors == [bytes.fromhex(OPERATOR)]
