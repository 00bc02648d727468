"""Tests for filter translation and row decoding."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from relaydesk.services.storage.errors import InvalidIdentifierError
from relaydesk.services.storage.models import EventFilter
from relaydesk.services.storage.query import (
    QueryBuilder,
    apply_event_filter,
    decode_event_row,
    decode_hex_id,
    mention_pattern,
)

HEX_ID = "ab" * 32


class TestQueryBuilder:
    """Tests for QueryBuilder."""

    def test_empty_builder_has_no_where(self) -> None:
        builder = QueryBuilder()
        assert builder.where_sql() == ""
        assert builder.params == []
        assert len(builder) == 0

    def test_clauses_are_and_chained_in_order(self) -> None:
        builder = QueryBuilder()
        builder.where("created_at >= ?", 10)
        builder.where_in("kind", [1, 7])

        assert builder.where_sql() == " WHERE created_at >= ? AND kind IN (?,?)"
        assert builder.params == [10, 1, 7]

    def test_empty_lists_add_no_clause(self) -> None:
        builder = QueryBuilder().where_in("kind", []).where_not_in("author", [])
        assert builder.where_sql() == ""

    def test_where_not_in(self) -> None:
        builder = QueryBuilder().where_not_in("kind", [0, 3])
        assert builder.where_sql() == " WHERE kind NOT IN (?,?)"
        assert builder.params == [0, 3]


class TestDecodeHexId:
    """Tests for hex identifier validation."""

    def test_valid_id(self) -> None:
        assert decode_hex_id(HEX_ID) == bytes.fromhex(HEX_ID)

    def test_uppercase_is_accepted(self) -> None:
        assert decode_hex_id(HEX_ID.upper()) == bytes.fromhex(HEX_ID)

    @pytest.mark.parametrize(
        "value",
        ["zz" * 32, "ab" * 31, "ab" * 33, "", "abc", " ".join(["ab"] * 32), "ab" * 31 + "a\n"],
    )
    def test_invalid_ids_raise(self, value: str) -> None:
        with pytest.raises(InvalidIdentifierError) as exc_info:
            decode_hex_id(value, "author")
        assert exc_info.value.field == "author"

    def test_invalid_id_is_a_value_error(self) -> None:
        with pytest.raises(ValueError):
            decode_hex_id("nope")


class TestApplyEventFilter:
    """Tests for EventFilter translation."""

    def test_empty_filter_matches_everything(self) -> None:
        builder = apply_event_filter(QueryBuilder(), EventFilter())
        assert builder.where_sql() == ""

    def test_all_fields(self) -> None:
        event_filter = EventFilter(
            ids=[HEX_ID],
            authors=["cd" * 32],
            kinds=[1],
            since=100,
            until=datetime(1970, 1, 1, 0, 3, 20, tzinfo=timezone.utc),
            search="50%_off",
            mentions=["EF" * 32],
        )
        builder = apply_event_filter(QueryBuilder(), event_filter)
        sql = builder.where_sql()

        assert "event_hash IN (?)" in sql
        assert "author IN (?)" in sql
        assert "kind IN (?)" in sql
        assert "created_at >= ?" in sql
        assert "created_at <= ?" in sql
        assert "content LIKE ? ESCAPE" in sql
        params = builder.params
        assert params[0] == bytes.fromhex(HEX_ID)
        assert 100 in params
        assert 200 in params
        assert "%50\\%\\_off%" in params
        assert f'%["p","{"ef" * 32}"%' in params

    def test_invalid_author_rejected_before_any_clause(self) -> None:
        builder = QueryBuilder()
        with pytest.raises(InvalidIdentifierError):
            apply_event_filter(builder, EventFilter(kinds=[1], authors=["xyz"]))
        assert len(builder) == 0

    def test_invalid_mention_rejected(self) -> None:
        with pytest.raises(InvalidIdentifierError):
            mention_pattern("not-hex")

    def test_spaced_mention_rejected(self) -> None:
        with pytest.raises(InvalidIdentifierError):
            mention_pattern(" ".join(["ef"] * 32))


class TestDecodeEventRow:
    """Tests for event row decoding."""

    @staticmethod
    def _row(payload: str, created_at: int | None = 1000) -> dict:
        return {
            "event_hash": bytes.fromhex(HEX_ID),
            "author": bytes.fromhex("cd" * 32),
            "created_at": created_at,
            "kind": 1,
            "content": payload,
        }

    def test_payload_is_authoritative(self) -> None:
        payload = json.dumps(
            {
                "id": HEX_ID,
                "pubkey": "cd" * 32,
                "created_at": 1000,
                "kind": 1,
                "tags": [["p", "ef" * 32], ["t", "nostr"]],
                "content": "gm",
                "sig": "11" * 64,
            }
        )
        event = decode_event_row(self._row(payload))

        assert event.id == HEX_ID
        assert event.pubkey == "cd" * 32
        assert event.created_at == 1000
        assert event.tags == [["p", "ef" * 32], ["t", "nostr"]]
        assert event.content == "gm"
        assert event.sig == "11" * 64

    def test_unparseable_payload_degrades(self) -> None:
        event = decode_event_row(self._row("{not json"))

        assert event.id == HEX_ID
        assert event.tags == []
        assert event.sig == ""
        assert event.content == "{not json"

    def test_non_object_payload_degrades(self) -> None:
        event = decode_event_row(self._row("[1, 2, 3]"))
        assert event.tags == []
        assert event.content == "[1, 2, 3]"

    def test_null_created_at_becomes_zero(self) -> None:
        event = decode_event_row(self._row("{}", created_at=None))
        assert event.created_at == 0
