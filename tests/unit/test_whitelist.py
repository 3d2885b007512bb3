from __future__ import annotations

from common.whitelist import is_chat_allowed, parse_allowed_chat_ids


def test_parse_json_and_csv():
    assert parse_allowed_chat_ids('[123, -456, "@Alice", true, 1.5]') == {123, -456, "alice"}
    assert parse_allowed_chat_ids("123, -456\n@Bob  789") == {123, -456, "bob", 789}
    assert parse_allowed_chat_ids("") == set()
    assert parse_allowed_chat_ids(None) == set()


def test_is_chat_allowed():
    allowed = {123, "alice"}
    assert is_chat_allowed({"id": 123}, allowed)
    assert is_chat_allowed({"id": 9, "username": "Alice"}, allowed)
    assert not is_chat_allowed({"id": 9, "username": "mallory"}, allowed)
    assert is_chat_allowed({"id": 9}, set())
