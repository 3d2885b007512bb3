from __future__ import annotations

import json
from typing import Any, Iterable, Mapping, Optional, Set, Union


Allowed = Set[Union[int, str]]


def _coerce(item: Any) -> Optional[Union[int, str]]:
    if isinstance(item, bool):
        return None
    if isinstance(item, int):
        return item
    if isinstance(item, float):
        return int(item) if item.is_integer() else None
    if isinstance(item, str):
        s = item.strip().strip("'\"")
        if not s:
            return None
        try:
            return int(s)
        except ValueError:
            return s.lstrip("@").lower()
    return None


def parse_allowed_chat_ids(raw: Optional[str]) -> Allowed:
    """Parse the `allowed_chat_ids` parameter.

    Accepts a JSON array (`[123, "@alice"]`) or a CSV/whitespace list
    (`123, -456 @alice`). Numeric entries become ints, handles are
    lower-cased without the leading `@`. Empty input means no allow-list.
    """
    if not raw or not isinstance(raw, str):
        return set()
    items: Iterable[Any]
    try:
        data = json.loads(raw)
    except ValueError:
        data = None
    if isinstance(data, list):
        items = data
    else:
        items = raw.replace("\n", ",").replace(" ", ",").split(",")
    return {v for v in (_coerce(i) for i in items) if v is not None}


def is_chat_allowed(chat: Mapping[str, Any], allowed: Allowed) -> bool:
    """True when no allow-list is set, or the chat id or @username is on it."""
    if not allowed:
        return True
    chat_id = chat.get("id")
    if isinstance(chat_id, int) and chat_id in allowed:
        return True
    username = chat.get("username")
    return isinstance(username, str) and username.lstrip("@").lower() in allowed


__all__ = ["parse_allowed_chat_ids", "is_chat_allowed"]
