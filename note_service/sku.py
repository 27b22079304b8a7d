"""Canonical SKU keys for inventory lookups."""

import re

_HASH_RUN = re.compile(r"#{2,}")
_HST_TOKEN = re.compile(r"HST", re.IGNORECASE)


def normalize_sku(raw: str) -> str:
    """
    Converts a seller SKU into the key format expected by the inventory service.

    Rules, first match wins:
        1. Already contains "#": returned unchanged.
        2. Contains "!": every "!" becomes "#", runs of "#" collapse to one.
        3. Contains the token "HST" (any case): the parts around it are trimmed
           and, when at least two non-empty parts remain, joined with "#".
        4. Otherwise the trimmed input.

    Examples:
        "A!B!!C"       -> "A#B#C"
        "PROD HST 123" -> "PROD#123"
    """
    if raw is None:
        return ""
    if "#" in raw:
        return raw
    if "!" in raw:
        return _HASH_RUN.sub("#", raw.replace("!", "#"))
    if _HST_TOKEN.search(raw):
        parts = [p.strip() for p in _HST_TOKEN.split(raw)]
        parts = [p for p in parts if p]
        if len(parts) >= 2:
            return "#".join(parts)
    return raw.strip()
