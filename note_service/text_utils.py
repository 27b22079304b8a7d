import unicodedata


def remove_diacritics(text: str) -> str:
    """Strips combining marks, e.g. "Depósito" -> "Deposito"."""
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFD", text)
    stripped = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    return unicodedata.normalize("NFC", stripped)


def fold(text: str) -> str:
    """Case- and accent-insensitive comparison key."""
    return remove_diacritics(text or "").strip().lower()
