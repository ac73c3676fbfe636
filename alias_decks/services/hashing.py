"""Content fingerprints for uploaded decks."""

import hashlib


def sha256_from_string(text: str) -> str:
    """Hex SHA-256 of the UTF-8 bytes of ``text``."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
