"""Public links for a published deck."""

from typing import Optional
from urllib.parse import quote

from alias_decks.config import Settings, get_settings


def deck_page_url(slug: str, settings: Optional[Settings] = None) -> str:
    settings = settings or get_settings()
    return f"/{settings.default_locale}/decks/{slug}"


def deck_json_url(slug: str, settings: Optional[Settings] = None) -> str:
    settings = settings or get_settings()
    return f"{settings.public_site_url.rstrip('/')}/decks/{slug}.json"


def deck_import_url(slug: str, settings: Optional[Settings] = None) -> str:
    """Deep link the game client opens to import the deck."""
    settings = settings or get_settings()
    return f"{settings.import_url_base}?deck={quote(deck_json_url(slug, settings), safe='')}"


def deck_links(slug: str, settings: Optional[Settings] = None) -> dict[str, str]:
    settings = settings or get_settings()
    return {
        "deckUrl": deck_page_url(slug, settings),
        "jsonUrl": deck_json_url(slug, settings),
        "importUrl": deck_import_url(slug, settings),
    }
