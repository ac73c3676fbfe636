"""URL slug derivation with collision probing."""

import logging
import time
from typing import Awaitable, Callable

from slugify import slugify

logger = logging.getLogger(__name__)


def create_slug(text: str) -> str:
    """Lowercase ASCII slug: ``"Éclair Déjà Vu"`` -> ``"eclair-deja-vu"``."""
    return slugify(text, lowercase=True)


async def generate_unique_slug(
    title: str, exists: Callable[[str], Awaitable[bool]]
) -> str:
    """
    Pick the first free slug among ``base``, ``base-2``, ``base-3``...

    The existence check only narrows collisions. The storage layer's unique constraint
    is what guarantees uniqueness, so callers retry on insert conflicts.
    """
    base = create_slug(title)
    if not base:
        base = f"deck-{int(time.time() * 1000)}"

    candidate = base
    attempt = 1
    while await exists(candidate):
        attempt += 1
        candidate = f"{base}-{attempt}"

    if attempt > 1:
        logger.debug(f"Slug '{base}' taken, using '{candidate}'")
    return candidate
