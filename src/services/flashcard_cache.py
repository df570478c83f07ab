"""Flashcard source cache with a modification-time guard.

Reads a JSON array of flashcards from disk, normalizes each card and keeps
the list in memory together with the file's modification time. The file is
re-read only when its current modification time differs from the stored one.

Usage::

    from src.services.flashcard_cache import FlashcardCache

    cache = FlashcardCache()
    cards = cache.load()                     # raises FlashcardLoadError on bad source
    card = cache.get("mln-001")
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from src.config import get_settings
from src.exceptions import FlashcardLoadError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data containers
# ---------------------------------------------------------------------------


@dataclass
class Flashcard:
    """One normalized flashcard.

    Attributes:
        id: Stable card identifier (never empty).
        front: Prompt side.
        back: Answer side.
        tags: Non-empty, trimmed tag strings.
    """

    id: str
    front: str = ""
    back: str = ""
    tags: list[str] = field(default_factory=list)


def _normalize_string(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def normalize_card(raw: Any) -> Flashcard | None:
    """Normalize one raw card; returns ``None`` for cards without an id."""
    if not isinstance(raw, dict):
        return None
    card_id = _normalize_string(raw.get("id"))
    if not card_id:
        return None
    raw_tags = raw.get("tags")
    tags = (
        [t for t in (_normalize_string(tag) for tag in raw_tags) if t]
        if isinstance(raw_tags, list)
        else []
    )
    return Flashcard(
        id=card_id,
        front=_normalize_string(raw.get("front")),
        back=_normalize_string(raw.get("back")),
        tags=tags,
    )


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


class FlashcardCache:
    """In-memory flashcard list owned by one service instance.

    No file is read at construction time.

    Args:
        path: JSON source file. Defaults to ``Settings.flashcard_json_path``.
    """

    def __init__(self, path: str | Path | None = None) -> None:
        self.path: Path = Path(path or get_settings().flashcard_json_path)
        self._cards: list[Flashcard] | None = None
        self._mtime: float | None = None

    def load(self) -> list[Flashcard]:
        """Return all cards, re-reading the source only if it changed.

        Returns:
            Normalized cards in file order.

        Raises:
            FlashcardLoadError: If the file is missing, unreadable, not JSON
                or not a JSON array.
        """
        try:
            mtime = self.path.stat().st_mtime
        except OSError as exc:
            raise FlashcardLoadError(
                f"Cannot read flashcard data: {exc}", path=str(self.path)
            ) from exc

        if self._cards is not None and self._mtime == mtime:
            return self._cards

        try:
            parsed = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise FlashcardLoadError(
                f"Cannot read flashcard data: {exc}", path=str(self.path)
            ) from exc

        if not isinstance(parsed, list):
            raise FlashcardLoadError(
                "Flashcard JSON must be an array", path=str(self.path)
            )

        cards = [card for card in (normalize_card(raw) for raw in parsed) if card]
        dropped = len(parsed) - len(cards)
        if dropped:
            logger.warning("Dropped %d flashcard(s) without an id from %s", dropped, self.path)

        self._cards = cards
        self._mtime = mtime
        logger.info("Loaded %d flashcards from %s", len(cards), self.path)
        return cards

    def get(self, card_id: str) -> Flashcard | None:
        """Return the card with ``card_id`` (trimmed), or ``None``."""
        wanted = _normalize_string(card_id)
        if not wanted:
            return None
        return next((card for card in self.load() if card.id == wanted), None)

    def invalidate(self) -> None:
        """Drop the cached cards so the next :meth:`load` re-reads the file."""
        self._cards = None
        self._mtime = None
        logger.info("Flashcard cache invalidated")
