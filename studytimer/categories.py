"""Study categories and their accumulated minutes."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional

from .errors import NotFoundError, ValidationError
from .storage import KEY_CATEGORIES, KeyValueStore, generate_id

LOGGER = logging.getLogger(__name__)

DEFAULT_COLOR = "#6C63FF"
MAX_NAME_LENGTH = 30


@dataclass
class Category:
    """A category that completed work intervals are credited to."""

    id: str
    name: str
    color: str = DEFAULT_COLOR
    total_minutes: int = 0
    created_at: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> Optional["Category"]:
        if not isinstance(data, dict):
            return None
        category_id = data.get("id")
        name = data.get("name")
        if not isinstance(category_id, str) or not category_id or not isinstance(name, str):
            return None
        total = data.get("total_minutes", 0)
        if isinstance(total, bool) or not isinstance(total, int) or total < 0:
            total = 0
        color = data.get("color")
        created_at = data.get("created_at")
        return cls(
            id=category_id,
            name=name,
            color=color if isinstance(color, str) and color else DEFAULT_COLOR,
            total_minutes=total,
            created_at=created_at if isinstance(created_at, str) else "",
        )

    def to_dict(self) -> dict:
        return asdict(self)


def _clean_name(name: str) -> str:
    trimmed = (name or "").strip()
    if not 1 <= len(trimmed) <= MAX_NAME_LENGTH:
        raise ValidationError(f"Category name must be 1-{MAX_NAME_LENGTH} characters")
    return trimmed


class CategoryStore:
    """Category list persisted in the key-value store.

    Also acts as the timer's accumulator through ``credit_minutes``.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store
        self._categories: List[Category] = []
        self._listeners: List[Callable[[List[Category]], None]] = []
        self._load()

    def _load(self) -> None:
        raw = self._store.get(KEY_CATEGORIES, [])
        if not isinstance(raw, list):
            LOGGER.warning("Stored categories are not a list; starting empty")
            raw = []
        for entry in raw:
            category = Category.from_dict(entry)
            if category is None:
                LOGGER.warning("Skipping malformed category entry %r", entry)
                continue
            self._categories.append(category)

    def list(self) -> List[Category]:
        """All categories in creation order."""
        return list(self._categories)

    def get(self, category_id: str) -> Category:
        """Category with the given id; raises NotFoundError."""
        for category in self._categories:
            if category.id == category_id:
                return category
        raise NotFoundError(f"Category not found: {category_id}")

    def find(self, name_or_id: str) -> Category:
        """Look a category up by id, then by case-insensitive name."""
        for category in self._categories:
            if category.id == name_or_id:
                return category
        wanted = name_or_id.strip().casefold()
        for category in self._categories:
            if category.name.casefold() == wanted:
                return category
        raise NotFoundError(f"Category not found: {name_or_id}")

    def add(self, name: str, color: str = DEFAULT_COLOR) -> Category:
        """Create and persist a category with no accumulated time."""
        category = Category(
            id=generate_id(),
            name=_clean_name(name),
            color=color or DEFAULT_COLOR,
            total_minutes=0,
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        self._categories.append(category)
        self._save()
        LOGGER.info("Created category %s (%s)", category.name, category.id)
        return category

    def update(self, category_id: str, name: str, color: Optional[str] = None) -> Category:
        """Rename a category, optionally changing its colour."""
        category = self.get(category_id)
        category.name = _clean_name(name)
        if color:
            category.color = color
        self._save()
        LOGGER.info("Updated category %s", category_id)
        return category

    def delete(self, category_id: str) -> None:
        """Remove a category and its total."""
        category = self.get(category_id)
        self._categories.remove(category)
        self._save()
        LOGGER.info("Deleted category %s", category_id)

    def credit_minutes(self, category_id: str, minutes: int) -> Category:
        """Add completed work minutes to a category."""
        category = self.get(category_id)
        category.total_minutes += minutes
        self._save()
        LOGGER.info("Credited %s min to %s (total %s)", minutes, category.name, category.total_minutes)
        return category

    def subscribe(self, listener: Callable[[List[Category]], None]) -> Callable[[], None]:
        """Call ``listener`` with the category list after each change.

        Returns:
            A function that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _save(self) -> None:
        self._store.set(KEY_CATEGORIES, [category.to_dict() for category in self._categories])
        for listener in list(self._listeners):
            try:
                listener(self.list())
            except Exception:
                LOGGER.exception("Category listener failed")
