"""SQLAlchemy models for sheetforge."""

from sheetforge.database.models.base import Base, TimestampMixin
from sheetforge.database.models.character import CharacterDocument
from sheetforge.database.models.history import HistoryEntry
from sheetforge.database.models.level_up import LevelUpSelectionEntry

__all__ = [
    "Base",
    "TimestampMixin",
    "CharacterDocument",
    "HistoryEntry",
    "LevelUpSelectionEntry",
]
