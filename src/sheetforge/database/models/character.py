"""Character document model for sheetforge."""

import uuid
from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin

if TYPE_CHECKING:
    from .history import HistoryEntry
    from .level_up import LevelUpSelectionEntry


class CharacterDocument(Base, TimestampMixin):
    """A character's rules sheet stored as one versioned JSON document.

    ``version`` increases on every accepted write. Writers must present the
    version they read; a mismatch means someone else wrote in between.
    """

    __tablename__ = "characters"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        comment="Unique character identifier",
    )

    owner_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
        comment="Identifier of the owning user (resolved by the caller)",
    )

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Character name",
    )

    # Denormalized from the sheet for listing without parsing the document
    level: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        server_default="1",
        comment="Character level",
    )

    # Full character sheet in its camelCase document form
    sheet: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        comment="Character sheet document",
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        server_default="1",
        comment="Optimistic concurrency version of the sheet document",
    )

    # Relationships
    history: Mapped[list["HistoryEntry"]] = relationship(
        "HistoryEntry",
        back_populates="character",
        cascade="all, delete-orphan",
        order_by="HistoryEntry.number",
    )

    level_up_selections: Mapped[list["LevelUpSelectionEntry"]] = relationship(
        "LevelUpSelectionEntry",
        back_populates="character",
        cascade="all, delete-orphan",
        order_by="LevelUpSelectionEntry.level",
    )

    def __repr__(self) -> str:
        """String representation of CharacterDocument."""
        return (
            f"<CharacterDocument(id={self.id}, name='{self.name}', "
            f"level={self.level}, version={self.version})>"
        )
