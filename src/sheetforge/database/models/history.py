"""History entry model for sheetforge's append-only audit log."""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin

if TYPE_CHECKING:
    from .character import CharacterDocument


class HistoryEntry(Base, TimestampMixin):
    """One immutable audit record, numbered per character."""

    __tablename__ = "history_records"
    __table_args__ = (
        UniqueConstraint("character_id", "number", name="uq_history_character_number"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        comment="Record identifier assigned by the engine",
    )

    character_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("characters.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Foreign key to character",
    )

    number: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Position in the character's history, starting at 1",
    )

    record_type: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="RecordType value",
    )

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Name of the changed entity",
    )

    # {"old": {...}, "new": {...}}
    data: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        comment="Old and new state of the changed entities",
    )

    learning_method: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
        comment="Learning method for skill changes",
    )

    # {"adventurePoints": {"old": ..., "new": ...} | null, "attributePoints": ... | null}
    calculation_points: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        server_default="{}",
        comment="Point ledgers moved by the change",
    )

    comment: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="Optional user comment",
    )

    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="Time the change was applied",
    )

    # Relationships
    character: Mapped["CharacterDocument"] = relationship(
        "CharacterDocument",
        back_populates="history",
    )

    def __repr__(self) -> str:
        """String representation of HistoryEntry."""
        return (
            f"<HistoryEntry(character_id={self.character_id}, number={self.number}, "
            f"type={self.record_type}, name='{self.name}')>"
        )
