"""Level-up selection log model for sheetforge."""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin

if TYPE_CHECKING:
    from .character import CharacterDocument


class LevelUpSelectionEntry(Base, TimestampMixin):
    """A committed level-up choice. One per character and level, never rewritten."""

    __tablename__ = "level_up_selections"
    __table_args__ = (
        UniqueConstraint("character_id", "level", name="uq_level_up_character_level"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        comment="Unique selection identifier",
    )

    character_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("characters.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Foreign key to character",
    )

    kind: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        index=True,
        comment="Level-up effect kind",
    )

    level: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Level at which the effect was chosen",
    )

    # Submitted effect payload, e.g. {"kind": "hpRoll", "roll": {"dice": "1d4+2", "value": 5}}
    effect: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        server_default="{}",
        comment="Effect payload as committed",
    )

    chosen_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        comment="Timestamp when the effect was chosen",
    )

    # Relationships
    character: Mapped["CharacterDocument"] = relationship(
        "CharacterDocument",
        back_populates="level_up_selections",
    )

    def __repr__(self) -> str:
        """String representation of LevelUpSelectionEntry."""
        return f"<LevelUpSelectionEntry(kind='{self.kind}', level={self.level})>"
