"""ORM model for generation records."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from iconforge.core.database import Base


class GenerationStatus(str, enum.Enum):
    """Outcome of a generation attempt."""

    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ImageGeneration(Base):
    """One row per generation attempt, written once and never updated."""

    __tablename__ = "image_generations"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    prompt: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    size: Mapped[str] = mapped_column(String(50), nullable=False)
    quality: Mapped[str] = mapped_column(String(50), nullable=False)
    style: Mapped[str] = mapped_column(String(50), nullable=False)
    image_url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    revised_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    user_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    generation_time_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, index=True
    )

    def to_dict(self) -> dict:
        """Serialise the record for JSON responses."""
        return {
            "id": self.id,
            "prompt": self.prompt,
            "size": self.size,
            "quality": self.quality,
            "style": self.style,
            "image_url": self.image_url,
            "revised_prompt": self.revised_prompt,
            "user_id": self.user_id,
            "generation_time_ms": self.generation_time_ms,
            "status": self.status,
            "error_message": self.error_message,
            "created_at": _as_utc(self.created_at).isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<ImageGeneration(id={self.id}, status={self.status})>"


def _as_utc(value: datetime) -> datetime:
    # SQLite drops the offset on read; stored values are always UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
