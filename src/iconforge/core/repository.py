"""Relational persistence for generation records.

:class:`GenerationRepository` wraps a SQLAlchemy ``sessionmaker`` and opens a
short-lived session per operation, so callers never manage sessions
themselves.  Listing and counting share one filter builder so the total
reported alongside a page always matches the rows the page was cut from.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import Select, delete, func, select
from sqlalchemy.orm import sessionmaker

from iconforge.core.db_models import GenerationStatus, ImageGeneration

logger = logging.getLogger(__name__)


@dataclass
class NewGeneration:
    """Field values for a generation record about to be inserted."""

    prompt: str
    size: str
    quality: str
    style: str
    image_url: str
    generation_time_ms: int
    status: str
    revised_prompt: str | None = None
    user_id: str | None = None
    error_message: str | None = None


@dataclass
class GenerationFilters:
    """Criteria for listing generation records.

    ``start_date`` and ``end_date`` are inclusive bounds on ``created_at``.
    ``limit`` and ``offset`` only apply to :meth:`GenerationRepository.find_all`.
    """

    user_id: str | None = None
    status: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    limit: int | None = None
    offset: int | None = None


def _as_utc(value: datetime) -> datetime:
    # Naive datetimes are taken to be UTC, matching how records are stamped.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class GenerationRepository:
    """CRUD access to the ``image_generations`` table."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def create(self, data: NewGeneration) -> ImageGeneration:
        """Insert a new record and return it with its generated id and timestamp."""
        record = ImageGeneration(
            prompt=data.prompt,
            size=data.size,
            quality=data.quality,
            style=data.style,
            image_url=data.image_url,
            revised_prompt=data.revised_prompt,
            user_id=data.user_id,
            generation_time_ms=data.generation_time_ms,
            status=data.status,
            error_message=data.error_message,
        )
        with self._session_factory() as session:
            session.add(record)
            session.commit()
            session.refresh(record)
        logger.debug(f"Stored generation {record.id} ({record.status})")
        return record

    def find_by_id(self, generation_id: str) -> ImageGeneration | None:
        with self._session_factory() as session:
            return session.get(ImageGeneration, generation_id)

    def find_all(self, filters: GenerationFilters | None = None) -> list[ImageGeneration]:
        """Return matching records, newest first."""
        filters = filters or GenerationFilters()
        query = self._apply_filters(select(ImageGeneration), filters)
        query = query.order_by(ImageGeneration.created_at.desc(), ImageGeneration.id)

        if filters.offset:
            query = query.offset(filters.offset)
        if filters.limit:
            query = query.limit(filters.limit)

        with self._session_factory() as session:
            return list(session.scalars(query).all())

    def count(self, filters: GenerationFilters | None = None) -> int:
        filters = filters or GenerationFilters()
        query = self._apply_filters(
            select(func.count()).select_from(ImageGeneration), filters
        )
        with self._session_factory() as session:
            return session.scalar(query) or 0

    def delete_by_id(self, generation_id: str) -> bool:
        """Delete a record.  Returns ``False`` when no row matched."""
        with self._session_factory() as session:
            result = session.execute(
                delete(ImageGeneration).where(ImageGeneration.id == generation_id)
            )
            session.commit()
            return result.rowcount > 0

    def stats(self) -> dict:
        """Return record counts per status and the mean successful generation time."""
        with self._session_factory() as session:
            rows = session.execute(
                select(ImageGeneration.status, func.count()).group_by(ImageGeneration.status)
            ).all()
            average = session.scalar(
                select(func.avg(ImageGeneration.generation_time_ms)).where(
                    ImageGeneration.status == GenerationStatus.SUCCESS.value
                )
            )

        status_counts = {status.value: 0 for status in GenerationStatus}
        for status, count in rows:
            status_counts[status] = count

        return {
            "total_generations": sum(status_counts.values()),
            "status_counts": status_counts,
            "average_generation_time_ms": round(average) if average is not None else None,
        }

    @staticmethod
    def _apply_filters(query: Select, filters: GenerationFilters) -> Select:
        if filters.user_id:
            query = query.where(ImageGeneration.user_id == filters.user_id)
        if filters.status:
            query = query.where(ImageGeneration.status == filters.status)
        if filters.start_date:
            query = query.where(ImageGeneration.created_at >= _as_utc(filters.start_date))
        if filters.end_date:
            query = query.where(ImageGeneration.created_at <= _as_utc(filters.end_date))
        return query
