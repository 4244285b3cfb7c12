"""Generation orchestration: call the image model and record every attempt.

:class:`GenerationService` is the seam between the HTTP layer and the two
backing systems (Replicate and the database).  Every call to
:meth:`GenerationService.generate_and_save` writes exactly one
``image_generations`` row, whether the model call succeeded or failed, so the
table doubles as an audit log of spend and failures.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from iconforge.core.db_models import GenerationStatus, ImageGeneration
from iconforge.core.errors import NotFoundError, PersistenceError
from iconforge.core.replicate_client import GenerateImageParams, ReplicateImageClient
from iconforge.core.repository import GenerationFilters, GenerationRepository, NewGeneration

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20


@dataclass
class GenerationPage:
    """One page of generation records plus the total matching count."""

    data: list[ImageGeneration]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.page_size - 1) // self.page_size if self.page_size else 0


class GenerationService:
    """Generate images and manage their stored records.

    Args:
        image_client: Client for the hosted image model.
        repository: Persistence for generation records.
    """

    def __init__(self, image_client: ReplicateImageClient, repository: GenerationRepository) -> None:
        self.image_client = image_client
        self.repository = repository

    async def generate_and_save(
        self,
        params: GenerateImageParams,
        user_id: str | None = None,
    ) -> ImageGeneration:
        """Generate an image and persist a record of the attempt.

        A ``success`` record is stored and returned when the model call
        succeeds.  On failure a ``failed`` record carrying the error message
        is stored and the original exception is re-raised.

        Raises:
            AppError: Whatever the image client raised.
            PersistenceError: If a successful result could not be stored.
        """
        start = time.monotonic()
        status = GenerationStatus.SUCCESS
        error_message: str | None = None
        image_url = ""
        revised_prompt: str | None = None

        try:
            generated = await self.image_client.generate_image(params)
            image_url = generated.url
            revised_prompt = generated.revised_prompt
            logger.info(f"Image generated for user={user_id}: {params.prompt[:50]!r}")
        except Exception as e:
            status = GenerationStatus.FAILED
            error_message = getattr(e, "message", None) or str(e) or type(e).__name__
            logger.error(f"Failed to generate image for user={user_id}: {error_message}")
            self._save(params, user_id, start, status, image_url, revised_prompt, error_message)
            raise

        record = self._save(params, user_id, start, status, image_url, revised_prompt, None)
        if record is None:
            raise PersistenceError("Image was generated but the record could not be saved")
        return record

    def _save(
        self,
        params: GenerateImageParams,
        user_id: str | None,
        start: float,
        status: GenerationStatus,
        image_url: str,
        revised_prompt: str | None,
        error_message: str | None,
    ) -> ImageGeneration | None:
        data = NewGeneration(
            prompt=params.prompt,
            size=params.size or "1024x1024",
            quality=params.quality or "standard",
            style=params.style or "vivid",
            image_url=image_url,
            revised_prompt=revised_prompt,
            user_id=user_id,
            generation_time_ms=int((time.monotonic() - start) * 1000),
            status=status.value,
            error_message=error_message,
        )
        try:
            return self.repository.create(data)
        except SQLAlchemyError as e:
            logger.error(f"Failed to save image generation to database: {e}")
            return None

    def get_generation(self, generation_id: str) -> ImageGeneration:
        generation = self.repository.find_by_id(generation_id)
        if generation is None:
            raise NotFoundError(f"Image generation with ID {generation_id} not found")
        return generation

    def list_generations(self, filters: GenerationFilters) -> GenerationPage:
        """Return one page of records matching *filters*.

        ``limit`` defaults to 20 and ``offset`` to 0; the page number is
        derived from them.
        """
        limit = filters.limit or DEFAULT_PAGE_SIZE
        offset = filters.offset or 0
        page = offset // limit + 1

        query = GenerationFilters(
            user_id=filters.user_id,
            status=filters.status,
            start_date=filters.start_date,
            end_date=filters.end_date,
            limit=limit,
            offset=offset,
        )
        return GenerationPage(
            data=self.repository.find_all(query),
            total=self.repository.count(query),
            page=page,
            page_size=limit,
        )

    def delete_generation(self, generation_id: str) -> None:
        if not self.repository.delete_by_id(generation_id):
            raise NotFoundError(f"Image generation with ID {generation_id} not found")
        logger.info(f"Deleted generation {generation_id}")

    def stats(self) -> dict:
        return self.repository.stats()
