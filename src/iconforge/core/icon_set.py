"""Sequential icon-set generation.

An icon set is ``icon_count`` (four by default) separate generations of the
same enriched prompt.  The calls are made one after another with a pause in
between, never concurrently: Replicate's free tier only allows a few
predictions per minute, and firing four at once reliably trips the limit.

The first failure stops the loop.  Icons already generated stay persisted as
``success`` records and the failing attempt is persisted as ``failed``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from iconforge.core.errors import RateLimitError
from iconforge.core.generation_service import GenerationService
from iconforge.core.icon_prompts import build_icon_prompt
from iconforge.core.replicate_client import GenerateImageParams

logger = logging.getLogger(__name__)

ICON_SIZE = "1024x1024"
ICON_QUALITY = "hd"
ICON_IMAGE_STYLE = "vivid"

ProgressCallback = Callable[[int, int], None]


@dataclass
class GeneratedIcon:
    """One icon of a generated set."""

    id: str
    url: str
    prompt: str


class IconSetGenerator:
    """Generate a set of icons through :class:`GenerationService`.

    Args:
        service: Service that performs and records each generation.
        icon_count: Number of icons per set.
        delay_seconds: Pause between consecutive generations.
        sleep: Coroutine used for the pause.
    """

    def __init__(
        self,
        service: GenerationService,
        *,
        icon_count: int = 4,
        delay_seconds: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.service = service
        self.icon_count = icon_count
        self.delay_seconds = delay_seconds
        self._sleep = sleep

    async def generate(
        self,
        prompt: str,
        style: str,
        colors: list[str] | None = None,
        *,
        user_id: str | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> list[GeneratedIcon]:
        """Generate the icon set.

        Args:
            prompt: Icon subject entered by the user.
            style: Preset style name.
            colors: Optional brand colours.
            user_id: Recorded on every generation row.
            on_progress: Called with ``(completed, total)`` before each
                generation and once more when the set is complete.

        Returns:
            The generated icons in generation order.

        Raises:
            RateLimitError: With a user-facing explanation when throttled.
            AppError: Any other generation failure.
        """
        icon_prompt = build_icon_prompt(prompt, style, colors)
        total = self.icon_count
        icons: list[GeneratedIcon] = []

        logger.info(f"Generating {total} icons in style {style!r} for {prompt[:50]!r}")

        for i in range(total):
            if on_progress:
                on_progress(i, total)

            params = GenerateImageParams(
                prompt=icon_prompt,
                size=ICON_SIZE,
                quality=ICON_QUALITY,
                style=ICON_IMAGE_STYLE,
            )
            try:
                record = await self.service.generate_and_save(params, user_id=user_id)
            except RateLimitError as e:
                logger.warning(f"Rate limited after {len(icons)}/{total} icons")
                raise RateLimitError(
                    "Replicate API rate limit exceeded. Please wait a moment and try again. "
                    "The free tier allows 6 requests per minute."
                ) from e

            icons.append(
                GeneratedIcon(
                    id=record.id,
                    url=record.image_url,
                    prompt=record.revised_prompt or icon_prompt,
                )
            )

            if i < total - 1 and self.delay_seconds > 0:
                await self._sleep(self.delay_seconds)

        if on_progress:
            on_progress(total, total)

        logger.info(f"Icon set complete: {len(icons)} icons")
        return icons
