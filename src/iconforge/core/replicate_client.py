"""Replicate HTTP client for FLUX Schnell image generation.

This module provides :class:`ReplicateImageClient`, the only component that
talks to the hosted image model.  It speaks Replicate's predictions API
directly over ``httpx``:

1. ``POST /v1/predictions`` creates a prediction for the pinned model version.
2. ``GET /v1/predictions/{id}`` is polled until the prediction reaches a
   terminal status (``succeeded``, ``failed`` or ``canceled``).
3. The first output URL is returned as a :class:`GeneratedImage`.

Results are cached by content hash through :class:`~iconforge.core.cache.ImageCache`
so an identical request does not spend another prediction.

Error Mapping
-------------
- Empty or over-long prompts raise :class:`ValidationError` before any
  network traffic.
- HTTP 429 raises :class:`RateLimitError`.
- Every other transport or API failure raises :class:`ExternalServiceError`
  prefixed with ``"Replicate API Error:"``.

Usage
-----
::

    client = ReplicateImageClient(config.replicate_api_token)
    image = await client.generate_image(GenerateImageParams(prompt="a red fox icon"))
    print(image.url)
    await client.aclose()
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass

import httpx

from iconforge.core.cache import ImageCache, build_cache_key
from iconforge.core.errors import (
    AppError,
    ConfigurationError,
    ExternalServiceError,
    RateLimitError,
    ValidationError,
)

logger = logging.getLogger(__name__)

MODEL_NAME = "black-forest-labs/flux-schnell"

# Size presets accepted by the API, mapped to FLUX width/height inputs.
SIZE_DIMENSIONS: dict[str, tuple[int, int]] = {
    "1024x1024": (1024, 1024),
    "1792x1024": (1792, 1024),
    "1024x1792": (1024, 1792),
}

QUALITIES = ("standard", "hd")
IMAGE_STYLES = ("vivid", "natural")

_TERMINAL_STATUSES = frozenset({"succeeded", "failed", "canceled"})

RATE_LIMIT_MESSAGE = "Replicate API rate limit exceeded. Please wait a moment and try again."


@dataclass
class GenerateImageParams:
    """Parameters for a single image generation.

    Attributes:
        prompt: Text prompt sent to the model.
        size: One of :data:`SIZE_DIMENSIONS`.
        quality: ``"hd"`` requests maximum PNG output quality.
        style: ``"vivid"`` or ``"natural"``.  Recorded but not sent to FLUX.
        n: Number of outputs requested; only the first is used.
    """

    prompt: str
    size: str = "1024x1024"
    quality: str = "standard"
    style: str = "vivid"
    n: int = 1


@dataclass
class GeneratedImage:
    """Result of a successful generation."""

    url: str
    revised_prompt: str | None = None


class ReplicateImageClient:
    """Async client for Replicate predictions.

    Args:
        api_token: Replicate API token.  Must be non-empty.
        base_url: Root URL of the Replicate API.
        model_version: Pinned model version hash.
        cache: Optional result cache.  A disabled cache is used when omitted.
        poll_interval: Seconds to wait between status polls.
        timeout_seconds: Maximum time to wait for a prediction to finish.
        max_prompt_length: Longest prompt accepted.
        transport: Optional ``httpx`` transport, used by tests to stub the API.
        sleep: Coroutine used to wait between polls.

    Raises:
        ConfigurationError: If *api_token* is empty.
    """

    def __init__(
        self,
        api_token: str,
        *,
        base_url: str = "https://api.replicate.com",
        model_version: str = "5599ed30703defd1d160a25a63321b4dec97101d98b4674bcc56e41f62f35637",
        cache: ImageCache | None = None,
        poll_interval: float = 1.0,
        timeout_seconds: float = 120.0,
        max_prompt_length: int = 4000,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if not api_token:
            raise ConfigurationError("REPLICATE API token is not configured")

        self.model_version = model_version
        self.cache = cache or ImageCache(None)
        self.poll_interval = poll_interval
        self.timeout_seconds = timeout_seconds
        self.max_prompt_length = max_prompt_length
        self._sleep = sleep
        self._transport = transport
        self._http = httpx.AsyncClient(
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {api_token}",
                "Content-Type": "application/json",
            },
            timeout=30.0,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate_image(self, params: GenerateImageParams) -> GeneratedImage:
        """Generate one image, answering from the cache when possible.

        Args:
            params: Prompt and output settings.

        Returns:
            The image URL and the prompt recorded as its revised prompt.

        Raises:
            ValidationError: For an empty or over-long prompt.
            RateLimitError: When Replicate throttles the request.
            ExternalServiceError: For any other API or transport failure.
        """
        start = time.monotonic()
        self._validate_prompt(params.prompt, start)

        try:
            cache_key = build_cache_key(params.prompt, params.size, params.quality, params.style)
            cached = await self.cache.get(cache_key)
            if cached:
                logger.info(
                    f"Cache hit for image generation {cache_key} "
                    f"({_elapsed_ms(start)}ms)"
                )
                return GeneratedImage(url=cached["url"], revised_prompt=cached.get("revised_prompt"))

            logger.info(
                f"Calling Replicate API for image generation "
                f"(model={MODEL_NAME}, prompt={params.prompt[:100]!r})"
            )
            prediction = await self._create_prediction(params)
            logger.info(f"Waiting for Replicate prediction {prediction.get('id')}")
            completed = await self._wait_for_prediction(prediction)

            if completed.get("status") != "succeeded":
                detail = completed.get("error")
                message = f"Prediction failed with status: {completed.get('status')}"
                if detail:
                    message = f"{message} ({detail})"
                raise ExternalServiceError(message)

            image_url = _extract_output_url(completed.get("output"))

            # FLUX does not revise prompts, so the submitted prompt is recorded.
            result = GeneratedImage(url=image_url, revised_prompt=params.prompt)
            await self.cache.set(cache_key, asdict(result))

            logger.info(
                f"Image generated successfully in {_elapsed_ms(start)}ms: {image_url[:100]}"
            )
            return result
        except AppError as e:
            logger.error(f"Error generating image: {e.message} ({_elapsed_ms(start)}ms)")
            raise
        except httpx.HTTPError as e:
            logger.error(f"Error generating image: {e} ({_elapsed_ms(start)}ms)")
            raise ExternalServiceError(f"Replicate API Error: {e}") from e

    def _validate_prompt(self, prompt: str, start: float) -> None:
        if not prompt or not prompt.strip():
            message = "Prompt cannot be empty"
        elif len(prompt) > self.max_prompt_length:
            message = f"Prompt is too long (max {self.max_prompt_length} characters)"
        else:
            return
        logger.error(f"Error generating image: {message} ({_elapsed_ms(start)}ms)")
        raise ValidationError(message)

    async def _create_prediction(self, params: GenerateImageParams) -> dict:
        width, height = SIZE_DIMENSIONS.get(params.size, SIZE_DIMENSIONS["1024x1024"])
        payload = {
            "version": self.model_version,
            "input": {
                "prompt": params.prompt,
                "width": width,
                "height": height,
                "num_outputs": params.n or 1,
                "output_format": "png",
                "output_quality": 100 if params.quality == "hd" else 80,
            },
        }
        prediction = await self._request("POST", "/v1/predictions", json=payload)
        if not isinstance(prediction, dict) or not prediction.get("id"):
            raise ExternalServiceError("Replicate API Error: prediction response has no id")
        return prediction

    async def _wait_for_prediction(self, prediction: dict) -> dict:
        """Poll a prediction until it reaches a terminal status."""
        deadline = time.monotonic() + self.timeout_seconds
        current = prediction

        while current.get("status") not in _TERMINAL_STATUSES:
            if time.monotonic() >= deadline:
                raise ExternalServiceError(
                    f"Prediction {prediction.get('id')} did not finish within "
                    f"{self.timeout_seconds:g}s"
                )
            await self._sleep(self.poll_interval)
            current = await self._request("GET", f"/v1/predictions/{prediction['id']}")

        return current

    async def _request(self, method: str, url: str, **kwargs) -> dict:
        response = await self._http.request(method, url, **kwargs)

        if response.status_code == 429:
            raise RateLimitError(RATE_LIMIT_MESSAGE)
        if response.is_error:
            raise ExternalServiceError(
                f"Replicate API Error: {_error_detail(response)} (HTTP {response.status_code})"
            )
        try:
            return response.json()
        except ValueError as e:
            raise ExternalServiceError("Replicate API Error: invalid JSON response") from e

    # ------------------------------------------------------------------
    # Utilities
    # ------------------------------------------------------------------

    async def validate_api_key(self) -> bool:
        """Return ``True`` if the token is accepted by the API."""
        try:
            await self._request("GET", "/v1/models")
            return True
        except (AppError, httpx.HTTPError) as e:
            logger.error(f"Replicate API key validation failed: {e}")
            return False

    async def fetch_image(self, url: str) -> bytes:
        """Download a generated image from its delivery URL.

        The request is sent without the API token since delivery URLs are
        public and may live on a different host.

        Raises:
            ExternalServiceError: If the download fails.
        """
        try:
            async with httpx.AsyncClient(timeout=60.0, transport=self._transport) as client:
                response = await client.get(url, follow_redirects=True)
                response.raise_for_status()
                return response.content
        except httpx.HTTPError as e:
            logger.error(f"Failed to download image {url[:100]}: {e}")
            raise ExternalServiceError(f"Failed to download image: {e}") from e


def _extract_output_url(output) -> str:
    if isinstance(output, list) and output:
        image_url = output[0]
    elif isinstance(output, str):
        image_url = output
    else:
        raise ExternalServiceError(
            f"Unexpected output format from Replicate: {type(output).__name__}"
        )

    if not image_url or not isinstance(image_url, str):
        raise ExternalServiceError("No valid URL returned from Replicate")
    return image_url


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("title") or body)
    return str(body)


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
