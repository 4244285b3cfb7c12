"""Shared pytest fixtures for Iconforge tests.

No test touches the network: Replicate is replaced by an ``httpx.MockTransport``
driven by :class:`FakeReplicate`, and Redis by the in-memory :class:`FakeRedis`.
"""

from __future__ import annotations

import json
import shutil
import tempfile
from collections.abc import Generator
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from iconforge.core.cache import ImageCache
from iconforge.core.config import IconforgeConfig
from iconforge.core.database import create_session_factory
from iconforge.core.generation_service import GenerationService
from iconforge.core.icon_set import IconSetGenerator
from iconforge.core.replicate_client import ReplicateImageClient
from iconforge.core.repository import GenerationRepository

FAKE_PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


class FakeReplicate:
    """Callable ``httpx.MockTransport`` handler emulating the predictions API.

    Attributes:
        requests: Every request received, in order.
        create_status_code: Status returned when creating a prediction.
        final_status: Terminal status reported for each prediction.
        output: Output reported on completion.  ``None`` means one delivery
            URL derived from the prediction id.
        processing_polls: Number of polls answered with ``"processing"``
            before the terminal status is reported.
        reject_token: Answer ``GET /v1/models`` with 401.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.create_status_code = 201
        self.final_status = "succeeded"
        self.output = None
        self.processing_polls = 0
        self.reject_token = False
        self._created = 0
        self._polls: dict[str, int] = {}

    @property
    def created_predictions(self) -> list[dict]:
        return [
            json.loads(r.content)
            for r in self.requests
            if r.method == "POST" and r.url.path == "/v1/predictions"
        ]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.url.host == "replicate.delivery":
            return httpx.Response(200, content=FAKE_PNG, headers={"content-type": "image/png"})

        if request.method == "POST" and path == "/v1/predictions":
            if self.create_status_code != 201:
                return httpx.Response(self.create_status_code, json={"detail": "Request was throttled."})
            self._created += 1
            return httpx.Response(201, json={"id": f"pred-{self._created}", "status": "starting"})

        if request.method == "GET" and path.startswith("/v1/predictions/"):
            prediction_id = path.rsplit("/", 1)[-1]
            polls = self._polls.get(prediction_id, 0) + 1
            self._polls[prediction_id] = polls
            if polls <= self.processing_polls:
                return httpx.Response(200, json={"id": prediction_id, "status": "processing"})

            output = self.output
            if output is None:
                output = [f"https://replicate.delivery/fake/{prediction_id}.png"]
            body = {"id": prediction_id, "status": self.final_status, "output": output}
            if self.final_status != "succeeded":
                body["error"] = "NSFW content detected"
            return httpx.Response(200, json=body)

        if request.method == "GET" and path == "/v1/models":
            if self.reject_token:
                return httpx.Response(401, json={"detail": "Invalid token."})
            return httpx.Response(200, json={"results": []})

        return httpx.Response(404, json={"detail": "Not found."})


class FakeRedis:
    """In-memory stand-in for ``redis.asyncio.Redis``.

    Set ``fail = True`` to make every operation raise a connection error.
    """

    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.fail = False
        self.closed = False

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("redis unavailable")

    async def ping(self) -> bool:
        self._check()
        return True

    async def get(self, key: str) -> str | None:
        self._check()
        return self.store.get(key)

    async def setex(self, key: str, ttl: int, value: str) -> None:
        self._check()
        self.store[key] = value
        self.ttls[key] = ttl

    async def aclose(self) -> None:
        self.closed = True


class SleepRecorder:
    """Async replacement for ``asyncio.sleep`` that records requested delays."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> IconforgeConfig:
    """Create a test configuration pointing at temporary directories."""
    return IconforgeConfig(
        _env_file=None,
        data_dir=temp_dir / "data",
        replicate_api_token="test-api-token",
        replicate_poll_interval=0.0,
        icon_delay_seconds=2.0,
    )


@pytest.fixture
def session_factory(temp_dir: Path):
    """Session factory bound to a fresh SQLite database file."""
    return create_session_factory(f"sqlite:///{temp_dir / 'test.sqlite'}")


@pytest.fixture
def repository(session_factory) -> GenerationRepository:
    return GenerationRepository(session_factory)


@pytest.fixture
def fake_replicate() -> FakeReplicate:
    return FakeReplicate()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def image_client(fake_replicate: FakeReplicate, sleep_recorder: SleepRecorder) -> ReplicateImageClient:
    """Replicate client wired to the fake API with caching disabled."""
    return ReplicateImageClient(
        "test-api-token",
        transport=httpx.MockTransport(fake_replicate),
        poll_interval=0.5,
        sleep=sleep_recorder,
    )


@pytest.fixture
def cached_image_client(
    fake_replicate: FakeReplicate, fake_redis: FakeRedis, sleep_recorder: SleepRecorder
) -> ReplicateImageClient:
    """Replicate client wired to the fake API and the in-memory Redis."""
    return ReplicateImageClient(
        "test-api-token",
        cache=ImageCache(fake_redis, ttl_seconds=3600),
        transport=httpx.MockTransport(fake_replicate),
        sleep=sleep_recorder,
    )


@pytest.fixture
def generation_service(
    image_client: ReplicateImageClient, repository: GenerationRepository
) -> GenerationService:
    return GenerationService(image_client, repository)


@pytest.fixture
def delay_recorder() -> SleepRecorder:
    """Records the pauses taken between icon generations."""
    return SleepRecorder()


@pytest.fixture
def icon_set_generator(
    generation_service: GenerationService, delay_recorder: SleepRecorder
) -> IconSetGenerator:
    return IconSetGenerator(generation_service, icon_count=4, delay_seconds=2.0, sleep=delay_recorder)


@pytest.fixture
def test_client(
    generation_service: GenerationService,
    icon_set_generator: IconSetGenerator,
    monkeypatch: pytest.MonkeyPatch,
) -> Generator[TestClient, None, None]:
    """FastAPI TestClient with the services replaced by test instances.

    The client is not entered as a context manager, so the application
    lifespan (which would connect to the real Replicate API) never runs.
    The shared rate limiter is cleared and raised out of reach; rate-limit
    tests lower it themselves.
    """
    from iconforge.api.main import (
        app,
        get_generation_service,
        get_icon_set_generator,
        rate_limiter,
    )

    monkeypatch.setattr(rate_limiter, "max_requests", 10_000)
    rate_limiter.reset()
    app.dependency_overrides[get_generation_service] = lambda: generation_service
    app.dependency_overrides[get_icon_set_generator] = lambda: icon_set_generator
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
