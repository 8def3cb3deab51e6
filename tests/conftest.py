"""
Pytest configuration and fixtures for model harness tests.

Unit tests talk to an in-process fake of the serving API through
``httpx.MockTransport``; integration tests need a live service.
"""

import asyncio
import json
import pathlib
import sys
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from model_harness.client import ServiceClient, normalize_model_name  # noqa: E402

FIXTURES_DIR = pathlib.Path(__file__).resolve().parent / "fixtures"
GB = 1_000_000_000


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class FakeOllama:
    """
    In-memory stand-in for an Ollama-compatible server.

    - ``models``: name -> size for models already present
    - ``registry``: name -> size for models that can be pulled
    - ``generations``: model -> list of text fragments (or a callable
      returning an async byte iterator for custom streams)
    - ``embeddings``: model -> vector
    """

    def __init__(self):
        self.models: Dict[str, int] = {}
        self.registry: Dict[str, int] = {}
        self.generations: Dict[str, Any] = {}
        self.embeddings: Dict[str, List[float]] = {}
        self.errors: Dict[str, httpx.Response] = {}
        self.calls: List[str] = []
        self.pulls: List[str] = []
        self.requests: List[Dict[str, Any]] = []

    def add_model(self, name: str, size: int = GB) -> None:
        self.models[normalize_model_name(name)] = size

    def _ndjson(self, chunks: List[Dict[str, Any]]) -> bytes:
        return b"".join(json.dumps(chunk).encode() + b"\n" for chunk in chunks)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append(f"{request.method} {path}")
        if path in self.errors:
            return self.errors[path]

        if path == "/api/version":
            return httpx.Response(200, json={"version": "0.0.0-fake"})

        if path == "/api/tags":
            return httpx.Response(
                200,
                json={"models": [{"name": name, "size": size} for name, size in self.models.items()]},
            )

        payload = json.loads(request.content or b"{}")
        self.requests.append(payload)

        if path == "/api/pull":
            name = normalize_model_name(payload["model"])
            self.pulls.append(name)
            if name not in self.registry:
                return httpx.Response(
                    200,
                    content=self._ndjson([
                        {"status": "pulling manifest"},
                        {"error": "pull model manifest: file does not exist"},
                    ]),
                )
            self.models[name] = self.registry[name]
            return httpx.Response(
                200,
                content=self._ndjson([
                    {"status": "pulling manifest"},
                    {"status": "verifying sha256 digest"},
                    {"status": "success"},
                ]),
            )

        if path == "/api/generate":
            scripted = self.generations.get(payload["model"], [])
            if callable(scripted):
                return httpx.Response(200, content=scripted())
            chunks = [{"response": fragment, "done": False} for fragment in scripted]
            chunks.append({"response": "", "done": True})
            return httpx.Response(200, content=self._ndjson(chunks))

        if path == "/api/embeddings":
            if payload["model"] not in self.embeddings:
                return httpx.Response(404, json={"error": f"model '{payload['model']}' not found"})
            return httpx.Response(200, json={"embedding": self.embeddings[payload["model"]]})

        return httpx.Response(404, json={"error": "not found"})

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url="http://fake-ollama", transport=httpx.MockTransport(self.handler)
        )


def slow_stream(
    fragments: List[str], delay: float, first_delay: Optional[float] = None
) -> Callable[[], Any]:
    """Build a generate stream that sleeps ``delay`` before each fragment."""

    def factory():
        async def body():
            for index, fragment in enumerate(fragments):
                await asyncio.sleep(first_delay if index == 0 and first_delay is not None else delay)
                yield json.dumps({"response": fragment, "done": False}).encode() + b"\n"
            yield json.dumps({"response": "", "done": True}).encode() + b"\n"

        return body()

    return factory


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def fake_service() -> FakeOllama:
    return FakeOllama()


@pytest.fixture
async def service_client(fake_service, anyio_backend):
    http_client = fake_service.http_client()
    client = ServiceClient(base_url="http://fake-ollama", http_client=http_client)
    yield client
    await http_client.aclose()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


# Markers for test categorization


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test (no external services)"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (requires a live service)"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow (>5 seconds)"
    )
