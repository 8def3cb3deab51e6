# Needs: python-package:httpx>=0.28.1
"""Async client for an Ollama-compatible model-serving API."""

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from .errors import ModelNotFoundError, ServiceError
from .options import RequestOptions

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://127.0.0.1:11434"


def normalize_model_name(name: str) -> str:
    """Return ``name`` with an explicit tag (untagged names mean ``:latest``)."""
    name = name.strip()
    if ":" not in name.rsplit("/", 1)[-1]:
        return f"{name}:latest"
    return name


@dataclass(frozen=True)
class ModelDescriptor:
    """A model as reported by the service listing."""
    name: str
    size: int

    def matches(self, model_name: str) -> bool:
        return normalize_model_name(self.name) == normalize_model_name(model_name)


@dataclass(frozen=True)
class GenerateRequest:
    model: str
    prompt: str
    options: RequestOptions = field(default_factory=RequestOptions)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "prompt": self.prompt,
            "options": self.options.to_payload(),
            "stream": True,
        }


@dataclass(frozen=True)
class EmbeddingRequest:
    model: str
    prompt: str
    options: RequestOptions = field(default_factory=RequestOptions)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "prompt": self.prompt,
            "options": self.options.to_payload(),
        }


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except (json.JSONDecodeError, ValueError):
        return response.text or f"HTTP {response.status_code}"
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return response.text or f"HTTP {response.status_code}"


def _json_body(response: httpx.Response, what: str) -> Dict[str, Any]:
    """Decode a 200 response body that must be a JSON object."""
    try:
        data = response.json()
    except ValueError as exc:
        raise ServiceError(
            f"{what} failed: response is not JSON: {response.text[:200]!r}", response.status_code
        ) from exc
    if not isinstance(data, dict):
        raise ServiceError(f"{what} failed: unexpected response body: {response.text[:200]!r}")
    return data


def _parse_line(line: str) -> Optional[Dict[str, Any]]:
    line = line.strip()
    if not line:
        return None
    try:
        chunk = json.loads(line)
    except json.JSONDecodeError as exc:
        raise ServiceError(f"malformed stream line: {line[:200]}") from exc
    if not isinstance(chunk, dict):
        raise ServiceError(f"unexpected stream line: {line[:200]}")
    if chunk.get("error"):
        raise ServiceError(str(chunk["error"]))
    return chunk


class ServiceClient:
    """
    Thin wrapper over one shared ``httpx.AsyncClient``.

    The underlying client is safe for concurrent requests, so a single
    ServiceClient is shared by every case in a run. Transport and HTTP errors
    are translated to ServiceError at this boundary.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = 600.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> "ServiceClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()
        return False

    async def version(self) -> str:
        try:
            response = await self._http.get("/api/version", timeout=5.0)
        except httpx.HTTPError as exc:
            raise ServiceError(f"version request failed: {exc}") from exc
        if response.status_code != 200:
            raise ServiceError(_error_message(response), response.status_code)
        return str(_json_body(response, "version").get("version", "unknown"))

    async def list_models(self) -> List[ModelDescriptor]:
        try:
            response = await self._http.get("/api/tags")
        except httpx.HTTPError as exc:
            raise ServiceError(f"list models failed: {exc}") from exc
        if response.status_code != 200:
            raise ServiceError(
                f"list models failed: {_error_message(response)}", response.status_code
            )

        models = []
        for item in _json_body(response, "list models").get("models") or []:
            name = item.get("name") or item.get("model")
            if not name:
                continue
            models.append(ModelDescriptor(name=name, size=int(item.get("size") or 0)))
        return models

    async def find_model(self, model_name: str) -> Optional[ModelDescriptor]:
        """Fetch a fresh listing and return the entry for ``model_name``, if any."""
        for descriptor in await self.list_models():
            if descriptor.matches(model_name):
                return descriptor
        return None

    async def pull(self, model_name: str) -> None:
        """Pull ``model_name`` and block until the service reports completion."""
        payload = {"model": model_name, "stream": True}
        last_status = ""
        started = time.perf_counter()
        try:
            async with self._http.stream("POST", "/api/pull", json=payload, timeout=None) as response:
                if response.status_code != 200:
                    await response.aread()
                    message = _error_message(response)
                    if response.status_code == 404:
                        raise ModelNotFoundError(f"model {model_name} not found: {message}")
                    raise ServiceError(f"pull {model_name} failed: {message}", response.status_code)

                async for line in response.aiter_lines():
                    try:
                        chunk = _parse_line(line)
                    except ServiceError as exc:
                        if "file does not exist" in str(exc) or "not found" in str(exc):
                            raise ModelNotFoundError(f"model {model_name} not found: {exc}") from exc
                        raise
                    if chunk is None:
                        continue
                    status = chunk.get("status", "")
                    if status != last_status:
                        logger.debug("pull %s: %s", model_name, status)
                        last_status = status
        except httpx.HTTPError as exc:
            raise ServiceError(f"pull {model_name} failed: {exc}") from exc

        if last_status and last_status != "success":
            raise ServiceError(f"pull {model_name} ended with status {last_status!r}")
        logger.debug("pull %s finished in %.1fs", model_name, time.perf_counter() - started)

    async def generate_stream(self, request: GenerateRequest) -> AsyncIterator[str]:
        """
        Yield response text fragments for a generate request.

        The sequence is consumed once; closing or cancelling the consumer
        exits the streaming context and aborts the HTTP request.
        """
        try:
            async with self._http.stream(
                "POST", "/api/generate", json=request.to_payload()
            ) as response:
                if response.status_code != 200:
                    await response.aread()
                    raise ServiceError(
                        f"generate failed: {_error_message(response)}", response.status_code
                    )
                async for line in response.aiter_lines():
                    chunk = _parse_line(line)
                    if chunk is None:
                        continue
                    fragment = chunk.get("response", "")
                    if fragment:
                        yield fragment
                    if chunk.get("done"):
                        return
        except httpx.HTTPError as exc:
            raise ServiceError(f"generate failed: {exc}") from exc

    async def embed(self, request: EmbeddingRequest) -> List[float]:
        try:
            response = await self._http.post("/api/embeddings", json=request.to_payload())
        except httpx.HTTPError as exc:
            raise ServiceError(f"embeddings call failed: {exc}") from exc
        if response.status_code != 200:
            raise ServiceError(
                f"embeddings call failed: {_error_message(response)}", response.status_code
            )
        values = _json_body(response, "embeddings call").get("embedding") or []
        try:
            return [float(value) for value in values]
        except (TypeError, ValueError) as exc:
            raise ServiceError(f"embeddings call failed: non-numeric embedding: {exc}") from exc
