"""
Response validators.

- Generation: streamed text must contain at least one expected term
- Embedding: vector must match a stored reference by cosine similarity
"""

import asyncio
import logging
import time
from typing import Iterable, List, Sequence

import numpy as np

from .client import EmbeddingRequest, GenerateRequest, ServiceClient
from .errors import ServiceError, ValidationFailure

logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.99
DIAGNOSTIC_PREFIX_LEN = 5


def contains_any(text: str, expected_terms: Iterable[str]) -> bool:
    """Case-insensitive OR match of ``expected_terms`` within ``text``."""
    lowered = text.lower()
    return any(term.lower() in lowered for term in expected_terms)


async def collect_generation(
    client: ServiceClient,
    request: GenerateRequest,
    overall_timeout: float,
    idle_timeout: float,
) -> str:
    """
    Stream a generation and return the concatenated text.

    One timeout scope covers the stream. Its deadline is moved after every
    fragment to whichever comes first: the overall deadline or the idle
    deadline. Expiry cancels the consumer, which closes the HTTP stream.
    """
    loop = asyncio.get_running_loop()
    started = loop.time()
    overall_deadline = started + overall_timeout
    fragments: List[str] = []
    stream = client.generate_stream(request)
    deadline = min(overall_deadline, started + idle_timeout)
    try:
        async with asyncio.timeout_at(deadline) as scope:
            async for fragment in stream:
                fragments.append(fragment)
                deadline = min(overall_deadline, loop.time() + idle_timeout)
                scope.reschedule(deadline)
    except TimeoutError:
        received = "".join(fragments)
        if deadline >= overall_deadline:
            raise ValidationFailure(
                f"generate on {request.model} exceeded budget of {overall_timeout:.0f}s; "
                f"received so far: {received!r}"
            ) from None
        raise ValidationFailure(
            f"generate on {request.model} stalled: no response for {idle_timeout:.0f}s; "
            f"received so far: {received!r}"
        ) from None
    finally:
        await stream.aclose()

    logger.debug(
        "generate on %s finished in %.2fs (%d fragments)",
        request.model,
        loop.time() - started,
        len(fragments),
    )
    return "".join(fragments)


async def validate_generate(
    client: ServiceClient,
    request: GenerateRequest,
    expected_terms: Sequence[str],
    overall_timeout: float = 120.0,
    idle_timeout: float = 30.0,
) -> str:
    """Run a generation and assert one of ``expected_terms`` is in the output.

    Returns the received text. Raises ValidationFailure otherwise.
    """
    try:
        text = await collect_generation(client, request, overall_timeout, idle_timeout)
    except ServiceError as exc:
        raise ValidationFailure(f"generate on {request.model} failed: {exc}") from exc

    if not contains_any(text, expected_terms):
        raise ValidationFailure(
            f"{request.model} response contained none of {list(expected_terms)}; "
            f"received: {text!r}"
        )
    return text


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two equal-length vectors.

    Raises:
        ValueError: length mismatch, empty input, non-finite components or a
            zero-norm vector
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"vector lengths differ: {va.size} != {vb.size}")
    if va.size == 0:
        raise ValueError("cosine similarity of empty vectors is undefined")
    if not (np.isfinite(va).all() and np.isfinite(vb).all()):
        raise ValueError("cosine similarity is undefined for non-finite components")
    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        raise ValueError("cosine similarity is undefined for a zero-norm vector")
    return float(np.dot(va, vb) / (norm_a * norm_b))


def _format_vector(values: Sequence[float]) -> str:
    return ", ".join(f"{value:0.6f}" for value in values)


async def validate_embedding(
    client: ServiceClient,
    request: EmbeddingRequest,
    reference: Sequence[float],
    threshold: float = SIMILARITY_THRESHOLD,
) -> float:
    """Request an embedding and compare it with ``reference``.

    Returns the similarity. Raises ValidationFailure on an empty vector, a
    dimensionality mismatch, non-finite or zero-norm vectors, or similarity
    below threshold.
    """
    started = time.perf_counter()
    try:
        vector = await client.embed(request)
    except ServiceError as exc:
        raise ValidationFailure(f"embeddings call failed: {exc}") from exc
    logger.debug(
        "embedding on %s returned %d values in %.2fs",
        request.model,
        len(vector),
        time.perf_counter() - started,
    )

    if not vector:
        raise ValidationFailure("zero length embedding response")

    if len(vector) != len(reference):
        # Observed values are what a new reference fixture entry needs
        logger.info("observed embedding for %s:\n%s", request.model, _format_vector(vector))
        raise ValidationFailure(
            f"embedding dimension mismatch: expected {len(reference)}, got {len(vector)}"
        )

    try:
        similarity = cosine_similarity(vector, reference)
    except ValueError as exc:
        raise ValidationFailure(f"embedding comparison failed: {exc}") from exc

    if not similarity >= threshold:
        raise ValidationFailure(
            f"expected [{_format_vector(reference[:DIAGNOSTIC_PREFIX_LEN])}], "
            f"got [{_format_vector(vector[:DIAGNOSTIC_PREFIX_LEN])}] "
            f"(similarity: {similarity:.6f})"
        )
    return similarity
