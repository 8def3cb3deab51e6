"""Ensure models are present on the serving host before they are exercised."""

import asyncio
import logging
import time
from typing import Dict

from .client import ServiceClient, normalize_model_name
from .errors import ModelNotFoundError, ProvisionError, ServiceError
from .structured_logger import get_structured_logger

logger = logging.getLogger(__name__)
pull_logger = get_structured_logger(__name__)


class ModelProvisioner:
    """
    Pull-if-missing with per-model serialisation.

    Concurrent ``ensure`` calls for the same model wait on one lock, so the
    absent -> present transition happens at most once. Presence is always
    re-read from the service listing; nothing is cached between calls.
    """

    def __init__(self, client: ServiceClient):
        self.client = client
        self._locks: Dict[str, asyncio.Lock] = {}
        self.pull_count: Dict[str, int] = {}

    def _lock_for(self, model_name: str) -> asyncio.Lock:
        key = normalize_model_name(model_name)
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def ensure(self, model_name: str) -> None:
        """
        Make ``model_name`` available, pulling it if the listing lacks it.

        Raises:
            ModelNotFoundError: the registry does not know the model
            ProvisionError: listing or pulling failed (not retried)
        """
        async with self._lock_for(model_name):
            try:
                if await self.client.find_model(model_name) is not None:
                    logger.debug("model %s already present", model_name)
                    return

                logger.info("pulling %s", model_name)
                started = time.perf_counter()
                await self.client.pull(model_name)
            except ModelNotFoundError:
                raise
            except ServiceError as exc:
                raise ProvisionError(f"pull failed {model_name}: {exc}") from exc

            key = normalize_model_name(model_name)
            self.pull_count[key] = self.pull_count.get(key, 0) + 1
            elapsed = time.perf_counter() - started
            pull_logger.info(
                f"pulled {model_name} in {elapsed:.1f}s",
                model=key,
                pull_seconds=round(elapsed, 2),
            )
