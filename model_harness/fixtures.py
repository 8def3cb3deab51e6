"""Reference embedding vectors loaded from a name-keyed JSON fixture."""

import json
import logging
import math
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterator, Mapping, Tuple, Union

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


class ReferenceVectors(Mapping[str, Tuple[float, ...]]):
    """Read-only mapping of model name -> expected embedding."""

    def __init__(self, vectors: Mapping[str, Tuple[float, ...]]):
        self._vectors = MappingProxyType(dict(vectors))

    def __getitem__(self, model_name: str) -> Tuple[float, ...]:
        return self._vectors[model_name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._vectors)

    def __len__(self) -> int:
        return len(self._vectors)

    @classmethod
    def from_dict(cls, data: object, source: str = "<memory>") -> "ReferenceVectors":
        if not isinstance(data, dict):
            raise ConfigurationError(f"reference vectors in {source} must be a JSON object")

        vectors: Dict[str, Tuple[float, ...]] = {}
        for model_name, values in data.items():
            if not isinstance(values, list) or not values:
                raise ConfigurationError(
                    f"reference vector for {model_name!r} in {source} must be a non-empty list"
                )
            try:
                vector = tuple(float(value) for value in values)
            except (TypeError, ValueError) as exc:
                raise ConfigurationError(
                    f"reference vector for {model_name!r} in {source} is not numeric"
                ) from exc
            if not all(math.isfinite(value) for value in vector):
                raise ConfigurationError(
                    f"reference vector for {model_name!r} in {source} has non-finite values"
                )
            vectors[model_name] = vector
        return cls(vectors)


def load_reference_vectors(path: Union[str, Path]) -> ReferenceVectors:
    """
    Load reference vectors once at run start.

    Raises:
        ConfigurationError: missing file, invalid JSON, or malformed entries
    """
    path = Path(path)
    try:
        raw_text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"failed to open test data file: {path}: {exc}") from exc
    try:
        data = json.loads(raw_text)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"failed to load test data {path}: {exc}") from exc

    vectors = ReferenceVectors.from_dict(data, source=str(path))
    logger.info("Loaded %d reference vectors from %s", len(vectors), path)
    return vectors
