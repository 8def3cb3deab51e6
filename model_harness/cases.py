"""Declared test cases. The case set is fixed before a run begins."""

from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

from .client import EmbeddingRequest, GenerateRequest
from .config import HarnessConfig
from .fixtures import ReferenceVectors


@dataclass(frozen=True)
class GenerateCase:
    request: GenerateRequest
    expected_terms: Tuple[str, ...]
    overall_timeout: float = 120.0
    idle_timeout: float = 30.0
    kind: str = "generate"

    @property
    def model(self) -> str:
        return self.request.model

    @property
    def case_id(self) -> str:
        return f"{self.kind}/{self.model}"


@dataclass(frozen=True)
class EmbedCase:
    request: EmbeddingRequest
    reference: Tuple[float, ...]
    kind: str = "embed"

    @property
    def model(self) -> str:
        return self.request.model

    @property
    def case_id(self) -> str:
        return f"{self.kind}/{self.model}"


TestCase = Union[GenerateCase, EmbedCase]


def generate_cases(config: HarnessConfig) -> List[GenerateCase]:
    return [
        GenerateCase(
            request=GenerateRequest(model=model, prompt=config.prompt, options=config.options),
            expected_terms=tuple(config.expected_terms),
            overall_timeout=config.generate_overall_timeout_seconds,
            idle_timeout=config.generate_idle_timeout_seconds,
        )
        for model in config.chat_models()
    ]


def embed_cases(
    config: HarnessConfig, references: Optional[ReferenceVectors]
) -> List[EmbedCase]:
    if not references:
        return []
    return [
        EmbedCase(
            request=EmbeddingRequest(model=model, prompt=config.prompt, options=config.options),
            reference=references[model],
        )
        for model in references
    ]


def declare_cases(
    config: HarnessConfig,
    references: Optional[ReferenceVectors] = None,
    kinds: Tuple[str, ...] = ("generate", "embed"),
) -> List[TestCase]:
    cases: List[TestCase] = []
    if "generate" in kinds:
        cases.extend(generate_cases(config))
    if "embed" in kinds:
        cases.extend(embed_cases(config, references))
    return cases
