"""Typed request options sent with generate and embed calls."""

from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigurationError


class RequestOptions(BaseModel):
    """Recognised model options. Unknown keys are rejected at construction."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    temperature: float = Field(0.0, ge=0.0, description="Sampling temperature")
    seed: int = Field(123, description="Sampling seed")
    num_ctx: Optional[int] = Field(None, gt=0, description="Context window size")
    num_predict: Optional[int] = Field(None, description="Max tokens to generate")
    top_k: Optional[int] = Field(None, gt=0)
    top_p: Optional[float] = Field(None, gt=0.0, le=1.0)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


def build_options(values: Optional[Mapping[str, Any]] = None) -> RequestOptions:
    """Build RequestOptions from a plain mapping (config file, CLI)."""
    try:
        return RequestOptions(**dict(values or {}))
    except ValidationError as exc:
        raise ConfigurationError(f"invalid request options: {exc}") from exc
