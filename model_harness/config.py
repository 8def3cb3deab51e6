"""
Harness configuration.

Sources, later wins: built-in defaults, YAML file, environment. The
environment is read once in ``HarnessConfig.from_env``; nothing else in the
harness consults it.
"""

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import yaml

from .client import DEFAULT_BASE_URL
from .errors import ConfigurationError
from .options import RequestOptions, build_options
from .timeouts import compute_timeouts

logger = logging.getLogger(__name__)

ENGINE_VARIANTS = ("ollama", "all")

DEFAULT_PROMPT = "why is the sky blue?"
DEFAULT_EXPECTED_TERMS = ["rayleigh", "scattering", "atmosphere", "nitrogen", "oxygen"]

# Architectures served by the new engine
OLLAMA_ENGINE_CHAT_MODELS = [
    "gemma3n:e2b",
    "mistral-small3.2:latest",
    "deepseek-r1:1.5b",
    "llama3.2-vision:latest",
    "qwen2.5-coder:latest",
    "qwen2.5vl:3b",
    "qwen3:0.6b",
    "gemma3:1b",
    "llama3.1:latest",
    "llama3.2:latest",
    "gemma2:latest",
    "granite-code:latest",
]

# Architectures still served by the llama runner
LLAMA_RUNNER_CHAT_MODELS = [
    "mistral:latest",
    "falcon3:latest",
    "granite3-moe:latest",
    "granite3-dense:latest",
    "phi3:latest",
    "phi4-mini:latest",
    "qwen2:latest",
    "starcoder2:latest",
    "orca-mini:latest",
    "tinyllama:latest",
]


@dataclass(frozen=True)
class HarnessConfig:
    """Immutable settings for one harness run."""
    base_url: str = DEFAULT_BASE_URL
    capacity_budget_bytes: Optional[int] = None
    engine_variant: str = "all"

    soft_timeout_seconds: Optional[float] = None
    hard_timeout_seconds: Optional[float] = None
    run_budget_seconds: Optional[float] = None
    generate_overall_timeout_seconds: float = 120.0
    generate_idle_timeout_seconds: float = 30.0
    request_timeout_seconds: float = 600.0
    concurrency: int = 1

    prompt: str = DEFAULT_PROMPT
    expected_terms: Tuple[str, ...] = tuple(DEFAULT_EXPECTED_TERMS)
    options: RequestOptions = field(default_factory=RequestOptions)
    ollama_engine_models: Tuple[str, ...] = tuple(OLLAMA_ENGINE_CHAT_MODELS)
    llama_runner_models: Tuple[str, ...] = tuple(LLAMA_RUNNER_CHAT_MODELS)
    reference_vectors_path: Optional[str] = None

    start_server: bool = False
    server_command: Tuple[str, ...] = ("ollama", "serve")
    startup_timeout_seconds: float = 30.0
    server_log_path: Optional[str] = None

    def __post_init__(self):
        if self.engine_variant not in ENGINE_VARIANTS:
            raise ConfigurationError(
                f"engine_variant must be one of {ENGINE_VARIANTS}, got {self.engine_variant!r}"
            )
        if self.concurrency < 1:
            raise ConfigurationError(f"concurrency must be >= 1, got {self.concurrency}")
        if self.capacity_budget_bytes is not None and self.capacity_budget_bytes < 0:
            raise ConfigurationError(
                f"capacity budget must be >= 0, got {self.capacity_budget_bytes}"
            )
        if self.generate_idle_timeout_seconds <= 0 or self.generate_overall_timeout_seconds <= 0:
            raise ConfigurationError("generate timeouts must be > 0")
        if not self.expected_terms:
            raise ConfigurationError("expected_terms must not be empty")
        if not self.server_command:
            raise ConfigurationError("server_command must not be empty")

    def timeouts(self) -> Tuple[float, float]:
        return compute_timeouts(
            soft_seconds=self.soft_timeout_seconds,
            hard_seconds=self.hard_timeout_seconds,
            run_budget_seconds=self.run_budget_seconds,
        )

    def chat_models(self) -> List[str]:
        if self.engine_variant == "ollama":
            return list(self.ollama_engine_models)
        return list(self.ollama_engine_models) + list(self.llama_runner_models)

    def replace(self, **changes: Any) -> "HarnessConfig":
        """Return a copy with ``changes`` applied, ignoring None values."""
        changes = {key: value for key, value in changes.items() if value is not None}
        return dataclasses.replace(self, **_coerce_fields(changes))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "HarnessConfig":
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"unknown configuration keys: {', '.join(unknown)}")
        return cls(**_coerce_fields(dict(data)))

    @classmethod
    def from_env(
        cls,
        base: Optional["HarnessConfig"] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "HarnessConfig":
        """Overlay environment settings on ``base`` (defaults when None)."""
        environ = os.environ if environ is None else environ
        base = base or cls()
        changes: Dict[str, Any] = {}

        host = environ.get("HARNESS_BASE_URL") or environ.get("OLLAMA_HOST")
        if host:
            changes["base_url"] = host if "://" in host else f"http://{host}"

        vram = environ.get("HARNESS_CAPACITY_BUDGET") or environ.get("OLLAMA_MAX_VRAM")
        if vram:
            changes["capacity_budget_bytes"] = _parse_int("capacity budget", vram)

        if environ.get("HARNESS_ENGINE_VARIANT"):
            changes["engine_variant"] = environ["HARNESS_ENGINE_VARIANT"]
        elif environ.get("OLLAMA_NEW_ENGINE"):
            changes["engine_variant"] = "ollama"

        for env_name, key in (
            ("HARNESS_SOFT_TIMEOUT", "soft_timeout_seconds"),
            ("HARNESS_HARD_TIMEOUT", "hard_timeout_seconds"),
            ("HARNESS_RUN_BUDGET", "run_budget_seconds"),
        ):
            if environ.get(env_name):
                changes[key] = _parse_float(env_name, environ[env_name])

        if environ.get("HARNESS_REFERENCE_VECTORS"):
            changes["reference_vectors_path"] = environ["HARNESS_REFERENCE_VECTORS"]
        if environ.get("HARNESS_START_SERVER"):
            changes["start_server"] = environ["HARNESS_START_SERVER"].lower() in ("1", "true", "yes")

        return base.replace(**changes)


def _parse_int(label: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"invalid {label} {value!r}") from exc


def _parse_float(label: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"invalid {label} {value!r}") from exc


def _coerce_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    if "options" in data and not isinstance(data["options"], RequestOptions):
        data["options"] = build_options(data["options"])
    for key in (
        "expected_terms",
        "ollama_engine_models",
        "llama_runner_models",
        "server_command",
    ):
        if key in data:
            value = data[key]
            data[key] = tuple(value.split()) if isinstance(value, str) else tuple(value)
    if data.get("capacity_budget_bytes") is not None:
        data["capacity_budget_bytes"] = _parse_int("capacity budget", data["capacity_budget_bytes"])
    return data


def load_config_file(path: Union[str, Path]) -> HarnessConfig:
    """
    Load a HarnessConfig from a YAML file.

    The file may hold the settings at top level or under a ``harness`` key.
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            yaml_data = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"invalid YAML in {path}: {exc}") from exc

    if not isinstance(yaml_data, dict):
        raise ConfigurationError(f"configuration in {path} must be a mapping")
    if "harness" in yaml_data:
        yaml_data = yaml_data["harness"] or {}

    config = HarnessConfig.from_mapping(yaml_data)
    logger.info("Loaded harness configuration from %s", path)
    return config


def resolve_config(
    config_path: Optional[Union[str, Path]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> HarnessConfig:
    base = load_config_file(config_path) if config_path else HarnessConfig()
    return HarnessConfig.from_env(base, environ=environ)
