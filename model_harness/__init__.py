"""
Model Harness Package

End-to-end validation of a running model-serving service.

Components:
- Timeout governor (soft/hard run deadlines)
- Service session and API client
- Model provisioner (pull if missing)
- Resource gatekeeper (VRAM budget pre-flight)
- Generation and embedding validators
- Case runner
"""

from .config import HarnessConfig, load_config_file, resolve_config
from .errors import (
    ConfigurationError,
    ConnectivityError,
    HarnessError,
    ModelNotFoundError,
    ProvisionError,
    ServiceError,
    ValidationFailure,
)
from .harness import run_harness
from .runner import CaseOutcome, CaseResult, CaseRunner, RunReport

__all__ = [
    "HarnessConfig",
    "load_config_file",
    "resolve_config",
    "run_harness",
    "CaseOutcome",
    "CaseResult",
    "CaseRunner",
    "RunReport",
    "HarnessError",
    "ConfigurationError",
    "ConnectivityError",
    "ModelNotFoundError",
    "ProvisionError",
    "ServiceError",
    "ValidationFailure",
]
