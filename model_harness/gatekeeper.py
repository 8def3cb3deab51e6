"""
Pre-flight capacity check.

Skips cases whose model is unlikely to fit in the declared accelerator budget.
This is an estimate only; the service may still fail a request for resource
reasons, which the validators report as ordinary failures.
"""

import logging
from fractions import Fraction
from typing import Optional

logger = logging.getLogger(__name__)

# Runtime overhead beyond raw weights (KV cache, graph buffers)
SAFETY_FACTOR = Fraction(6, 5)

_BYTE_UNITS = ("B", "KB", "MB", "GB", "TB")


def human_bytes(size: int) -> str:
    """Format a byte count with decimal units, e.g. ``10.0 GB``."""
    if abs(size) < 1000:
        return f"{int(size)} B"
    value = float(size)
    for unit in _BYTE_UNITS[1:]:
        value /= 1000
        if abs(value) < 1000 or unit == _BYTE_UNITS[-1]:
            break
    return f"{value:.1f} {unit}"


class ResourceGatekeeper:
    """Decides whether a model is too large for the capacity budget.

    One gatekeeper is built per run, so the unknown-capacity advisory is
    logged once per run, at construction.
    """

    def __init__(self, capacity_budget: Optional[int] = None):
        self.capacity_budget = capacity_budget or 0
        if not self.capacity_budget:
            logger.warning(
                "No VRAM info available, testing all models, so larger ones might timeout..."
            )

    @property
    def constrained(self) -> bool:
        return self.capacity_budget > 0

    def should_skip(self, model_size: int) -> bool:
        return should_skip(model_size, self.capacity_budget)

    def skip_reason(self, model_name: str, model_size: int) -> str:
        return (
            f"model {model_name} is too large for available VRAM: "
            f"{human_bytes(model_size)} > {human_bytes(self.capacity_budget)}"
        )


def should_skip(model_size: int, capacity_budget: Optional[int]) -> bool:
    """
    Return True when ``model_size * 1.2`` exceeds ``capacity_budget``.

    An unset or zero budget means unknown capacity and never skips. Equality
    does not skip. Logs nothing; the advisory belongs to ResourceGatekeeper.
    """
    if not capacity_budget:
        return False
    return model_size * SAFETY_FACTOR > capacity_budget
