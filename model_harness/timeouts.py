"""
Timeout governance for a harness run.

Two budgets apply to every run:
- soft: once elapsed, no new case is started (in-flight work continues)
- hard: once elapsed, the whole run is cancelled
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Tuple

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_SOFT_TIMEOUT_SECONDS = 8 * 60.0
DEFAULT_HARD_TIMEOUT_SECONDS = 10 * 60.0
# hard = soft * k when only one side is configured
HARD_TO_SOFT_RATIO = DEFAULT_HARD_TIMEOUT_SECONDS / DEFAULT_SOFT_TIMEOUT_SECONDS

# Margins carved out of an overall run budget
SOFT_BUDGET_MARGIN_SECONDS = 120.0
HARD_BUDGET_MARGIN_SECONDS = 20.0


def compute_timeouts(
    soft_seconds: Optional[float] = None,
    hard_seconds: Optional[float] = None,
    run_budget_seconds: Optional[float] = None,
) -> Tuple[float, float]:
    """
    Compute the (soft, hard) timeouts in seconds.

    Explicit overrides win. With only one side set the other is derived from
    HARD_TO_SOFT_RATIO. With neither set, an overall run budget is split into
    soft = budget - 2m and hard = budget - 20s. Otherwise 8m / 10m.

    Raises:
        ConfigurationError: non-positive values, soft > hard, or a run budget
            too small to leave room for any case.
    """
    for label, value in (
        ("soft timeout", soft_seconds),
        ("hard timeout", hard_seconds),
        ("run budget", run_budget_seconds),
    ):
        if value is not None and value <= 0:
            raise ConfigurationError(f"{label} must be > 0, got {value}")

    if soft_seconds is not None and hard_seconds is not None:
        soft, hard = float(soft_seconds), float(hard_seconds)
    elif soft_seconds is not None:
        soft = float(soft_seconds)
        hard = soft * HARD_TO_SOFT_RATIO
    elif hard_seconds is not None:
        hard = float(hard_seconds)
        soft = hard / HARD_TO_SOFT_RATIO
    elif run_budget_seconds is not None:
        if run_budget_seconds <= SOFT_BUDGET_MARGIN_SECONDS:
            raise ConfigurationError(
                f"run budget of {run_budget_seconds:.0f}s is too little time; "
                f"need more than {SOFT_BUDGET_MARGIN_SECONDS:.0f}s"
            )
        soft = run_budget_seconds - SOFT_BUDGET_MARGIN_SECONDS
        hard = run_budget_seconds - HARD_BUDGET_MARGIN_SECONDS
    else:
        soft, hard = DEFAULT_SOFT_TIMEOUT_SECONDS, DEFAULT_HARD_TIMEOUT_SECONDS

    if soft > hard:
        raise ConfigurationError(
            f"soft timeout ({soft:.1f}s) must not exceed hard timeout ({hard:.1f}s)"
        )

    return soft, hard


@dataclass(frozen=True)
class RunClock:
    """Start time plus soft/hard budgets for one run.

    Created once at run entry and passed to every case; ``now`` can be swapped
    for a fake clock in tests.
    """
    soft_seconds: float
    hard_seconds: float
    now: Callable[[], float] = field(default=time.monotonic, repr=False)
    started: float = field(default=-1.0)

    def __post_init__(self):
        if self.soft_seconds > self.hard_seconds:
            raise ConfigurationError(
                f"soft timeout ({self.soft_seconds:.1f}s) must not exceed "
                f"hard timeout ({self.hard_seconds:.1f}s)"
            )
        if self.started < 0:
            object.__setattr__(self, "started", self.now())

    @classmethod
    def start(
        cls,
        soft_seconds: float,
        hard_seconds: float,
        now: Callable[[], float] = time.monotonic,
    ) -> "RunClock":
        clock = cls(soft_seconds=soft_seconds, hard_seconds=hard_seconds, now=now)
        logger.info(
            "Setting timeouts soft=%.1fs hard=%.1fs", clock.soft_seconds, clock.hard_seconds
        )
        return clock

    def elapsed(self) -> float:
        return self.now() - self.started

    def soft_expired(self) -> bool:
        return self.elapsed() > self.soft_seconds

    def hard_remaining(self) -> float:
        return max(0.0, self.hard_seconds - self.elapsed())
