"""Run entry point: wire configuration, session, and runner together."""

import logging
import time
from typing import Callable, Optional, Tuple

import httpx

from .cases import declare_cases
from .config import HarnessConfig
from .fixtures import ReferenceVectors, load_reference_vectors
from .gatekeeper import ResourceGatekeeper
from .runner import CaseRunner, RunReport
from .session import open_session
from .timeouts import RunClock

logger = logging.getLogger(__name__)


def load_references(config: HarnessConfig) -> Optional[ReferenceVectors]:
    if not config.reference_vectors_path:
        logger.warning("No reference vector fixture configured, embedding cases disabled")
        return None
    return load_reference_vectors(config.reference_vectors_path)


async def run_harness(
    config: HarnessConfig,
    kinds: Tuple[str, ...] = ("generate", "embed"),
    model_filter: Optional[Callable[[str], bool]] = None,
    now: Callable[[], float] = time.monotonic,
    http_client: Optional[httpx.AsyncClient] = None,
) -> RunReport:
    """
    Run every declared case once and return the report.

    Configuration problems and an unreachable service raise before any case
    runs; everything case-scoped ends up in the report.
    """
    soft, hard = config.timeouts()
    references = load_references(config) if "embed" in kinds else None
    cases = declare_cases(config, references, kinds=kinds)
    if model_filter is not None:
        cases = [case for case in cases if model_filter(case.model)]

    clock = RunClock.start(soft, hard, now=now)
    gatekeeper = ResourceGatekeeper(config.capacity_budget_bytes)

    async with open_session(config, http_client=http_client) as client:
        runner = CaseRunner(
            client,
            clock,
            gatekeeper=gatekeeper,
            concurrency=config.concurrency,
        )
        return await runner.run(cases)
