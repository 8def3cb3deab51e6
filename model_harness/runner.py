"""
Case runner: the control loop over declared cases.

Per case: soft-deadline check, resource gate, provisioning, validation. Every
case ends in exactly one terminal outcome and is attempted once. The whole run
is bounded by the hard deadline, which cancels in-flight work.
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Sequence, Set

from .cases import EmbedCase, GenerateCase, TestCase
from .client import ModelDescriptor, ServiceClient
from .errors import CASE_ERRORS, ServiceError
from .gatekeeper import ResourceGatekeeper
from .provisioner import ModelProvisioner
from .structured_logger import case_context, get_structured_logger
from .timeouts import RunClock
from .validators import validate_embedding, validate_generate

logger = logging.getLogger(__name__)
result_logger = get_structured_logger(__name__)

EXCERPT_LEN = 80


class CaseOutcome(str, Enum):
    """Terminal case states."""
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED_TIMEOUT = "skipped_timeout"
    SKIPPED_RESOURCE = "skipped_resource"


@dataclass
class CaseResult:
    case_id: str
    model: str
    kind: str
    outcome: CaseOutcome
    detail: str = ""
    duration_ms: float = 0.0

    def to_dict(self) -> Dict[str, object]:
        data = asdict(self)
        data["outcome"] = self.outcome.value
        data["duration_ms"] = round(self.duration_ms, 2)
        return data


@dataclass
class RunReport:
    """Outcome of a full run, in declaration order."""
    results: List[CaseResult]
    duration_seconds: float
    hard_deadline_exceeded: bool = False
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def count(self, outcome: CaseOutcome) -> int:
        return sum(1 for result in self.results if result.outcome == outcome)

    @property
    def success(self) -> bool:
        return self.count(CaseOutcome.FAILED) == 0

    def summary(self) -> Dict[str, int]:
        summary = {"total": len(self.results)}
        for outcome in CaseOutcome:
            summary[outcome.value] = self.count(outcome)
        return summary

    def to_dict(self) -> Dict[str, object]:
        return {
            "timestamp": self.timestamp,
            "duration_seconds": round(self.duration_seconds, 3),
            "hard_deadline_exceeded": self.hard_deadline_exceeded,
            "success": self.success,
            "summary": self.summary(),
            "results": [result.to_dict() for result in self.results],
        }


def _excerpt(text: str) -> str:
    text = " ".join(text.split())
    if len(text) <= EXCERPT_LEN:
        return text
    return text[:EXCERPT_LEN] + "..."


class CaseRunner:
    """
    Runs declared cases against one service session.

    Cases are independent; with ``concurrency`` > 1 they run as separate tasks
    sharing only the clock, the client, and the provisioner.
    """

    def __init__(
        self,
        client: ServiceClient,
        clock: RunClock,
        gatekeeper: Optional[ResourceGatekeeper] = None,
        provisioner: Optional[ModelProvisioner] = None,
        concurrency: int = 1,
    ):
        self.client = client
        self.clock = clock
        self.gatekeeper = gatekeeper or ResourceGatekeeper()
        self.provisioner = provisioner or ModelProvisioner(client)
        self.concurrency = max(1, concurrency)
        self._started: Set[int] = set()

    def _result(
        self, case: TestCase, outcome: CaseOutcome, started: float, detail: str = ""
    ) -> CaseResult:
        result = CaseResult(
            case_id=case.case_id,
            model=case.model,
            kind=case.kind,
            outcome=outcome,
            detail=detail,
            duration_ms=(time.perf_counter() - started) * 1000,
        )
        result_logger.log_case_result(result.case_id, outcome.value, result.duration_ms, detail)
        return result

    def _resource_skip_reason(
        self, case: TestCase, descriptor: Optional[ModelDescriptor]
    ) -> Optional[str]:
        """Return a skip reason when the listed model is too large, else None."""
        if descriptor is not None and self.gatekeeper.should_skip(descriptor.size):
            return self.gatekeeper.skip_reason(case.model, descriptor.size)
        return None

    async def _validate(self, case: TestCase) -> str:
        if isinstance(case, GenerateCase):
            text = await validate_generate(
                self.client,
                case.request,
                case.expected_terms,
                overall_timeout=case.overall_timeout,
                idle_timeout=case.idle_timeout,
            )
            return f"response: {_excerpt(text)}"
        if isinstance(case, EmbedCase):
            similarity = await validate_embedding(self.client, case.request, case.reference)
            return f"similarity: {similarity:.6f}"
        raise TypeError(f"unsupported case type {type(case).__name__}")

    async def run_case(self, case: TestCase) -> CaseResult:
        """Run one case to a terminal outcome. Case-scoped errors are recorded, not raised."""
        started = time.perf_counter()
        with case_context(case.case_id, case.model):
            if self.clock.soft_expired():
                return self._result(
                    case,
                    CaseOutcome.SKIPPED_TIMEOUT,
                    started,
                    "skipping remaining tests to avoid excessive runtime",
                )
            self._started.add(id(case))

            try:
                listed_before_pull = True
                if self.gatekeeper.constrained:
                    descriptor = await self.client.find_model(case.model)
                    listed_before_pull = descriptor is not None
                    reason = self._resource_skip_reason(case, descriptor)
                    if reason:
                        return self._result(case, CaseOutcome.SKIPPED_RESOURCE, started, reason)

                await self.provisioner.ensure(case.model)

                if not listed_before_pull:
                    # Size is only listed once the model is present
                    descriptor = await self.client.find_model(case.model)
                    reason = self._resource_skip_reason(case, descriptor)
                    if reason:
                        return self._result(case, CaseOutcome.SKIPPED_RESOURCE, started, reason)

                detail = await self._validate(case)
            except ServiceError as exc:
                return self._result(case, CaseOutcome.FAILED, started, f"list models failed: {exc}")
            except CASE_ERRORS as exc:
                return self._result(case, CaseOutcome.FAILED, started, str(exc))
            except Exception as exc:
                logger.exception("unexpected error in %s", case.case_id)
                return self._result(
                    case, CaseOutcome.FAILED, started, f"unexpected error: {exc!r}"
                )

            return self._result(case, CaseOutcome.PASSED, started, detail)

    async def run(self, cases: Sequence[TestCase]) -> RunReport:
        """Run all cases under the hard deadline and return the report."""
        run_started = time.perf_counter()
        results: Dict[int, CaseResult] = {}
        self._started.clear()
        hard_exceeded = False

        logger.info("running %d cases (concurrency=%d)", len(cases), self.concurrency)
        try:
            async with asyncio.timeout(self.clock.hard_remaining()):
                if self.concurrency == 1:
                    for index, case in enumerate(cases):
                        results[index] = await self.run_case(case)
                else:
                    semaphore = asyncio.Semaphore(self.concurrency)

                    async def limited(index: int, case: TestCase) -> None:
                        async with semaphore:
                            results[index] = await self.run_case(case)

                    await asyncio.gather(*(limited(i, case) for i, case in enumerate(cases)))
        except TimeoutError:
            hard_exceeded = True
            logger.error(
                "hard deadline of %.0fs exceeded, run cancelled", self.clock.hard_seconds
            )

        ordered: List[CaseResult] = []
        for index, case in enumerate(cases):
            if index in results:
                ordered.append(results[index])
                continue
            if id(case) in self._started:
                outcome, detail = CaseOutcome.FAILED, "cancelled: hard deadline exceeded"
            else:
                outcome, detail = CaseOutcome.SKIPPED_TIMEOUT, "hard deadline exceeded before start"
            ordered.append(
                CaseResult(
                    case_id=case.case_id, model=case.model, kind=case.kind,
                    outcome=outcome, detail=detail,
                )
            )
            result_logger.log_case_result(case.case_id, outcome.value, 0.0, detail)

        return RunReport(
            results=ordered,
            duration_seconds=time.perf_counter() - run_started,
            hard_deadline_exceeded=hard_exceeded,
        )
