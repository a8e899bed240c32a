"""
In-process check runner used by the ``checks`` command.

Cases are registered under a category and run sequentially in registration
order. Each attempt races the case against its timeout; a timeout counts as a
failure like any raised exception. Failed cases are retried with a fixed
pause and only the final attempt is recorded. Skipped cases never run and
report zero duration.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from core.utils import RetryPolicy, round_half_up

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "Test timeout"
ALL_CATEGORIES = "all"


class CaseStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    SKIPPED = "skipped"


@dataclass
class HarnessCase:
    name: str
    func: Callable[[], Any]
    category: str = "unit"
    timeout: float = 5.0
    retries: int = 0
    skip: bool = False
    tags: Tuple[str, ...] = ()


@dataclass
class CaseResult:
    name: str
    category: str
    status: CaseStatus
    duration_ms: float
    error: Optional[str] = None
    attempts: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class RunSummary:
    total: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    pass_rate: float = 0.0
    total_duration: float = 0.0
    average_duration: float = 0.0

    @classmethod
    def from_results(cls, results: List[CaseResult]) -> "RunSummary":
        total = len(results)
        passed = sum(1 for r in results if r.status is CaseStatus.PASS)
        failed = sum(1 for r in results if r.status is CaseStatus.FAIL)
        skipped = sum(1 for r in results if r.status is CaseStatus.SKIPPED)
        total_duration = sum(r.duration_ms for r in results)
        return cls(
            total=total,
            passed=passed,
            failed=failed,
            skipped=skipped,
            pass_rate=round_half_up(passed / total * 100, 2) if total else 0.0,
            total_duration=round_half_up(total_duration, 2),
            average_duration=round_half_up(total_duration / total, 2) if total else 0.0,
        )


@dataclass
class RunReport:
    category: str
    results: List[CaseResult] = field(default_factory=list)
    summary: RunSummary = field(default_factory=RunSummary)


class HarnessBusyError(RuntimeError):
    pass


class TestHarness:
    # Not a pytest test class despite the name
    __test__ = False

    def __init__(self, default_timeout: float = 5.0, retry_delay: float = 0.1,
                 clock: Callable[[], float] = time.perf_counter):
        self.default_timeout = default_timeout
        self.retry_delay = retry_delay
        self._clock = clock
        self.cases: Dict[str, HarnessCase] = {}
        self.results: List[CaseResult] = []
        self.is_running = False

    def register(self, name: str, func: Callable[[], Any], category: str = "unit",
                 timeout: Optional[float] = None, retries: int = 0, skip: bool = False,
                 tags: Optional[List[str]] = None) -> HarnessCase:
        if name in self.cases:
            raise ValueError(f"A check named '{name}' is already registered")
        case = HarnessCase(
            name=name,
            func=func,
            category=category,
            timeout=timeout if timeout is not None else self.default_timeout,
            retries=max(0, retries),
            skip=skip,
            tags=tuple(tags or ()),
        )
        self.cases[name] = case
        return case

    def case(self, name: str, category: str = "unit", **options: Any) -> Callable[[Callable[[], Any]], Callable[[], Any]]:
        """Decorator form of ``register``."""
        def decorator(func: Callable[[], Any]) -> Callable[[], Any]:
            self.register(name, func, category=category, **options)
            return func
        return decorator

    def categories(self) -> Dict[str, List[HarnessCase]]:
        grouped: Dict[str, List[HarnessCase]] = {}
        for case in self.cases.values():
            grouped.setdefault(case.category, []).append(case)
        return grouped

    def cases_for(self, category: str = ALL_CATEGORIES) -> List[HarnessCase]:
        if category == ALL_CATEGORIES:
            return list(self.cases.values())
        return [case for case in self.cases.values() if case.category == category]

    async def run(self, category: str = ALL_CATEGORIES) -> RunReport:
        if self.is_running:
            raise HarnessBusyError("Tests are already running")

        self.is_running = True
        self.results = []
        try:
            selected = self.cases_for(category)
            logger.info(f"Running {len(selected)} checks", extra={"category": category})
            for case in selected:
                if case.skip:
                    result = CaseResult(case.name, case.category, CaseStatus.SKIPPED, 0.0)
                else:
                    result = await self._run_case(case)
                self.results.append(result)
                logger.info(f"{case.name}: {result.status.value}",
                            extra={"category": case.category, "status": result.status.value})
            return RunReport(category, list(self.results), self.summary())
        finally:
            self.is_running = False

    async def _invoke(self, case: HarnessCase) -> None:
        outcome = case.func()
        if inspect.isawaitable(outcome):
            await outcome

    async def _run_case(self, case: HarnessCase) -> CaseResult:
        attempts = 0
        started = self._clock()

        async def attempt() -> None:
            nonlocal attempts, started
            attempts += 1
            started = self._clock()
            try:
                await asyncio.wait_for(self._invoke(case), timeout=case.timeout)
            except asyncio.TimeoutError:
                raise TimeoutError(TIMEOUT_MESSAGE) from None

        policy = RetryPolicy.fixed(case.retries, self.retry_delay)
        try:
            await policy.call(attempt)
        except (Exception, asyncio.CancelledError) as exc:
            if isinstance(exc, asyncio.CancelledError) and self._run_cancelled():
                raise
            return CaseResult(case.name, case.category, CaseStatus.FAIL, self._elapsed_ms(started),
                              error=str(exc) or type(exc).__name__, attempts=attempts)
        return CaseResult(case.name, case.category, CaseStatus.PASS, self._elapsed_ms(started),
                          attempts=attempts)

    @staticmethod
    def _run_cancelled() -> bool:
        """True when the task running the harness was cancelled, not just a case body."""
        task = asyncio.current_task()
        cancelling = getattr(task, "cancelling", None)
        return bool(cancelling and cancelling())

    def _elapsed_ms(self, started: float) -> float:
        return round_half_up((self._clock() - started) * 1000, 2)

    def summary(self) -> RunSummary:
        return RunSummary.from_results(self.results)

    def statistics(self) -> Dict[str, Any]:
        return {
            "total_tests": len(self.cases),
            "categories": {name: len(cases) for name, cases in self.categories().items()},
        }

    def clear_results(self) -> None:
        self.results = []
