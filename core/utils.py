"""
Pure helpers shared across the records layer: ids, validation primitives,
number formatting and simulated latency.

RetryPolicy replaces free retry helpers: call sites that need resilience get a
policy object passed in explicitly.
"""
from __future__ import annotations

import asyncio
import html
import logging
import math
import random
import re
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

from tenacity import AsyncRetrying, before_sleep_log, retry_if_exception_type, stop_after_attempt

logger = logging.getLogger(__name__)

T = TypeVar("T")

_EMAIL_RE = re.compile(r"^(?!.*\.\.)[^\s@]+@[^\s@]+\.[^\s@]+$")


def generate_id() -> str:
    """Millisecond timestamp plus a random suffix, e.g. ``1718000000000-k3j9x0a1b``."""
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


def is_valid_email(email: Any) -> bool:
    if not isinstance(email, str):
        return False
    return bool(_EMAIL_RE.match(email.strip()))


def round_half_up(value: float, ndigits: int = 0) -> float:
    factor = 10 ** ndigits
    return math.floor(value * factor + 0.5) / factor


def calculate_progress(current: float, total: float) -> float:
    if total == 0:
        return 0
    return min(100, max(0, (current / total) * 100))


def to_number(value: Any) -> Optional[float]:
    """Parse ints, floats and numeric strings; anything else (bools, NaN) is None."""
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def capitalize(text: str) -> str:
    if not text:
        return ""
    return text[0].upper() + text[1:].lower()


def slugify(text: str) -> str:
    slug = str(text).lower().strip()
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"[^\w\-]+", "", slug)
    slug = re.sub(r"-{2,}", "-", slug)
    return slug.strip("-")


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return len(value.strip()) == 0
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


def sanitize_html(text: str) -> str:
    return html.escape(text, quote=False)


def random_between(low: int, high: int, rng: Optional[random.Random] = None) -> int:
    """Inclusive on both ends."""
    return (rng or random).randint(low, high)


async def delay(ms: float) -> None:
    await asyncio.sleep(max(0.0, ms) / 1000)


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try an awaitable and how long to wait between tries.

    ``backoff`` receives the 1-based number of the attempt that just failed and
    returns the pause in seconds before the next one.
    """
    max_attempts: int = 1
    backoff: Callable[[int], float] = field(default=lambda attempt: 0.0)
    retry_on: Tuple[Type[BaseException], ...] = (Exception,)

    @classmethod
    def none(cls) -> "RetryPolicy":
        return cls(max_attempts=1)

    @classmethod
    def fixed(cls, retries: int, delay_seconds: float,
              retry_on: Tuple[Type[BaseException], ...] = (Exception,)) -> "RetryPolicy":
        return cls(max_attempts=retries + 1, backoff=lambda attempt: delay_seconds, retry_on=retry_on)

    @classmethod
    def exponential(cls, retries: int, base_seconds: float,
                    retry_on: Tuple[Type[BaseException], ...] = (Exception,)) -> "RetryPolicy":
        return cls(
            max_attempts=retries + 1,
            backoff=lambda attempt: base_seconds * (2 ** (attempt - 1)),
            retry_on=retry_on,
        )

    async def call(self, fn: Callable[[], Awaitable[T]]) -> T:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(1, self.max_attempts)),
            wait=lambda state: self.backoff(state.attempt_number),
            retry=retry_if_exception_type(self.retry_on),
            before_sleep=before_sleep_log(logger, logging.DEBUG),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                result = await fn()
        return result
