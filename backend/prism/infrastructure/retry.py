"""
Bounded exponential backoff for ledger I/O.

Submission is followed by polling the ledger's commitment-status query,
sleeping ``initial_delay, initial_delay·m, ...`` (capped at ``max_delay``)
until the target commitment is observed or the accumulated wait reaches
``timeout``, at which point ConfirmationTimeoutError is raised. A timeout
is inconclusive: the transaction may still land.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterator, Optional, Tuple, Type, TypeVar

from prism.core.config import Settings
from prism.core.errors import ConfirmationTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")
Sleep = Callable[[float], Awaitable[None]]

COMMITMENT_RANK = {"processed": 0, "confirmed": 1, "finalized": 2}


@dataclass(frozen=True)
class BackoffPolicy:
    initial_delay: float = 0.25
    multiplier: float = 2.0
    max_delay: float = 4.0
    timeout: float = 30.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "BackoffPolicy":
        return cls(
            initial_delay=settings.CONFIRMATION_INITIAL_DELAY,
            multiplier=settings.CONFIRMATION_BACKOFF,
            max_delay=settings.CONFIRMATION_MAX_DELAY,
            timeout=settings.CONFIRMATION_TIMEOUT,
        )

    def delays(self) -> Iterator[float]:
        """Sleep durations whose sum never exceeds ``timeout``."""
        delay = self.initial_delay
        waited = 0.0
        while waited < self.timeout:
            step = min(delay, self.max_delay, self.timeout - waited)
            if step <= 0:
                return
            yield step
            waited += step
            delay *= self.multiplier


async def retry(
    operation: Callable[[], Awaitable[T]],
    *,
    retries: int = 3,
    initial_delay: float = 1.0,
    multiplier: float = 2.0,
    max_delay: float = 10.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Sleep = asyncio.sleep,
    log: Optional[logging.Logger] = None,
) -> T:
    """Run ``operation``, retrying ``retry_on`` failures up to ``retries`` times."""
    log = log or logger
    delay = initial_delay
    attempt = 0
    while True:
        try:
            return await operation()
        except retry_on as exc:
            if attempt >= retries:
                raise
            attempt += 1
            log.warning(f"[RETRY] Attempt {attempt}/{retries} failed ({exc}); retrying in {delay:.2f}s")
            await sleep(delay)
            delay = min(delay * multiplier, max_delay)


async def wait_for_commitment(
    ledger,
    signature: str,
    commitment: str = "confirmed",
    policy: BackoffPolicy = BackoffPolicy(),
    sleep: Sleep = asyncio.sleep,
) -> str:
    """
    Poll ``ledger.get_signature_status`` until ``commitment`` is reached.

    Returns the observed status. Ledger-side failures of the landed
    transaction propagate from ``get_signature_status``.
    """
    target = COMMITMENT_RANK[commitment]
    delays = policy.delays()
    while True:
        status = await ledger.get_signature_status(signature)
        if status is not None and COMMITMENT_RANK.get(status, -1) >= target:
            return status
        try:
            delay = next(delays)
        except StopIteration:
            raise ConfirmationTimeoutError(
                f"Transaction not {commitment} within {policy.timeout}s; "
                f"re-query state before assuming failure",
                signature=signature,
                context={"last_status": status, "commitment": commitment},
            ) from None
        await sleep(delay)


async def poll(
    fetch: Callable[[], Awaitable[T]],
    ready: Callable[[T], bool],
    policy: BackoffPolicy = BackoffPolicy(),
    sleep: Sleep = asyncio.sleep,
) -> Tuple[bool, T]:
    """Re-read until ``ready(value)``; returns (ready?, last value)."""
    delays = policy.delays()
    while True:
        value = await fetch()
        if ready(value):
            return True, value
        try:
            delay = next(delays)
        except StopIteration:
            return False, value
        await sleep(delay)
