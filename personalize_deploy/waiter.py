import asyncio
import math
from typing import Any, Awaitable, Callable, Optional

from loguru import logger
from personalize_deploy.models import (
    PollResult,
    Readiness,
    StatusPollingConfig,
    Verdict,
)

Fetch = Callable[[], Awaitable[dict]]
Predicate = Callable[[dict], Verdict]


class ResourceFailedError(Exception):
    """The resource reached a terminal failure state"""

    def __init__(self, label: str, verdict: Verdict, description: dict):
        self.label = label
        self.verdict = verdict
        self.description = description
        super().__init__(f"{label} failed with status {verdict.status}: {verdict.detail}")


class WaitTimeoutError(TimeoutError):
    """The resource was still provisioning when the wait budget ran out"""

    def __init__(self, label: str, timeout: float, last_verdict: Verdict):
        self.label = label
        self.timeout = timeout
        self.last_verdict = last_verdict
        super().__init__(
            f"{label} did not become ready within {timeout} seconds "
            f"(last status: {last_verdict.status})"
        )


class StatusWaiter:
    def __init__(
        self,
        config: Optional[StatusPollingConfig] = None,
        on_status_change: Optional[Callable[[Verdict], Awaitable[Any]]] = None,
    ):
        self.config = config or StatusPollingConfig()
        self.logger = logger
        self.on_status_change = on_status_change

    def _calculate_delay(self, attempt: int) -> float:
        """Delay before the next fetch; fixed unless a backoff factor is configured"""
        interval = self.config.interval
        if self.config.backoff_factor == 1.0 or interval <= 0:
            return interval
        cap = max(interval, self.config.max_interval)
        # the exponent stops growing once the cap is reached
        exponent = min(attempt, math.ceil(math.log(cap / interval, self.config.backoff_factor)))
        return min(interval * self.config.backoff_factor**exponent, cap)

    async def _handle_status_change(
        self, verdict: Verdict, last_status: Optional[str]
    ) -> None:
        if last_status != verdict.status and self.on_status_change is not None:
            self.logger.debug(f"Status changed to {verdict.status}")
            await self.on_status_change(verdict)

    async def wait(
        self,
        fetch: Fetch,
        predicate: Predicate,
        describe: Optional[Callable[[dict], str]] = None,
        label: str = "resource",
    ) -> PollResult:
        """Fetch and evaluate the resource until it is ready, failed or out of time"""
        loop = asyncio.get_event_loop()
        start_time = loop.time()
        attempt = 0
        last_status = None

        while True:
            description = await fetch()
            attempt += 1
            verdict = predicate(description)
            elapsed = loop.time() - start_time

            progress = describe(description) if describe else verdict.status
            self.logger.info(f"{label}: {progress} ({elapsed:.0f}s elapsed)")

            await self._handle_status_change(verdict, last_status)
            last_status = verdict.status

            if verdict.readiness == Readiness.failed:
                self.logger.error(f"{label} failed: {verdict.detail}")
                raise ResourceFailedError(label, verdict, description)

            if verdict.readiness == Readiness.ready:
                return PollResult(
                    verdict=verdict,
                    description=description,
                    elapsed_time=elapsed,
                    attempts=attempt,
                )

            if elapsed >= self.config.timeout:
                self.logger.error(
                    f"Gave up on {label} after {elapsed:.0f}s in status {verdict.status}"
                )
                raise WaitTimeoutError(label, self.config.timeout, verdict)

            delay = self._calculate_delay(attempt)
            self.logger.debug(f"{label} not ready, waiting {delay:.2f}s")
            await asyncio.sleep(delay)


async def poll_until_ready(
    fetch: Fetch,
    predicate: Predicate,
    config: Optional[StatusPollingConfig] = None,
    describe: Optional[Callable[[dict], str]] = None,
    on_status_change: Optional[Callable[[Verdict], Awaitable[Any]]] = None,
    label: str = "resource",
) -> PollResult:
    waiter = StatusWaiter(config, on_status_change=on_status_change)
    return await waiter.wait(fetch, predicate, describe=describe, label=label)
