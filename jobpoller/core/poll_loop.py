"""Poll Loop: runs the billing and scheduling cycles on independent timers.

Both cycles run once immediately and concurrently, then each is repeated on
its own fixed interval until the process is terminated. A slow or failing
cycle never delays the other one.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

Cycle = Callable[[], Awaitable[Any]]


class PollLoop:
    """Schedules two periodic cycles on the running event loop."""

    def __init__(
        self,
        billing_cycle: Cycle,
        scheduling_cycle: Cycle,
        billing_interval_s: float,
        scheduling_interval_s: float,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initializes the PollLoop.

        Args:
            billing_cycle: Coroutine function running one billing cycle.
            scheduling_cycle: Coroutine function running one scheduling cycle.
            billing_interval_s: Seconds between billing cycle starts.
            scheduling_interval_s: Seconds between scheduling cycle starts.
            sleep: Coroutine used to wait between ticks.
            clock: Monotonic time source, in seconds.
        """
        self.billing_cycle = billing_cycle
        self.scheduling_cycle = scheduling_cycle
        self.billing_interval_s = billing_interval_s
        self.scheduling_interval_s = scheduling_interval_s
        self._sleep = sleep
        self._clock = clock

    async def run(self) -> None:
        """Runs both cycles forever.

        Errors escaping the first run of either cycle propagate to the caller;
        errors escaping later runs are logged and the timer keeps going.
        """
        logger.info(
            f"Starting poller (billing every {self.billing_interval_s}s, "
            f"scheduling every {self.scheduling_interval_s}s)"
        )
        await asyncio.gather(
            self.run_periodically("billing", self.billing_cycle, self.billing_interval_s),
            self.run_periodically("scheduling", self.scheduling_cycle, self.scheduling_interval_s),
        )

    async def run_once(self, billing: bool = True, scheduling: bool = True) -> None:
        """Runs the selected cycles a single time, concurrently."""
        cycles = []
        if billing:
            cycles.append(self.billing_cycle())
        if scheduling:
            cycles.append(self.scheduling_cycle())
        await asyncio.gather(*cycles)

    async def run_periodically(
        self,
        name: str,
        cycle: Cycle,
        interval_s: float,
        max_runs: Optional[int] = None,
    ) -> int:
        """Runs `cycle` now and then every `interval_s` seconds.

        Ticks are fixed-rate: the next run starts `interval_s` after the
        previous one started, or right away if that run overran.

        Returns:
            The number of runs performed (only reached when `max_runs` is set).
        """
        runs = 0
        while max_runs is None or runs < max_runs:
            started = self._clock()
            if runs == 0:
                await cycle()
            else:
                try:
                    await cycle()
                except Exception as e:
                    logger.error(f"Unhandled error in {name} cycle: {e}", exc_info=True)
            runs += 1

            if max_runs is not None and runs >= max_runs:
                break
            elapsed = self._clock() - started
            if elapsed > interval_s:
                logger.warning(f"{name} cycle took {elapsed:.1f}s, longer than its {interval_s}s interval")
            await self._sleep(max(0.0, interval_s - elapsed))
        return runs
