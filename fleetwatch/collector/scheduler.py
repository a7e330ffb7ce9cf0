"""
Periodic poll cycles.

Two independent loops: the agent poll (one batch of six RPCs per connected
gateway) and the host metrics sample. A tick never waits for the previous
round to finish; if a gateway stalls, rounds pile up until their RPC timers
expire. Consumers rely on at least one attempt per interval.
"""
import asyncio
import logging
from typing import Any, Callable

from fleetwatch.config import POLL_METHODS
from fleetwatch.gateway.link import GatewayLink

logger = logging.getLogger(__name__)

# Result field names, in POLL_METHODS order
POLL_FIELDS = ("health", "sessions", "usage", "heartbeat", "channels", "cron")


async def poll_gateway(link: GatewayLink) -> dict[str, Any]:
    """Run the six status RPCs concurrently. A None value means that field is unavailable."""
    results = await asyncio.gather(*(link.send(method, dict(params)) for method, params in POLL_METHODS))
    return dict(zip(POLL_FIELDS, results))


class PollScheduler:
    def __init__(
        self,
        poll_round: Callable[[], None],
        sample_host: Callable[[], None],
        poll_interval: float,
        host_metrics_interval: float,
    ) -> None:
        self.poll_round = poll_round
        self.sample_host = sample_host
        self.poll_interval = poll_interval
        self.host_metrics_interval = host_metrics_interval
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def start(self) -> None:
        if self.running:
            return
        self._tasks = [
            asyncio.ensure_future(self._every(self.poll_interval, self.poll_round, "agent poll")),
            asyncio.ensure_future(self._every(self.host_metrics_interval, self.sample_host, "host metrics", immediate=True)),
        ]
        logger.info(f"Polling every {self.poll_interval:g}s, host metrics every {self.host_metrics_interval:g}s")

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    async def _every(self, interval: float, fn: Callable[[], None], name: str, immediate: bool = False) -> None:
        if immediate:
            self._tick(fn, name)
        while True:
            await asyncio.sleep(interval)
            self._tick(fn, name)

    @staticmethod
    def _tick(fn: Callable[[], None], name: str) -> None:
        try:
            fn()
        except Exception as e:
            # A failing cycle must not stop the loop
            logger.error(f"{name} cycle failed: {type(e).__name__}: {e}")
