"""
Request/response correlation for gateway RPCs.

One tracker is shared by every GatewayLink owned by a collector, so request ids
are monotonic across the whole collector rather than per connection.
"""
import asyncio
import itertools
import logging
from typing import Any, Optional

from fleetwatch.models import PendingRequest

logger = logging.getLogger(__name__)


class RequestTracker:
    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self._pending: dict[str, PendingRequest] = {}

    def next_id(self) -> str:
        return str(next(self._counter))

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, req_id: str) -> bool:
        return req_id in self._pending

    def register(self, req_id: str, timeout: float) -> asyncio.Future:
        """Arm a pending entry that resolves to None if nothing answers within `timeout`."""
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        timer = loop.call_later(timeout, self._expire, req_id)
        self._pending[req_id] = PendingRequest(id=req_id, future=future, timer=timer)
        return future

    def resolve(self, req_id: Any, ok: bool, payload: Any) -> bool:
        """Settle a pending entry from a `res` frame. Unknown ids are ignored."""
        entry = self._pending.pop(req_id, None) if isinstance(req_id, str) else None
        if entry is None:
            logger.debug(f"Dropping response for unknown or expired request {req_id!r}")
            return False
        entry.timer.cancel()
        if not entry.future.done():
            entry.future.set_result(payload if ok else None)
        return True

    def discard(self, req_id: str) -> None:
        """Remove an entry whose request never reached the wire."""
        entry = self._pending.pop(req_id, None)
        if entry is not None:
            entry.timer.cancel()
            if not entry.future.done():
                entry.future.set_result(None)

    def _expire(self, req_id: str) -> None:
        entry = self._pending.pop(req_id, None)
        if entry is None:
            return
        logger.debug(f"Request {req_id} timed out")
        if not entry.future.done():
            entry.future.set_result(None)
