"""
GENESIS Request Sequencer
===============================================================================
Admits generation requests one at a time.

A single execution slot guards the orchestrator; concurrent submissions wait
in FIFO order. The waiting line is capped, and submissions beyond the cap are
rejected at once with CapacityError. The slot is handed straight to the next
waiter when the running workflow ends, whether it returned or raised.

Author: Barrios A2I
Version: 3.0.0
===============================================================================
"""

import asyncio
import logging
import time
from collections import deque
from typing import Any, Deque, Dict, Optional

from prometheus_client import Counter, Gauge

from generation_orchestrator import GenerationOrchestrator
from progress_stream import ProgressReporter
from schemas.generation_schema import ErrorCode, GenerationRequest, GenerationResult

logger = logging.getLogger("genesis.sequencer")


# =============================================================================
# PROMETHEUS METRICS
# =============================================================================

SEQUENCER_QUEUE_DEPTH = Gauge(
    'genesis_sequencer_queue_depth',
    'Requests waiting for the execution slot'
)

SEQUENCER_REJECTIONS = Counter(
    'genesis_sequencer_rejections_total',
    'Requests rejected because the waiting line was full'
)


class CapacityError(Exception):
    """The waiting line is full"""

    code = ErrorCode.CAPACITY

    def __init__(self, queue_depth: int, max_queue_depth: int):
        super().__init__(
            f"Generation queue is full ({queue_depth}/{max_queue_depth} waiting), try again shortly"
        )
        self.queue_depth = queue_depth
        self.max_queue_depth = max_queue_depth


class RequestSequencer:
    """
    FIFO single-slot admission for the orchestrator.

    Usage:
        sequencer = RequestSequencer(orchestrator, max_queue_depth=8)
        result = await sequencer.submit(request, reporter)
    """

    def __init__(self, orchestrator: GenerationOrchestrator, max_queue_depth: int = 8):
        self.orchestrator = orchestrator
        self.max_queue_depth = max_queue_depth

        self._busy = False
        self._waiters: Deque[asyncio.Future] = deque()
        self._current_request: Optional[str] = None

        self._completed = 0
        self._rejected = 0
        self._started_at = time.time()

    @property
    def is_busy(self) -> bool:
        return self._busy

    @property
    def queue_depth(self) -> int:
        return len(self._waiters)

    async def submit(
        self,
        request: GenerationRequest,
        reporter: Optional[ProgressReporter] = None
    ) -> GenerationResult:
        """Wait for the slot, run the workflow, release the slot"""
        await self._acquire(request.request_id)
        self._current_request = request.request_id
        try:
            result = await self.orchestrator.run(request, reporter)
            self._completed += 1
            return result
        finally:
            self._current_request = None
            self._release()

    async def _acquire(self, request_id: str) -> None:
        if not self._busy and not self._waiters:
            self._busy = True
            return

        if len(self._waiters) >= self.max_queue_depth:
            self._rejected += 1
            SEQUENCER_REJECTIONS.inc()
            logger.warning(f"[{request_id}] Rejected: {len(self._waiters)} requests already waiting")
            raise CapacityError(len(self._waiters), self.max_queue_depth)

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        SEQUENCER_QUEUE_DEPTH.set(len(self._waiters))
        logger.info(f"[{request_id}] Queued at position {len(self._waiters)}")

        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # Slot was already handed over; pass it on
                self._release()
            else:
                if waiter in self._waiters:
                    self._waiters.remove(waiter)
                SEQUENCER_QUEUE_DEPTH.set(len(self._waiters))
            raise

    def _release(self) -> None:
        """Hand the slot to the next live waiter, or free it"""
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                SEQUENCER_QUEUE_DEPTH.set(len(self._waiters))
                return
        self._busy = False
        SEQUENCER_QUEUE_DEPTH.set(0)

    def stats(self) -> Dict[str, Any]:
        return {
            "busy": self._busy,
            "current_request": self._current_request,
            "queue_depth": len(self._waiters),
            "max_queue_depth": self.max_queue_depth,
            "completed": self._completed,
            "rejected": self._rejected,
            "uptime_seconds": round(time.time() - self._started_at, 1),
        }
