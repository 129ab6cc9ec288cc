"""
================================================================================
⚡ PROGRESS STREAM - Generation Progress Events With Replay
================================================================================
Observers the orchestrator notifies at every state transition, plus an
in-memory streaming reporter that lets clients follow a request live and
catch up after a dropped connection.

Reconnection flow:
┌──────────────────────────────────────────────────────────────────────────┐
│                                                                          │
│  Client                         Server                                   │
│    │                              │                                      │
│    │─── SSE Connect ─────────────▶│  subscribe to live queue             │
│    │◀── Replay History ──────────│  events with sequence > last_seen    │
│    │◀── Live Events ─────────────│  until a terminal event              │
│    ×  (disconnect)                │                                      │
│    │─── Reconnect (last_seen=N) ─▶│                                      │
│    │◀── reconnect_ack + replay ──│  events N+1.. then live              │
│                                                                          │
└──────────────────────────────────────────────────────────────────────────┘

Publishing is synchronous and never blocks: a full subscriber queue drops
the event for that subscriber only.

================================================================================
Author: Barrios A2I | Version: 3.0.0 | October 2026
================================================================================
"""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, AsyncGenerator, Dict, Iterable, List, Optional, Set

from prometheus_client import Counter, Gauge

logger = logging.getLogger("genesis.progress")


# =============================================================================
# PROMETHEUS METRICS
# =============================================================================

PROGRESS_EVENTS = Counter(
    'genesis_progress_events_total',
    'Progress events published',
    ['event_type']
)

PROGRESS_DROPPED = Counter(
    'genesis_progress_events_dropped_total',
    'Progress events dropped because a subscriber queue was full'
)

PROGRESS_REPLAYED = Counter(
    'genesis_progress_events_replayed_total',
    'Progress events replayed to reconnecting clients'
)

PROGRESS_ACTIVE_STREAMS = Gauge(
    'genesis_progress_active_streams',
    'Open progress streams'
)


# =============================================================================
# EVENT MODEL
# =============================================================================

class EventType(Enum):
    """Progress event types"""
    WORKFLOW_START = "workflow_start"
    STAGE_START = "stage_start"
    STAGE_COMPLETE = "stage_complete"
    WORKFLOW_COMPLETE = "workflow_complete"
    WORKFLOW_ERROR = "workflow_error"

    # Stream-only events, never logged
    HEARTBEAT = "heartbeat"
    RECONNECT_ACK = "reconnect_ack"


TERMINAL_EVENT_TYPES = {
    EventType.WORKFLOW_COMPLETE.value,
    EventType.WORKFLOW_ERROR.value,
}


@dataclass(frozen=True)
class ProgressEvent:
    """
    One progress notification.

    sequence is per request, starting at 1, and strictly increasing in
    publication order.
    """
    request_id: str
    stage: str
    message: str
    sequence: int
    event_type: str = EventType.STAGE_START.value
    timestamp: float = field(default_factory=time.time)
    data: Dict[str, Any] = field(default_factory=dict)
    is_replay: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.event_type in TERMINAL_EVENT_TYPES

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "stage": self.stage,
            "message": self.message,
            "sequence": self.sequence,
            "event_type": self.event_type,
            "timestamp": self.timestamp,
            "data": self.data,
            "is_replay": self.is_replay,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    def to_sse(self) -> str:
        """Format as Server-Sent Event"""
        return f"event: {self.event_type}\nid: {self.sequence}\ndata: {self.to_json()}\n\n"


# =============================================================================
# REPORTERS
# =============================================================================

class ProgressReporter(ABC):
    """Observer notified synchronously at each workflow transition"""

    @abstractmethod
    def publish(self, event: ProgressEvent) -> None:
        """Deliver one event; must not block"""


class NullProgressReporter(ProgressReporter):
    def publish(self, event: ProgressEvent) -> None:
        return None


class LoggingProgressReporter(ProgressReporter):
    """Writes every event to the genesis.progress logger"""

    def __init__(self, level: int = logging.INFO):
        self.level = level

    def publish(self, event: ProgressEvent) -> None:
        logger.log(
            self.level,
            f"[{event.request_id}] #{event.sequence} {event.event_type} {event.stage}: {event.message}"
        )


class CompositeProgressReporter(ProgressReporter):
    """Fan-out to several reporters; a failing reporter is skipped"""

    def __init__(self, reporters: Iterable[ProgressReporter]):
        self.reporters: List[ProgressReporter] = list(reporters)

    def publish(self, event: ProgressEvent) -> None:
        for reporter in self.reporters:
            try:
                reporter.publish(event)
            except Exception:
                logger.exception(f"Progress reporter {type(reporter).__name__} failed, skipping")


class RequestProgress:
    """Numbers and publishes the events of one request"""

    def __init__(self, request_id: str, reporter: Optional[ProgressReporter] = None):
        self.request_id = request_id
        self.reporter = reporter or NullProgressReporter()
        self._sequence = 0

    @property
    def last_sequence(self) -> int:
        return self._sequence

    def emit(
        self,
        stage: str,
        message: str,
        event_type: EventType = EventType.STAGE_START,
        **data: Any
    ) -> ProgressEvent:
        self._sequence += 1
        event = ProgressEvent(
            request_id=self.request_id,
            stage=stage,
            message=message,
            sequence=self._sequence,
            event_type=event_type.value,
            data=data,
        )
        PROGRESS_EVENTS.labels(event_type=event.event_type).inc()
        try:
            self.reporter.publish(event)
        except Exception:
            # Progress delivery never affects the workflow
            logger.exception(f"[{self.request_id}] Progress reporter failed on event #{event.sequence}")
        return event


# =============================================================================
# EVENT LOG (bounded, in-memory)
# =============================================================================

@dataclass
class StreamConfig:
    """Configuration for the streaming reporter"""
    max_tracked_requests: int = 100     # Oldest request logs are evicted first
    max_events_per_request: int = 500
    max_replay_events: int = 200
    subscriber_queue_size: int = 100
    heartbeat_interval: float = 15.0    # Seconds of silence before a heartbeat


class EventLog:
    """Per-request event history used for replay"""

    def __init__(self, config: Optional[StreamConfig] = None):
        self.config = config or StreamConfig()
        self._logs: "OrderedDict[str, List[ProgressEvent]]" = OrderedDict()

    def append(self, event: ProgressEvent) -> None:
        log = self._logs.get(event.request_id)
        if log is not None and event.sequence == 1:
            # A new workflow under a reused id starts a fresh history
            logger.warning(f"[{event.request_id}] Request id reused, discarding its previous progress log")
            del self._logs[event.request_id]
            log = None
        if log is None:
            log = []
            self._logs[event.request_id] = log
            while len(self._logs) > self.config.max_tracked_requests:
                evicted, _ = self._logs.popitem(last=False)
                logger.debug(f"Evicted progress log for {evicted}")

        log.append(event)
        if len(log) > self.config.max_events_per_request:
            del log[: len(log) - self.config.max_events_per_request]

    def get_all(self, request_id: str) -> List[ProgressEvent]:
        return list(self._logs.get(request_id, []))

    def get_since(self, request_id: str, since_sequence: int) -> List[ProgressEvent]:
        return [e for e in self._logs.get(request_id, []) if e.sequence > since_sequence]

    def __contains__(self, request_id: str) -> bool:
        return request_id in self._logs

    def tracked_requests(self) -> List[str]:
        return list(self._logs)


# =============================================================================
# LIVE BROADCASTER
# =============================================================================

class LiveBroadcaster:
    """Pushes live events to the queues of connected streams"""

    def __init__(self, config: Optional[StreamConfig] = None):
        self.config = config or StreamConfig()
        self._subscribers: Dict[str, Set[asyncio.Queue]] = {}

    def broadcast(self, event: ProgressEvent) -> None:
        for queue in self._subscribers.get(event.request_id, ()):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                PROGRESS_DROPPED.inc()
                logger.warning(f"[{event.request_id}] Subscriber queue full, dropped event #{event.sequence}")

    def subscribe(self, request_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.config.subscriber_queue_size)
        self._subscribers.setdefault(request_id, set()).add(queue)
        return queue

    def unsubscribe(self, request_id: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(request_id)
        if queues is None:
            return
        queues.discard(queue)
        if not queues:
            del self._subscribers[request_id]

    def subscriber_count(self, request_id: Optional[str] = None) -> int:
        if request_id is not None:
            return len(self._subscribers.get(request_id, ()))
        return sum(len(q) for q in self._subscribers.values())


# =============================================================================
# STREAMING REPORTER
# =============================================================================

class StreamingProgressReporter(ProgressReporter):
    """
    Records events for replay and forwards them to live streams.

    Usage:
        reporter = StreamingProgressReporter()
        await sequencer.submit(request, reporter)

        # Client (re)connection
        async for event in reporter.stream(request_id, last_seen_sequence=3):
            send_to_client(event)
    """

    def __init__(self, config: Optional[StreamConfig] = None):
        self.config = config or StreamConfig()
        self.event_log = EventLog(self.config)
        self.broadcaster = LiveBroadcaster(self.config)

    def publish(self, event: ProgressEvent) -> None:
        self.event_log.append(event)
        self.broadcaster.broadcast(event)

    async def stream(
        self,
        request_id: str,
        last_seen_sequence: int = 0
    ) -> AsyncGenerator[ProgressEvent, None]:
        """
        Replay events after last_seen_sequence, then follow live events
        until the request's terminal event.
        """
        # Subscribe before reading the log so nothing published in between is lost
        queue = self.broadcaster.subscribe(request_id)
        PROGRESS_ACTIVE_STREAMS.inc()
        last_sequence = last_seen_sequence

        try:
            if last_seen_sequence > 0:
                yield ProgressEvent(
                    request_id=request_id,
                    stage="stream",
                    message=f"Resuming after event #{last_seen_sequence}",
                    sequence=last_seen_sequence,
                    event_type=EventType.RECONNECT_ACK.value,
                )

            missed = self.event_log.get_since(request_id, last_seen_sequence)
            for event in missed[: self.config.max_replay_events]:
                PROGRESS_REPLAYED.inc()
                last_sequence = event.sequence
                yield replace(event, is_replay=True)
                if event.is_terminal:
                    return

            if missed:
                logger.info(f"Replayed {len(missed)} events for {request_id} (since #{last_seen_sequence})")

            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=self.config.heartbeat_interval)
                except asyncio.TimeoutError:
                    yield ProgressEvent(
                        request_id=request_id,
                        stage="stream",
                        message="waiting",
                        sequence=last_sequence,
                        event_type=EventType.HEARTBEAT.value,
                    )
                    continue

                if event.sequence <= last_sequence:
                    continue
                last_sequence = event.sequence
                yield event
                if event.is_terminal:
                    return
        finally:
            self.broadcaster.unsubscribe(request_id, queue)
            PROGRESS_ACTIVE_STREAMS.dec()

    async def stream_sse(
        self,
        request_id: str,
        last_seen_sequence: int = 0
    ) -> AsyncGenerator[str, None]:
        """
        Stream events formatted as SSE.

        Usage in FastAPI:
            return StreamingResponse(
                reporter.stream_sse(request_id),
                media_type="text/event-stream"
            )
        """
        async for event in self.stream(request_id, last_seen_sequence):
            yield event.to_sse()

    def stats(self) -> Dict[str, Any]:
        return {
            "tracked_requests": len(self.event_log.tracked_requests()),
            "active_streams": self.broadcaster.subscriber_count(),
            "max_tracked_requests": self.config.max_tracked_requests,
        }


SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no"  # Disable nginx buffering
}
