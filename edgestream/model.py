"""Core data model for stream topologies: messages, windows, metrics, channels."""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Iterator


def _now() -> datetime:
    return datetime.now(timezone.utc)


class StreamError(Exception):
    """Raised when a stream operation cannot be carried out."""


class StreamType(str, Enum):
    SOURCE = "source"
    TRANSFORM = "transform"
    SINK = "sink"


class StreamStatus(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    PAUSED = "paused"
    ERROR = "error"


class WindowType(str, Enum):
    TUMBLING = "tumbling"
    SLIDING = "sliding"
    SESSION = "session"


class AggregationType(str, Enum):
    SUM = "sum"
    COUNT = "count"
    AVG = "avg"
    MIN = "min"
    MAX = "max"


class StreamEventType(str, Enum):
    TOPOLOGY_CREATED = "topology_created"
    TOPOLOGY_STARTED = "topology_started"
    TOPOLOGY_STOPPED = "topology_stopped"
    TOPOLOGY_DELETED = "topology_deleted"
    PROCESSOR_ADDED = "processor_added"
    PROCESSOR_REMOVED = "processor_removed"
    PROCESSOR_ERROR = "processor_error"
    CONNECTION_ADDED = "connection_added"
    CONNECTION_REMOVED = "connection_removed"


@dataclass
class Message:
    """A single record flowing through a topology."""

    id: str = ""
    timestamp: datetime = field(default_factory=_now)
    data: Any = None
    headers: dict[str, Any] = field(default_factory=dict)
    partition: str = ""
    offset: int = 0


@dataclass
class Window:
    """A group of messages collected over a time span."""

    id: str
    type: WindowType
    start_time: datetime
    end_time: datetime
    size: timedelta = timedelta(0)
    slide: timedelta = timedelta(0)
    messages: list[Message] = field(default_factory=list)


@dataclass
class AggregationResult:
    window: Window
    type: AggregationType
    field: str
    value: Any
    count: int
    timestamp: datetime = field(default_factory=_now)


@dataclass
class StreamMetrics:
    """Counters for one processor; times are in seconds."""

    processor_id: str
    messages_in: int = 0
    messages_out: int = 0
    bytes_in: int = 0
    bytes_out: int = 0
    error_count: int = 0
    processing_time: float = 0.0
    throughput: float = 0.0
    latency: float = 0.0
    last_activity: datetime = field(default_factory=_now)
    start_time: datetime = field(default_factory=_now)
    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    def update(
        self,
        messages_in: int,
        messages_out: int,
        bytes_in: int,
        bytes_out: int,
        processing_time: float,
        error_count: int,
    ) -> None:
        """Add to the counters and recompute throughput and average latency."""
        with self._lock:
            self.messages_in += messages_in
            self.messages_out += messages_out
            self.bytes_in += bytes_in
            self.bytes_out += bytes_out
            self.error_count += error_count
            self.processing_time += processing_time
            now = _now()
            self.last_activity = now
            elapsed = (now - self.start_time).total_seconds()
            if elapsed > 0:
                self.throughput = self.messages_out / elapsed
            if self.messages_out > 0:
                self.latency = self.processing_time / self.messages_out

    def snapshot(self) -> StreamMetrics:
        """Return an independent copy of the current counters."""
        with self._lock:
            return StreamMetrics(
                processor_id=self.processor_id,
                messages_in=self.messages_in,
                messages_out=self.messages_out,
                bytes_in=self.bytes_in,
                bytes_out=self.bytes_out,
                error_count=self.error_count,
                processing_time=self.processing_time,
                throughput=self.throughput,
                latency=self.latency,
                last_activity=self.last_activity,
                start_time=self.start_time,
            )


@dataclass
class TopologyMetrics:
    topology_id: str
    status: StreamStatus = StreamStatus.STOPPED
    processor_count: int = 0
    connection_count: int = 0
    total_messages: int = 0
    total_bytes: int = 0
    total_errors: int = 0
    uptime: float = 0.0
    processor_metrics: dict[str, StreamMetrics] = field(default_factory=dict)
    start_time: datetime = field(default_factory=_now)
    last_activity: datetime = field(default_factory=_now)


@dataclass
class EngineMetrics:
    topology_count: int = 0
    running_count: int = 0
    stopped_count: int = 0
    error_count: int = 0
    total_messages: int = 0
    total_bytes: int = 0
    total_errors: int = 0
    uptime: float = 0.0
    topology_metrics: dict[str, TopologyMetrics] = field(default_factory=dict)
    start_time: datetime = field(default_factory=_now)
    last_activity: datetime = field(default_factory=_now)


@dataclass
class WindowConfig:
    type: WindowType = WindowType.TUMBLING
    size: timedelta = timedelta(0)
    slide: timedelta = timedelta(0)
    session_gap: timedelta = timedelta(0)
    max_size: int = 0
    watermark: timedelta = timedelta(0)


@dataclass
class StreamEvent:
    type: StreamEventType
    topology_id: str
    processor_id: str
    message: str
    timestamp: datetime = field(default_factory=_now)
    data: Any = None


class Channel:
    """A bounded, closable, thread-safe queue linking two processors.

    A capacity below one is treated as one.
    """

    _POLL_SECONDS = 0.05

    def __init__(self, capacity: int = 1) -> None:
        self.capacity = max(1, capacity)
        self._items: deque[Any] = deque()
        self._closed = False
        self._cond = threading.Condition()

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)

    def _wait(self, stop_event: threading.Event | None) -> None:
        self._cond.wait(self._POLL_SECONDS if stop_event is not None else None)

    def send(self, item: Any, stop_event: threading.Event | None = None) -> bool:
        """Put an item, blocking while full.

        Returns False if ``stop_event`` is set before there is room.
        Raises StreamError if the channel is closed.
        """
        with self._cond:
            while True:
                if self._closed:
                    raise StreamError("send on closed channel")
                if len(self._items) < self.capacity:
                    self._items.append(item)
                    self._cond.notify_all()
                    return True
                if stop_event is not None and stop_event.is_set():
                    return False
                self._wait(stop_event)

    def receive(self, stop_event: threading.Event | None = None) -> Any:
        """Take the next item, blocking while empty.

        Returns None once the channel is closed and drained, or when
        ``stop_event`` is set while waiting.
        """
        with self._cond:
            while True:
                if self._items:
                    item = self._items.popleft()
                    self._cond.notify_all()
                    return item
                if self._closed:
                    return None
                if stop_event is not None and stop_event.is_set():
                    return None
                self._wait(stop_event)

    def close(self) -> None:
        """Close the channel; pending items can still be received."""
        with self._cond:
            if self._closed:
                raise StreamError("close of closed channel")
            self._closed = True
            self._cond.notify_all()

    def __iter__(self) -> Iterator[Any]:
        while (item := self.receive()) is not None:
            yield item


@dataclass
class StreamConnection:
    from_id: str
    to_id: str
    channel: Channel | None
    buffer_size: int


@dataclass
class StreamTopology:
    id: str
    name: str
    description: str
    processors: dict[str, Any] = field(default_factory=dict)
    connections: list[StreamConnection] = field(default_factory=list)
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)


class Stream:
    """A named, ordered chain of processors applied to flow records."""

    def __init__(self, name: str) -> None:
        self._name = name
        self._processors: list[Any] = []
        self._lock = threading.RLock()

    @property
    def name(self) -> str:
        return self._name

    @property
    def processors(self) -> list[Any]:
        with self._lock:
            return list(self._processors)

    def add_processor(self, processor: Any) -> None:
        with self._lock:
            self._processors.append(processor)

    def process(self, item: Any) -> Any:
        """Pass ``item`` through every processor that handles flow records.

        Returns the final result, or None if any processor fails.
        """
        with self._lock:
            result = item
            for processor in self._processors:
                handler = getattr(processor, "process_flow_file", None)
                if handler is None:
                    continue
                try:
                    result = handler(result)
                except Exception:
                    return None
            return result