"""Tumbling, sliding and session windows over stream messages, with aggregation."""

from __future__ import annotations

import json
import math
import threading
import time
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any

from edgestream.model import (
    AggregationResult,
    AggregationType,
    Message,
    StreamError,
    Window,
    WindowConfig,
    WindowType,
)

DEFAULT_WATERMARK = timedelta(seconds=5)
DEFAULT_SESSION_GAP = timedelta(minutes=30)
_SLIDE_DIVISOR = 4

_EPOCH_AWARE = datetime(1970, 1, 1, tzinfo=timezone.utc)
_EPOCH_NAIVE = datetime(1970, 1, 1)


def _epoch_for(ts: datetime) -> datetime:
    return _EPOCH_NAIVE if ts.tzinfo is None else _EPOCH_AWARE


def _truncate(ts: datetime, step: timedelta) -> datetime:
    """Round ``ts`` down to a multiple of ``step`` counted from the Unix epoch."""
    if step <= timedelta(0):
        return ts
    epoch = _epoch_for(ts)
    return epoch + ((ts - epoch) // step) * step


def _unix_seconds(ts: datetime) -> int:
    return (ts - _epoch_for(ts)) // timedelta(seconds=1)


def _nanoseconds(span: timedelta) -> int:
    return (span // timedelta(microseconds=1)) * 1000


def _copy_window(window: Window) -> Window:
    return replace(window, messages=list(window.messages))


def _to_float(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise StreamError(f"cannot convert {type(value).__name__} to float")
    return float(value)


def _extract_numeric(data: Any, field: str) -> float:
    if isinstance(data, dict):
        if field in data:
            return _to_float(data[field])
        raise StreamError(f"field '{field}' not found")
    if isinstance(data, str):
        try:
            parsed = json.loads(data)
        except ValueError:
            parsed = None
        if isinstance(parsed, dict) and field in parsed:
            return _to_float(parsed[field])
        raise StreamError(f"field '{field}' not found in JSON string")
    if field == "":
        return _to_float(data)
    raise StreamError("unsupported data type for field extraction")


def _numeric_values(window: Window, field: str) -> list[float]:
    values = []
    for message in window.messages:
        try:
            values.append(_extract_numeric(message.data, field))
        except StreamError:
            continue
    return values


class StandardWindowProcessor:
    """Assigns messages to windows according to a WindowConfig and aggregates them."""

    def __init__(self, config: WindowConfig) -> None:
        self.config = config
        self._windows: dict[str, Window] = {}
        self._active: list[str] = []
        self._lock = threading.RLock()
        self.last_cleanup = datetime.now(timezone.utc)

    def add_message(self, message: Message) -> None:
        """Place ``message`` in the windows it belongs to.

        Raises StreamError for an unsupported window type or a full window.
        """
        with self._lock:
            kind = self.config.type
            if kind == WindowType.TUMBLING:
                self._add_tumbling(message)
            elif kind == WindowType.SLIDING:
                self._add_sliding(message)
            elif kind == WindowType.SESSION:
                self._add_session(message)
            else:
                raise StreamError(f"unsupported window type: {kind}")

    def _register(self, window: Window) -> None:
        self._windows[window.id] = window
        self._active.append(window.id)

    def _is_full(self, window: Window) -> bool:
        max_size = self.config.max_size
        return max_size > 0 and len(window.messages) >= max_size

    def _add_tumbling(self, message: Message) -> None:
        size = self.config.size
        start = _truncate(message.timestamp, size)
        window_id = f"tumbling_{_unix_seconds(start)}"
        window = self._windows.get(window_id)
        if window is None:
            window = Window(
                id=window_id,
                type=WindowType.TUMBLING,
                start_time=start,
                end_time=start + size,
                size=size,
            )
            self._register(window)
        if self._is_full(window):
            raise StreamError(
                f"window {window_id} has reached maximum size {self.config.max_size}"
            )
        window.messages.append(message)

    def _add_sliding(self, message: Message) -> None:
        size = self.config.size
        slide = self.config.slide or size / _SLIDE_DIVISOR
        if slide <= timedelta(0):
            raise StreamError("sliding window requires a positive size or slide")
        ts = message.timestamp
        for step in range(size // slide):
            start = _truncate(ts - step * slide, slide)
            end = start + size
            if not (start < ts < end):
                continue
            window_id = f"sliding_{_unix_seconds(start)}_{_nanoseconds(size)}"
            window = self._windows.get(window_id)
            if window is None:
                window = Window(
                    id=window_id,
                    type=WindowType.SLIDING,
                    start_time=start,
                    end_time=end,
                    size=size,
                    slide=slide,
                )
                self._register(window)
            if self._is_full(window):
                continue
            window.messages.append(message)

    def _add_session(self, message: Message) -> None:
        gap = self.config.session_gap or DEFAULT_SESSION_GAP
        ts = message.timestamp
        target = next(
            (
                window
                for window in self._windows.values()
                if window.type == WindowType.SESSION
                and window.messages
                and ts - window.messages[-1].timestamp <= gap
            ),
            None,
        )
        if target is None:
            target = Window(
                id=f"session_{_unix_seconds(ts)}_{time.time_ns()}",
                type=WindowType.SESSION,
                start_time=ts,
                end_time=ts + gap,
            )
            self._register(target)
        if self._is_full(target):
            raise StreamError(
                f"session window {target.id} has reached maximum size {self.config.max_size}"
            )
        target.messages.append(message)
        if ts < target.start_time:
            target.start_time = ts
        if ts > target.end_time - gap:
            target.end_time = ts + gap

    def get_window(self, window_id: str) -> Window:
        """Return a copy of the window; raises StreamError if it is unknown."""
        with self._lock:
            window = self._windows.get(window_id)
            if window is None:
                raise StreamError(f"window '{window_id}' not found")
            return _copy_window(window)

    def active_windows(self) -> list[Window]:
        """Copies of the active windows, in the order they were opened."""
        with self._lock:
            return [
                _copy_window(self._windows[window_id])
                for window_id in self._active
                if window_id in self._windows
            ]

    def close_expired_windows(self, now: datetime) -> list[Window]:
        """Remove and return the windows that have expired as of ``now``."""
        with self._lock:
            expired: list[Window] = []
            still_active: list[str] = []
            for window_id in self._active:
                window = self._windows.get(window_id)
                if window is None:
                    continue
                if window.type == WindowType.SESSION:
                    limit = self.config.session_gap or DEFAULT_SESSION_GAP
                else:
                    limit = self.config.watermark or DEFAULT_WATERMARK
                if now - window.end_time > limit:
                    expired.append(_copy_window(window))
                    del self._windows[window_id]
                else:
                    still_active.append(window_id)
            self._active = still_active
            self.last_cleanup = now
            return expired

    def aggregate(
        self, window: Window, agg_type: AggregationType | str, field: str
    ) -> AggregationResult:
        """Aggregate the numeric ``field`` of the window's messages.

        Messages whose field cannot be read as a number are skipped.
        Raises StreamError for an unsupported aggregation type.
        """
        if not window.messages:
            return AggregationResult(window, agg_type, field, None, 0)

        if agg_type == AggregationType.COUNT:
            total = len(window.messages)
            return AggregationResult(window, agg_type, field, total, total)

        if agg_type not in (
            AggregationType.SUM,
            AggregationType.AVG,
            AggregationType.MIN,
            AggregationType.MAX,
        ):
            raise StreamError(f"unsupported aggregation type: {agg_type}")

        kind = AggregationType(agg_type)
        values = _numeric_values(window, field)
        count = len(values)
        value: Any
        if kind == AggregationType.SUM:
            value = math.fsum(values) if values else 0.0
        elif kind == AggregationType.AVG:
            value = math.fsum(values) / count if count else 0.0
        elif kind == AggregationType.MIN:
            value = min(values) if values else None
        else:
            value = max(values) if values else None
        return AggregationResult(window, kind, field, value, count)

    def window_count(self) -> int:
        with self._lock:
            return len(self._windows)

    def active_window_count(self) -> int:
        with self._lock:
            return len(self._active)

    def window_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._windows)

    def clear(self) -> None:
        with self._lock:
            self._windows = {}
            self._active = []
            self.last_cleanup = datetime.now(timezone.utc)