"""Simple time- and count-based windows and a manager that feeds them."""

from __future__ import annotations

import threading
import time
from enum import IntEnum
from typing import Any, Union

_id_lock = threading.Lock()
_last_ns = 0


def _unique_ns() -> int:
    global _last_ns
    with _id_lock:
        _last_ns = max(time.time_ns(), _last_ns + 1)
        return _last_ns


class WindowKind(IntEnum):
    TIME = 0
    COUNT = 1


class TimeWindow:
    """Collects items and becomes ready once ``duration`` seconds have passed."""

    def __init__(self, duration: float) -> None:
        self.id = f"time-window-{_unique_ns()}"
        self.duration = duration
        self._started = time.monotonic()
        self._items: list[Any] = []
        self._lock = threading.Lock()

    @property
    def kind(self) -> WindowKind:
        return WindowKind.TIME

    def add(self, item: Any) -> None:
        with self._lock:
            self._items.append(item)

    def items(self) -> list[Any]:
        with self._lock:
            return list(self._items)

    def is_ready(self) -> bool:
        with self._lock:
            return time.monotonic() - self._started >= self.duration

    def reset(self) -> None:
        with self._lock:
            self._items = []
            self._started = time.monotonic()


class CountWindow:
    """Keeps the latest ``max_count`` items; ready once it holds that many."""

    def __init__(self, max_count: int) -> None:
        self.id = f"count-window-{_unique_ns()}"
        self.max_count = max_count
        self._items: list[Any] = []
        self._lock = threading.Lock()

    @property
    def kind(self) -> WindowKind:
        return WindowKind.COUNT

    def add(self, item: Any) -> None:
        with self._lock:
            self._items.append(item)
            if self.max_count > 0 and len(self._items) > self.max_count:
                self._items = self._items[-self.max_count:]

    def items(self) -> list[Any]:
        with self._lock:
            return list(self._items)

    def is_ready(self) -> bool:
        with self._lock:
            return len(self._items) >= self.max_count

    def reset(self) -> None:
        with self._lock:
            self._items = []


AnyWindow = Union[TimeWindow, CountWindow]


class SimpleWindowManager:
    """Registry of windows keyed by id; incoming data goes to every window."""

    def __init__(self) -> None:
        self._windows: dict[str, AnyWindow] = {}
        self._lock = threading.RLock()

    def create_time_window(self, duration: float) -> TimeWindow:
        window = TimeWindow(duration)
        with self._lock:
            self._windows[window.id] = window
        return window

    def create_count_window(self, count: int) -> CountWindow:
        window = CountWindow(count)
        with self._lock:
            self._windows[window.id] = window
        return window

    def process_data(self, data: Any) -> None:
        """Add ``data`` to every registered window."""
        with self._lock:
            for window in self._windows.values():
                window.add(data)

    def ready_windows(self) -> list[AnyWindow]:
        with self._lock:
            return [w for w in self._windows.values() if w.is_ready()]

    def print_status(self) -> None:
        with self._lock:
            print("=== Window Status ===")
            for number, (window_id, window) in enumerate(self._windows.items(), 1):
                print(
                    f"Window {number} [{window_id}]: Type={window.kind.value}, "
                    f"DataCount={len(window.items())}, Ready={window.is_ready()}"
                )
            print("=====================")

    def create_window(self, window_id: str, duration: float, max_size: int) -> None:
        """Register a window under ``window_id``.

        A positive ``max_size`` makes a count window; otherwise a positive
        ``duration`` makes a time window.
        """
        if not window_id:
            raise ValueError("window ID cannot be empty")
        window: AnyWindow
        if max_size > 0:
            window = CountWindow(max_size)
        elif duration > 0:
            window = TimeWindow(duration)
        else:
            raise ValueError("either duration or maxSize must be specified")
        with self._lock:
            self._windows[window_id] = window

    def add_to_window(self, window_id: str, data: Any) -> None:
        with self._lock:
            window = self._windows.get(window_id)
            if window is None:
                raise KeyError(f"window {window_id} not found")
            window.add(data)

    def window_data(self, window_id: str) -> list[Any] | None:
        with self._lock:
            window = self._windows.get(window_id)
            return window.items() if window is not None else None

    def delete_window(self, window_id: str) -> None:
        with self._lock:
            self._windows.pop(window_id, None)

    def get_window(self, window_id: str) -> AnyWindow | None:
        with self._lock:
            return self._windows.get(window_id)