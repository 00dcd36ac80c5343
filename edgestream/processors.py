"""Built-in stream processors: file source, JSON transform, console sink, aggregation."""

from __future__ import annotations

import functools
import json
import logging
import os
import sys
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, TextIO

from edgestream.model import (
    AggregationType,
    Channel,
    Message,
    StreamError,
    StreamMetrics,
    StreamStatus,
    StreamType,
    WindowConfig,
)
from edgestream.window import StandardWindowProcessor

logger = logging.getLogger(__name__)

DEFAULT_READ_BATCH = 100
DEFAULT_READ_PAUSE = 0.1
MAX_MESSAGE_ID_LENGTH = 100
DIRECTORY_MODE = 0o755

_SAMPLE_LINES = (
    '{"id":1,"name":"Alice","age":30,"score":85.5,"city":"New York"}',
    '{"id":2,"name":"Bob","age":25,"score":92.0,"city":"Los Angeles"}',
    '{"id":3,"name":"Charlie","age":35,"score":78.5,"city":"Chicago"}',
    '{"id":4,"name":"Diana","age":28,"score":88.0,"city":"Houston"}',
    '{"id":5,"name":"Eve","age":32,"score":95.5,"city":"Phoenix"}',
    "SIMPLE TEXT MESSAGE",
    '{"id":6,"name":"Frank","age":29,"score":82.0,"city":"Philadelphia"}',
    '{"id":7,"name":"Grace","age":27,"score":90.5,"city":"San Antonio"}',
    "ANOTHER TEXT MESSAGE",
    '{"id":8,"name":"Henry","age":31,"score":87.0,"city":"San Diego"}',
    '{"id":9,"name":"Ivy","age":26,"score":93.5,"city":"Dallas"}',
    '{"id":10,"name":"Jack","age":33,"score":79.0,"city":"San Jose"}',
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _rfc3339(ts: datetime) -> str:
    text = ts.isoformat(timespec="seconds")
    return text[:-6] + "Z" if text.endswith("+00:00") else text


def _data_size(data: Any) -> int:
    return len(str(data).encode("utf-8"))


class _BaseProcessor:
    """Shared identity, status, metrics and worker-thread handling."""

    stream_type: StreamType = StreamType.TRANSFORM

    def __init__(self, processor_id: str, name: str) -> None:
        self._id = processor_id
        self._name = name
        self._status = StreamStatus.STOPPED
        self._metrics = StreamMetrics(processor_id)
        self._lock = threading.RLock()
        self._stop_event: threading.Event | None = None
        self._input: Channel | None = None
        self._outputs: list[Channel] = []

    @property
    def id(self) -> str:
        return self._id

    @property
    def name(self) -> str:
        return self._name

    @property
    def type(self) -> StreamType:
        return self.stream_type

    @property
    def status(self) -> StreamStatus:
        with self._lock:
            return self._status

    @property
    def metrics(self) -> StreamMetrics:
        """A snapshot of the processor's counters."""
        return self._metrics.snapshot()

    @property
    def metrics_ref(self) -> StreamMetrics:
        """The live metrics object the processor updates."""
        return self._metrics

    def _stop_worker(self) -> None:
        with self._lock:
            if self._status != StreamStatus.RUNNING:
                raise StreamError(f"processor '{self._id}' is not running")
            if self._stop_event is not None:
                self._stop_event.set()
            self._status = StreamStatus.STOPPED

    def _attach_input(self, input_channel: Channel) -> None:
        with self._lock:
            self._input = input_channel

    def _attach_output(self, output: Channel) -> None:
        with self._lock:
            self._outputs.append(output)

    def _ensure_not_running(self) -> None:
        if self._status == StreamStatus.RUNNING:
            raise StreamError(f"processor '{self._id}' is already running")

    def _launch(self, target: Callable[[threading.Event], None]) -> None:
        stop = threading.Event()
        self._stop_event = stop
        self._status = StreamStatus.RUNNING
        self._metrics.start_time = _utc_now()
        threading.Thread(
            target=target, args=(stop,), name=f"processor-{self._id}", daemon=True
        ).start()

    def _mark_stopped(self, stop: threading.Event) -> None:
        with self._lock:
            if self._stop_event is stop:
                self._status = StreamStatus.STOPPED

    def _emit(self, item: Message, outputs: list[Channel], stop: threading.Event) -> bool:
        for output in outputs:
            try:
                if not output.send(item, stop):
                    return False
            except StreamError:
                logger.debug("[%s] output channel closed", self._id)
                return False
        return True


class _TransformBase(_BaseProcessor):
    """A processor reading from one input channel and writing to its outputs."""

    def process(self, message: Message) -> list[Message]:  # overridden by subclasses
        return [message]

    def _start_pump(self) -> None:
        with self._lock:
            self._ensure_not_running()
            if self._input is None:
                raise StreamError(f"input channel not set for processor '{self._id}'")
            if not self._outputs:
                raise StreamError(f"output channel not set for processor '{self._id}'")
            self._launch(
                functools.partial(
                    self._pump, input_channel=self._input, outputs=list(self._outputs)
                )
            )

    def _pump(
        self, stop: threading.Event, input_channel: Channel, outputs: list[Channel]
    ) -> None:
        try:
            while not stop.is_set():
                message = input_channel.receive(stop)
                if message is None:
                    return
                try:
                    results = self.process(message)
                except Exception as exc:  # keep the worker alive on bad input
                    logger.debug("[%s] failed to process message: %s", self._id, exc)
                    continue
                for result in results:
                    if not self._emit(result, outputs, stop):
                        return
        finally:
            self._mark_stopped(stop)


class FileSourceProcessor(_BaseProcessor):
    """Reads a text file line by line and emits each non-blank line as a message."""

    stream_type = StreamType.SOURCE

    def __init__(self, processor_id: str, name: str, file_path: str | os.PathLike[str]) -> None:
        super().__init__(processor_id, name)
        self.file_path = os.fspath(file_path)
        self.batch_size = DEFAULT_READ_BATCH
        self.interval = DEFAULT_READ_PAUSE

    def process(self, message: Message) -> list[Message]:
        raise StreamError("source processor does not process input messages")

    def read(self) -> Message:
        raise StreamError("read method should not be called directly")

    def set_output(self, output: Channel) -> None:
        self._attach_output(output)

    def start(self) -> None:
        """Start reading the file in a worker thread; needs an output channel."""
        with self._lock:
            self._ensure_not_running()
            if not self._outputs:
                raise StreamError(f"no output channels set for processor '{self._id}'")
            self._launch(functools.partial(self._read_file, outputs=list(self._outputs)))

    def stop(self) -> None:
        """Signal the reader to finish; raises StreamError if not running."""
        self._stop_worker()

    def _read_file(self, stop: threading.Event, outputs: list[Channel]) -> None:
        try:
            self._emit_lines(stop, outputs)
        finally:
            # A finished file leaves the processor running until stop() is called.
            if stop.is_set():
                self._mark_stopped(stop)

    def _emit_lines(self, stop: threading.Event, outputs: list[Channel]) -> None:
        logger.debug("[%s] reading %s", self._id, self.file_path)
        try:
            handle = open(self.file_path, encoding="utf-8", errors="replace")
        except OSError as exc:
            logger.debug("[%s] cannot open file: %s", self._id, exc)
            self._metrics.update(0, 0, 0, 0, 0.0, 1)
            return
        with handle:
            try:
                for line_number, raw in enumerate(handle, 1):
                    if stop.is_set():
                        return
                    line = raw.strip()
                    if not line:
                        continue
                    started = time.perf_counter()
                    message = Message(
                        id=f"{self._id}_line_{line_number}",
                        data=line,
                        headers={
                            "source": self._id,
                            "line_number": line_number,
                            "file_path": self.file_path,
                        },
                        partition="default",
                        offset=line_number,
                    )
                    if not self._emit(message, outputs, stop):
                        return
                    self._metrics.update(
                        0, 1, 0, len(line.encode("utf-8")), time.perf_counter() - started, 0
                    )
                    if line_number % self.batch_size == 0:
                        stop.wait(self.interval)
            except OSError:
                self._metrics.update(0, 0, 0, 0, 0.0, 1)


class JSONTransformProcessor(_TransformBase):
    """Parses or wraps message data as a JSON object and stamps it."""

    def process(self, message: Message) -> list[Message]:
        started = time.perf_counter()
        try:
            results = self.transform(message)
        except Exception:
            self._metrics.update(
                1, 0, _data_size(message.data), 0, time.perf_counter() - started, 1
            )
            raise
        out_size = sum(_data_size(result.data) for result in results)
        self._metrics.update(
            1,
            len(results),
            _data_size(message.data),
            out_size,
            time.perf_counter() - started,
            0,
        )
        return results

    def transform(self, message: Message) -> list[Message]:
        data = message.data
        if isinstance(data, str):
            try:
                parsed = json.loads(data)
            except ValueError:
                parsed = None
            payload = dict(parsed) if isinstance(parsed, dict) else {"text": data}
        elif isinstance(data, dict):
            payload = dict(data)
        else:
            payload = {"value": data}

        now = datetime.now().astimezone()
        payload["processed_at"] = _rfc3339(now)
        payload["processor_id"] = self._id

        headers: dict[str, Any] = {
            "original_id": message.id,
            "transformer": self._id,
            "transform_time": _rfc3339(now),
        }
        for key, value in message.headers.items():
            headers.setdefault(key, value)

        return [
            Message(
                id=f"{message.id}_transformed",
                data=payload,
                headers=headers,
                partition=message.partition,
                offset=message.offset,
            )
        ]

    def set_input(self, input_channel: Channel) -> None:
        self._attach_input(input_channel)

    def set_output(self, output: Channel) -> None:
        self._attach_output(output)

    def start(self) -> None:
        """Start the worker; needs an input and at least one output channel."""
        self._start_pump()

    def stop(self) -> None:
        """Signal the worker to finish; raises StreamError if not running."""
        self._stop_worker()


class ConsoleSinkProcessor(_BaseProcessor):
    """Writes each incoming message as one formatted line to a text stream."""

    stream_type = StreamType.SINK

    def __init__(self, processor_id: str, name: str, out: TextIO | None = None) -> None:
        super().__init__(processor_id, name)
        self.prefix = "[STREAM]"
        self._out = out

    def process(self, message: Message) -> list[Message]:
        self.write(message)
        return []

    def write(self, message: Message) -> None:
        started = time.perf_counter()
        data = message.data
        if isinstance(data, str):
            output = data
        elif isinstance(data, dict):
            try:
                output = json.dumps(data, indent=2, sort_keys=True)
            except (TypeError, ValueError):
                output = str(data)
        else:
            output = str(data)

        message_id = message.id
        if len(message_id) > MAX_MESSAGE_ID_LENGTH:
            message_id = message_id[:MAX_MESSAGE_ID_LENGTH] + "..."
        stamp = message.timestamp.strftime("%H:%M:%S")
        print(
            f"{self.prefix} [{stamp}] [{message_id}] {output}",
            file=self._out if self._out is not None else sys.stdout,
        )
        self._metrics.update(
            1, 0, len(output.encode("utf-8")), 0, time.perf_counter() - started, 0
        )

    def set_input(self, input_channel: Channel) -> None:
        self._attach_input(input_channel)

    def start(self) -> None:
        """Start consuming the input channel; raises StreamError without one."""
        with self._lock:
            self._ensure_not_running()
            if self._input is None:
                raise StreamError(f"input channel not set for processor '{self._id}'")
            self._launch(functools.partial(self._consume, input_channel=self._input))

    def stop(self) -> None:
        """Signal the consumer to finish; raises StreamError if not running."""
        self._stop_worker()

    def _consume(self, stop: threading.Event, input_channel: Channel) -> None:
        try:
            while not stop.is_set():
                message = input_channel.receive(stop)
                if message is None:
                    return
                try:
                    self.write(message)
                except Exception as exc:
                    logger.debug("[%s] failed to write message: %s", self._id, exc)
                    self._metrics.update(1, 0, 0, 0, 0.0, 1)
        finally:
            self._mark_stopped(stop)


class AggregationProcessor(_TransformBase):
    """Windows incoming messages and emits an aggregate for each expired window."""

    def __init__(
        self,
        processor_id: str,
        name: str,
        window_config: WindowConfig,
        agg_type: AggregationType,
        agg_field: str,
    ) -> None:
        super().__init__(processor_id, name)
        self.window = StandardWindowProcessor(window_config)
        self.agg_type = AggregationType(agg_type)
        self.agg_field = agg_field
        self._window_count = 0
        self._count_lock = threading.Lock()

    def _next_window_number(self) -> int:
        with self._count_lock:
            self._window_count += 1
            return self._window_count

    def process(self, message: Message) -> list[Message]:
        started = time.perf_counter()
        in_size = _data_size(message.data)
        try:
            self.window.add_message(message)
            now = datetime.now(message.timestamp.tzinfo)
            expired = self.window.close_expired_windows(now)
        except StreamError:
            self._metrics.update(1, 0, in_size, 0, time.perf_counter() - started, 1)
            raise

        results: list[Message] = []
        for window in expired:
            try:
                aggregate = self.window.aggregate(window, self.agg_type, self.agg_field)
            except StreamError:
                continue
            number = self._next_window_number()
            results.append(
                Message(
                    id=f"{self._id}_agg_{number}",
                    data=aggregate,
                    headers={
                        "processor_id": self._id,
                        "window_id": window.id,
                        "window_type": window.type.value,
                        "aggregation": self.agg_type.value,
                        "field": self.agg_field,
                        "message_count": len(window.messages),
                        "window_start": _rfc3339(window.start_time),
                        "window_end": _rfc3339(window.end_time),
                    },
                    partition="aggregation",
                    offset=number,
                )
            )

        out_size = sum(_data_size(result.data) for result in results)
        self._metrics.update(
            1, len(results), in_size, out_size, time.perf_counter() - started, 0
        )
        return results

    def transform(self, message: Message) -> list[Message]:
        return self.process(message)

    def set_input(self, input_channel: Channel) -> None:
        self._attach_input(input_channel)

    def set_output(self, output: Channel) -> None:
        self._attach_output(output)

    def start(self) -> None:
        """Start the worker; needs an input and at least one output channel."""
        self._start_pump()

    def stop(self) -> None:
        """Signal the worker to finish; raises StreamError if not running."""
        self._stop_worker()


def create_sample_stream_data_file(file_path: str | os.PathLike[str]) -> None:
    """Write a small sample of JSON and text lines to an absolute ``file_path``."""
    path_text = os.fspath(file_path)
    try:
        os.makedirs(os.path.dirname(path_text) or ".", mode=DIRECTORY_MODE, exist_ok=True)
    except OSError as exc:
        raise StreamError(f"failed to create directory: {exc}") from exc

    if not os.path.isabs(path_text) or ".." in path_text:
        raise StreamError(f"invalid file path: {path_text}")

    try:
        handle = open(os.path.normpath(path_text), "w", encoding="utf-8")
    except OSError as exc:
        raise StreamError(f"failed to create file: {exc}") from exc

    with handle:
        for index, line in enumerate(_SAMPLE_LINES):
            try:
                handle.write(f"{line}\n")
                handle.flush()
            except OSError as exc:
                raise StreamError(f"failed to write line {index + 1}: {exc}") from exc
            if index % 3 == 0:
                time.sleep(DEFAULT_READ_PAUSE)


__all__ = [
    "AggregationProcessor",
    "ConsoleSinkProcessor",
    "FileSourceProcessor",
    "JSONTransformProcessor",
    "create_sample_stream_data_file",
]