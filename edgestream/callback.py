"""Processors driven by user-supplied callbacks, and the flow record they act on."""

from __future__ import annotations

import functools
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from edgestream.model import Channel, Message, StreamStatus, StreamType
from edgestream.processors import _BaseProcessor

FlowFunc = Callable[["FlowRecord"], "FlowRecord"]
TransformFunc = Callable[[Message], "list[Message]"]
SinkFunc = Callable[[Message], None]

_DEFAULT_OBJECT_SIZE = 100


@dataclass
class FlowRecord:
    """A unit of content with string attributes, passed through flow callbacks."""

    attributes: dict[str, str] = field(default_factory=dict)
    content: bytes = b""
    size: int = 0
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def set_attribute(self, key: str, value: str) -> None:
        self.attributes[key] = value

    def get_attribute(self, key: str) -> Optional[str]:
        """Return the attribute's value, or None if it is not set."""
        return self.attributes.get(key)


def _data_size(data: Any) -> int:
    return len(str(data).encode("utf-8"))


class CallbackProcessor(_BaseProcessor):
    """A transform processor that tags messages and can run a flow-record callback.

    Starting a running processor and stopping a stopped one are both harmless.
    """

    stream_type = StreamType.TRANSFORM

    def __init__(self, processor_id: str, name: str) -> None:
        super().__init__(processor_id, name)
        self._process_func: Optional[FlowFunc] = None

    @property
    def description(self) -> str:
        return f"Test processor: {self._name}"

    def _current_func(self) -> Optional[FlowFunc]:
        with self._lock:
            return self._process_func

    def process(self, message: Message) -> list[Message]:
        """Run the callback on a record built from ``message``, then tag the message.

        Exceptions raised by the callback propagate to the caller.
        """
        started = time.perf_counter()
        func = self._current_func()
        if func is not None:
            record = FlowRecord()
            record.set_attribute("message_id", message.id)
            record.set_attribute("timestamp", str(message.timestamp))
            if isinstance(message.data, str):
                record.content = message.data.encode("utf-8")
                record.size = len(record.content)
            func(record)

        processed = Message(
            id=f"{self._id}_processed_{message.id}",
            data=f"[{self._name}] {message.data}",
            headers={
                "processor_id": self._id,
                "processor_name": self._name,
                "original_id": message.id,
            },
            partition=message.partition,
            offset=message.offset,
        )
        self._metrics.update(
            1,
            1,
            _data_size(message.data),
            _data_size(processed.data),
            time.perf_counter() - started,
            0,
        )
        return [processed]

    def transform(self, message: Message) -> list[Message]:
        return self.process(message)

    def set_input(self, input_channel: Channel) -> None:
        with self._lock:
            self._input = input_channel

    def set_output(self, output: Channel) -> None:
        with self._lock:
            self._outputs.append(output)

    def set_process_func(self, func: Optional[FlowFunc]) -> None:
        with self._lock:
            self._process_func = func

    def call_process_func(self, record: FlowRecord) -> FlowRecord:
        """Apply the callback to ``record``; without one, return it unchanged."""
        func = self._current_func()
        if func is None:
            return record
        return func(record)

    def write(self, message: Message) -> None:
        """Count ``message`` as written."""
        data = message.data
        if data is None:
            size = 0
        elif isinstance(data, str):
            size = len(data.encode("utf-8"))
        elif isinstance(data, (bytes, bytearray)):
            size = len(data)
        else:
            size = _DEFAULT_OBJECT_SIZE
        with self._lock:
            self._metrics.update(1, 0, size, 0, 0.0, 0)

    def start(self) -> None:
        with self._lock:
            if self._status == StreamStatus.RUNNING:
                return
            self._launch(
                functools.partial(
                    self._run, input_channel=self._input, outputs=list(self._outputs)
                )
            )

    def stop(self) -> None:
        with self._lock:
            if self._status != StreamStatus.RUNNING:
                return
            if self._stop_event is not None:
                self._stop_event.set()
            self._status = StreamStatus.STOPPED

    def _run(
        self,
        stop: threading.Event,
        input_channel: Optional[Channel],
        outputs: list[Channel],
    ) -> None:
        try:
            if input_channel is None:
                stop.wait()
                return
            while not stop.is_set():
                message = input_channel.receive(stop)
                if message is None:
                    return
                try:
                    results = self.process(message)
                except Exception:
                    continue
                for result in results:
                    if not self._emit(result, outputs, stop):
                        return
        finally:
            self._mark_stopped(stop)

    def process_flow_file(self, item: Any) -> Any:
        """Apply the callback to a FlowRecord; anything else passes through."""
        func = self._current_func()
        if func is not None and isinstance(item, FlowRecord):
            return func(item)
        return item


class CallbackTransformProcessor(CallbackProcessor):
    """A transform processor whose transform step is a user callback."""

    def __init__(
        self, processor_id: str, name: str, transform_func: Optional[TransformFunc] = None
    ) -> None:
        super().__init__(processor_id, name)
        self.transform_func = transform_func

    def transform(self, message: Message) -> list[Message]:
        if self.transform_func is not None:
            return self.transform_func(message)
        return self.process(message)


class CallbackSinkProcessor(CallbackProcessor):
    """A sink processor whose write step is a user callback."""

    stream_type = StreamType.SINK

    def __init__(
        self, processor_id: str, name: str, sink_func: Optional[SinkFunc] = None
    ) -> None:
        super().__init__(processor_id, name)
        self.sink_func = sink_func

    def write(self, message: Message) -> None:
        if self.sink_func is not None:
            self.sink_func(message)
            return
        super().write(message)

    def process(self, message: Message) -> list[Message]:
        self.write(message)
        return []