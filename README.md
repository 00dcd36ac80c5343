# edgestream

edgestream gives you the parts for small stream-processing pipelines that run inside one Python process. The pipelines are made of:

- **sources**, which produce messages;
- **transforms**, which change them;
- **sinks**, which consume them.

Bounded, closable channels connect the processors. Each processor you start works in its own daemon thread.

## Installation

```
pip install .
```

To include the test dependencies:

```
pip install .[test]
```

## Modules

`edgestream.model` holds the core data types.

- `Message`, `Window`, `AggregationResult` and `StreamMetrics`. `StreamMetrics` is a set of thread-safe counters with `update()` and `snapshot()`.
- The enumerations `StreamType`, `StreamStatus`, `WindowType`, `AggregationType` and `StreamEventType`.
- `Channel`, a bounded thread-safe queue. It has `send()`, `receive()` and `close()`, and you can iterate over it.
- `Stream`, a named, ordered chain of processors. `Stream.process(item)` passes an item through every processor that has `process_flow_file`. It returns `None` if any of them raises.
- `StreamError`, which failed operations raise.
- Plain record types: `WindowConfig`, `StreamTopology`, `StreamConnection`, `TopologyMetrics`, `EngineMetrics` and `StreamEvent`.

`edgestream.window` holds `StandardWindowProcessor`.

- It assigns messages to tumbling, sliding or session windows, as its `WindowConfig` sets.
- It closes expired windows with `close_expired_windows(now)`. The defaults are a 5 second watermark and a 30 minute session gap.
- It aggregates a window with `aggregate()`. The aggregations are sum, count, avg, min and max, taken over a numeric field.

`edgestream.processors` holds the ready-made processors.

- `FileSourceProcessor` emits each non-blank line of a file as a message.
- `JSONTransformProcessor` parses message data as a JSON object, or wraps it in one. It then stamps the object with `processed_at` and `processor_id`.
- `ConsoleSinkProcessor` prints each message as one line, to stdout or to a text stream that you give it.
- `AggregationProcessor` windows incoming messages and emits one aggregate for each window that has expired.
- `create_sample_stream_data_file(path)` writes a small sample file to an absolute path.

`edgestream.callback` holds processors driven by your own functions.

- `CallbackProcessor` runs a function on a `FlowRecord` and tags each message with its own name.
- `CallbackTransformProcessor` takes the transform step as a function.
- `CallbackSinkProcessor` takes the write step as a function.
- `FlowRecord` is a small record with content and string attributes.

`edgestream.windowmanager` holds simple windows and a manager for them.

- `TimeWindow` becomes ready once its duration has passed.
- `CountWindow` keeps the latest *n* items and becomes ready once it holds *n* of them.
- `SimpleWindowManager` keeps windows by id and feeds data into them.

Durations in the window manager are given in seconds as floats. `StandardWindowProcessor` uses `datetime.timedelta`.

## Example: a file → JSON → console pipeline

```python
import time
from edgestream.model import Channel
from edgestream.processors import (
    ConsoleSinkProcessor, FileSourceProcessor, JSONTransformProcessor,
)

source = FileSourceProcessor("src", "Source", "/tmp/data.txt")
to_json = JSONTransformProcessor("json", "JSON")
console = ConsoleSinkProcessor("out", "Console")

first, second = Channel(100), Channel(100)
source.set_output(first)
to_json.set_input(first)
to_json.set_output(second)
console.set_input(second)

for processor in (console, to_json, source):
    processor.start()
time.sleep(1)
for processor in (source, to_json, console):
    processor.stop()

print(console.metrics.messages_in)
```

Calling `start()` on a processor that is already running raises `StreamError`. So does starting one without the channels it needs, and calling `stop()` on one that is not running. The callback processors are the exception: for them, repeated `start()` and `stop()` calls are harmless.

## Example: windows and aggregation

```python
from datetime import datetime, timedelta, timezone
from edgestream.model import AggregationType, Message, WindowConfig, WindowType
from edgestream.window import StandardWindowProcessor

windows = StandardWindowProcessor(
    WindowConfig(type=WindowType.TUMBLING, size=timedelta(seconds=10))
)
base = datetime(2024, 1, 1, tzinfo=timezone.utc)
for i, score in enumerate([1.0, 2.0, 3.0]):
    windows.add_message(Message(id=str(i), timestamp=base + timedelta(seconds=i),
                                data={"score": score}))

for window in windows.close_expired_windows(base + timedelta(minutes=1)):
    print(windows.aggregate(window, AggregationType.AVG, "score").value)  # 2.0
```

## Example: the window manager

```python
from edgestream.windowmanager import SimpleWindowManager

manager = SimpleWindowManager()
manager.create_window("last-five", 3600.0, 5)
for i in range(10):
    manager.add_to_window("last-five", i)
print(manager.window_data("last-five"))  # [5, 6, 7, 8, 9]
```

## What the package does not do

- There is no engine that keeps topologies by id, connects their processors, starts and stops them together, gathers their metrics, or publishes events. You wire the processors with `Channel` objects yourself, as in the first example.
- Nothing in the package fills `StreamTopology`, `StreamConnection`, `TopologyMetrics`, `EngineMetrics` or `StreamEvent`. They are plain data types that you can use for your own bookkeeping.
- There is no command-line program.

## Running the tests

```
pytest
```