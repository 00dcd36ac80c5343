import threading

import pytest

from edgestream.callback import (
    CallbackProcessor,
    CallbackSinkProcessor,
    CallbackTransformProcessor,
    FlowRecord,
)
from edgestream.model import (
    Channel,
    Message,
    Stream,
    StreamError,
    StreamStatus,
    StreamType,
)


def _receive(channel, timeout=2.0):
    stop = threading.Event()
    timer = threading.Timer(timeout, stop.set)
    timer.start()
    try:
        return channel.receive(stop)
    finally:
        timer.cancel()


def test_flow_record_attributes():
    record = FlowRecord()
    assert record.get_attribute("missing") is None
    record.set_attribute("key", "value")
    assert record.get_attribute("key") == "value"


def test_transform_processor_uppercases():
    def upper(msg):
        if isinstance(msg.data, str):
            return [
                Message(
                    id=msg.id + "_transformed",
                    data=msg.data.upper(),
                    headers=msg.headers,
                    partition=msg.partition,
                    offset=msg.offset,
                )
            ]
        return [msg]

    processor = CallbackTransformProcessor("transform", "Test Transform", upper)
    assert processor.id == "transform"
    assert processor.name == "Test Transform"
    assert processor.type == StreamType.TRANSFORM

    message = Message(id="test-msg", data="hello world", partition="default", offset=1)
    result = processor.transform(message)
    assert len(result) == 1
    assert result[0].data == "HELLO WORLD"

    result2 = processor.process(message)
    assert len(result2) == 1

    processor.start()
    assert processor.status == StreamStatus.RUNNING
    processor.stop()
    assert processor.status == StreamStatus.STOPPED


def test_sink_processor_collects_messages():
    received = []
    processor = CallbackSinkProcessor("sink", "Test Sink", received.append)
    assert processor.id == "sink"
    assert processor.name == "Test Sink"
    assert processor.type == StreamType.SINK

    message = Message(id="test-sink-msg", data="test data", partition="default", offset=1)
    processor.write(message)
    assert len(received) == 1
    assert received[0].id == "test-sink-msg"

    assert processor.process(message) == []

    processor.start()
    assert processor.status == StreamStatus.RUNNING
    processor.stop()
    assert processor.status == StreamStatus.STOPPED


def test_sink_without_callback_counts_bytes():
    processor = CallbackSinkProcessor("sink", "Sink")
    processor.write(Message(id="a", data="abcd"))
    processor.write(Message(id="b", data=b"xy"))
    processor.write(Message(id="c", data={"k": 1}))
    processor.write(Message(id="d", data=None))
    metrics = processor.metrics
    assert metrics.messages_in == 4
    assert metrics.bytes_in == 4 + 2 + 100


def test_state_transitions_are_idempotent():
    processor = CallbackProcessor("state-processor", "State Processor")
    assert processor.status == StreamStatus.STOPPED
    processor.start()
    assert processor.status == StreamStatus.RUNNING
    processor.start()
    assert processor.status == StreamStatus.RUNNING
    processor.stop()
    assert processor.status == StreamStatus.STOPPED
    processor.stop()
    assert processor.status == StreamStatus.STOPPED


def test_process_tags_message_and_updates_metrics():
    processor = CallbackProcessor("p1", "Proc")
    message = Message(id="m1", data="payload", partition="part", offset=7)
    [out] = processor.process(message)
    assert out.id == "p1_processed_m1"
    assert out.data == "[Proc] payload"
    assert out.headers == {
        "processor_id": "p1",
        "processor_name": "Proc",
        "original_id": "m1",
    }
    assert out.partition == "part"
    assert out.offset == 7
    metrics = processor.metrics
    assert metrics.messages_in == 1
    assert metrics.messages_out == 1
    assert metrics.bytes_in == len("payload")
    assert metrics.bytes_out == len("[Proc] payload")


def test_process_calls_func_five_times():
    calls = []
    processor = CallbackProcessor("test-processor-1", "Test Processor 1")
    processor.set_process_func(lambda record: calls.append(record) or record)
    for i in range(5):
        processor.process(Message(id=f"msg-{i}", data=f"test content {i}"))
    assert len(calls) == 5
    assert calls[0].content == b"test content 0"
    assert calls[0].size == len(b"test content 0")
    assert calls[0].get_attribute("message_id") == "msg-0"


def test_process_raises_when_func_fails():
    processor = CallbackProcessor("err", "Err")

    def fail(record):
        raise StreamError("processing error")

    processor.set_process_func(fail)
    with pytest.raises(StreamError):
        processor.process(Message(id="x", data="y"))


def test_concurrent_processing_counts_all():
    lock = threading.Lock()
    count = [0]

    def func(record):
        with lock:
            count[0] += 1
        return record

    processor = CallbackProcessor("test-processor-2", "Test Processor 2")
    processor.set_process_func(func)

    def worker(worker_id):
        for j in range(50):
            processor.process(Message(id=f"msg-{worker_id}-{j}", data="c"))

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert count[0] == 500
    assert processor.metrics.messages_in == 500


def test_stream_error_recovery():
    attempts = [0]

    def func(record):
        attempts[0] += 1
        if attempts[0] <= 3:
            raise StreamError("temporary error")
        return record

    processor = CallbackProcessor("error-recovery-processor", "Error Recovery Processor")
    processor.set_process_func(func)
    stream = Stream("error-recovery")
    stream.add_processor(processor)
    results = []
    for i in range(5):
        record = FlowRecord()
        record.set_attribute("attempt", str(i))
        results.append(stream.process(record))
    assert results[:3] == [None, None, None]
    assert all(r is not None for r in results[3:])


def test_stream_empty_processors_returns_input():
    stream = Stream("empty-processors")
    record = FlowRecord()
    assert stream.process(record) is record


def test_stream_error_processor_returns_none():
    processor = CallbackProcessor("error-processor", "Error Processor")

    def fail(record):
        raise StreamError("processing error")

    processor.set_process_func(fail)
    stream = Stream("error-stream")
    stream.add_processor(processor)
    assert stream.process(FlowRecord()) is None


def test_stream_large_data_processing():
    processor = CallbackProcessor("large-data-processor", "Large Data Processor")

    def big(record):
        record.content = bytes(1024 * 1024)
        return record

    processor.set_process_func(big)
    stream = Stream("large-data")
    stream.add_processor(processor)
    for _ in range(10):
        record = FlowRecord()
        record.set_attribute("size", "large")
        result = stream.process(record)
        assert result is not None
        assert len(result.content) == 1024 * 1024


def test_stream_keeps_every_item():
    kept = []
    processor = CallbackProcessor("memory-processor", "Memory Processor")
    processor.set_process_func(lambda record: kept.append(record) or record)
    stream = Stream("memory-test")
    stream.add_processor(processor)
    for i in range(1000):
        record = FlowRecord()
        record.set_attribute("index", str(i))
        stream.process(record)
    assert len(kept) == 1000


def test_stream_sets_processed_attribute():
    count = [0]

    def func(record):
        count[0] += 1
        record.set_attribute("processed", "true")
        return record

    processor = CallbackProcessor("timeout-processor", "Timeout Processor")
    processor.set_process_func(func)
    stream = Stream("timeout-test")
    stream.add_processor(processor)
    result = stream.process(FlowRecord())
    assert isinstance(result, FlowRecord)
    assert result.get_attribute("processed") == "true"
    assert count[0] == 1


def test_process_flow_file_passes_other_items_through():
    processor = CallbackProcessor("p", "P")
    processor.set_process_func(lambda record: FlowRecord(content=b"new"))
    assert processor.process_flow_file("plain") == "plain"
    assert processor.process_flow_file(FlowRecord()).content == b"new"


def test_call_process_func_chain():
    steps = []

    def transform(record):
        steps.append("transformed")
        record.set_attribute("transformed", "true")
        return record

    def validate(record):
        steps.append("validated")
        if record.get_attribute("transformed") != "true":
            raise StreamError("data not transformed")
        record.set_attribute("validated", "true")
        return record

    def output(record):
        steps.append("output")
        if record.get_attribute("validated") != "true":
            raise StreamError("data not validated")
        record.set_attribute("completed", "true")
        return record

    processors = []
    for name, func in (("transform", transform), ("validate", validate), ("output", output)):
        p = CallbackProcessor(f"{name}-processor", name)
        p.set_process_func(func)
        processors.append(p)

    for i in range(10):
        record = FlowRecord()
        record.set_attribute("message_id", f"integration-msg-{i}")
        for p in processors:
            record = p.call_process_func(record)
        assert record.get_attribute("completed") == "true"
    assert len(steps) == 30


def test_call_process_func_without_func_returns_record():
    processor = CallbackProcessor("p", "P")
    record = FlowRecord()
    assert processor.call_process_func(record) is record


def test_validate_rejects_untransformed():
    processor = CallbackProcessor("validate", "Validate")

    def validate(record):
        if record.get_attribute("transformed") != "true":
            raise StreamError("data not transformed")
        return record

    processor.set_process_func(validate)
    with pytest.raises(StreamError):
        processor.call_process_func(FlowRecord())


def test_metrics_snapshot_and_ref():
    processor = CallbackProcessor("metrics-processor", "Metrics Processor")
    snapshot = processor.metrics
    snapshot.update(10, 8, 1024, 512, 0.001, 0)
    assert snapshot.messages_in == 10
    assert processor.metrics.messages_in == 0
    processor.metrics_ref.update(3, 0, 0, 0, 0.0, 0)
    assert processor.metrics.messages_in == 3


def test_description_and_type():
    processor = CallbackProcessor("resource-processor", "Resource Processor")
    assert processor.type == StreamType.TRANSFORM
    assert processor.description == "Test processor: Resource Processor"


def test_worker_forwards_results():
    processor = CallbackProcessor("worker", "Worker")
    inbox = Channel(10)
    outbox = Channel(10)
    processor.set_input(inbox)
    processor.set_output(outbox)
    processor.start()
    try:
        inbox.send(Message(id="m", data="hi"))
        result = _receive(outbox)
        assert result is not None
        assert result.id == "worker_processed_m"
        assert result.data == "[Worker] hi"
    finally:
        processor.stop()
    assert processor.status == StreamStatus.STOPPED