"""Tests for operation timing."""

import pytest

from py_terragen.utils.instrumentation import (
    NullInstrumentation,
    OperationTimer,
    measure,
)


class FakeClock:
    """Clock advanced by hand, in seconds."""

    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


class TestOperationTimer:
    """Test begin/end bookkeeping and reports."""

    def test_records_duration(self, clock):
        timer = OperationTimer(clock=clock)
        timer.begin_op("trace", "contours")
        clock.advance(0.05)
        assert timer.end_op("trace", "contours") == pytest.approx(0.05)

        record = timer.history[0]
        assert (record.name, record.category) == ("trace", "contours")

    def test_nested_operations(self, clock):
        timer = OperationTimer(clock=clock)
        timer.begin_op("blend")
        clock.advance(1.0)
        timer.begin_op("blend")
        clock.advance(0.5)
        assert timer.end_op("blend") == pytest.approx(0.5)
        assert timer.end_op("blend") == pytest.approx(1.5)

    def test_end_without_begin(self, clock):
        timer = OperationTimer(clock=clock)
        assert timer.end_op("missing") == 0.0
        assert timer.history == []

    def test_categories_are_separate(self, clock):
        timer = OperationTimer(clock=clock)
        timer.begin_op("build", "mesh")
        assert timer.end_op("build", "compositing") == 0.0
        assert timer.end_op("build", "mesh") == 0.0
        assert len(timer.history) == 1

    def test_slow_operations_are_reported(self, clock):
        reported = []
        timer = OperationTimer(threshold_ms=100, issue_callback=reported.append, clock=clock)

        timer.begin_op("fast")
        clock.advance(0.05)
        timer.end_op("fast")
        timer.begin_op("slow")
        clock.advance(0.2)
        timer.end_op("slow")

        assert [r.name for r in reported] == ["slow"]

    def test_default_threshold_from_settings(self):
        assert OperationTimer().threshold_ms == 250.0

    def test_averages_and_top_operations(self, clock):
        timer = OperationTimer(clock=clock)
        for name, seconds in [("a", 1.0), ("a", 3.0), ("b", 0.5), ("c", 4.0)]:
            timer.begin_op(name)
            clock.advance(seconds)
            timer.end_op(name)

        assert timer.average_duration("a") == pytest.approx(2.0)
        assert timer.average_duration("a", category="other") == 0.0
        assert timer.average_duration("unknown") == 0.0
        assert [name for name, _ in timer.top_operations(2)] == ["c", "a"]
        assert timer.top_operations(0) == []

    def test_report(self, clock):
        timer = OperationTimer(clock=clock)
        timer.begin_op("weld", "mesh")
        clock.advance(0.002)
        timer.end_op("weld", "mesh")

        lines = timer.report().splitlines()
        assert lines[0] == "Operation timings"
        assert lines[1] == "[mesh]"
        assert lines[2] == "  weld: 1 runs, avg 2.00 ms"

    def test_clear(self, clock):
        timer = OperationTimer(clock=clock)
        timer.begin_op("x")
        timer.end_op("x")
        timer.begin_op("y")
        timer.clear()
        assert timer.history == []
        assert timer.end_op("y") == 0.0


class TestMeasure:
    """Test the context manager."""

    def test_measure_records_block(self, clock):
        timer = OperationTimer(clock=clock)
        with measure(timer, "resize", "masks"):
            clock.advance(0.01)
        assert timer.history[0].duration == pytest.approx(0.01)

    def test_measure_closes_on_error(self, clock):
        timer = OperationTimer(clock=clock)
        with pytest.raises(RuntimeError):
            with measure(timer, "resize"):
                raise RuntimeError("boom")
        assert len(timer.history) == 1

    def test_measure_without_sink(self):
        with measure(None, "noop"):
            pass

    def test_null_instrumentation(self):
        sink = NullInstrumentation()
        with measure(sink, "noop"):
            pass
        assert sink.end_op("noop") == 0.0
