import pytest

from gpumetrics.registry import Registry
from gpumetrics.types import Collector, Counter, Metric

COUNTER_A = Counter(field_id=155, field_name="DCGM_FI_DEV_POWER_USAGE", prom_type="gauge")
COUNTER_B = Counter(field_name="DCGM_FI_EXP_CLOCK_THROTTLE_REASONS_COUNT", prom_type="gauge")


class StubCollector(Collector):
    def __init__(self, metrics=None, error=None):
        self.metrics = metrics if metrics is not None else {}
        self.error = error
        self.cleaned = 0

    def get_metrics(self):
        if self.error is not None:
            raise self.error
        return self.metrics

    def cleanup(self):
        self.cleaned += 1


def sample_metrics():
    return {
        COUNTER_A: [Metric(gpu="0", counter=COUNTER_A)],
        COUNTER_B: [Metric(gpu="0", counter=COUNTER_B, value="42")],
    }


def test_gather_without_errors():
    registry = Registry()
    registry.register(StubCollector(sample_metrics()))
    got = registry.gather()
    assert len(got) == 2
    assert got[COUNTER_B][0].value == "42"


def test_gather_with_error():
    registry = Registry()
    registry.register(StubCollector(error=RuntimeError("Boom!")))
    with pytest.raises(RuntimeError, match="Boom!"):
        registry.gather()


def test_gather_error_from_one_of_many():
    registry = Registry()
    registry.register(StubCollector(sample_metrics()))
    registry.register(StubCollector(error=ValueError("bad")))
    with pytest.raises(ValueError, match="bad"):
        registry.gather()


def test_gather_merges_same_counter():
    registry = Registry()
    registry.register(StubCollector({COUNTER_A: [Metric(gpu="0", counter=COUNTER_A)]}))
    registry.register(StubCollector({COUNTER_A: [Metric(gpu="1", counter=COUNTER_A)]}))
    got = registry.gather()
    assert list(got) == [COUNTER_A]
    assert sorted(m.gpu for m in got[COUNTER_A]) == ["0", "1"]


def test_gather_empty_registry():
    assert Registry().gather() == {}


def test_cleanup_calls_every_collector():
    first, second = StubCollector(), StubCollector()
    registry = Registry()
    registry.register(first)
    registry.register(second)
    registry.cleanup()
    assert (first.cleaned, second.cleaned) == (1, 1)