import logging

import pytest

from nodescope.collector import (
    Collector,
    CollectorRegistry,
    NodeCollector,
    NoDataError,
    Settings,
    TypedDesc,
    default_registry,
    execute,
    read_uint_from_file,
    register_collector,
    scrape_duration_desc,
    scrape_success_desc,
)
from nodescope.metrics import Desc, ValueType

LOGGER = logging.getLogger("test")
SAMPLE = Desc("node_sample", "A sample.", ("device",))


class StaticCollector(Collector):
    def __init__(self, settings=None, logger=None, values=(), error=None):
        super().__init__(settings, logger)
        self.values = list(values)
        self.error = error

    def update(self):
        for device, value in self.values:
            yield TypedDesc(SAMPLE, ValueType.GAUGE).metric(value, device)
        if self.error is not None:
            raise self.error


def counting_factory(calls):
    def factory(settings, logger):
        calls.append(settings)
        return StaticCollector(settings, logger, values=[("eth0", 1)])

    return factory


def success_of(metrics, name):
    return [
        m.value for m in metrics
        if m.desc is scrape_success_desc and m.labels == {"collector": name}
    ]


def test_settings_paths():
    settings = Settings(proc_path="/p", sys_path="/s")
    assert settings.proc_file("net/arp") == "/p/net/arp"
    assert settings.sys_file("class", "net") == "/s/class/net"


def test_typed_desc_metric():
    metric = TypedDesc(SAMPLE, ValueType.COUNTER).metric(5, "sda")
    assert metric.value_type is ValueType.COUNTER
    assert metric.labels == {"device": "sda"}
    assert metric.value == 5.0


def test_execute_success():
    metrics = execute("demo", StaticCollector(values=[("a", 2)]), LOGGER)
    assert metrics[0].value == 2.0
    assert success_of(metrics, "demo") == [1.0]
    durations = [m.value for m in metrics if m.desc is scrape_duration_desc]
    assert len(durations) == 1 and durations[0] >= 0


def test_execute_no_data():
    metrics = execute("demo", StaticCollector(error=NoDataError()), LOGGER)
    assert success_of(metrics, "demo") == [0.0]
    assert len(metrics) == 2


def test_execute_failure_keeps_partial_metrics():
    collector = StaticCollector(values=[("a", 3)], error=OSError("boom"))
    metrics = execute("demo", collector, LOGGER)
    assert metrics[0].value == 3.0
    assert success_of(metrics, "demo") == [0.0]


def test_registry_default_state_and_overrides():
    registry = CollectorRegistry()
    registry.register("arp", True, counting_factory([]))
    registry.register("drbd", False, counting_factory([]))
    assert registry.enabled() == ["arp"]
    registry.set_enabled("drbd", True)
    assert registry.enabled() == ["arp", "drbd"]
    registry.disable_defaults()
    assert registry.enabled() == ["drbd"]


def test_registry_duplicate_and_unknown():
    registry = CollectorRegistry()
    registry.register("arp", True, counting_factory([]))
    with pytest.raises(ValueError):
        registry.register("arp", True, counting_factory([]))
    with pytest.raises(ValueError):
        registry.set_enabled("nope", True)


def test_create_node_collector_filters():
    registry = CollectorRegistry()
    registry.register("arp", True, counting_factory([]))
    registry.register("edac", True, counting_factory([]))
    registry.register("drbd", False, counting_factory([]))
    node = registry.create_node_collector(Settings(), "edac")
    assert sorted(node.collectors) == ["edac"]
    with pytest.raises(ValueError, match="missing collector: nope"):
        registry.create_node_collector(Settings(), "nope")
    with pytest.raises(ValueError, match="disabled collector: drbd"):
        registry.create_node_collector(Settings(), "drbd")


def test_create_node_collector_reuses_instances():
    calls = []
    registry = CollectorRegistry()
    registry.register("arp", True, counting_factory(calls))
    first = registry.create_node_collector(Settings())
    second = registry.create_node_collector(Settings())
    assert first.collectors["arp"] is second.collectors["arp"]
    assert len(calls) == 1


def test_factory_error_propagates():
    def broken(settings, logger):
        raise OSError("cannot open")

    registry = CollectorRegistry()
    registry.register("bad", True, broken)
    with pytest.raises(OSError):
        registry.create_node_collector(Settings())


def test_node_collector_collect_and_describe():
    node = NodeCollector(
        {
            "good": StaticCollector(values=[("x", 1)]),
            "bad": StaticCollector(error=RuntimeError("fail")),
        }
    )
    metrics = node.collect()
    assert success_of(metrics, "good") == [1.0]
    assert success_of(metrics, "bad") == [0.0]
    assert node.describe() == [scrape_duration_desc, scrape_success_desc]
    assert NodeCollector({}).collect() == []


def test_register_collector_uses_default_registry():
    register_collector("test_only_collector", False, counting_factory([]))
    assert "test_only_collector" not in default_registry.enabled()
    default_registry.set_enabled("test_only_collector", True)
    assert "test_only_collector" in default_registry.enabled()


def test_read_uint_from_file(tmp_path):
    path = tmp_path / "count"
    path.write_text("42\n")
    assert read_uint_from_file(str(path)) == 42


@pytest.mark.parametrize("content", ["abc", "-1", "", str(2**64)])
def test_read_uint_from_file_invalid(tmp_path, content):
    path = tmp_path / "count"
    path.write_text(content)
    with pytest.raises(ValueError):
        read_uint_from_file(str(path))


def test_read_uint_from_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_uint_from_file(str(tmp_path / "missing"))