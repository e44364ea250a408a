"""Collector registry, the node collector and shared collector helpers."""

from __future__ import annotations

import abc
import logging
import os
import re
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Iterable

from .metrics import Desc, Metric, ValueType, build_fq_name, new_const_metric

NAMESPACE = "node"

_LOG = logging.getLogger("nodescope")

scrape_duration_desc = Desc(
    build_fq_name(NAMESPACE, "scrape", "collector_duration_seconds"),
    "node_exporter: Duration of a collector scrape.",
    ("collector",),
)
scrape_success_desc = Desc(
    build_fq_name(NAMESPACE, "scrape", "collector_success"),
    "node_exporter: Whether a collector succeeded.",
    ("collector",),
)

_UINT64_MAX = 2**64 - 1
_UINT_RE = re.compile(r"[0-9]+")


class NoDataError(Exception):
    """The collector found no data to collect, but had no other error."""

    def __init__(self, message: str = "collector returned no data") -> None:
        super().__init__(message)


@dataclass
class Settings:
    """Paths and options shared by all collectors."""

    proc_path: str = "/proc"
    sys_path: str = "/sys"
    bcache_priority_stats: bool = False
    cpu_guest: bool = True
    cpu_info: bool = False
    cpu_flags_include: str = ""
    cpu_bugs_include: str = ""
    diskstats_ignored_devices: str = r"^(ram|loop|fd|(h|s|v|xv)d[a-z]|nvme\d+n\d+p)\d+$"

    def proc_file(self, *args: str) -> str:
        """Path of a file below the proc mount point."""
        return os.path.join(self.proc_path, *args)

    def sys_file(self, *args: str) -> str:
        """Path of a file below the sys mount point."""
        return os.path.join(self.sys_path, *args)


@dataclass(frozen=True)
class TypedDesc:
    """A descriptor paired with the value type of its metrics."""

    desc: Desc
    value_type: ValueType

    def metric(self, value: float, *args: str) -> Metric:
        return new_const_metric(self.desc, self.value_type, value, *args)


class Collector(abc.ABC):
    """Base of all collectors: update() yields fresh metrics."""

    def __init__(self, settings: Settings | None = None, logger: logging.Logger | None = None):
        self.settings = settings if settings is not None else Settings()
        self.logger = logger if logger is not None else _LOG

    @abc.abstractmethod
    def update(self) -> Iterable[Metric]:
        """Produce metrics; raise NoDataError when there is nothing to report."""


Factory = Callable[[Settings, logging.Logger], Collector]


@dataclass
class _Entry:
    factory: Factory
    default_enabled: bool
    enabled: bool
    forced: bool = False


class CollectorRegistry:
    """Known collectors, their enabled state and the instances created so far."""

    def __init__(self) -> None:
        self._entries: dict[str, _Entry] = {}
        self._initiated: dict[str, Collector] = {}
        self._lock = threading.Lock()

    def register(self, name: str, default_enabled: bool, factory: Factory) -> None:
        if name in self._entries:
            raise ValueError(f"collector already registered: {name}")
        self._entries[name] = _Entry(factory, default_enabled, default_enabled)

    def _entry(self, name: str) -> _Entry:
        try:
            return self._entries[name]
        except KeyError:
            raise ValueError(f"missing collector: {name}") from None

    def set_enabled(self, name: str, enabled: bool) -> None:
        """Explicitly enable or disable a collector, as a command-line flag does."""
        entry = self._entry(name)
        entry.enabled = enabled
        entry.forced = True

    def disable_defaults(self) -> None:
        """Disable every collector that was not explicitly enabled or disabled."""
        for entry in self._entries.values():
            if not entry.forced:
                entry.enabled = False

    def enabled(self) -> list[str]:
        return sorted(name for name, entry in self._entries.items() if entry.enabled)

    def create_node_collector(self, settings: Settings, *args: str) -> NodeCollector:
        """Build a NodeCollector of the enabled collectors, limited to the names in args."""
        wanted = set()
        for name in args:
            if not self._entry(name).enabled:
                raise ValueError(f"disabled collector: {name}")
            wanted.add(name)

        collectors: dict[str, Collector] = {}
        with self._lock:
            for name, entry in self._entries.items():
                if not entry.enabled or (wanted and name not in wanted):
                    continue
                collector = self._initiated.get(name)
                if collector is None:
                    collector = entry.factory(settings, _LOG.getChild(name))
                    self._initiated[name] = collector
                collectors[name] = collector
        return NodeCollector(collectors, _LOG)


default_registry = CollectorRegistry()


def register_collector(name: str, default_enabled: bool, factory: Factory) -> None:
    """Register a collector with the default registry."""
    default_registry.register(name, default_enabled, factory)


class NodeCollector:
    """Runs a set of collectors concurrently and reports on each run."""

    def __init__(self, collectors: dict[str, Collector], logger: logging.Logger | None = None):
        self.collectors = dict(collectors)
        self.logger = logger if logger is not None else _LOG

    def describe(self) -> list[Desc]:
        return [scrape_duration_desc, scrape_success_desc]

    def collect(self) -> list[Metric]:
        items = sorted(self.collectors.items())
        if not items:
            return []
        with ThreadPoolExecutor(max_workers=len(items)) as pool:
            results = pool.map(lambda item: execute(item[0], item[1], self.logger), items)
            return [metric for batch in results for metric in batch]


def execute(name: str, collector: Collector, logger: logging.Logger) -> list[Metric]:
    """Run one collector; return its metrics followed by duration and success."""
    metrics: list[Metric] = []
    begin = time.perf_counter()
    try:
        for metric in collector.update():
            metrics.append(metric)
    except NoDataError as err:
        duration = time.perf_counter() - begin
        logger.debug("collector returned no data name=%s duration_seconds=%f err=%s",
                     name, duration, err)
        success = 0.0
    except Exception as err:  # a failing collector must not break the scrape
        duration = time.perf_counter() - begin
        logger.error("collector failed name=%s duration_seconds=%f err=%s", name, duration, err)
        success = 0.0
    else:
        duration = time.perf_counter() - begin
        logger.debug("collector succeeded name=%s duration_seconds=%f", name, duration)
        success = 1.0
    metrics.append(new_const_metric(scrape_duration_desc, ValueType.GAUGE, duration, name))
    metrics.append(new_const_metric(scrape_success_desc, ValueType.GAUGE, success, name))
    return metrics


def read_uint_from_file(path: str) -> int:
    """Read an unsigned 64-bit decimal integer from a file."""
    with open(path, encoding="utf-8") as handle:
        text = handle.read().strip()
    if not _UINT_RE.fullmatch(text):
        raise ValueError(f"invalid unsigned integer {text!r} in {path}")
    value = int(text)
    if value > _UINT64_MAX:
        raise ValueError(f"value {text} in {path} out of range")
    return value