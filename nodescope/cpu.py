"""CPU time, CPU information and thermal throttle statistics."""

from __future__ import annotations

import glob
import logging
import os
import re
import threading
from dataclasses import dataclass, field, fields, replace
from typing import Iterable, Iterator, Pattern

from .collector import (
    NAMESPACE,
    Collector,
    Settings,
    register_collector,
    read_uint_from_file,
)
from .metrics import Desc, Metric, ValueType, build_fq_name, new_const_metric

CPU_SUBSYSTEM = "cpu"

# Idle jump back limit in seconds.
JUMP_BACK_SECONDS = 3.0
_JUMP_BACK_MESSAGE = (
    f"CPU Idle counter jumped backwards more than {JUMP_BACK_SECONDS:f} seconds, "
    "possible hotplug event, resetting CPU stats"
)

# Kernel clock ticks per second used in /proc/stat.
_USER_HZ = 100.0

node_cpu_seconds_desc = Desc(
    build_fq_name(NAMESPACE, CPU_SUBSYSTEM, "seconds_total"),
    "Seconds the CPUs spent in each mode.",
    ("cpu", "mode"),
)

_CPU_INFO = Desc(
    build_fq_name(NAMESPACE, CPU_SUBSYSTEM, "info"),
    "CPU information from /proc/cpuinfo.",
    (
        "package",
        "core",
        "cpu",
        "vendor",
        "family",
        "model",
        "model_name",
        "microcode",
        "stepping",
        "cachesize",
    ),
)
_CPU_FLAGS_INFO = Desc(
    build_fq_name(NAMESPACE, CPU_SUBSYSTEM, "flag_info"),
    "The `flags` field of CPU information from /proc/cpuinfo taken from the first core.",
    ("flag",),
)
_CPU_BUGS_INFO = Desc(
    build_fq_name(NAMESPACE, CPU_SUBSYSTEM, "bug_info"),
    "The `bugs` field of CPU information from /proc/cpuinfo taken from the first core.",
    ("bug",),
)
_CPU_GUEST = Desc(
    build_fq_name(NAMESPACE, CPU_SUBSYSTEM, "guest_seconds_total"),
    "Seconds the CPUs spent in guests (VMs) for each mode.",
    ("cpu", "mode"),
)
_CPU_CORE_THROTTLE = Desc(
    build_fq_name(NAMESPACE, CPU_SUBSYSTEM, "core_throttles_total"),
    "Number of times this CPU core has been throttled.",
    ("package", "core"),
)
_CPU_PACKAGE_THROTTLE = Desc(
    build_fq_name(NAMESPACE, CPU_SUBSYSTEM, "package_throttles_total"),
    "Number of times this CPU package has been throttled.",
    ("package",),
)


@dataclass
class CPUStat:
    """Seconds one CPU spent in each mode."""

    user: float = 0.0
    nice: float = 0.0
    system: float = 0.0
    idle: float = 0.0
    iowait: float = 0.0
    irq: float = 0.0
    softirq: float = 0.0
    steal: float = 0.0
    guest: float = 0.0
    guest_nice: float = 0.0


_STAT_FIELDS = tuple(f.name for f in fields(CPUStat))

# (attribute, mode label) exported for node_cpu_seconds_total, in export order.
_SECONDS_MODES = (
    ("user", "user"),
    ("nice", "nice"),
    ("system", "system"),
    ("idle", "idle"),
    ("iowait", "iowait"),
    ("irq", "irq"),
    ("softirq", "softirq"),
    ("steal", "steal"),
)


@dataclass
class CPUInfo:
    """One processor entry of /proc/cpuinfo."""

    processor: int = 0
    vendor_id: str = ""
    cpu_family: str = ""
    model: str = ""
    model_name: str = ""
    stepping: str = ""
    microcode: str = ""
    cpu_mhz: float = 0.0
    cache_size: str = ""
    physical_id: str = ""
    siblings: int = 0
    core_id: str = ""
    cpu_cores: int = 0
    flags: list[str] = field(default_factory=list)
    bugs: list[str] = field(default_factory=list)


_CPUINFO_STRINGS = {
    "vendor_id": "vendor_id",
    "cpu family": "cpu_family",
    "model": "model",
    "model name": "model_name",
    "stepping": "stepping",
    "microcode": "microcode",
    "cache size": "cache_size",
    "physical id": "physical_id",
    "core id": "core_id",
}
_CPUINFO_INTS = {"siblings": "siblings", "cpu cores": "cpu_cores"}


def parse_proc_stat(text: str) -> list[CPUStat]:
    """Parse the per-CPU lines of /proc/stat, indexed by CPU number, in seconds."""
    stats: list[CPUStat] = []
    for line in text.splitlines():
        parts = line.split()
        if not parts or not parts[0].startswith("cpu") or parts[0] == "cpu":
            continue
        try:
            cpu_id = int(parts[0][3:])
        except ValueError:
            raise ValueError(f"couldn't parse cpu id from {parts[0]!r}") from None
        values: list[float] = []
        for raw in parts[1 : 1 + len(_STAT_FIELDS)]:
            try:
                values.append(float(raw) / _USER_HZ)
            except ValueError:
                break
        if not values:
            raise ValueError(f"couldn't parse {line!r} (cpu)")
        while len(stats) <= cpu_id:
            stats.append(CPUStat())
        stats[cpu_id] = CPUStat(**dict(zip(_STAT_FIELDS, values)))
    return stats


def parse_cpuinfo(text: str) -> list[CPUInfo]:
    """Parse /proc/cpuinfo into one entry per processor."""
    lines = [line for line in text.splitlines() if line.strip()]
    if not lines or not lines[0].startswith("processor"):
        raise ValueError("invalid cpuinfo file")
    infos: list[CPUInfo] = []
    for line in lines:
        if ":" not in line:
            continue
        key, _, value = line.partition(":")
        key = key.strip()
        value = value.strip()
        if key == "processor":
            try:
                infos.append(CPUInfo(processor=int(value)))
            except ValueError:
                raise ValueError(f"invalid processor number {value!r}") from None
            continue
        if not infos:
            continue
        info = infos[-1]
        if key in _CPUINFO_STRINGS:
            setattr(info, _CPUINFO_STRINGS[key], value)
        elif key in _CPUINFO_INTS:
            try:
                setattr(info, _CPUINFO_INTS[key], int(value))
            except ValueError:
                raise ValueError(f"invalid {key} {value!r}") from None
        elif key == "cpu MHz":
            try:
                info.cpu_mhz = float(value)
            except ValueError:
                raise ValueError(f"invalid cpu MHz {value!r}") from None
        elif key == "flags":
            info.flags = value.split()
        elif key == "bugs":
            info.bugs = value.split()
    return infos


def update_field_info(
    values: Iterable[str], pattern: Pattern[str] | None, desc: Desc
) -> Iterator[Metric]:
    """Yield an info metric for each value the pattern matches; nothing without a pattern."""
    if pattern is None:
        return
    for value in values:
        if pattern.search(value):
            yield new_const_metric(desc, ValueType.GAUGE, 1, value)


class CPUCollector(Collector):
    """Exposes CPU times, CPU information and thermal throttle counts."""

    def __init__(self, settings: Settings | None = None, logger: logging.Logger | None = None):
        super().__init__(settings, logger)
        self.cpu_stats: list[CPUStat] = []
        self._lock = threading.Lock()
        self.enable_info = self.settings.cpu_info
        self.flags_include: Pattern[str] | None = None
        self.bugs_include: Pattern[str] | None = None
        flags = self.settings.cpu_flags_include
        bugs = self.settings.cpu_bugs_include
        if (flags or bugs) and not self.enable_info:
            self.enable_info = True
            self.logger.info(
                "--collector.cpu.info has been set to `true` because you set the following "
                "flags, like --collector.cpu.info.flags-include and "
                "--collector.cpu.info.bugs-include"
            )
        try:
            if flags:
                self.flags_include = re.compile(flags)
            if bugs:
                self.bugs_include = re.compile(bugs)
        except re.error as err:
            raise ValueError(
                "fail to compile --collector.cpu.info.flags-include and "
                "--collector.cpu.info.bugs-include, the values of them must be "
                f"regular expressions: {err}"
            ) from err

    def update(self) -> Iterator[Metric]:
        if self.enable_info:
            yield from self.update_info()
        yield from self.update_stat()
        yield from self.update_thermal_throttle()

    def update_info(self) -> Iterator[Metric]:
        """Expose /proc/cpuinfo entries, and flags and bugs of the first core."""
        with open(self.settings.proc_file("cpuinfo"), encoding="utf-8") as handle:
            infos = parse_cpuinfo(handle.read())
        for cpu in infos:
            yield new_const_metric(
                _CPU_INFO,
                ValueType.GAUGE,
                1,
                cpu.physical_id,
                cpu.core_id,
                str(cpu.processor),
                cpu.vendor_id,
                cpu.cpu_family,
                cpu.model,
                cpu.model_name,
                cpu.microcode,
                cpu.stepping,
                cpu.cache_size,
            )
        if infos:
            first = infos[0]
            yield from update_field_info(first.flags, self.flags_include, _CPU_FLAGS_INFO)
            yield from update_field_info(first.bugs, self.bugs_include, _CPU_BUGS_INFO)

    def update_thermal_throttle(self) -> Iterator[Metric]:
        """Expose core and package thermal throttle counts from sysfs."""
        pattern = self.settings.sys_file("devices", "system", "cpu", "cpu[0-9]*")
        package_throttles: dict[int, int] = {}
        package_core_throttles: dict[int, dict[int, int]] = {}

        for cpu in sorted(glob.glob(pattern)):
            try:
                package_id = read_uint_from_file(
                    os.path.join(cpu, "topology", "physical_package_id")
                )
            except (OSError, ValueError):
                self.logger.debug("CPU is missing physical_package_id cpu=%s", cpu)
                continue
            try:
                core_id = read_uint_from_file(os.path.join(cpu, "topology", "core_id"))
            except (OSError, ValueError):
                self.logger.debug("CPU is missing core_id cpu=%s", cpu)
                continue

            # Core throttles first: some systems present core but no package throttles.
            cores = package_core_throttles.setdefault(package_id, {})
            if core_id not in cores:
                try:
                    cores[core_id] = read_uint_from_file(
                        os.path.join(cpu, "thermal_throttle", "core_throttle_count")
                    )
                except (OSError, ValueError):
                    self.logger.debug("CPU is missing core_throttle_count cpu=%s", cpu)

            if package_id not in package_throttles:
                try:
                    package_throttles[package_id] = read_uint_from_file(
                        os.path.join(cpu, "thermal_throttle", "package_throttle_count")
                    )
                except (OSError, ValueError):
                    self.logger.debug("CPU is missing package_throttle_count cpu=%s", cpu)

        for package_id in sorted(package_throttles):
            yield new_const_metric(
                _CPU_PACKAGE_THROTTLE,
                ValueType.COUNTER,
                package_throttles[package_id],
                str(package_id),
            )
        for package_id in sorted(package_core_throttles):
            cores = package_core_throttles[package_id]
            for core_id in sorted(cores):
                yield new_const_metric(
                    _CPU_CORE_THROTTLE,
                    ValueType.COUNTER,
                    cores[core_id],
                    str(package_id),
                    str(core_id),
                )

    def update_stat(self) -> Iterator[Metric]:
        """Expose CPU times from /proc/stat."""
        with open(self.settings.proc_file("stat"), encoding="utf-8") as handle:
            stats = parse_proc_stat(handle.read())
        self.update_cpu_stats(stats)

        with self._lock:
            snapshot = [replace(stat) for stat in self.cpu_stats]

        for cpu_id, stat in enumerate(snapshot):
            cpu_num = str(cpu_id)
            for attribute, mode in _SECONDS_MODES:
                yield new_const_metric(
                    node_cpu_seconds_desc,
                    ValueType.COUNTER,
                    getattr(stat, attribute),
                    cpu_num,
                    mode,
                )
            if self.settings.cpu_guest:
                # Guest time is also accounted for in user and nice.
                yield new_const_metric(_CPU_GUEST, ValueType.COUNTER, stat.guest, cpu_num, "user")
                yield new_const_metric(
                    _CPU_GUEST, ValueType.COUNTER, stat.guest_nice, cpu_num, "nice"
                )

    def update_cpu_stats(self, new_stats: list[CPUStat]) -> None:
        """Merge new readings into the cache, keeping counters from going backwards."""
        with self._lock:
            if len(self.cpu_stats) != len(new_stats):
                self.cpu_stats = [CPUStat() for _ in new_stats]

            for cpu_id, new in enumerate(new_stats):
                old = self.cpu_stats[cpu_id]
                if old.idle - new.idle >= JUMP_BACK_SECONDS:
                    self.logger.debug(
                        "%s cpu=%d old_value=%f new_value=%f",
                        _JUMP_BACK_MESSAGE, cpu_id, old.idle, new.idle,
                    )
                    old = CPUStat()
                    self.cpu_stats[cpu_id] = old

                for name in _STAT_FIELDS:
                    old_value = getattr(old, name)
                    new_value = getattr(new, name)
                    if new_value >= old_value:
                        setattr(old, name, new_value)
                    else:
                        self.logger.debug(
                            "CPU %s counter jumped backwards cpu=%d old_value=%f new_value=%f",
                            name, cpu_id, old_value, new_value,
                        )


register_collector("cpu", True, CPUCollector)