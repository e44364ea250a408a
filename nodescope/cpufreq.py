"""CPU frequency statistics from the cpufreq sysfs interface."""

from __future__ import annotations

import glob
import os
from dataclasses import dataclass
from typing import Iterator

from .collector import NAMESPACE, Collector, register_collector, read_uint_from_file
from .cpu import CPU_SUBSYSTEM
from .metrics import Desc, Metric, ValueType, build_fq_name, new_const_metric


@dataclass
class CPUFreqStats:
    """Frequencies of one CPU in kHz; None where the kernel does not provide them."""

    name: str
    cpuinfo_current_frequency: int | None = None
    cpuinfo_minimum_frequency: int | None = None
    cpuinfo_maximum_frequency: int | None = None
    cpuinfo_transition_latency: int | None = None
    scaling_current_frequency: int | None = None
    scaling_minimum_frequency: int | None = None
    scaling_maximum_frequency: int | None = None
    available_governors: str | None = None
    driver: str | None = None
    governor: str | None = None


# cpufreq file name -> CPUFreqStats attribute
_UINT_FILES = {
    "cpuinfo_cur_freq": "cpuinfo_current_frequency",
    "cpuinfo_max_freq": "cpuinfo_maximum_frequency",
    "cpuinfo_min_freq": "cpuinfo_minimum_frequency",
    "cpuinfo_transition_latency": "cpuinfo_transition_latency",
    "scaling_cur_freq": "scaling_current_frequency",
    "scaling_max_freq": "scaling_maximum_frequency",
    "scaling_min_freq": "scaling_minimum_frequency",
}
_STRING_FILES = {
    "scaling_available_governors": "available_governors",
    "scaling_driver": "driver",
    "scaling_governor": "governor",
}


def _read_cpufreq_dir(directory: str, name: str) -> CPUFreqStats:
    stats = CPUFreqStats(name=name)
    for filename, attribute in _UINT_FILES.items():
        try:
            value = read_uint_from_file(os.path.join(directory, filename))
        except (FileNotFoundError, PermissionError):
            continue
        setattr(stats, attribute, value)
    for filename, attribute in _STRING_FILES.items():
        try:
            with open(os.path.join(directory, filename), encoding="utf-8") as handle:
                value = handle.read().strip()
        except (FileNotFoundError, PermissionError):
            continue
        setattr(stats, attribute, value)
    return stats


def read_system_cpufreq(sys_path: str | os.PathLike) -> list[CPUFreqStats]:
    """Read the cpufreq directory of every CPU below devices/system/cpu of sys_path.

    CPUs without a cpufreq directory are left out.
    """
    pattern = os.path.join(glob.escape(os.fspath(sys_path)), "devices", "system", "cpu", "cpu[0-9]*")
    cpus = sorted(glob.glob(pattern))
    if not cpus:
        raise FileNotFoundError("could not find any cpufreq files")
    result: list[CPUFreqStats] = []
    for cpu in cpus:
        directory = os.path.join(cpu, "cpufreq")
        try:
            os.stat(directory)
        except FileNotFoundError:
            continue
        name = os.path.basename(cpu).removeprefix("cpu")
        result.append(_read_cpufreq_dir(directory, name))
    return result


def _desc(name: str, help_text: str) -> Desc:
    return Desc(build_fq_name(NAMESPACE, CPU_SUBSYSTEM, name), help_text, ("cpu",))


# (CPUFreqStats attribute, descriptor), in export order.
_GAUGES = (
    ("cpuinfo_current_frequency", _desc("frequency_hertz", "Current cpu thread frequency in hertz.")),
    ("cpuinfo_minimum_frequency", _desc("frequency_min_hertz", "Minimum cpu thread frequency in hertz.")),
    ("cpuinfo_maximum_frequency", _desc("frequency_max_hertz", "Maximum cpu thread frequency in hertz.")),
    (
        "scaling_current_frequency",
        _desc("scaling_frequency_hertz", "Current scaled CPU thread frequency in hertz."),
    ),
    (
        "scaling_minimum_frequency",
        _desc("scaling_frequency_min_hertz", "Minimum scaled CPU thread frequency in hertz."),
    ),
    (
        "scaling_maximum_frequency",
        _desc("scaling_frequency_max_hertz", "Maximum scaled CPU thread frequency in hertz."),
    ),
)


class CPUFreqCollector(Collector):
    """Exposes current, minimum and maximum CPU frequencies in hertz."""

    def update(self) -> Iterator[Metric]:
        # sysfs cpufreq values are kHz; multiply by 1000 to export hertz.
        for stats in read_system_cpufreq(self.settings.sys_path):
            for attribute, desc in _GAUGES:
                value = getattr(stats, attribute)
                if value is not None:
                    yield new_const_metric(desc, ValueType.GAUGE, value * 1000.0, stats.name)


register_collector("cpufreq", True, CPUFreqCollector)