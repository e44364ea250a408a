"""Btrfs filesystem allocation and device statistics."""

from __future__ import annotations

import glob
import os
from dataclasses import dataclass, field
from typing import Iterator

from .collector import NAMESPACE, Collector, register_collector, read_uint_from_file
from .metrics import Desc, Metric, ValueType, build_fq_name, new_const_metric

_SUBSYSTEM = "btrfs"
_SECTOR_SIZE = 512


@dataclass
class BtrfsMetric:
    """One Btrfs value to be turned into a gauge."""

    name: str
    desc: str
    value: float
    extra_label: list[str] = field(default_factory=list)
    extra_label_value: list[str] = field(default_factory=list)


@dataclass
class _LayoutUsage:
    used_bytes: int
    total_bytes: int
    ratio: float


@dataclass
class _AllocationStats:
    reserved_bytes: int = 0
    layouts: dict[str, _LayoutUsage] = field(default_factory=dict)


@dataclass
class BtrfsStats:
    """Statistics of one Btrfs filesystem."""

    uuid: str
    label: str = ""
    global_rsv_size: int = 0
    devices: dict[str, int] = field(default_factory=dict)
    data: _AllocationStats = field(default_factory=_AllocationStats)
    metadata: _AllocationStats = field(default_factory=_AllocationStats)
    system: _AllocationStats = field(default_factory=_AllocationStats)


def _ratio(layout: str, devices: int) -> float:
    if layout in ("raid1", "raid10", "dup"):
        return 2.0
    if layout == "raid1c3":
        return 3.0
    if layout == "raid1c4":
        return 4.0
    if layout == "raid5" and devices > 1:
        return devices / (devices - 1)
    if layout == "raid6" and devices > 2:
        return devices / (devices - 2)
    return 1.0


def _read_allocation(path: str, devices: int) -> _AllocationStats:
    stats = _AllocationStats(reserved_bytes=read_uint_from_file(os.path.join(path, "bytes_reserved")))
    for entry in sorted(os.scandir(path), key=lambda e: e.name):
        if entry.is_dir():
            stats.layouts[entry.name] = _LayoutUsage(
                used_bytes=read_uint_from_file(os.path.join(entry.path, "used_bytes")),
                total_bytes=read_uint_from_file(os.path.join(entry.path, "total_bytes")),
                ratio=_ratio(entry.name, devices),
            )
    return stats


def _read_fs(path: str) -> BtrfsStats:
    with open(os.path.join(path, "label"), encoding="utf-8") as handle:
        label = handle.read().strip()
    stats = BtrfsStats(uuid=os.path.basename(path), label=label)
    devices_dir = os.path.join(path, "devices")
    for name in sorted(os.listdir(devices_dir)):
        sectors = read_uint_from_file(os.path.join(devices_dir, name, "size"))
        stats.devices[name] = sectors * _SECTOR_SIZE
    allocation = os.path.join(path, "allocation")
    stats.global_rsv_size = read_uint_from_file(os.path.join(allocation, "global_rsv_size"))
    count = len(stats.devices)
    stats.data = _read_allocation(os.path.join(allocation, "data"), count)
    stats.metadata = _read_allocation(os.path.join(allocation, "metadata"), count)
    stats.system = _read_allocation(os.path.join(allocation, "system"), count)
    return stats


def read_btrfs_stats(sys_path: str | os.PathLike) -> list[BtrfsStats]:
    """Read every Btrfs filesystem below fs/btrfs of sys_path."""
    pattern = os.path.join(glob.escape(os.fspath(sys_path)), "fs", "btrfs", "*-*")
    return [_read_fs(p) for p in sorted(glob.glob(pattern))]


def _allocation_metrics(kind: str, a: _AllocationStats) -> list[BtrfsMetric]:
    metrics = [
        BtrfsMetric(
            "reserved_bytes",
            "Amount of space reserved for a data type",
            float(a.reserved_bytes),
            ["block_group_type"],
            [kind],
        )
    ]
    labels = ["block_group_type", "mode"]
    for layout, usage in a.layouts.items():
        metrics += [
            BtrfsMetric("used_bytes", "Amount of used space by a layout/data type",
                        float(usage.used_bytes), list(labels), [kind, layout]),
            BtrfsMetric("size_bytes", "Amount of space allocated for a layout/data type",
                        float(usage.total_bytes), list(labels), [kind, layout]),
            BtrfsMetric("allocation_ratio", "Data allocation ratio for a layout/data type",
                        usage.ratio, list(labels), [kind, layout]),
        ]
    return metrics


class BtrfsCollector(Collector):
    """Exposes Btrfs filesystem statistics."""

    def get_metrics(self, stats: BtrfsStats) -> list[BtrfsMetric]:
        """Return the metrics of one filesystem."""
        metrics = [
            BtrfsMetric("info", "Filesystem information", 1.0, ["label"], [stats.label]),
            BtrfsMetric("global_rsv_size_bytes", "Size of global reserve.", float(stats.global_rsv_size)),
        ]
        for name, size in stats.devices.items():
            metrics.append(
                BtrfsMetric("device_size_bytes", "Size of a device that is part of the filesystem.",
                            float(size), ["device"], [name])
            )
        metrics += _allocation_metrics("data", stats.data)
        metrics += _allocation_metrics("metadata", stats.metadata)
        metrics += _allocation_metrics("system", stats.system)
        return metrics

    def update(self) -> Iterator[Metric]:
        try:
            all_stats = read_btrfs_stats(self.settings.sys_path)
        except (OSError, ValueError) as err:
            raise RuntimeError(f"failed to retrieve Btrfs stats: {err}") from err
        for stats in all_stats:
            for m in self.get_metrics(stats):
                desc = Desc(
                    build_fq_name(NAMESPACE, _SUBSYSTEM, m.name),
                    m.desc,
                    ("uuid", *m.extra_label),
                )
                yield new_const_metric(
                    desc, ValueType.GAUGE, m.value, stats.uuid, *m.extra_label_value
                )


register_collector("btrfs", True, BtrfsCollector)