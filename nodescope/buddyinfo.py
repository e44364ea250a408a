"""Free memory blocks per node, zone and size from the buddy allocator."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator

from .collector import NAMESPACE, Collector, register_collector
from .metrics import Desc, Metric, ValueType, build_fq_name, new_const_metric

_SUBSYSTEM = "buddyinfo"

_BLOCKS_DESC = Desc(
    build_fq_name(NAMESPACE, _SUBSYSTEM, "blocks"),
    "Count of free blocks according to size.",
    ("node", "zone", "size"),
)


@dataclass
class BuddyInfo:
    """Free block counts of one zone, indexed by block order."""

    node: str
    zone: str
    sizes: list[float] = field(default_factory=list)


def parse_buddyinfo(text: str) -> list[BuddyInfo]:
    """Parse the contents of /proc/buddyinfo."""
    result: list[BuddyInfo] = []
    bucket_count: int | None = None
    for line in text.splitlines():
        parts = line.split()
        if len(parts) < 4:
            raise ValueError("invalid number of fields when parsing buddyinfo")
        node = parts[1].rstrip(",")
        zone = parts[3].rstrip(",")
        raw_sizes = parts[4:]
        if bucket_count is None:
            bucket_count = len(raw_sizes)
        elif bucket_count != len(raw_sizes):
            raise ValueError(
                "mismatch in number of buddyinfo buckets, "
                f"previous count {bucket_count}, new count {len(raw_sizes)}"
            )
        try:
            sizes = [float(raw) for raw in raw_sizes]
        except ValueError as err:
            raise ValueError(f"invalid value in buddyinfo: {err}") from err
        result.append(BuddyInfo(node, zone, sizes))
    return result


class BuddyinfoCollector(Collector):
    """Exposes the free block counts of the buddy allocator."""

    def update(self) -> Iterator[Metric]:
        try:
            with open(self.settings.proc_file("buddyinfo"), encoding="utf-8") as handle:
                entries = parse_buddyinfo(handle.read())
        except (OSError, ValueError) as err:
            raise RuntimeError(f"couldn't get buddyinfo: {err}") from err

        self.logger.debug("Set node_buddy buddyInfo=%s", entries)
        for entry in entries:
            for size, value in enumerate(entry.sizes):
                yield new_const_metric(
                    _BLOCKS_DESC, ValueType.GAUGE, value, entry.node, entry.zone, str(size)
                )


register_collector("buddyinfo", False, BuddyinfoCollector)