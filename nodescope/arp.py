"""ARP table entries per network device."""

from __future__ import annotations

from collections import Counter
from typing import Iterable, Iterator

from .collector import NAMESPACE, Collector, register_collector
from .metrics import Desc, Metric, ValueType, build_fq_name, new_const_metric

_ENTRIES_DESC = Desc(
    build_fq_name(NAMESPACE, "arp", "entries"),
    "ARP entries by device",
    ("device",),
)


def parse_arp_entries(lines: Iterable[str] | str) -> dict[str, int]:
    """Count the entries of an ARP table per device; the header line is skipped."""
    if isinstance(lines, str):
        lines = lines.splitlines()
    entries: Counter[str] = Counter()
    for line in lines:
        columns = line.split()
        if len(columns) < 6:
            raise ValueError("unexpected ARP table format")
        if columns[0] != "IP":
            entries[columns[-1]] += 1
    return dict(entries)


class ARPCollector(Collector):
    """Exposes the number of ARP entries of each device."""

    def update(self) -> Iterator[Metric]:
        path = self.settings.proc_file("net", "arp")
        try:
            with open(path, encoding="utf-8") as handle:
                entries = parse_arp_entries(handle)
        except (OSError, ValueError) as err:
            raise RuntimeError(f"could not get ARP entries: {err}") from err
        for device in sorted(entries):
            yield new_const_metric(_ENTRIES_DESC, ValueType.GAUGE, entries[device], device)


register_collector("arp", True, ARPCollector)