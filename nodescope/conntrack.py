"""Connection tracking table size and statistics."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Iterator

from .collector import (
    NAMESPACE,
    Collector,
    NoDataError,
    register_collector,
    read_uint_from_file,
)
from .metrics import Desc, Metric, ValueType, build_fq_name, new_const_metric

_STAT_FIELD_COUNT = 17
# Position of each exposed statistic in a line of /proc/net/stat/nf_conntrack.
_STAT_POSITIONS = {
    "found": 2,
    "invalid": 4,
    "ignore": 5,
    "insert": 8,
    "insert_failed": 9,
    "drop": 10,
    "early_drop": 11,
    "search_restart": 16,
}


@dataclass
class ConntrackStatistics:
    """Conntrack statistics summed over all CPUs."""

    found: int = 0
    invalid: int = 0
    ignore: int = 0
    insert: int = 0
    insert_failed: int = 0
    drop: int = 0
    early_drop: int = 0
    search_restart: int = 0


def _parse_stat_line(line: str) -> dict[str, int]:
    columns = line.split()
    if len(columns) != _STAT_FIELD_COUNT:
        raise ValueError("invalid conntrackstat entry, missing fields")
    try:
        return {name: int(columns[pos], 16) for name, pos in _STAT_POSITIONS.items()}
    except ValueError as err:
        raise ValueError(f"invalid conntrackstat entry: {err}") from err


def read_conntrack_statistics(proc_path: str | os.PathLike) -> ConntrackStatistics:
    """Sum the per-CPU lines of net/stat/nf_conntrack below proc_path."""
    path = os.path.join(proc_path, "net", "stat", "nf_conntrack")
    with open(path, encoding="utf-8") as handle:
        lines = handle.read().splitlines()
    totals = ConntrackStatistics()
    for line in lines[1:]:
        for name, value in _parse_stat_line(line).items():
            setattr(totals, name, getattr(totals, name) + value)
    return totals


def _desc(name: str, help_text: str) -> Desc:
    return Desc(build_fq_name(NAMESPACE, "", name), help_text)


_CURRENT = _desc(
    "nf_conntrack_entries",
    "Number of currently allocated flow entries for connection tracking.",
)
_LIMIT = _desc("nf_conntrack_entries_limit", "Maximum size of connection tracking table.")
_STAT_DESCS = {
    "found": _desc("nf_conntrack_stat_found", "Number of searched entries which were successful."),
    "invalid": _desc("nf_conntrack_stat_invalid", "Number of packets seen which can not be tracked."),
    "ignore": _desc(
        "nf_conntrack_stat_ignore",
        "Number of packets seen which are already connected to a conntrack entry.",
    ),
    "insert": _desc("nf_conntrack_stat_insert", "Number of entries inserted into the list."),
    "insert_failed": _desc(
        "nf_conntrack_stat_insert_failed",
        "Number of entries for which list insertion was attempted but failed.",
    ),
    "drop": _desc("nf_conntrack_stat_drop", "Number of packets dropped due to conntrack failure."),
    "early_drop": _desc(
        "nf_conntrack_stat_early_drop",
        "Number of dropped conntrack entries to make room for new ones, "
        "if maximum table size was reached.",
    ),
    "search_restart": _desc(
        "nf_conntrack_stat_search_restart",
        "Number of conntrack table lookups which had to be restarted due to hashtable resizes.",
    ),
}


class ConntrackCollector(Collector):
    """Exposes conntrack table usage and statistics."""

    def _handle_err(self, err: Exception) -> Exception:
        if isinstance(err, FileNotFoundError):
            self.logger.debug("conntrack probably not loaded")
            return NoDataError()
        return RuntimeError(f"failed to retrieve conntrack stats: {err}")

    def update(self) -> Iterator[Metric]:
        settings = self.settings
        for filename, desc in (("nf_conntrack_count", _CURRENT), ("nf_conntrack_max", _LIMIT)):
            try:
                value = read_uint_from_file(
                    settings.proc_file("sys", "net", "netfilter", filename)
                )
            except (OSError, ValueError) as err:
                raise self._handle_err(err) from err
            yield new_const_metric(desc, ValueType.GAUGE, value)

        try:
            stats = read_conntrack_statistics(settings.proc_path)
        except (OSError, ValueError) as err:
            raise self._handle_err(err) from err
        for field in fields(stats):
            yield new_const_metric(
                _STAT_DESCS[field.name], ValueType.GAUGE, getattr(stats, field.name)
            )


register_collector("conntrack", True, ConntrackCollector)