"""Statistics of bcache caches and their backing and cache devices."""

from __future__ import annotations

import glob
import logging
import os
from dataclasses import dataclass, field
from typing import Iterator

from .collector import NAMESPACE, Collector, Settings, register_collector
from .metrics import Desc, Metric, ValueType, build_fq_name, new_const_metric

_SUBSYSTEM = "bcache"
_SUFFIXES = "kMGTPEZY"


def _dehumanize_signed(text: str) -> int:
    value = text.strip()
    if not value:
        raise ValueError("empty value")
    multiplier = 1
    if value[-1] in _SUFFIXES:
        multiplier = 1024 ** (_SUFFIXES.index(value[-1]) + 1)
        value = value[:-1]
    try:
        number = float(value)
    except ValueError:
        raise ValueError(f"invalid value {text!r}") from None
    return int(number * multiplier)


def dehumanize(text: str) -> int:
    """Turn a human readable size such as '2.5k' (powers of 1024) into an integer."""
    result = _dehumanize_signed(text)
    if result < 0:
        raise ValueError(f"negative value {text!r}")
    return result


@dataclass
class _Internal:
    active_journal_entries: int = 0
    btree_nodes: int = 0
    btree_read_average_duration_ns: int = 0
    cache_read_races: int = 0


@dataclass
class _BcacheInfo:
    average_key_size: int = 0
    btree_cache_size: int = 0
    cache_available_percent: int = 0
    congested: int = 0
    root_usage_percent: int = 0
    tree_depth: int = 0
    internal: _Internal = field(default_factory=_Internal)


@dataclass
class _WritebackRateDebug:
    rate: int = 0
    dirty: int = 0
    target: int = 0
    proportional: int = 0
    integral: int = 0
    change: int = 0


@dataclass
class _PeriodStats:
    bypassed: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    cache_bypass_hits: int = 0
    cache_bypass_misses: int = 0
    cache_miss_collisions: int = 0
    cache_readaheads: int = 0


@dataclass
class _BdevStats:
    name: str
    dirty_data: int = 0
    writeback_rate_debug: _WritebackRateDebug = field(default_factory=_WritebackRateDebug)
    total: _PeriodStats = field(default_factory=_PeriodStats)


@dataclass
class _Priority:
    unused_percent: int = 0
    metadata_percent: int = 0


@dataclass
class _CacheStats:
    name: str
    io_errors: int = 0
    metadata_written: int = 0
    written: int = 0
    priority: _Priority = field(default_factory=_Priority)


@dataclass
class _Stats:
    name: str
    bcache: _BcacheInfo = field(default_factory=_BcacheInfo)
    bdevs: list[_BdevStats] = field(default_factory=list)
    caches: list[_CacheStats] = field(default_factory=list)


def _read(path: str) -> str:
    with open(path, encoding="utf-8") as handle:
        return handle.read().strip()


def _uint(path: str) -> int:
    text = _read(path)
    if not text.isdigit():
        raise ValueError(f"invalid unsigned integer {text!r} in {path}")
    return int(text)


def _int(path: str) -> int:
    text = _read(path)
    try:
        return int(text)
    except ValueError:
        raise ValueError(f"invalid integer {text!r} in {path}") from None


def _parse_writeback_rate_debug(text: str) -> _WritebackRateDebug:
    debug = _WritebackRateDebug()
    for line in text.splitlines():
        key, sep, value = line.partition(":")
        if not sep:
            continue
        key = key.strip()
        value = value.strip().removesuffix("/sec")
        if key in ("rate", "dirty", "target"):
            setattr(debug, key, dehumanize(value))
        elif key in ("proportional", "integral", "change"):
            setattr(debug, key, _dehumanize_signed(value))
    return debug


def _parse_priority_stats(text: str) -> _Priority:
    priority = _Priority()
    for line in text.splitlines():
        key, sep, value = line.partition(":")
        if not sep:
            continue
        value = value.strip().removesuffix("%")
        if key.strip() == "Unused":
            priority.unused_percent = int(value)
        elif key.strip() == "Metadata":
            priority.metadata_percent = int(value)
    return priority


def _read_bdev(path: str) -> _BdevStats:
    bdev = _BdevStats(name=os.path.basename(path))
    bdev.dirty_data = dehumanize(_read(os.path.join(path, "dirty_data")))
    bdev.writeback_rate_debug = _parse_writeback_rate_debug(
        _read(os.path.join(path, "writeback_rate_debug"))
    )
    total = os.path.join(path, "stats_total")
    bdev.total = _PeriodStats(
        bypassed=dehumanize(_read(os.path.join(total, "bypassed"))),
        cache_hits=_uint(os.path.join(total, "cache_hits")),
        cache_misses=_uint(os.path.join(total, "cache_misses")),
        cache_bypass_hits=_uint(os.path.join(total, "cache_bypass_hits")),
        cache_bypass_misses=_uint(os.path.join(total, "cache_bypass_misses")),
        cache_miss_collisions=_uint(os.path.join(total, "cache_miss_collisions")),
        cache_readaheads=_uint(os.path.join(total, "cache_readaheads")),
    )
    return bdev


def _read_cache(path: str, with_priority: bool) -> _CacheStats:
    cache = _CacheStats(name=os.path.basename(path))
    cache.io_errors = _uint(os.path.join(path, "io_errors"))
    cache.metadata_written = dehumanize(_read(os.path.join(path, "metadata_written")))
    cache.written = dehumanize(_read(os.path.join(path, "written")))
    if with_priority:
        cache.priority = _parse_priority_stats(_read(os.path.join(path, "priority_stats")))
    return cache


def _read_uuid(path: str, with_priority: bool) -> _Stats:
    stats = _Stats(name=os.path.basename(path))
    internal = os.path.join(path, "internal")
    stats.bcache = _BcacheInfo(
        average_key_size=dehumanize(_read(os.path.join(path, "average_key_size"))),
        btree_cache_size=dehumanize(_read(os.path.join(path, "btree_cache_size"))),
        cache_available_percent=_uint(os.path.join(path, "cache_available_percent")),
        congested=_int(os.path.join(path, "congested")),
        root_usage_percent=_uint(os.path.join(path, "root_usage_percent")),
        tree_depth=_uint(os.path.join(path, "tree_depth")),
        internal=_Internal(
            active_journal_entries=_uint(os.path.join(internal, "active_journal_entries")),
            btree_nodes=_uint(os.path.join(internal, "btree_nodes")),
            btree_read_average_duration_ns=_uint(
                os.path.join(internal, "btree_read_average_duration_us")
            )
            * 1000,
            cache_read_races=_uint(os.path.join(internal, "cache_read_races")),
        ),
    )
    stats.bdevs = [_read_bdev(p) for p in sorted(glob.glob(os.path.join(path, "bdev[0-9]*")))]
    stats.caches = [
        _read_cache(p, with_priority)
        for p in sorted(glob.glob(os.path.join(path, "cache[0-9]*")))
    ]
    return stats


def read_bcache_stats(sys_path: str | os.PathLike, with_priority: bool) -> list[_Stats]:
    """Read every bcache set below fs/bcache of sys_path."""
    base = os.path.join(glob.escape(os.fspath(sys_path)), "fs", "bcache", "*-*")
    return [_read_uuid(p, with_priority) for p in sorted(glob.glob(base))]


def _period_metrics(ps: _PeriodStats, device: str) -> list[tuple]:
    label = ("backing_device",)
    c = ValueType.COUNTER
    return [
        ("bypassed_bytes_total", "Amount of IO (both reads and writes) that has bypassed the cache.", ps.bypassed, c, label, device),
        ("cache_hits_total", "Hits counted per individual IO as bcache sees them.", ps.cache_hits, c, label, device),
        ("cache_misses_total", "Misses counted per individual IO as bcache sees them.", ps.cache_misses, c, label, device),
        ("cache_bypass_hits_total", "Hits for IO intended to skip the cache.", ps.cache_bypass_hits, c, label, device),
        ("cache_bypass_misses_total", "Misses for IO intended to skip the cache.", ps.cache_bypass_misses, c, label, device),
        ("cache_miss_collisions_total", "Instances where data insertion from cache miss raced with write (data already present).", ps.cache_miss_collisions, c, label, device),
        ("cache_readaheads_total", "Count of times readahead occurred.", ps.cache_readaheads, c, label, device),
    ]


class BcacheCollector(Collector):
    """Exposes bcache statistics."""

    def __init__(
        self,
        settings: Settings | None = None,
        logger: logging.Logger | None = None,
        priority_stats: bool | None = None,
    ):
        super().__init__(settings, logger)
        if priority_stats is None:
            priority_stats = bool(getattr(self.settings, "bcache_priority_stats", False))
        self.priority_stats = priority_stats

    def update(self) -> Iterator[Metric]:
        try:
            all_stats = read_bcache_stats(self.settings.sys_path, self.priority_stats)
        except (OSError, ValueError) as err:
            raise RuntimeError(f"failed to retrieve bcache stats: {err}") from err
        for stats in all_stats:
            yield from self._stats_metrics(stats)

    def _stats_metrics(self, s: _Stats) -> Iterator[Metric]:
        g, c = ValueType.GAUGE, ValueType.COUNTER
        b, i = s.bcache, s.bcache.internal
        rows: list[tuple] = [
            ("average_key_size_sectors", "Average data per key in the btree (sectors).", b.average_key_size, g, (), ""),
            ("btree_cache_size_bytes", "Amount of memory currently used by the btree cache.", b.btree_cache_size, g, (), ""),
            ("cache_available_percent", "Percentage of cache device without dirty data, usable for writeback (may contain clean cached data).", b.cache_available_percent, g, (), ""),
            ("congested", "Congestion.", b.congested, g, (), ""),
            ("root_usage_percent", "Percentage of the root btree node in use (tree depth increases if too high).", b.root_usage_percent, g, (), ""),
            ("tree_depth", "Depth of the btree.", b.tree_depth, g, (), ""),
            ("active_journal_entries", "Number of journal entries that are newer than the index.", i.active_journal_entries, g, (), ""),
            ("btree_nodes", "Total nodes in the btree.", i.btree_nodes, g, (), ""),
            ("btree_read_average_duration_seconds", "Average btree read duration.", i.btree_read_average_duration_ns * 1e-9, g, (), ""),
            ("cache_read_races_total", "Counts instances where while data was being read from the cache, the bucket was reused and invalidated - i.e. where the pointer was stale after the read completed.", i.cache_read_races, c, (), ""),
        ]
        for bdev in s.bdevs:
            lab, w = ("backing_device",), bdev.writeback_rate_debug
            rows += [
                ("dirty_data_bytes", "Amount of dirty data for this backing device in the cache.", bdev.dirty_data, g, lab, bdev.name),
                ("dirty_target_bytes", "Current dirty data target threshold for this backing device in bytes.", w.target, g, lab, bdev.name),
                ("writeback_rate", "Current writeback rate for this backing device in bytes.", w.rate, g, lab, bdev.name),
                ("writeback_rate_proportional_term", "Current result of proportional controller, part of writeback rate", w.proportional, g, lab, bdev.name),
                ("writeback_rate_integral_term", "Current result of integral controller, part of writeback rate", w.integral, g, lab, bdev.name),
                ("writeback_change", "Last writeback rate change step for this backing device.", w.change, g, lab, bdev.name),
            ]
            rows += _period_metrics(bdev.total, bdev.name)
        for cache in s.caches:
            lab = ("cache_device",)
            rows += [
                ("io_errors", "Number of errors that have occurred, decayed by io_error_halflife.", cache.io_errors, g, lab, cache.name),
                ("metadata_written_bytes_total", "Sum of all non data writes (btree writes and all other metadata).", cache.metadata_written, c, lab, cache.name),
                ("written_bytes_total", "Sum of all data that has been written to the cache.", cache.written, c, lab, cache.name),
            ]
            if self.priority_stats:
                rows += [
                    ("priority_stats_unused_percent", "The percentage of the cache that doesn't contain any data.", cache.priority.unused_percent, g, lab, cache.name),
                    ("priority_stats_metadata_percent", "Bcache's metadata overhead.", cache.priority.metadata_percent, g, lab, cache.name),
                ]
        for name, help_text, value, value_type, extra_label, extra_value in rows:
            desc = Desc(
                build_fq_name(NAMESPACE, _SUBSYSTEM, name), help_text, ("uuid",) + extra_label
            )
            labels = [s.name] + ([extra_value] if extra_value else [])
            yield new_const_metric(desc, value_type, float(value), *labels)


register_collector("bcache", True, BcacheCollector)