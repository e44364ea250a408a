# nodescope

nodescope reads host statistics from the Linux `/proc` and `/sys`
filesystems and turns them into metrics in the Prometheus text exposition
format. Each source of data is a small collector module:

| Module                | Collector name | Enabled by default | What it reports                              |
|-----------------------|----------------|--------------------|----------------------------------------------|
| `nodescope.arp`       | `arp`          | yes                | ARP entries per device                       |
| `nodescope.bonding`   | `bonding`      | yes                | configured and active bonding slaves         |
| `nodescope.conntrack` | `conntrack`    | yes                | connection tracking table and statistics     |
| `nodescope.entropy`   | `entropy`      | yes                | available entropy and pool size              |
| `nodescope.dmi`       | `dmi`          | yes                | DMI information as labels of an info metric  |
| `nodescope.drbd`      | `drbd`         | no                 | DRBD device statistics                       |
| `nodescope.edac`      | `edac`         | yes                | EDAC correctable/uncorrectable memory errors |
| `nodescope.drm`       | `drm`          | no                 | amdgpu graphics card statistics              |
| `nodescope.cpu`       | `cpu`          | yes                | CPU time, CPU info, thermal throttles        |
| `nodescope.cpufreq`   | `cpufreq`      | yes                | CPU frequencies in hertz                     |
| `nodescope.buddyinfo` | `buddyinfo`    | no                 | free blocks of the buddy allocator           |
| `nodescope.bcache`    | `bcache`       | yes                | bcache set, backing and cache device stats   |
| `nodescope.btrfs`     | `btrfs`        | yes                | Btrfs allocation and device statistics       |

The package has no runtime dependencies beyond the standard library.

## Settings

`nodescope.collector.Settings` holds the options that every collector reads:

- `proc_path` (default `/proc`) and `sys_path` (default `/sys`). Point these at
  a copy of the trees, such as test fixtures, to read from it instead of the
  live system. `proc_file(*parts)` and `sys_file(*parts)` join paths below them.
- `bcache_priority_stats` (default `False`): also read and expose the bcache
  `priority_stats` of each cache device.
- `cpu_guest` (default `True`): expose `node_cpu_guest_seconds_total`.
- `cpu_info` (default `False`): expose `node_cpu_info` from `/proc/cpuinfo`.
- `cpu_flags_include` and `cpu_bugs_include` (default empty): regular
  expressions selecting which flags and bugs of the first core are exposed.
  Setting either one turns `cpu_info` on. An invalid expression makes the
  CPU collector raise `ValueError` when it is created.
- `diskstats_ignored_devices`: a regular expression of device names.

## Collectors and the registry

Each collector is a subclass of `nodescope.collector.Collector`, built from
`Settings` and a `logging.Logger`. Its `update()` yields
`nodescope.metrics.Metric` objects. A collector that finds nothing to report
raises `nodescope.collector.NoDataError`.

Collectors register themselves with `register_collector(name,
default_enabled, factory)` when their module is imported, so import the
modules you want before building a node collector. Registering one name twice
raises `ValueError`. A `CollectorRegistry` records which collectors are
enabled; the shared one is `nodescope.collector.default_registry`:

- `set_enabled(name, enabled)` turns a collector on or off explicitly.
- `disable_defaults()` turns off every collector that was not set explicitly.
- `enabled()` returns the sorted names of the enabled collectors.

`create_node_collector(settings, *names)` builds a `NodeCollector` from the
enabled collectors. When names are given only those are used, and naming an
unknown or disabled collector raises `ValueError`. A collector instance is
created once per registry and reused afterwards.

`NodeCollector.collect()` runs every collector in its own thread and returns a
list of their metrics. For each collector it adds
`node_scrape_collector_duration_seconds` and `node_scrape_collector_success`
(1 on success, 0 otherwise). A collector raising `NoDataError` is logged at
debug level; any other exception is logged as an error and does not stop the
other collectors. `describe()` returns the descriptors of those two metrics.
`execute(name, collector, logger)` runs a single collector the same way.

```python
import nodescope.arp
import nodescope.cpu
from nodescope.collector import Settings, default_registry
from nodescope.metrics import render_text

node = default_registry.create_node_collector(Settings(), "arp", "cpu")
print(render_text(node.collect()))
```

## Parsing helpers

The readers and parsers are plain functions and can be used without a
collector:

```python
from nodescope.arp import parse_arp_entries
from nodescope.bonding import read_bonding_stats

with open("/proc/net/arp") as arp_table:
    print(parse_arp_entries(arp_table))   # {"eth0": 3, ...}

print(read_bonding_stats("/sys/class/net"))  # {"bond0": (slaves, active), ...}
```

Others are `nodescope.conntrack.read_conntrack_statistics`,
`nodescope.dmi.read_dmi_info`, `nodescope.drm.read_amdgpu_stats`,
`nodescope.cpu.parse_proc_stat`, `nodescope.cpu.parse_cpuinfo`,
`nodescope.cpufreq.read_system_cpufreq`,
`nodescope.buddyinfo.parse_buddyinfo`, `nodescope.bcache.dehumanize`,
`nodescope.bcache.read_bcache_stats` and `nodescope.btrfs.read_btrfs_stats`.
`nodescope.collector.read_uint_from_file` reads an unsigned 64-bit integer
from a file. `DRBDCollector.metrics_from_text(text)` turns the contents of
`/proc/drbd` into metrics.

## Rendering

`nodescope.metrics.render_text(metrics)` produces the text format. It groups
samples by metric name, sorts the groups by name and writes `# HELP` and
`# TYPE` lines for each. Two samples with the same name and labels, or one
name used with different help text or types, raise `ValueError`.

```python
from nodescope.metrics import Desc, ValueType, new_const_metric, render_text

desc = Desc("node_arp_entries", "ARP entries by device", ["device"])
print(render_text([new_const_metric(desc, ValueType.GAUGE, 3, "eth0")]))
# # HELP node_arp_entries ARP entries by device
# # TYPE node_arp_entries gauge
# node_arp_entries{device="eth0"} 3
```

`new_const_metric` raises `ValueError` when the number of label values does
not match the descriptor. Metric names are built with
`build_fq_name(namespace, subsystem, name)`; all collectors use the `node`
namespace. `format_value(value)` formats a single sample value.

## What it does not do

- There is no disk statistics collector: `/proc/diskstats` is not read, and
  the `diskstats_ignored_devices` setting is not used by any collector.
- There is no command and no HTTP server. The package collects and renders
  metrics; serving them to a scraper is left to the program that uses it.