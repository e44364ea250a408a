"""DRBD device statistics from the proc drbd file."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterator

from .collector import NAMESPACE, Collector, NoDataError, register_collector
from .metrics import Desc, Metric, ValueType, build_fq_name, new_const_metric

_UINT64_MAX = 2**64 - 1
_DEVICE_ID_RE = re.compile(r"[0-9]+")


@dataclass(frozen=True)
class _NumericalMetric:
    desc: Desc
    value_type: ValueType
    multiplier: float


@dataclass(frozen=True)
class _StringPairMetric:
    desc: Desc
    value_ok: str

    def is_okay(self, value: str) -> float:
        return 1.0 if value == self.value_ok else 0.0


def _numerical(name: str, help_text: str, value_type: ValueType, multiplier: float) -> _NumericalMetric:
    return _NumericalMetric(
        Desc(build_fq_name(NAMESPACE, "drbd", name), help_text, ("device",)),
        value_type,
        multiplier,
    )


def _string_pair(name: str, help_text: str, value_ok: str) -> _StringPairMetric:
    return _StringPairMetric(
        Desc(build_fq_name(NAMESPACE, "drbd", name), help_text, ("device", "node")),
        value_ok,
    )


_NUMERICAL = {
    "ns": _numerical(
        "network_sent_bytes_total",
        "Total number of bytes sent via the network.",
        ValueType.COUNTER,
        1024,
    ),
    "nr": _numerical(
        "network_received_bytes_total",
        "Total number of bytes received via the network.",
        ValueType.COUNTER,
        1,
    ),
    "dw": _numerical(
        "disk_written_bytes_total",
        "Net data written on local hard disk; in bytes.",
        ValueType.COUNTER,
        1024,
    ),
    "dr": _numerical(
        "disk_read_bytes_total",
        "Net data read from local hard disk; in bytes.",
        ValueType.COUNTER,
        1024,
    ),
    "al": _numerical(
        "activitylog_writes_total",
        "Number of updates of the activity log area of the meta data.",
        ValueType.COUNTER,
        1,
    ),
    "bm": _numerical(
        "bitmap_writes_total",
        "Number of updates of the bitmap area of the meta data.",
        ValueType.COUNTER,
        1,
    ),
    "lo": _numerical(
        "local_pending",
        "Number of open requests to the local I/O sub-system.",
        ValueType.GAUGE,
        1,
    ),
    "pe": _numerical(
        "remote_pending",
        "Number of requests sent to the peer, but that have not yet been answered by the latter.",
        ValueType.GAUGE,
        1,
    ),
    "ua": _numerical(
        "remote_unacknowledged",
        "Number of requests received by the peer via the network connection, "
        "but that have not yet been answered.",
        ValueType.GAUGE,
        1,
    ),
    "ap": _numerical(
        "application_pending",
        "Number of block I/O requests forwarded to DRBD, but not yet answered by DRBD.",
        ValueType.GAUGE,
        1,
    ),
    "ep": _numerical(
        "epochs",
        "Number of Epochs currently on the fly.",
        ValueType.GAUGE,
        1,
    ),
    "oos": _numerical(
        "out_of_sync_bytes",
        "Amount of data known to be out of sync; in bytes.",
        ValueType.GAUGE,
        1024,
    ),
}

_STRING_PAIR = {
    "ro": _string_pair(
        "node_role_is_primary",
        "Whether the role of the node is in the primary state.",
        "Primary",
    ),
    "ds": _string_pair(
        "disk_state_is_up_to_date",
        "Whether the disk of the node is up to date.",
        "UpToDate",
    ),
}

_CONNECTED = Desc(
    build_fq_name(NAMESPACE, "drbd", "connected"),
    "Whether DRBD is connected to the peer.",
    ("device",),
)


def _device_id(text: str) -> int | None:
    if not _DEVICE_ID_RE.fullmatch(text):
        return None
    value = int(text)
    return value if value <= _UINT64_MAX else None


def _parse_float(text: str) -> float:
    if "_" in text:
        raise ValueError(f"invalid number {text!r}")
    try:
        return float(text)
    except ValueError:
        raise ValueError(f"invalid number {text!r}") from None


class DRBDCollector(Collector):
    """Exposes DRBD device statistics."""

    def metrics_from_text(self, text: str) -> Iterator[Metric]:
        """Turn the contents of the proc drbd file into metrics."""
        device = "unknown"
        for field in text.split():
            kv = field.split(":")
            if len(kv) != 2:
                self.logger.debug("skipping invalid key:value pair field=%s", field)
                continue
            key, value = kv

            device_id = _device_id(key)
            if device_id is not None and value == "":
                device = f"drbd{device_id}"
                continue

            numerical = _NUMERICAL.get(key)
            if numerical is not None:
                yield new_const_metric(
                    numerical.desc,
                    numerical.value_type,
                    _parse_float(value) * numerical.multiplier,
                    device,
                )
                continue

            pair = _STRING_PAIR.get(key)
            if pair is not None:
                values = value.split("/")
                if len(values) < 2:
                    raise ValueError(f"invalid value {value!r} for {key}")
                yield new_const_metric(
                    pair.desc, ValueType.GAUGE, pair.is_okay(values[0]), device, "local"
                )
                yield new_const_metric(
                    pair.desc, ValueType.GAUGE, pair.is_okay(values[1]), device, "remote"
                )
                continue

            if key == "cs":
                connected = 1.0 if value == "Connected" else 0.0
                yield new_const_metric(_CONNECTED, ValueType.GAUGE, connected, device)
                continue

            self.logger.debug("unhandled key-value pair key=%s value=%s", key, value)

    def update(self) -> Iterator[Metric]:
        stats_file = self.settings.proc_file("drbd")
        try:
            with open(stats_file, encoding="utf-8") as handle:
                text = handle.read()
        except FileNotFoundError as err:
            self.logger.debug("stats file does not exist, skipping file=%s err=%s", stats_file, err)
            raise NoDataError() from err
        yield from self.metrics_from_text(text)


register_collector("drbd", False, DRBDCollector)