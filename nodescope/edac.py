"""EDAC memory controller error counts."""

from __future__ import annotations

import glob
import os
import re
from typing import Iterator

from .collector import NAMESPACE, Collector, register_collector, read_uint_from_file
from .metrics import Desc, Metric, ValueType, build_fq_name, new_const_metric

_SUBSYSTEM = "edac"

_CONTROLLER_RE = re.compile(r".*devices/system/edac/mc/mc([0-9]*)")
_CSROW_RE = re.compile(r".*devices/system/edac/mc/mc[0-9]*/csrow([0-9]*)")

_CE_COUNT = Desc(
    build_fq_name(NAMESPACE, _SUBSYSTEM, "correctable_errors_total"),
    "Total correctable memory errors.",
    ("controller",),
)
_UE_COUNT = Desc(
    build_fq_name(NAMESPACE, _SUBSYSTEM, "uncorrectable_errors_total"),
    "Total uncorrectable memory errors.",
    ("controller",),
)
_CSROW_CE_COUNT = Desc(
    build_fq_name(NAMESPACE, _SUBSYSTEM, "csrow_correctable_errors_total"),
    "Total correctable memory errors for this csrow.",
    ("controller", "csrow"),
)
_CSROW_UE_COUNT = Desc(
    build_fq_name(NAMESPACE, _SUBSYSTEM, "csrow_uncorrectable_errors_total"),
    "Total uncorrectable memory errors for this csrow.",
    ("controller", "csrow"),
)


def _read_count(path: str, what: str) -> int:
    try:
        return read_uint_from_file(path)
    except (OSError, ValueError) as err:
        raise RuntimeError(f"couldn't get {what}: {err}") from err


def _counter(desc: Desc, value: int, *labels: str) -> Metric:
    return new_const_metric(desc, ValueType.COUNTER, value, *labels)


class EdacCollector(Collector):
    """Exposes correctable and uncorrectable memory error counts."""

    def update(self) -> Iterator[Metric]:
        pattern = self.settings.sys_file("devices", "system", "edac", "mc", "mc[0-9]*")
        for controller in sorted(glob.glob(pattern)):
            match = _CONTROLLER_RE.search(controller)
            if match is None:
                raise RuntimeError(f"controller string didn't match regexp: {controller}")
            number = match.group(1)

            def count(name: str) -> int:
                return _read_count(
                    os.path.join(controller, name), f"{name} for controller {number}"
                )

            yield _counter(_CE_COUNT, count("ce_count"), number)
            yield _counter(_CSROW_CE_COUNT, count("ce_noinfo_count"), number, "unknown")
            yield _counter(_UE_COUNT, count("ue_count"), number)
            yield _counter(_CSROW_UE_COUNT, count("ue_noinfo_count"), number, "unknown")

            for csrow in sorted(glob.glob(controller + "/csrow[0-9]*")):
                csrow_match = _CSROW_RE.search(csrow)
                if csrow_match is None:
                    raise RuntimeError(f"csrow string didn't match regexp: {csrow}")
                csrow_number = csrow_match.group(1)
                where = f"controller/csrow {number}/{csrow_number}"
                yield _counter(
                    _CSROW_CE_COUNT,
                    _read_count(os.path.join(csrow, "ce_count"), f"ce_count for {where}"),
                    number,
                    csrow_number,
                )
                yield _counter(
                    _CSROW_UE_COUNT,
                    _read_count(os.path.join(csrow, "ue_count"), f"ue_count for {where}"),
                    number,
                    csrow_number,
                )


register_collector("edac", True, EdacCollector)