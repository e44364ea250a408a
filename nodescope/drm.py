"""Statistics of DRM graphics cards driven by amdgpu."""

from __future__ import annotations

import glob
import os
import re
from dataclasses import dataclass
from typing import Iterator

from .collector import NAMESPACE, Collector, register_collector
from .metrics import Desc, Metric, ValueType, build_fq_name, new_const_metric

_SUBSYSTEM = "drm"
_DRIVER_NAME = "amdgpu"
_UINT64_MAX = 2**64 - 1
_UINT_RE = re.compile(r"[0-9]+")


@dataclass
class AMDGPUStats:
    """Statistics of one amdgpu card; missing files leave their defaults."""

    name: str
    gpu_busy_percent: int = 0
    memory_gtt_size: int = 0
    memory_gtt_used: int = 0
    memory_visible_vram_size: int = 0
    memory_visible_vram_used: int = 0
    memory_vram_size: int = 0
    memory_vram_used: int = 0
    memory_vram_vendor: str = ""
    power_dpm_force_performance_level: str = ""
    unique_id: str = ""


# device file name -> AMDGPUStats attribute
_UINT_FIELDS = {
    "gpu_busy_percent": "gpu_busy_percent",
    "mem_info_gtt_total": "memory_gtt_size",
    "mem_info_gtt_used": "memory_gtt_used",
    "mem_info_vis_vram_total": "memory_visible_vram_size",
    "mem_info_vis_vram_used": "memory_visible_vram_used",
    "mem_info_vram_total": "memory_vram_size",
    "mem_info_vram_used": "memory_vram_used",
}
_STRING_FIELDS = {
    "mem_info_vram_vendor": "memory_vram_vendor",
    "power_dpm_force_performance_level": "power_dpm_force_performance_level",
    "unique_id": "unique_id",
}


def _read_trimmed(path: str) -> str:
    with open(path, encoding="utf-8", errors="replace") as handle:
        return handle.read().strip()


def _parse_uint(text: str, path: str) -> int:
    if not _UINT_RE.fullmatch(text) or int(text) > _UINT64_MAX:
        raise ValueError(f"invalid unsigned integer {text!r} in {path}")
    return int(text)


def _read_card(card: str) -> AMDGPUStats | None:
    device = os.path.join(card, "device")
    uevent = _read_trimmed(os.path.join(device, "uevent"))
    if f"DRIVER={_DRIVER_NAME}" not in uevent:
        return None

    stats = AMDGPUStats(name=os.path.basename(card))
    for filename, attribute in _UINT_FIELDS.items():
        path = os.path.join(device, filename)
        try:
            text = _read_trimmed(path)
        except OSError:
            continue
        setattr(stats, attribute, _parse_uint(text, path))
    for filename, attribute in _STRING_FIELDS.items():
        try:
            setattr(stats, attribute, _read_trimmed(os.path.join(device, filename)))
        except OSError:
            continue
    return stats


def read_amdgpu_stats(sys_path: str | os.PathLike) -> list[AMDGPUStats]:
    """Read the amdgpu cards below class/drm of sys_path; other cards are skipped."""
    pattern = os.path.join(sys_path, "class", "drm", "card[0-9]")
    cards = (_read_card(card) for card in sorted(glob.glob(pattern)))
    return [stats for stats in cards if stats is not None]


def _desc(name: str, help_text: str, labels: tuple[str, ...] = ("card",)) -> Desc:
    return Desc(build_fq_name(NAMESPACE, _SUBSYSTEM, name), help_text, labels)


_CARD_INFO = _desc(
    "card_info",
    "Card information",
    ("card", "memory_vendor", "power_performance_level", "unique_id", "vendor"),
)
_GAUGES = (
    ("gpu_busy_percent", _desc("gpu_busy_percent", "How busy the GPU is as a percentage.")),
    (
        "memory_gtt_size",
        _desc(
            "memory_gtt_size_bytes",
            "The size of the graphics translation table (GTT) block in bytes.",
        ),
    ),
    (
        "memory_gtt_used",
        _desc(
            "memory_gtt_used_bytes",
            "The used amount of the graphics translation table (GTT) block in bytes.",
        ),
    ),
    ("memory_vram_size", _desc("memory_vram_size_bytes", "The size of VRAM in bytes.")),
    ("memory_vram_used", _desc("memory_vram_used_bytes", "The used amount of VRAM in bytes.")),
    (
        "memory_visible_vram_size",
        _desc("memory_vis_vram_size_bytes", "The size of visible VRAM in bytes."),
    ),
    (
        "memory_visible_vram_used",
        _desc("memory_vis_vram_used_bytes", "The used amount of visible VRAM in bytes."),
    ),
)


class DRMCollector(Collector):
    """Exposes statistics of amdgpu graphics cards."""

    def update(self) -> Iterator[Metric]:
        vendor = "amd"
        for stats in read_amdgpu_stats(self.settings.sys_path):
            yield new_const_metric(
                _CARD_INFO,
                ValueType.GAUGE,
                1,
                stats.name,
                stats.memory_vram_vendor,
                stats.power_dpm_force_performance_level,
                stats.unique_id,
                vendor,
            )
            for attribute, desc in _GAUGES:
                yield new_const_metric(
                    desc, ValueType.GAUGE, getattr(stats, attribute), stats.name
                )


register_collector("drm", False, DRMCollector)