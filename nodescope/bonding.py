"""Configured and active slaves of bonding interfaces."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterator

from .collector import NAMESPACE, Collector, NoDataError, TypedDesc, register_collector
from .metrics import Desc, Metric, ValueType, build_fq_name

_SLAVES = TypedDesc(
    Desc(
        build_fq_name(NAMESPACE, "bonding", "slaves"),
        "Number of configured slaves per bonding interface.",
        ("master",),
    ),
    ValueType.GAUGE,
)
_ACTIVE = TypedDesc(
    Desc(
        build_fq_name(NAMESPACE, "bonding", "active"),
        "Number of active slaves per bonding interface.",
        ("master",),
    ),
    ValueType.GAUGE,
)


def _read_slave_state(master_dir: Path, slave: str) -> str:
    try:
        return (master_dir / f"lower_{slave}" / "bonding_slave" / "mii_status").read_text()
    except FileNotFoundError:
        # some older kernels use the slave_ prefix
        return (master_dir / f"slave_{slave}" / "bonding_slave" / "mii_status").read_text()


def read_bonding_stats(root: str | os.PathLike) -> dict[str, tuple[int, int]]:
    """Map each bonding master to (configured slaves, slaves with MII status up)."""
    root_dir = Path(root)
    status: dict[str, tuple[int, int]] = {}
    for master in (root_dir / "bonding_masters").read_text().split():
        master_dir = root_dir / master
        slaves = (master_dir / "bonding" / "slaves").read_text().split()
        configured = active = 0
        for slave in slaves:
            state = _read_slave_state(master_dir, slave)
            configured += 1
            if state.strip() == "up":
                active += 1
        status[master] = (configured, active)
    return status


class BondingCollector(Collector):
    """Exposes the number of configured and active slaves of bonding interfaces."""

    def update(self) -> Iterator[Metric]:
        statusfile = self.settings.sys_file("class", "net")
        try:
            stats = read_bonding_stats(statusfile)
        except FileNotFoundError as err:
            self.logger.debug(
                "Not collecting bonding, file does not exist file=%s", statusfile
            )
            raise NoDataError() from err
        for master in sorted(stats):
            configured, active = stats[master]
            yield _SLAVES.metric(configured, master)
            yield _ACTIVE.metric(active, master)


register_collector("bonding", True, BondingCollector)