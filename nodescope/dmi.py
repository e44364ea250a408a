"""Desktop Management Interface (DMI) information."""

from __future__ import annotations

import logging
import os
from typing import Iterator

from .collector import NAMESPACE, Collector, NoDataError, Settings, register_collector
from .metrics import Desc, Metric, ValueType, build_fq_name, new_const_metric

# sysfs file name -> label name
_DMI_FILES = {
    "bios_date": "bios_date",
    "bios_release": "bios_release",
    "bios_vendor": "bios_vendor",
    "bios_version": "bios_version",
    "board_asset_tag": "board_asset_tag",
    "board_name": "board_name",
    "board_serial": "board_serial",
    "board_vendor": "board_vendor",
    "board_version": "board_version",
    "chassis_asset_tag": "chassis_asset_tag",
    "chassis_serial": "chassis_serial",
    "chassis_vendor": "chassis_vendor",
    "chassis_version": "chassis_version",
    "product_family": "product_family",
    "product_name": "product_name",
    "product_serial": "product_serial",
    "product_sku": "product_sku",
    "product_uuid": "product_uuid",
    "product_version": "product_version",
    "sys_vendor": "system_vendor",
}

_HELP = (
    "A metric with a constant '1' value labeled by bios_date, bios_release, bios_vendor, "
    "bios_version, board_asset_tag, board_name, board_serial, board_vendor, board_version, "
    "chassis_asset_tag, chassis_serial, chassis_vendor, chassis_version, product_family, "
    "product_name, product_serial, product_sku, product_uuid, product_version, "
    "system_vendor if provided by DMI."
)


def read_dmi_info(sys_path: str | os.PathLike) -> dict[str, str]:
    """Read class/dmi/id below sys_path; map label names to values, sorted by label.

    Files that cannot be read for lack of permission are left out.
    """
    directory = os.path.join(sys_path, "class", "dmi", "id")
    info: dict[str, str] = {}
    with os.scandir(directory) as entries:
        for entry in entries:
            if not entry.is_file() or entry.name not in _DMI_FILES:
                continue
            try:
                with open(entry.path, encoding="utf-8", errors="replace") as handle:
                    value = handle.read().strip()
            except PermissionError:
                continue
            info[_DMI_FILES[entry.name]] = value
    return dict(sorted(info.items()))


class DMICollector(Collector):
    """Exposes DMI information as labels of a constant info metric."""

    def __init__(self, settings: Settings | None = None, logger: logging.Logger | None = None):
        super().__init__(settings, logger)
        try:
            info = read_dmi_info(self.settings.sys_path)
        except FileNotFoundError as err:
            self.logger.debug(
                "Platform does not support Desktop Management Interface (DMI) information err=%s",
                err,
            )
            info = {}
        except OSError as err:
            raise RuntimeError(
                f"failed to read Desktop Management Interface (DMI) information: {err}"
            ) from err
        # Built once: the information does not change until the next reboot.
        self.info_desc = Desc(build_fq_name(NAMESPACE, "dmi", "info"), _HELP, tuple(info))
        self.values = tuple(info.values())

    def update(self) -> Iterator[Metric]:
        if not self.values:
            raise NoDataError()
        yield new_const_metric(self.info_desc, ValueType.GAUGE, 1.0, *self.values)


register_collector("dmi", True, DMICollector)