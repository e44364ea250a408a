"""Kernel entropy pool statistics."""

from __future__ import annotations

from typing import Iterator

from .collector import NAMESPACE, Collector, register_collector, read_uint_from_file
from .metrics import Desc, Metric, ValueType, build_fq_name, new_const_metric

_ENTROPY_AVAIL = Desc(
    build_fq_name(NAMESPACE, "", "entropy_available_bits"), "Bits of available entropy."
)
_ENTROPY_POOL_SIZE = Desc(
    build_fq_name(NAMESPACE, "", "entropy_pool_size_bits"), "Bits of entropy pool."
)


def _read_optional_uint(path: str) -> int | None:
    try:
        return read_uint_from_file(path)
    except FileNotFoundError:
        return None


class EntropyCollector(Collector):
    """Exposes the available entropy and the entropy pool size."""

    def _random_file(self, name: str) -> int | None:
        path = self.settings.proc_file("sys", "kernel", "random", name)
        try:
            return _read_optional_uint(path)
        except (OSError, ValueError) as err:
            raise RuntimeError(f"failed to get kernel random stats: {err}") from err

    def update(self) -> Iterator[Metric]:
        available = self._random_file("entropy_avail")
        pool_size = self._random_file("poolsize")

        if available is None:
            raise RuntimeError("couldn't get entropy_avail")
        yield new_const_metric(_ENTROPY_AVAIL, ValueType.GAUGE, available)

        if pool_size is None:
            raise RuntimeError("couldn't get entropy poolsize")
        yield new_const_metric(_ENTROPY_POOL_SIZE, ValueType.GAUGE, pool_size)


register_collector("entropy", True, EntropyCollector)