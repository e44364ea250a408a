"""Metric descriptors, constant metrics and the text exposition format."""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Mapping


class ValueType(enum.Enum):
    """The kind of value a metric carries."""

    COUNTER = "counter"
    GAUGE = "gauge"
    UNTYPED = "untyped"


@dataclass(frozen=True)
class Desc:
    """Describes a metric family: its name, help text and label names."""

    fq_name: str
    help: str
    variable_labels: tuple[str, ...] = ()
    const_labels: tuple[tuple[str, str], ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "variable_labels", tuple(self.variable_labels or ()))
        const = self.const_labels or ()
        if isinstance(const, Mapping):
            const = const.items()
        object.__setattr__(
            self, "const_labels", tuple(sorted((str(k), str(v)) for k, v in const))
        )
        names = list(self.variable_labels) + [k for k, _ in self.const_labels]
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate label names in descriptor {self.fq_name!r}")


@dataclass(frozen=True)
class Metric:
    """A single sample with fixed value and label values."""

    desc: Desc
    value_type: ValueType
    value: float
    label_values: tuple[str, ...] = ()

    @property
    def name(self) -> str:
        return self.desc.fq_name

    @property
    def labels(self) -> dict[str, str]:
        """All labels of the sample, sorted by label name."""
        pairs = list(zip(self.desc.variable_labels, self.label_values))
        pairs.extend(self.desc.const_labels)
        return dict(sorted(pairs))


def build_fq_name(namespace: str, subsystem: str, name: str) -> str:
    """Join the non-empty parts with underscores; an empty name gives ''."""
    if not name:
        return ""
    return "_".join(part for part in (namespace, subsystem, name) if part)


def new_const_metric(desc: Desc, value_type: ValueType, value: float, *args: str) -> Metric:
    """Create a metric, checking the label values against the descriptor."""
    if len(args) != len(desc.variable_labels):
        raise ValueError(
            f"{desc.fq_name}: expected {len(desc.variable_labels)} label values, got {len(args)}"
        )
    return Metric(desc, value_type, float(value), tuple(str(v) for v in args))


def format_value(value: float) -> str:
    """Format a sample value as the text exposition format writes it."""
    value = float(value)
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    sign = "-" if math.copysign(1.0, value) < 0 else ""
    if value == 0:
        return sign + "0"
    _, digit_tuple, exponent = Decimal(repr(abs(value))).normalize().as_tuple()
    digits = "".join(map(str, digit_tuple))
    point = len(digits) + exponent
    exp10 = point - 1
    if exp10 < -4 or exp10 >= 6:
        mantissa = digits[0] + ("." + digits[1:] if len(digits) > 1 else "")
        return f"{sign}{mantissa}e{'-' if exp10 < 0 else '+'}{abs(exp10):02d}"
    if point <= 0:
        body = "0." + "0" * (-point) + digits
    elif point >= len(digits):
        body = digits + "0" * (point - len(digits))
    else:
        body = digits[:point] + "." + digits[point:]
    return sign + body


def _escape_help(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n")


def _escape_label(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _sample_line(metric: Metric) -> str:
    labels = metric.labels
    if labels:
        inner = ",".join(f'{k}="{_escape_label(v)}"' for k, v in labels.items())
        return f"{metric.name}{{{inner}}} {format_value(metric.value)}"
    return f"{metric.name} {format_value(metric.value)}"


def render_text(metrics: Iterable[Metric]) -> str:
    """Render metrics in the text exposition format, families sorted by name."""
    families: dict[str, tuple[str, ValueType, dict[tuple, Metric]]] = {}
    for metric in metrics:
        key = tuple(metric.labels.items())
        family = families.get(metric.name)
        if family is None:
            families[metric.name] = (metric.desc.help, metric.value_type, {key: metric})
            continue
        help_text, value_type, members = family
        if help_text != metric.desc.help or value_type is not metric.value_type:
            raise ValueError(f"inconsistent descriptors for metric family {metric.name!r}")
        if key in members:
            raise ValueError(
                f"metric {metric.name!r} with labels {dict(key)} was collected twice"
            )
        members[key] = metric

    lines: list[str] = []
    for name in sorted(families):
        help_text, value_type, members = families[name]
        lines.append(f"# HELP {name} {_escape_help(help_text)}")
        lines.append(f"# TYPE {name} {value_type.value}")
        for key in sorted(members, key=lambda k: tuple(v for _, v in k)):
            lines.append(_sample_line(members[key]))
    return "".join(line + "\n" for line in lines)