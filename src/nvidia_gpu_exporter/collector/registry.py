"""Metric descriptors and per-cycle value sets for GPU telemetry."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

DEVICE_LABELS = ("minor_number", "uuid", "name")
GPU_INFO_LABELS = ("driver_version",)


@dataclass(frozen=True)
class MetricDescriptor:
    """Static identity of one exported metric."""

    name: str
    documentation: str
    labels: tuple[str, ...] = ()


class MetricKind(Enum):
    """Device-scoped metric kinds, one per telemetry field."""

    MEMORY_USED = "memory_used_bytes"
    MEMORY_TOTAL = "memory_total_bytes"
    DUTY_CYCLE = "duty_cycle"
    POWER_USAGE = "power_usage_milliwatts"
    TEMPERATURE = "temperature_celsius"
    FAN_SPEED = "fanspeed_percent"


_DEVICE_HELP = {
    MetricKind.MEMORY_USED: "Memory used by the GPU device in bytes",
    MetricKind.MEMORY_TOTAL: "Total memory of the GPU device in bytes",
    MetricKind.DUTY_CYCLE: (
        "Percent of time over the past sample period during which one or more "
        "kernels were executing on the GPU device"
    ),
    MetricKind.POWER_USAGE: "Power usage of the GPU device in milliwatts",
    MetricKind.TEMPERATURE: "Temperature of the GPU device in celsius",
    MetricKind.FAN_SPEED: "Fanspeed of the GPU device as a percent of its maximum",
}


def build_fq_name(namespace: str, name: str) -> str:
    if not namespace:
        return name
    return f"{namespace}_{name}"


class MetricRegistry:
    """Owns the fixed descriptor set and the label->value map of each device kind.

    The registry does no locking of its own; the collector holding its cycle
    lock is the only writer and reader.
    """

    def __init__(self, namespace: str = "nvidia_gpu") -> None:
        self.namespace = namespace
        self.gpu_info = MetricDescriptor(
            name=build_fq_name(namespace, "gpu_info"),
            documentation=(
                "A metric with a constant '1' value labeled by gpu "
                f"{', '.join(GPU_INFO_LABELS)}."
            ),
            labels=GPU_INFO_LABELS,
        )
        self.num_devices = MetricDescriptor(
            name=build_fq_name(namespace, "num_devices"),
            documentation="Number of GPU devices",
        )
        self._descriptors: dict[MetricKind, MetricDescriptor] = {
            kind: MetricDescriptor(
                name=build_fq_name(namespace, kind.value),
                documentation=_DEVICE_HELP[kind],
                labels=DEVICE_LABELS,
            )
            for kind in MetricKind
        }
        self._values: dict[MetricKind, dict[tuple[str, ...], float]] = {
            kind: {} for kind in MetricKind
        }

    def describe(self) -> list[MetricDescriptor]:
        """Return every descriptor, global ones first."""
        return [self.gpu_info, self.num_devices, *self._descriptors.values()]

    def reset(self, kind: MetricKind) -> None:
        """Drop every series of *kind*."""
        self._values[kind].clear()

    def reset_all(self) -> None:
        for kind in MetricKind:
            self.reset(kind)

    def set(self, kind: MetricKind, labels: tuple[str, ...], value: float) -> None:
        """Upsert one series; a repeated label tuple overwrites the earlier value."""
        expected = self._descriptors[kind].labels
        if len(labels) != len(expected):
            raise ValueError(
                f"{self._descriptors[kind].name} expects {len(expected)} label values, "
                f"got {len(labels)}"
            )
        self._values[kind][tuple(labels)] = float(value)

    def snapshot(self) -> list[tuple[MetricDescriptor, tuple[str, ...], float]]:
        """Return a point-in-time copy of every device-scoped series."""
        entries: list[tuple[MetricDescriptor, tuple[str, ...], float]] = []
        for kind in MetricKind:
            descriptor = self._descriptors[kind]
            for labels, value in self._values[kind].items():
                entries.append((descriptor, labels, value))
        return entries

    def __len__(self) -> int:
        return sum(len(values) for values in self._values.values())
