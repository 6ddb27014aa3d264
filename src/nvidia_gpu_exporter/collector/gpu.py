"""GPU collector – one NVML collection cycle per scrape."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from operator import attrgetter
from typing import Any

from .base import BaseCollector, MetricSample
from .registry import MetricDescriptor, MetricKind, MetricRegistry
from .source import Reading, TelemetrySource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeviceIdentity:
    """Label key of one device for the duration of a cycle."""

    minor_number: int
    uuid: str
    name: str

    def labels(self) -> tuple[str, str, str]:
        return (str(self.minor_number), self.uuid, self.name)


def _identity(value: Any) -> Any:
    return value


# (description used in logs, source method, metric kinds fed by the reading)
FIELD_QUERIES: tuple[tuple[str, str, tuple[tuple[MetricKind, Callable[[Any], Any]], ...]], ...] = (
    (
        "memory info",
        "memory_info",
        (
            (MetricKind.MEMORY_USED, attrgetter("used")),
            (MetricKind.MEMORY_TOTAL, attrgetter("total")),
        ),
    ),
    ("utilization rates", "utilization", ((MetricKind.DUTY_CYCLE, attrgetter("gpu")),)),
    ("power usage", "power_usage", ((MetricKind.POWER_USAGE, _identity),)),
    ("temperature", "temperature", ((MetricKind.TEMPERATURE, _identity),)),
    ("fan speed", "fan_speed", ((MetricKind.FAN_SPEED, _identity),)),
)


class GpuCollector(BaseCollector):
    """Translates telemetry source readings into labeled gauge samples.

    Each call to :meth:`collect` is one cycle: reset every device-scoped
    series, read the driver version and device count, then identify and
    query each device by index.  A failed query only removes what depends
    on it: one series for a field, one device for its handle or identity,
    every device-scoped series for the device count.

    Cycles are serialized by a lock.  A native call that never returns
    holds the lock, so every later scrape blocks behind it; there is no
    timeout on an in-flight cycle.
    """

    def __init__(
        self,
        source: TelemetrySource,
        registry: MetricRegistry | None = None,
        namespace: str = "nvidia_gpu",
    ) -> None:
        self._source = source
        self._registry = registry if registry is not None else MetricRegistry(namespace)
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return "gpu"

    @property
    def registry(self) -> MetricRegistry:
        return self._registry

    def describe(self) -> list[MetricDescriptor]:
        return self._registry.describe()

    def collect(self) -> list[MetricSample]:
        with self._lock:
            start = time.monotonic()
            samples = self._collect_cycle()
            logger.debug(
                "%s collector: %d samples in %.3fs", self.name, len(samples), time.monotonic() - start
            )
            return samples

    def _collect_cycle(self) -> list[MetricSample]:
        registry = self._registry
        registry.reset_all()
        samples: list[MetricSample] = []

        driver_version = self._source.driver_version()
        if self._check(driver_version, "system driver version"):
            samples.append(self._sample(registry.gpu_info, (str(driver_version.value),), 1))

        device_count = self._source.device_count()
        if not self._check(device_count, "device count"):
            return samples
        samples.append(self._sample(registry.num_devices, (), device_count.value))

        for index in range(int(device_count.value)):
            self._collect_device(index)

        for descriptor, labels, value in registry.snapshot():
            samples.append(self._sample(descriptor, labels, value))
        return samples

    def _collect_device(self, index: int) -> None:
        handle = self._source.device_handle(index)
        if not self._check(handle, "device", index):
            return

        identity = self._resolve_identity(index, handle.value)
        if identity is None:
            return
        labels = identity.labels()

        for what, method, targets in FIELD_QUERIES:
            reading = getattr(self._source, method)(handle.value)
            if not self._check(reading, f"{what} of device", index):
                continue
            for kind, extract in targets:
                self._registry.set(kind, labels, extract(reading.value))

    def _resolve_identity(self, index: int, handle: Any) -> DeviceIdentity | None:
        """Read minor number, UUID and name; any failure skips the device."""
        minor_number = self._source.minor_number(handle)
        if not self._check(minor_number, "minor number of device", index):
            return None
        uuid = self._source.uuid(handle)
        if not self._check(uuid, "UUID of device", index):
            return None
        name = self._source.name(handle)
        if not self._check(name, "name of device", index):
            return None
        return DeviceIdentity(int(minor_number.value), str(uuid.value), str(name.value))

    @staticmethod
    def _check(reading: Reading[Any], what: str, index: int | None = None) -> bool:
        if reading.ok:
            return True
        if index is None:
            logger.error("Unable to get %s: %s", what, reading.describe_error())
        else:
            logger.error(
                "Unable to get %s (index=%d): %s", what, index, reading.describe_error()
            )
        return False

    @staticmethod
    def _sample(descriptor: MetricDescriptor, labels: tuple[str, ...], value: float) -> MetricSample:
        return MetricSample(
            name=descriptor.name,
            value=float(value),
            labels=dict(zip(descriptor.labels, labels)),
            description=descriptor.documentation,
        )
