"""Shared fixtures: an in-memory telemetry source standing in for NVML."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import pytest

from nvidia_gpu_exporter.collector.source import (
    MemoryInfo,
    Reading,
    TelemetryError,
    TelemetrySource,
    Utilization,
)

NOT_SUPPORTED = 3


@dataclass
class FakeDevice:
    minor: int
    uuid: str
    name: str
    used: int = 0
    total: int = 0
    duty: int = 0
    power: int = 0
    temp: int = 0
    fan: int = 0


class FakeSource(TelemetrySource):
    """Scripted telemetry source; device handles are list indices.

    ``fail(method)`` makes a global query fail, ``fail(method, index)`` makes
    a per-device query fail for the device at *index*.
    """

    def __init__(self, devices: list[FakeDevice] | None = None, driver: str = "535.104.05") -> None:
        self.devices = list(devices or [])
        self.driver = driver
        self.failures: set[tuple[str, int | None]] = set()
        self.init_error: TelemetryError | None = None
        self.shutdown_error: TelemetryError | None = None
        self.initialized = False
        self.shutdowns = 0

    def fail(self, method: str, index: int | None = None) -> None:
        self.failures.add((method, index))

    def _read(self, method: str, index: int | None, value: Any) -> Reading[Any]:
        if (method, index) in self.failures:
            return Reading.failure("Not Supported", NOT_SUPPORTED)
        return Reading.success(value)

    def init(self) -> None:
        if self.init_error is not None:
            raise self.init_error
        self.initialized = True

    def shutdown(self) -> None:
        self.shutdowns += 1
        if self.shutdown_error is not None:
            raise self.shutdown_error
        self.initialized = False

    def driver_version(self) -> Reading[str]:
        return self._read("driver_version", None, self.driver)

    def device_count(self) -> Reading[int]:
        return self._read("device_count", None, len(self.devices))

    def device_handle(self, index: int) -> Reading[Any]:
        return self._read("device_handle", index, index)

    def minor_number(self, handle: Any) -> Reading[int]:
        return self._read("minor_number", handle, self.devices[handle].minor)

    def uuid(self, handle: Any) -> Reading[str]:
        return self._read("uuid", handle, self.devices[handle].uuid)

    def name(self, handle: Any) -> Reading[str]:
        return self._read("name", handle, self.devices[handle].name)

    def memory_info(self, handle: Any) -> Reading[MemoryInfo]:
        dev = self.devices[handle]
        return self._read("memory_info", handle, MemoryInfo(dev.used, dev.total))

    def utilization(self, handle: Any) -> Reading[Utilization]:
        return self._read("utilization", handle, Utilization(self.devices[handle].duty, 0))

    def power_usage(self, handle: Any) -> Reading[int]:
        return self._read("power_usage", handle, self.devices[handle].power)

    def temperature(self, handle: Any) -> Reading[int]:
        return self._read("temperature", handle, self.devices[handle].temp)

    def fan_speed(self, handle: Any) -> Reading[int]:
        return self._read("fan_speed", handle, self.devices[handle].fan)


@pytest.fixture
def device_a() -> FakeDevice:
    return FakeDevice(
        minor=0, uuid="GPU-A", name="X",
        used=100, total=1000, duty=50, power=5000, temp=60, fan=30,
    )


@pytest.fixture
def device_b() -> FakeDevice:
    return FakeDevice(
        minor=1, uuid="GPU-B", name="Y",
        used=200, total=2000, duty=10, power=7000, temp=55, fan=40,
    )


@pytest.fixture
def fake_source(device_a: FakeDevice, device_b: FakeDevice) -> FakeSource:
    return FakeSource([device_a, device_b])


@pytest.fixture
def fake_source_cls() -> type[FakeSource]:
    return FakeSource
