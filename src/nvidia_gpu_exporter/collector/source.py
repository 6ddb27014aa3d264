"""Telemetry source contract and its NVML implementation.

Every per-field query returns a :class:`Reading` instead of raising, so the
collector can treat "value or failure" uniformly for all fields.  Only
library initialisation and shutdown raise, via :class:`TelemetryError`.
"""

from __future__ import annotations

import abc
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Generic, NamedTuple, TypeVar

import pynvml

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TelemetryError(Exception):
    """Raised when the native telemetry library cannot be initialised or shut down."""

    def __init__(self, message: str, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class Reading(Generic[T]):
    """Outcome of one native query: a value, or an error with its native code."""

    value: T | None = None
    error: str | None = None
    code: int | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> Reading[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: str, code: int | None = None) -> Reading[T]:
        return cls(error=error, code=code)

    def describe_error(self) -> str:
        if self.code is None:
            return str(self.error)
        return f"{self.error} (code {self.code})"


class MemoryInfo(NamedTuple):
    """Device framebuffer usage in bytes."""

    used: int
    total: int


class Utilization(NamedTuple):
    """Device utilisation over the last sample period, in percent."""

    gpu: int
    memory: int


class TelemetrySource(abc.ABC):
    """Synchronous view of a hardware-management library.

    Handles returned by :meth:`device_handle` are opaque and only valid for
    the cycle that resolved them.
    """

    @abc.abstractmethod
    def init(self) -> None:
        """Initialise the native library. Raises :class:`TelemetryError`."""

    @abc.abstractmethod
    def shutdown(self) -> None:
        """Release the native library. Raises :class:`TelemetryError`."""

    @abc.abstractmethod
    def driver_version(self) -> Reading[str]: ...

    @abc.abstractmethod
    def device_count(self) -> Reading[int]: ...

    @abc.abstractmethod
    def device_handle(self, index: int) -> Reading[Any]: ...

    @abc.abstractmethod
    def minor_number(self, handle: Any) -> Reading[int]: ...

    @abc.abstractmethod
    def uuid(self, handle: Any) -> Reading[str]: ...

    @abc.abstractmethod
    def name(self, handle: Any) -> Reading[str]: ...

    @abc.abstractmethod
    def memory_info(self, handle: Any) -> Reading[MemoryInfo]: ...

    @abc.abstractmethod
    def utilization(self, handle: Any) -> Reading[Utilization]: ...

    @abc.abstractmethod
    def power_usage(self, handle: Any) -> Reading[int]:
        """Power draw in milliwatts."""

    @abc.abstractmethod
    def temperature(self, handle: Any) -> Reading[int]:
        """GPU die temperature in degrees Celsius."""

    @abc.abstractmethod
    def fan_speed(self, handle: Any) -> Reading[int]:
        """Fan speed as a percent of its maximum."""


def _text(value: Any) -> str:
    # older bindings return bytes for string queries
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


class NvmlSource(TelemetrySource):
    """:class:`TelemetrySource` backed by the ``pynvml`` bindings."""

    def _query(self, func: Callable[..., Any], *args: Any) -> Reading[Any]:
        try:
            return Reading.success(func(*args))
        except pynvml.NVMLError as err:
            return Reading.failure(str(err), getattr(err, "value", None))

    def init(self) -> None:
        try:
            pynvml.nvmlInit()
        except pynvml.NVMLError as err:
            raise TelemetryError(
                f"Couldn't initialize NVML: {err}", getattr(err, "value", None)
            ) from err

    def shutdown(self) -> None:
        try:
            pynvml.nvmlShutdown()
        except pynvml.NVMLError as err:
            raise TelemetryError(
                f"Unable to shutdown NVML: {err}", getattr(err, "value", None)
            ) from err

    def driver_version(self) -> Reading[str]:
        reading = self._query(pynvml.nvmlSystemGetDriverVersion)
        if reading.ok:
            return Reading.success(_text(reading.value))
        return reading

    def device_count(self) -> Reading[int]:
        return self._query(pynvml.nvmlDeviceGetCount)

    def device_handle(self, index: int) -> Reading[Any]:
        return self._query(pynvml.nvmlDeviceGetHandleByIndex, index)

    def minor_number(self, handle: Any) -> Reading[int]:
        return self._query(pynvml.nvmlDeviceGetMinorNumber, handle)

    def uuid(self, handle: Any) -> Reading[str]:
        reading = self._query(pynvml.nvmlDeviceGetUUID, handle)
        if reading.ok:
            return Reading.success(_text(reading.value))
        return reading

    def name(self, handle: Any) -> Reading[str]:
        reading = self._query(pynvml.nvmlDeviceGetName, handle)
        if reading.ok:
            return Reading.success(_text(reading.value))
        return reading

    def memory_info(self, handle: Any) -> Reading[MemoryInfo]:
        reading = self._query(pynvml.nvmlDeviceGetMemoryInfo, handle)
        if reading.ok:
            return Reading.success(MemoryInfo(int(reading.value.used), int(reading.value.total)))
        return reading

    def utilization(self, handle: Any) -> Reading[Utilization]:
        reading = self._query(pynvml.nvmlDeviceGetUtilizationRates, handle)
        if reading.ok:
            return Reading.success(Utilization(int(reading.value.gpu), int(reading.value.memory)))
        return reading

    def power_usage(self, handle: Any) -> Reading[int]:
        return self._query(pynvml.nvmlDeviceGetPowerUsage, handle)

    def temperature(self, handle: Any) -> Reading[int]:
        return self._query(pynvml.nvmlDeviceGetTemperature, handle, pynvml.NVML_TEMPERATURE_GPU)

    def fan_speed(self, handle: Any) -> Reading[int]:
        return self._query(pynvml.nvmlDeviceGetFanSpeed, handle)


@contextmanager
def nvml_session(source: TelemetrySource) -> Iterator[TelemetrySource]:
    """Initialise *source* for the duration of the block.

    Initialisation failure propagates; shutdown failure is only logged.
    """
    source.init()
    logger.debug("Telemetry source initialised")
    try:
        yield source
    finally:
        try:
            source.shutdown()
        except TelemetryError as err:
            logger.error("%s", err)
        else:
            logger.debug("Telemetry source shut down")
