"""prometheus_client adapter – exposes GpuCollector cycles to a CollectorRegistry."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator

from prometheus_client import Info, PlatformCollector, ProcessCollector
from prometheus_client.core import GaugeMetricFamily
from prometheus_client.registry import Collector, CollectorRegistry

from .. import __version__
from ..collector.gpu import GpuCollector
from ..collector.registry import MetricDescriptor

logger = logging.getLogger(__name__)

BUILD_INFO_NAME = "nvidia_gpu_exporter_build"


def _family(descriptor: MetricDescriptor) -> GaugeMetricFamily:
    return GaugeMetricFamily(
        descriptor.name,
        descriptor.documentation,
        labels=list(descriptor.labels),
    )


class PrometheusCollector(Collector):
    """Runs one GPU collection cycle for every registry collect.

    Metric families without samples in a cycle are not yielded, so a failed
    query shows up as an absent series rather than an empty family.
    """

    def __init__(self, gpu_collector: GpuCollector) -> None:
        self._gpu = gpu_collector

    def describe(self) -> Iterable[GaugeMetricFamily]:
        return [_family(descriptor) for descriptor in self._gpu.describe()]

    def collect(self) -> Iterator[GaugeMetricFamily]:
        descriptors = {d.name: d for d in self._gpu.describe()}
        families: dict[str, GaugeMetricFamily] = {}

        for sample in self._gpu.collect():
            descriptor = descriptors.get(sample.name)
            if descriptor is None:
                logger.warning("Dropping sample for undescribed metric %s", sample.name)
                continue
            family = families.get(sample.name)
            if family is None:
                family = families[sample.name] = _family(descriptor)
            family.add_metric([sample.labels[label] for label in descriptor.labels], sample.value)

        for name in descriptors:
            if name in families:
                yield families[name]


def build_registry(
    gpu_collector: GpuCollector,
    include_process_metrics: bool = True,
) -> CollectorRegistry:
    """Create a registry holding the GPU collector and exporter self-metrics."""
    registry = CollectorRegistry(auto_describe=True)
    registry.register(PrometheusCollector(gpu_collector))

    build_info = Info(
        BUILD_INFO_NAME,
        "A metric with a constant '1' value labeled by the exporter version.",
        registry=registry,
    )
    build_info.info({"version": __version__})

    if include_process_metrics:
        ProcessCollector(registry=registry)
        PlatformCollector(registry=registry)
    return registry
