"""Tests for the prometheus_client adapter."""

from prometheus_client import generate_latest
from prometheus_client.parser import text_string_to_metric_families

from nvidia_gpu_exporter import __version__
from nvidia_gpu_exporter.collector.gpu import GpuCollector
from nvidia_gpu_exporter.exporter.prometheus import PrometheusCollector, build_registry


def _families(registry):
    text = generate_latest(registry).decode("utf-8")
    return {family.name: family for family in text_string_to_metric_families(text)}


def test_describe_has_no_samples(fake_source):
    adapter = PrometheusCollector(GpuCollector(fake_source))
    families = list(adapter.describe())
    assert len(families) == 8
    assert all(family.samples == [] for family in families)
    assert all(family.type == "gauge" for family in families)


def test_exposition(fake_source):
    fake_source.fail("fan_speed", 1)
    registry = build_registry(GpuCollector(fake_source), include_process_metrics=False)
    families = _families(registry)

    assert families["nvidia_gpu_num_devices"].samples[0].value == 2
    info = families["nvidia_gpu_gpu_info"].samples[0]
    assert info.labels == {"driver_version": "535.104.05"}
    assert info.value == 1

    fans = families["nvidia_gpu_fanspeed_percent"].samples
    assert [s.labels for s in fans] == [{"minor_number": "0", "uuid": "GPU-A", "name": "X"}]
    assert len(families["nvidia_gpu_memory_used_bytes"].samples) == 2
    assert families["nvidia_gpu_duty_cycle"].documentation.startswith("Percent of time")


def test_empty_families_are_omitted(fake_source):
    fake_source.fail("device_count")
    registry = build_registry(GpuCollector(fake_source), include_process_metrics=False)
    text = generate_latest(registry).decode("utf-8")
    assert "nvidia_gpu_gpu_info" in text
    assert "nvidia_gpu_num_devices" not in text
    assert "nvidia_gpu_memory_used_bytes" not in text


def test_build_info(fake_source):
    registry = build_registry(GpuCollector(fake_source), include_process_metrics=False)
    value = registry.get_sample_value(
        "nvidia_gpu_exporter_build_info", {"version": __version__}
    )
    assert value == 1.0


def test_process_metrics_toggle(fake_source):
    with_process = generate_latest(build_registry(GpuCollector(fake_source))).decode()
    without = generate_latest(
        build_registry(GpuCollector(fake_source), include_process_metrics=False)
    ).decode()
    assert "python_info" in with_process
    assert "python_info" not in without


def test_each_scrape_runs_a_cycle(fake_source):
    registry = build_registry(GpuCollector(fake_source), include_process_metrics=False)
    assert registry.get_sample_value("nvidia_gpu_num_devices") == 2
    fake_source.devices.pop()
    assert registry.get_sample_value("nvidia_gpu_num_devices") == 1
    assert registry.get_sample_value(
        "nvidia_gpu_temperature_celsius",
        {"minor_number": "1", "uuid": "GPU-B", "name": "Y"},
    ) is None
