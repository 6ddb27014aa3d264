"""Tests for the command-line entry point."""

import json
import signal
import threading

from prometheus_client.parser import text_string_to_metric_families

from nvidia_gpu_exporter import __version__
from nvidia_gpu_exporter import cli
from nvidia_gpu_exporter.collector.source import TelemetryError

MISSING_CONFIG = "/tmp/nonexistent_nvidia_gpu_exporter.yaml"


def test_version(capsys, fake_source):
    assert cli.main(["--config", MISSING_CONFIG, "version"], source=fake_source) == 0
    assert capsys.readouterr().out.strip() == f"nvidia_gpu_exporter {__version__}"
    assert not fake_source.initialized
    assert fake_source.shutdowns == 0


def test_collect_text(capsys, fake_source):
    fake_source.fail("fan_speed", 1)
    assert cli.main(["--config", MISSING_CONFIG, "collect"], source=fake_source) == 0
    out = capsys.readouterr().out
    fans = {
        sample.labels["uuid"]: sample.value
        for family in text_string_to_metric_families(out)
        if family.name == "nvidia_gpu_fanspeed_percent"
        for sample in family.samples
    }
    assert fans == {"GPU-A": 30.0}
    assert "nvidia_gpu_num_devices 2.0" in out
    assert fake_source.shutdowns == 1


def test_collect_json(capsys, fake_source):
    assert cli.main(["--config", MISSING_CONFIG, "collect", "--format", "json"], source=fake_source) == 0
    records = json.loads(capsys.readouterr().out)
    assert len(records) == 14
    assert records[0]["name"] == "nvidia_gpu_gpu_info"


def test_init_failure_exits_non_zero(fake_source):
    fake_source.init_error = TelemetryError("Couldn't initialize NVML: Driver Not Loaded", 9)
    assert cli.main(["--config", MISSING_CONFIG, "collect"], source=fake_source) == 1


def test_invalid_flag_value_exits_non_zero(capsys, fake_source):
    code = cli.main(
        ["--config", MISSING_CONFIG, "--web.telemetry-path", "metrics", "version"],
        source=fake_source,
    )
    assert code == 1
    assert "telemetry path" in capsys.readouterr().err


def test_invalid_namespace_from_env_exits_non_zero(capsys, monkeypatch, fake_source):
    monkeypatch.setenv("NVIDIA_GPU_EXPORTER_NAMESPACE", "my-gpu")
    assert cli.main(["--config", MISSING_CONFIG, "collect"], source=fake_source) == 1
    assert "namespace" in capsys.readouterr().err
    assert not fake_source.initialized


def test_flags_override_config(tmp_path):
    path = tmp_path / "cfg.yaml"
    path.write_text("web:\n  listen_address: ':1111'\nlogging:\n  level: error\n")
    args = cli.build_parser().parse_args([
        "--config", str(path),
        "--web.listen-address", "127.0.0.1:2222",
        "--log.level", "debug",
        "--no-process-metrics",
    ])
    cfg = cli._resolve_config(args)
    assert cfg.web.listen_address == "127.0.0.1:2222"
    assert cfg.logging.level == "debug"
    assert cfg.collector.process_metrics is False


def test_bind_failure_exits_non_zero(fake_source):
    code = cli.main(
        ["--config", MISSING_CONFIG, "--web.listen-address", "256.0.0.1:0", "serve"],
        source=fake_source,
    )
    assert code == 1
    assert fake_source.shutdowns == 1


def test_serve_until_signal(fake_source):
    """serve runs until SIGTERM, then shuts NVML down and exits 0."""
    timer = threading.Timer(0.5, signal.raise_signal, args=(signal.SIGTERM,))
    previous = signal.getsignal(signal.SIGTERM), signal.getsignal(signal.SIGINT)
    timer.start()
    try:
        code = cli.main(
            ["--config", MISSING_CONFIG, "--web.listen-address", "127.0.0.1:0"],
            source=fake_source,
        )
    finally:
        timer.cancel()
        signal.signal(signal.SIGTERM, previous[0])
        signal.signal(signal.SIGINT, previous[1])
    assert code == 0
    assert fake_source.shutdowns == 1
