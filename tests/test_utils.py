import json
import logging
from pathlib import Path

import pytest

import main as cli
from utils import InstanceLockError, ResourceMonitor, acquire_instance_lock, setup_logging

LOGGER_NAMES = ("media_offload", "media_offload.performance", "media_offload.transfer")


@pytest.fixture
def clean_loggers():
    def reset() -> None:
        for name in LOGGER_NAMES:
            logger = logging.getLogger(name)
            for handler in list(logger.handlers):
                logger.removeHandler(handler)
                handler.close()
            logger.propagate = True

    reset()
    yield
    reset()


def test_instance_lock_is_exclusive(tmp_path: Path) -> None:
    lock_path = tmp_path / "data" / "offload.lock"

    with acquire_instance_lock(lock_path) as lock:
        assert "label=serve" in lock_path.read_text(encoding="utf-8")
        with pytest.raises(InstanceLockError):
            acquire_instance_lock(lock_path)

    again = acquire_instance_lock(lock_path, label="drive")
    again.release()
    again.release()


def test_setup_logging_splits_performance_and_transfer_logs(tmp_path: Path, clean_loggers) -> None:
    loggers = setup_logging(tmp_path / "logs")

    loggers["transfer"].info("UPLOAD a.jpg -> s3://media/a.jpg")
    loggers["performance"].info("migration batch 1")
    loggers["main"].error("listing failed")
    for logger in loggers.values():
        for handler in logger.handlers:
            handler.flush()

    files = {path.name.split("_")[0]: path for path in (tmp_path / "logs").iterdir()}
    assert "UPLOAD a.jpg" in files["transfers"].read_text(encoding="utf-8")
    assert "migration batch 1" in files["performance"].read_text(encoding="utf-8")
    offload_logs = [path for path in (tmp_path / "logs").glob("offload_*.log")]
    assert any("listing failed" in path.read_text(encoding="utf-8") for path in offload_logs)
    assert loggers["transfer"].propagate is False
    assert setup_logging(tmp_path / "logs")["main"].handlers == loggers["main"].handlers


def test_resource_monitor_disabled_without_limits() -> None:
    monitor = ResourceMonitor(max_cpu_percent=0, max_ram_percent=0)

    assert monitor.enabled is False
    assert monitor.throttle() == 0.0


def test_cli_registers_uploads_and_reports_status(tmp_path: Path, monkeypatch, capsys, clean_loggers) -> None:
    monkeypatch.setattr(cli, "_enable_crash_diagnostics", lambda logs_dir: None)
    uploads = tmp_path / "uploads"
    uploads.mkdir()
    (uploads / "photo.jpg").write_bytes(b"photo")
    (uploads / "photo-150x150.jpg").write_bytes(b"thumb")
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "\n".join(
            [
                "paths:",
                "  uploads: \"uploads\"",
                "  logs: \"logs\"",
                "databases:",
                "  registry: \"data/registry.sqlite\"",
                "  state: \"data/state.sqlite\"",
                "storage:",
                "  provider: \"s3\"",
                "  bucket: \"media\"",
                "  region: \"us-east-1\"",
                "  access_key_id: \"key\"",
                "  secret_access_key: \"secret\"",
            ]
        ),
        encoding="utf-8",
    )

    assert cli.main(["--config", str(config_path), "register"]) == 0
    registered = json.loads(capsys.readouterr().out)
    assert registered == {"registered": 1, "thumbnails": 1, "skipped": 0}

    assert cli.main(["--config", str(config_path), "status", "migration"]) == 0
    status = json.loads(capsys.readouterr().out)
    assert status["migration"]["state"]["status"] == "idle"

    assert cli.main(["--config", str(config_path), "clear-metadata"]) == 2
