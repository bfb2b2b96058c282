from pathlib import Path

from config import AppConfig


def test_config_resolves_paths(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text("paths:\n  logs: \"logs\"\n", encoding="utf-8")

    config = AppConfig.load(config_path)
    logs_path = config.resolve_path("paths", "logs")

    assert logs_path == config_path.parent / "logs"
    assert config.get("missing", default=123) == 123


def test_config_path_from_environment(tmp_path: Path, monkeypatch) -> None:
    config_path = tmp_path / "offload.yaml"
    config_path.write_text(
        "\n".join(
            [
                "storage:",
                "  bucket: \"media\"",
                "  base_path: \"wp\"",
            ]
        ),
        encoding="utf-8",
    )
    monkeypatch.setenv("MEDIA_OFFLOAD_CONFIG", str(config_path))

    config = AppConfig.load()

    assert config.get("storage", "bucket") == "media"
    assert config.root_dir == tmp_path


def test_secrets_prefer_environment(tmp_path: Path, monkeypatch) -> None:
    config = AppConfig.from_dict(
        {"storage": {"access_key_id": "from-yaml", "secret_access_key": "yaml-secret"}},
        root_dir=tmp_path,
    )
    monkeypatch.setenv("MEDIA_OFFLOAD_STORAGE_ACCESS_KEY_ID", "from-env")
    monkeypatch.delenv("MEDIA_OFFLOAD_STORAGE_SECRET_ACCESS_KEY", raising=False)

    assert config.get_secret("storage", "access_key_id") == "from-env"
    assert config.get_secret("storage", "secret_access_key") == "yaml-secret"
    assert config.get_secret("api", "token", default=None) is None
