from pathlib import Path

from config import AppConfig
from database import DatabaseManager
from discovery import UploadScanner


def test_scanner_registers_originals_with_thumbnails(tmp_path: Path) -> None:
    root = tmp_path / "uploads"
    month = root / "2024" / "01"
    month.mkdir(parents=True)
    (month / "photo.jpg").write_bytes(b"photo")
    (month / "photo-150x150.jpg").write_bytes(b"thumb")
    (month / "photo-300x200-crop.jpg").write_bytes(b"thumb")
    (month / "report.pdf").write_bytes(b"pdf")
    (month / ".hidden.jpg").write_bytes(b"hidden")
    (month / "notes.tmp").write_bytes(b"tmp")
    hidden_dir = root / ".cache"
    hidden_dir.mkdir()
    (hidden_dir / "cached.jpg").write_bytes(b"cache")

    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "\n".join(
            [
                "paths:",
                "  uploads: \"uploads\"",
                "scan:",
                "  skip_hidden: true",
                "  exclude_patterns:",
                "    - \"*.tmp\"",
            ]
        ),
        encoding="utf-8",
    )

    config = AppConfig.load(config_path)
    db_paths = {
        "registry": tmp_path / "registry.sqlite",
        "state": tmp_path / "state.sqlite",
    }
    manager = DatabaseManager(db_paths)
    manager.initialize()

    stats = UploadScanner(config, manager).scan()

    assert stats.registered == 2
    assert stats.thumbnails == 2
    records = {record.file_path: record for record in manager.iter_attachments()}
    assert sorted(records) == ["2024/01/photo.jpg", "2024/01/report.pdf"]
    photo = records["2024/01/photo.jpg"]
    assert photo.mime_type == "image/jpeg"
    assert photo.size == 5
    assert sorted(photo.thumbnails) == ["photo-150x150.jpg", "photo-300x200-crop.jpg"]

    again = UploadScanner(config, manager).scan()
    assert again.registered == 2
    assert manager.count_attachments() == 2

    manager.close()
