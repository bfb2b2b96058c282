from pathlib import Path

from database import AttachmentFilter, DatabaseManager


def build_db_paths(root: Path) -> dict[str, Path]:
    return {
        "registry": root / "registry.sqlite",
        "state": root / "state.sqlite",
    }


def test_database_registers_and_pages_attachments(tmp_path: Path) -> None:
    manager = DatabaseManager(build_db_paths(tmp_path))
    manager.initialize()

    first = manager.add_attachment("2024/01/a.jpg", 100, mime_type="image/jpeg", thumbnails=["a-150x150.jpg"])
    second = manager.add_attachment("2024/01/b.pdf", 200, mime_type="application/pdf")
    third = manager.add_attachment("2024/01/c.png", 300, mime_type="image/png")
    assert manager.add_attachment("2024/01/a.jpg", 120, mime_type="image/jpeg") == first

    manager.mark_migrated(second, "wp/2024/01/b.pdf", "https://cdn/b.pdf", provider="s3")

    record = manager.get_attachment(first)
    assert record is not None
    assert record.size == 120
    assert record.migrated is False

    migrated = manager.get_attachment(second)
    assert migrated.migrated is True
    assert migrated.remote_key == "wp/2024/01/b.pdf"

    assert manager.count_attachments() == 3
    assert manager.count_attachments(AttachmentFilter.MIGRATED) == 1
    assert manager.count_attachments(AttachmentFilter.UNOPTIMIZED) == 2
    assert [item.id for item in manager.page_attachments(AttachmentFilter.NOT_MIGRATED, 0, 10)] == [first, third]
    assert [item.id for item in manager.page_attachments(AttachmentFilter.ALL, first, 1)] == [second]
    assert [item.id for item in manager.iter_attachments(page_size=1)] == [first, second, third]
    assert manager.migration_counts() == {"total": 3, "migrated": 1, "pending": 2}

    manager.clear_migration(second)
    assert manager.get_attachment(second).remote_key is None
    assert manager.clear_all_migrations() == 0
    manager.close()


def test_mark_optimized_keeps_original_size(tmp_path: Path) -> None:
    manager = DatabaseManager(build_db_paths(tmp_path))
    manager.initialize()
    attachment_id = manager.add_attachment("photo.jpg", 1000, mime_type="image/jpeg")

    manager.mark_optimized(attachment_id, 600, 400)

    record = manager.get_attachment(attachment_id)
    assert record.optimized is True
    assert record.size == 600
    assert record.bytes_saved == 400
    counts = manager.optimization_counts()
    assert counts["optimized_images"] == 1
    assert counts["pending_optimization"] == 0
    assert counts["original_bytes"] == 1000
    manager.close()


def test_sweep_state_uses_version_compare_and_swap(tmp_path: Path) -> None:
    manager = DatabaseManager(build_db_paths(tmp_path))
    manager.initialize()

    assert manager.load_sweep_state("migration") is None
    assert manager.save_sweep_state("migration", {"status": "running", "cursor": 0}, 0) is True
    assert manager.save_sweep_state("migration", {"status": "running", "cursor": 5}, 0) is False
    assert manager.save_sweep_state("migration", {"status": "running", "cursor": 5}, 1) is True

    state = manager.load_sweep_state("migration")
    assert state["cursor"] == 5
    assert state["version"] == 2
    assert state["kind"] == "migration"
    manager.close()


def test_failed_operations_and_cache(tmp_path: Path) -> None:
    manager = DatabaseManager(build_db_paths(tmp_path))
    manager.initialize()

    manager.record_failed_operation("cloudsync", 7, "a.jpg", "timeout")
    manager.record_failed_operation("cloudsync", 7, "a.jpg", "timeout again")
    manager.record_failed_operation("migration", 7, "a.jpg", "other kind")

    entries = manager.list_failed_operations("cloudsync")
    assert len(entries) == 1
    assert entries[0]["retry_count"] == 2
    assert entries[0]["error_message"] == "timeout again"
    manager.remove_failed_operation("cloudsync", 7)
    assert manager.count_failed_operations("cloudsync") == 0
    assert manager.count_failed_operations("migration") == 1

    manager.set_cache_value("sync_status", {"migrated": 3})
    manager.set_cache_value("sync_status", {"migrated": 4})
    assert manager.get_cache_value("sync_status") == {"migrated": 4}
    manager.delete_cache_value("sync_status")
    assert manager.get_cache_value("sync_status", default="none") == "none"

    manager.record_history("migrated", attachment_id=7, file_path="a.jpg", details={"provider": "s3"})
    history = manager.list_history(attachment_id=7)
    assert history[0]["action"] == "migrated"
    assert history[0]["details"] == {"provider": "s3"}
    manager.close()
