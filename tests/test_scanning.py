from datetime import datetime, UTC

import pytest

from filemyphotos.exceptions import ScanError, FileNotInCatalogError
from filemyphotos.metadata.extract import MetadataExtractor
from filemyphotos.models import ScanResult, STATUS_DUPLICATE
from filemyphotos.scanning.filesystem import DiskScanner

from conftest import write_file

MTIME = datetime(2023, 6, 15, 12, 0, tzinfo=UTC)

@pytest.fixture
def tree(tmp_path):
    root = tmp_path / "src"
    write_file(root / "c.txt", "c", MTIME)
    write_file(root / "a" / "b.txt", "b", MTIME)
    write_file(root / ".DS_Store", "junk")
    write_file(root / "node_modules" / "dep.js", "x")
    write_file(root / ".hidden" / "secret.txt", "s")
    return root

@pytest.mark.parametrize("workers", [1, 3])
def test_scan_catalogues_eligible_files(db_ops, tree, no_birthtime, workers):
    scanner = DiskScanner(db_ops, max_workers=workers)
    result = scanner.scan(tree)

    assert result.status == "completed"
    assert result.total_files == 2
    assert result.processed_files == 2
    assert result.new_files == 2
    assert result.error_files == 0
    assert result.skipped_files == 1  # .DS_Store
    assert result.percent_complete == 100.0

    paths = sorted(r.original_path for r in db_ops.list_files())
    assert paths == sorted([str(tree / "a" / "b.txt"), str(tree / "c.txt")])

    rec = db_ops.get_file_by_path(str(tree / "c.txt"))
    assert rec.status == "pending"
    assert rec.date_source == "modified"
    assert rec.resolved_date == MTIME
    assert rec.hash_sha256 and rec.hash_partial

def test_non_recursive_scan(db_ops, tree):
    result = DiskScanner(db_ops).scan(tree, recursive=False)
    assert result.total_files == 1
    assert db_ops.count_files() == 1

def test_rescan_is_idempotent(db_ops, tree):
    scanner = DiskScanner(db_ops)
    scanner.scan(tree)
    second = scanner.scan(tree)

    assert db_ops.count_files() == 2
    assert second.new_files == 0
    assert second.processed_files == 2

def test_small_batches_cover_everything(db_ops, tmp_path):
    root = tmp_path / "many"
    for i in range(7):
        write_file(root / f"f{i}.txt", f"content {i}")

    result = DiskScanner(db_ops, batch_size=2).scan(root)
    assert result.new_files == 7
    assert db_ops.count_files() == 7

def test_missing_root_raises(db_ops, tmp_path):
    state = ScanResult(source_path=str(tmp_path / "nope"))
    with pytest.raises(ScanError):
        DiskScanner(db_ops).scan(tmp_path / "nope", state=state)
    assert state.status == "error"
    assert state.completed_at is not None

def test_unreadable_file_is_recorded(db_ops, tmp_path, monkeypatch):
    root = tmp_path / "src"
    write_file(root / "good.txt", "ok")
    write_file(root / "bad.txt", "bad")

    original = MetadataExtractor.extract

    def flaky(self, path):
        if path.name == "bad.txt":
            raise PermissionError("denied")
        return original(self, path)

    monkeypatch.setattr(MetadataExtractor, "extract", flaky)

    result = DiskScanner(db_ops, max_workers=1).scan(root)
    assert result.status == "completed"
    assert result.new_files == 1
    assert result.error_files == 1
    errors = db_ops.list_errors()
    assert errors[0].error_type == "file_processing"
    assert errors[0].file_path == str(root / "bad.txt")

def test_cancel_stops_scan(db_ops, tree):
    state = ScanResult(source_path=str(tree), cancel_requested=True)
    result = DiskScanner(db_ops).scan(tree, state=state)
    assert result.status == "cancelled"
    assert db_ops.count_files() == 0

def test_session_tracks_progress(db_ops, tree):
    sid = db_ops.create_session(str(tree))
    DiskScanner(db_ops).scan(tree, session_id=sid)

    session = db_ops.get_session(sid)
    assert session.status == "completed"
    assert session.total_files == session.processed_files == 2
    assert session.completed_at is not None

def test_rescan_single_file_keeps_identity(db_ops, tree, no_birthtime):
    scanner = DiskScanner(db_ops)
    scanner.scan(tree)
    rec = db_ops.get_file_by_path(str(tree / "c.txt"))
    other = db_ops.get_file_by_path(str(tree / "a" / "b.txt"))
    db_ops.mark_duplicate(rec.id, other.id)

    later = datetime(2024, 2, 2, tzinfo=UTC)
    write_file(tree / "c.txt", "changed content", later)

    fresh = scanner.rescan(rec.id)
    assert fresh.id == rec.id
    assert fresh.size == len("changed content")
    assert fresh.hash_sha256 != rec.hash_sha256
    assert fresh.resolved_date == later
    assert fresh.status == STATUS_DUPLICATE
    assert fresh.duplicate_of == other.id
    assert fresh.created_timestamp == rec.created_timestamp

def test_rescan_unknown_file(db_ops):
    with pytest.raises(FileNotInCatalogError):
        DiskScanner(db_ops).rescan(999)

def test_unreadable_subdirectory_is_recorded(db_ops, tmp_path, monkeypatch):
    root = tmp_path / "src"
    write_file(root / "good.txt", "ok")
    write_file(root / "locked" / "inner.txt", "hidden")

    original = DiskScanner._list_directory

    def guarded(self, directory):
        if directory.name == "locked":
            raise PermissionError("denied")
        return original(self, directory)

    monkeypatch.setattr(DiskScanner, "_list_directory", guarded)

    scanner = DiskScanner(db_ops)
    assert scanner.count_files(root) == 1

    result = scanner.scan(root)
    assert result.status == "completed"
    assert result.total_files == 1
    assert result.new_files == 1

    (error,) = db_ops.list_errors()
    assert error.error_type == "directory_access"
    assert error.file_path == str(root / "locked")
