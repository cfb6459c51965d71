import os
from datetime import datetime, UTC

import pytest

from filemyphotos import config
from filemyphotos.analysis.duplicates import DuplicateDetector
from filemyphotos.database.ops import DRY_RUN_REASON
from filemyphotos.exceptions import OrganizeError, DatabaseError
from filemyphotos.models import BatchResult, OP_MOVE, OP_SKIP, OP_DUPLICATE, OP_ERROR
from filemyphotos.organization.mover import FileMover
from filemyphotos.organization.rules import DestinationPlanner

from conftest import write_file, catalog_file

JULY = datetime(2023, 7, 15, 12, 0, tzinfo=UTC)

def _day_dir(base, dt=JULY):
    return os.path.join(str(base), f"{dt.year:04d}", f"{dt.month:02d}", f"{dt.day:02d}")

def test_collision_counter(db_ops, tmp_path):
    dest = tmp_path / "dest"
    write_file(dest / "2023" / "07" / "15" / "a.jpg", "x")
    write_file(dest / "2023" / "07" / "15" / "a (1).jpg", "y")

    planner = DestinationPlanner(DuplicateDetector(db_ops), dest)
    target = os.path.join(_day_dir(dest), "a.jpg")
    assert planner.resolve_collision(target, "abcdef1234") == os.path.join(_day_dir(dest), "a (2).jpg")

def test_collision_falls_back_to_hash(db_ops, tmp_path, monkeypatch):
    monkeypatch.setattr(config, "MAX_COLLISION_ATTEMPTS", 2)
    day = tmp_path / "d"
    for name in ("a.jpg", "a (1).jpg", "a (2).jpg"):
        write_file(day / name, name)

    planner = DestinationPlanner(DuplicateDetector(db_ops), tmp_path)
    result = planner.resolve_collision(str(day / "a.jpg"), "deadbeefcafe")
    assert result == str(day / "a (deadbeef).jpg")

    with pytest.raises(ValueError):
        planner.resolve_collision(str(day / "a.jpg"), None)

def test_plan_does_not_create_directories(db_ops, tmp_path):
    src = write_file(tmp_path / "src" / "img.jpg", "content")
    rec = catalog_file(db_ops, src)
    dest = tmp_path / "dest"

    decision = DestinationPlanner(DuplicateDetector(db_ops), dest).plan(rec)
    assert decision.action == "move"
    assert decision.destination_path == os.path.join(_day_dir(dest), "img.jpg")
    assert not dest.exists()

def test_simulated_planner_reserves_paths(db_ops, tmp_path):
    r1 = catalog_file(db_ops, write_file(tmp_path / "one" / "img.jpg", "first"))
    r2 = catalog_file(db_ops, write_file(tmp_path / "two" / "img.jpg", "second"))
    r3 = catalog_file(db_ops, write_file(tmp_path / "three" / "copy.jpg", "first"))

    planner = DestinationPlanner(DuplicateDetector(db_ops), tmp_path / "dest", simulate=True)
    d1, d2, d3 = planner.plan(r1), planner.plan(r2), planner.plan(r3)

    assert d1.destination_path.endswith("img.jpg")
    assert d2.destination_path.endswith("img (1).jpg")
    assert d3.action == "duplicate"
    assert d3.duplicate_of == r1.id

def test_organize_moves_and_logs(db_ops, tmp_path):
    src = write_file(tmp_path / "src" / "a.txt", "hello")
    rec = catalog_file(db_ops, src)
    dest = tmp_path / "dest"

    result = FileMover(db_ops).organize(dest)

    expected = os.path.join(_day_dir(dest), "a.txt")
    assert result.status == "completed"
    assert result.moved_files == 1
    assert not src.exists()
    assert open(expected).read() == "hello"

    got = db_ops.get_file(rec.id)
    assert got.status == "moved"
    assert got.current_path == expected
    assert got.original_path == str(src)

    ops = db_ops.get_operations_by_batch(result.batch_id)
    assert [(o.operation_type, o.source_path, o.destination_path, o.hash_used) for o in ops] == [
        (OP_MOVE, str(src), expected, rec.hash_sha256)
    ]

def test_organize_collision_with_foreign_file(db_ops, tmp_path):
    dest = tmp_path / "dest"
    write_file(dest / "2023" / "07" / "15" / "a.txt", "someone else's")
    src = write_file(tmp_path / "src" / "a.txt", "mine")
    rec = catalog_file(db_ops, src)

    result = FileMover(db_ops).organize(dest)

    expected = os.path.join(_day_dir(dest), "a (1).txt")
    assert open(expected).read() == "mine"
    assert db_ops.get_file(rec.id).current_path == expected
    assert db_ops.get_operations_by_batch(result.batch_id)[0].destination_path == expected

def test_organize_skips_missing_source(db_ops, tmp_path):
    src = write_file(tmp_path / "src" / "gone.txt", "bye")
    rec = catalog_file(db_ops, src)
    src.unlink()

    result = FileMover(db_ops).organize(tmp_path / "dest")
    assert result.skipped_files == 1
    assert result.error_files == 0
    assert db_ops.get_file(rec.id).status == "pending"
    ops = db_ops.get_operations_by_batch(result.batch_id)
    assert ops[0].operation_type == OP_SKIP
    assert ops[0].reason == "Source file not found"

def test_organize_duplicate_of_moved_file(db_ops, tmp_path):
    first = catalog_file(db_ops, write_file(tmp_path / "src" / "a.txt", "same"))
    FileMover(db_ops).organize(tmp_path / "dest")

    second = catalog_file(db_ops, write_file(tmp_path / "later" / "b.txt", "same"))
    result = FileMover(db_ops).organize(tmp_path / "dest")

    assert result.duplicate_files == 1
    assert result.moved_files == 0
    got = db_ops.get_file(second.id)
    assert got.status == "duplicate"
    assert got.duplicate_of == first.id
    assert os.path.exists(second.original_path)
    op = db_ops.get_operations_by_batch(result.batch_id)[0]
    assert op.operation_type == OP_DUPLICATE
    assert op.reason == f"Duplicate of file {first.id}"

def test_dry_run_touches_nothing(db_ops, tmp_path):
    src = write_file(tmp_path / "src" / "a.txt", "hello")
    rec = catalog_file(db_ops, src)
    dest = tmp_path / "dest"

    result = FileMover(db_ops).organize(dest, dry_run=True)

    assert result.dry_run
    assert result.moved_files == 1
    assert result.operations[0].action == "would_move"
    assert src.exists()
    assert not dest.exists()
    assert db_ops.get_file(rec.id).status == "pending"

    ops = db_ops.get_operations_by_batch(result.batch_id)
    assert ops[0].reason == DRY_RUN_REASON
    assert db_ops.get_revertible_moves(result.batch_id) == []

def test_preview_matches_dry_run(db_ops, tmp_path):
    catalog_file(db_ops, write_file(tmp_path / "x" / "img.jpg", "1"))
    catalog_file(db_ops, write_file(tmp_path / "y" / "img.jpg", "2"))
    catalog_file(db_ops, write_file(tmp_path / "z" / "dup.jpg", "1"))
    dest = tmp_path / "dest"

    mover = FileMover(db_ops)
    preview = mover.preview(dest)
    dry = mover.organize(dest, dry_run=True)

    assert [(d.file_id, d.destination_path) for d in preview] == \
        [(d.file_id, d.destination_path) for d in dry.operations]
    assert [d.action for d in preview] == ["move", "move", "duplicate"]

def test_organize_subset(db_ops, tmp_path):
    a = catalog_file(db_ops, write_file(tmp_path / "src" / "a.txt", "a"))
    b = catalog_file(db_ops, write_file(tmp_path / "src" / "b.txt", "b"))

    result = FileMover(db_ops).organize(tmp_path / "dest", file_ids=[b.id])
    assert result.total_files == 1
    assert db_ops.get_file(a.id).status == "pending"
    assert db_ops.get_file(b.id).status == "moved"

def test_missing_fingerprint_is_an_error(db_ops, tmp_path):
    rec = catalog_file(db_ops, write_file(tmp_path / "src" / "a.txt", "a"), hash_sha256=None)

    result = FileMover(db_ops).organize(tmp_path / "dest")
    assert result.error_files == 1
    assert db_ops.get_file(rec.id).status == "pending"
    assert db_ops.get_operations_by_batch(result.batch_id)[0].operation_type == OP_ERROR
    assert db_ops.list_errors()[0].error_type == "organize_error"

def test_unwritable_destination(db_ops, tmp_path):
    blocker = write_file(tmp_path / "file_not_dir", "x")
    with pytest.raises(OrganizeError):
        FileMover(db_ops).organize(blocker / "sub")

def test_cancelled_organize(db_ops, tmp_path):
    src = write_file(tmp_path / "src" / "a.txt", "a")
    catalog_file(db_ops, src)
    state = BatchResult(batch_id="cancel-me", destination_base="", cancel_requested=True)

    result = FileMover(db_ops).organize(tmp_path / "dest", state=state)
    assert result.status == "cancelled"
    assert result.processed_files == 0
    assert src.exists()

def test_dry_run_predicts_real_run(db_ops, tmp_path):
    dest = tmp_path / "dest"
    write_file(dest / "2023" / "07" / "15" / "img.jpg", "already here")
    catalog_file(db_ops, write_file(tmp_path / "x" / "img.jpg", "1"))
    catalog_file(db_ops, write_file(tmp_path / "y" / "img.jpg", "2"))
    catalog_file(db_ops, write_file(tmp_path / "z" / "dup.jpg", "1"))

    mover = FileMover(db_ops)
    dry = mover.organize(dest, dry_run=True)
    real = mover.organize(dest)

    assert [(d.file_id, d.destination_path) for d in dry.operations] == \
        [(d.file_id, d.destination_path) for d in real.operations]
    assert (dry.moved_files, dry.duplicate_files) == (real.moved_files, real.duplicate_files) == (2, 1)
    assert all(os.path.exists(d.destination_path) for d in real.operations)

def test_move_without_ledger_entry_is_rolled_back(db_ops, tmp_path, monkeypatch):
    src = write_file(tmp_path / "src" / "a.txt", "a")
    rec = catalog_file(db_ops, src)

    original = db_ops.insert_operation

    def failing_moves(entry):
        if entry.operation_type == OP_MOVE:
            raise DatabaseError("ledger unavailable")
        return original(entry)

    monkeypatch.setattr(db_ops, "insert_operation", failing_moves)

    result = FileMover(db_ops).organize(tmp_path / "dest")
    assert result.moved_files == 0
    assert result.error_files == 1

    assert src.exists()
    assert not os.path.exists(os.path.join(_day_dir(tmp_path / "dest"), "a.txt"))
    got = db_ops.get_file(rec.id)
    assert got.status == "pending"
    assert got.current_path == str(src)
    assert [o.operation_type for o in db_ops.get_operations_by_batch(result.batch_id)] == [OP_ERROR]
