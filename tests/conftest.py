import os
import sqlite3
import dataclasses
from datetime import datetime, UTC

import pytest

from filemyphotos.database.schema import init_schema
from filemyphotos.database.ops import DBOperations
from filemyphotos.metadata.extract import MetadataExtractor
from filemyphotos.models import FileRecord
from filemyphotos.scanning.hasher import FileHasher

@pytest.fixture
def conn():
    """Returns an in-memory SQLite connection with the schema initialized."""
    c = sqlite3.connect(":memory:")
    init_schema(c)
    try:
        yield c
    finally:
        c.close()

@pytest.fixture
def db_ops(conn):
    """Returns a DBOperations instance attached to the in-memory DB."""
    return DBOperations(conn)

@pytest.fixture
def no_birthtime(monkeypatch):
    """Pins date resolution to mtime on platforms that report a creation time."""
    original = MetadataExtractor.stat

    def stat_without_birthtime(self, path):
        return dataclasses.replace(original(self, path), created_at=None)

    monkeypatch.setattr(MetadataExtractor, "stat", stat_without_birthtime)

def write_file(path, content, when=None):
    """Writes content (str or bytes) and optionally stamps mtime with a UTC datetime."""
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, str):
        path.write_text(content)
    else:
        path.write_bytes(content)
    if when is not None:
        ts = when.timestamp()
        os.utime(path, (ts, ts))
    return path

def catalog_file(db_ops, path, resolved=datetime(2023, 7, 15, 12, 0, tzinfo=UTC), **overrides):
    """Inserts a pending record for a real file on disk, hashed the way a scan would."""
    hashes = FileHasher().compute_hashes(path, path.stat().st_size)
    rec = FileRecord(
        original_path=str(path),
        current_path=str(path),
        filename=path.name,
        extension=path.suffix.lower(),
        size=path.stat().st_size,
        hash_sha256=hashes.full,
        hash_partial=hashes.prefix,
        resolved_date=resolved,
        date_source='modified',
    )
    for key, value in overrides.items():
        setattr(rec, key, value)
    db_ops.insert_file(rec)
    return rec
