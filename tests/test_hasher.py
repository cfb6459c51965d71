import hashlib
import io

import pytest

from filemyphotos.exceptions import FileHashError
from filemyphotos.scanning.hasher import FileHasher

def test_full_hash_matches_sha256(tmp_path):
    p = tmp_path / "sample.bin"
    data = b"hello world" * 10
    p.write_bytes(data)

    assert FileHasher().full_hash(p) == hashlib.sha256(data).hexdigest()

def test_hash_is_chunk_size_independent(tmp_path):
    p = tmp_path / "big.bin"
    data = bytes(range(256)) * 1000
    p.write_bytes(data)

    assert FileHasher(chunk_size=7).full_hash(p) == FileHasher().full_hash(p)

def test_small_file_prefix_equals_full(tmp_path):
    p = tmp_path / "a.txt"
    p.write_text("hello")

    res = FileHasher(prefix_size=1024).compute_hashes(p, 5)
    assert res.full == res.prefix == hashlib.sha256(b"hello").hexdigest()

def test_large_file_single_pass(tmp_path):
    p = tmp_path / "large.bin"
    data = b"A" * 100 + b"B" * 100
    p.write_bytes(data)

    res = FileHasher(prefix_size=100, chunk_size=16).compute_hashes(p, len(data))
    assert res.full == hashlib.sha256(data).hexdigest()
    assert res.prefix == hashlib.sha256(b"A" * 100).hexdigest()
    assert res.prefix != res.full

def test_same_prefix_different_tail(tmp_path):
    a = tmp_path / "a.bin"
    b = tmp_path / "b.bin"
    a.write_bytes(b"X" * 64 + b"1")
    b.write_bytes(b"X" * 64 + b"2")

    hasher = FileHasher(prefix_size=64)
    ra = hasher.compute_hashes(a, 65)
    rb = hasher.compute_hashes(b, 65)
    assert ra.prefix == rb.prefix
    assert ra.full != rb.full

def test_prefix_fingerprint_of_stream():
    hasher = FileHasher(prefix_size=4)
    assert hasher.prefix_fingerprint(io.BytesIO(b"abcdef")) == hashlib.sha256(b"abcd").hexdigest()
    assert hasher.prefix_fingerprint(io.BytesIO(b"ab")) == hashlib.sha256(b"ab").hexdigest()

def test_missing_file_raises(tmp_path):
    with pytest.raises(OSError):
        FileHasher().full_hash(tmp_path / "nope.bin")

def test_compute_hashes_wraps_io_errors(tmp_path):
    with pytest.raises(FileHashError):
        FileHasher().compute_hashes(tmp_path / "nope.bin", 10)
