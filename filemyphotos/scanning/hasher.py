import hashlib
from pathlib import Path
from dataclasses import dataclass
from typing import BinaryIO, Optional, Union

from .. import config
from ..exceptions import FileHashError

@dataclass
class HashResult:
    full: str
    prefix: str   # Equals `full` when the whole file fits in the prefix window

class FileHasher:
    """
    SHA-256 fingerprints for catalog identity.

    The full fingerprint is the authoritative content identity. The prefix
    fingerprint covers only the first `prefix_size` bytes and is a cheap
    pre-filter for duplicate lookups.
    """
    def __init__(self, prefix_size: Optional[int] = None, chunk_size: int = config.HASH_CHUNK_SIZE):
        self.prefix_size = prefix_size if prefix_size is not None else config.PREFIX_HASH_SIZE
        self.chunk_size = chunk_size

    def fingerprint(self, stream: BinaryIO) -> str:
        h = hashlib.sha256()
        while chunk := stream.read(self.chunk_size):
            h.update(chunk)
        return h.hexdigest()

    def prefix_fingerprint(self, stream: BinaryIO, n: Optional[int] = None) -> str:
        remaining = self.prefix_size if n is None else n
        h = hashlib.sha256()
        while remaining > 0:
            chunk = stream.read(min(self.chunk_size, remaining))
            if not chunk:
                break
            h.update(chunk)
            remaining -= len(chunk)
        return h.hexdigest()

    def full_hash(self, path: Union[str, Path]) -> str:
        """Reads entire file. Raises OSError if it vanishes or cannot be read."""
        with open(path, 'rb') as f:
            return self.fingerprint(f)

    def prefix_hash(self, path: Union[str, Path]) -> str:
        with open(path, 'rb') as f:
            return self.prefix_fingerprint(f)

    def compute_hashes(self, path: Union[str, Path], size: int) -> HashResult:
        """
        Computes both fingerprints with a single read of the file.

        Small files (size <= prefix window) get one digest used for both.
        Larger files feed the leading bytes into both digests and the rest
        into the full digest only.
        """
        try:
            return self._compute_hashes(path, size)
        except OSError as e:
            raise FileHashError(f"Cannot hash {path}: {e}") from e

    def _compute_hashes(self, path: Union[str, Path], size: int) -> HashResult:
        if size <= self.prefix_size:
            digest = self.full_hash(path)
            return HashResult(full=digest, prefix=digest)

        full_h = hashlib.sha256()
        prefix_h = hashlib.sha256()
        with open(path, 'rb') as f:
            remaining = self.prefix_size
            while remaining > 0:
                chunk = f.read(min(self.chunk_size, remaining))
                if not chunk:
                    break
                full_h.update(chunk)
                prefix_h.update(chunk)
                remaining -= len(chunk)

            while chunk := f.read(self.chunk_size):
                full_h.update(chunk)

        return HashResult(full=full_h.hexdigest(), prefix=prefix_h.hexdigest())
