import logging
from pathlib import Path
from typing import List, Optional, Union

from ..database.ops import DBOperations
from ..models import (
    FileRecord, DuplicateGroup, DuplicateMatch, DuplicateStats,
    STATUS_PENDING,
)
from ..scanning.hasher import FileHasher


class DuplicateDetector:
    """
    Groups catalog entries by full content fingerprint.

    Within a group the earliest-discovered entry is the original and every
    later one is a duplicate of it. Marking is additive: only pending
    members are ever changed, and nothing is un-marked.
    """
    def __init__(self, db_ops: DBOperations, hasher: Optional[FileHasher] = None):
        self.db = db_ops
        self.hasher = hasher or FileHasher()

    def find_groups(self) -> List[DuplicateGroup]:
        groups = []
        for fingerprint in self.db.duplicate_hashes():
            files = self.db.get_files_by_hash(fingerprint)
            if len(files) > 1:
                groups.append(DuplicateGroup(hash=fingerprint, files=files))
        return groups

    def mark_duplicates(self) -> dict:
        """Flags pending non-original members of every group. Returns counts."""
        groups = self.find_groups()
        marked = 0

        for group in groups:
            original_id = group.original.id
            for dup in group.duplicates:
                if dup.status != STATUS_PENDING:
                    continue
                self.db.mark_duplicate(dup.id, original_id)
                marked += 1

        logging.info(f"Duplicate marking: {len(groups)} groups, {marked} files marked")
        return {'groups_found': len(groups), 'files_marked': marked}

    def find_matches_for(self, record: FileRecord) -> List[DuplicateMatch]:
        """
        Tier 1: exact full-fingerprint matches.
        Tier 2 (only if tier 1 is empty): same size and prefix fingerprint.
        """
        matches: List[DuplicateMatch] = []

        if record.hash_sha256:
            for other in self.db.get_files_by_hash(record.hash_sha256):
                if other.id != record.id:
                    matches.append(DuplicateMatch(other, match_type='hash', confidence='exact'))

        if not matches and record.hash_partial and record.size:
            for other in self.db.get_files_by_partial_hash(record.hash_partial, record.size):
                if other.id != record.id:
                    matches.append(DuplicateMatch(other, match_type='partial_hash', confidence='likely'))

        return matches

    def existing_duplicate_at_destination(self,
                                          fingerprint: Optional[str],
                                          exclude_id: Optional[int] = None) -> Optional[FileRecord]:
        """An already-moved entry with this content, if any."""
        if not fingerprint:
            return None
        return self.db.find_moved_with_hash(fingerprint, exclude_id)

    def calculate_stats(self) -> DuplicateStats:
        stats = DuplicateStats()
        for group in self.find_groups():
            stats.duplicate_groups += 1
            stats.total_duplicate_files += len(group.duplicates)
            stats.potential_space_savings += group.reclaimable_size

            if stats.largest_group is None or group.count > stats.largest_group['count']:
                stats.largest_group = {
                    'hash': group.hash,
                    'count': group.count,
                    'total_size': group.total_size,
                }
        return stats

    def verify_duplicate(self, path_a: Union[str, Path], path_b: Union[str, Path]) -> bool:
        """Byte-identity of two live files by full fingerprint. False if either cannot be read."""
        try:
            return self.hasher.full_hash(path_a) == self.hasher.full_hash(path_b)
        except OSError as e:
            logging.debug(f"Cannot compare {path_a} and {path_b}: {e}")
            return False
