import os
from pathlib import Path
from typing import Dict, Optional, Set, Tuple, Union

from .. import config
from ..analysis.duplicates import DuplicateDetector
from ..metadata.dates import destination_path
from ..models import FileRecord, OrganizeDecision

ACTION_MOVE = 'move'
ACTION_WOULD_MOVE = 'would_move'
ACTION_DUPLICATE = 'duplicate'
ACTION_SKIP = 'skip'


class DestinationPlanner:
    """
    Decides where one pending file goes: duplicate check, date path, then
    collision resolution.

    A planner lives for a single organize/preview invocation. With
    `simulate=True` (dry runs and previews) nothing is moved, so the planner
    remembers the paths and fingerprints it has handed out; later files in
    the same run then see the same collisions and duplicates a real run
    would produce.
    """
    def __init__(self,
                 detector: DuplicateDetector,
                 destination_base: Union[str, Path],
                 simulate: bool = False):
        self.detector = detector
        self.destination_base = str(destination_base)
        self.simulate = simulate
        self._reserved: Set[str] = set()
        self._planned: Dict[str, Tuple[int, str]] = {}

    def plan(self, record: FileRecord) -> OrganizeDecision:
        decision = OrganizeDecision(
            file_id=record.id,
            filename=record.filename,
            source_path=record.location,
            action=ACTION_MOVE,
            resolved_date=record.resolved_date,
            date_source=record.date_source,
            size=record.size,
        )

        # Duplicates are settled before a path is generated so they never reserve one
        existing = self._existing_duplicate(record)
        if existing is not None:
            decision.action = ACTION_DUPLICATE
            decision.duplicate_of, decision.destination_path = existing
            return decision

        target = destination_path(self.destination_base, record.resolved_date, record.filename)
        decision.destination_path = self.resolve_collision(target, record.hash_sha256)

        if self.simulate:
            self._reserved.add(decision.destination_path)
            if record.hash_sha256:
                self._planned[record.hash_sha256] = (record.id, decision.destination_path)
        return decision

    def resolve_collision(self, target: str, fingerprint: Optional[str]) -> str:
        """
        First free path among target, "name (1).ext", "name (2).ext", ...
        After MAX_COLLISION_ATTEMPTS the fingerprint prefix is used as the
        suffix instead, which always ends the search.
        """
        if not self._occupied(target):
            return target

        stem, ext = os.path.splitext(target)
        for counter in range(1, config.MAX_COLLISION_ATTEMPTS + 1):
            candidate = f"{stem} ({counter}){ext}"
            if not self._occupied(candidate):
                return candidate

        if not fingerprint:
            raise ValueError(f"Cannot disambiguate {target} without a content fingerprint")
        return f"{stem} ({fingerprint[:config.HASH_SUFFIX_LENGTH]}){ext}"

    def _occupied(self, path: str) -> bool:
        return os.path.lexists(path) or path in self._reserved

    def _existing_duplicate(self, record: FileRecord) -> Optional[Tuple[int, Optional[str]]]:
        match = self.detector.existing_duplicate_at_destination(record.hash_sha256, record.id)
        if match is not None:
            return match.id, match.location
        if self.simulate and record.hash_sha256 in self._planned:
            return self._planned[record.hash_sha256]
        return None
