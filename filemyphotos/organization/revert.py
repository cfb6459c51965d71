import os
import shutil
import logging
import uuid
from pathlib import Path
from typing import List, Optional

from ..database.ops import DBOperations, DRY_RUN_REASON
from ..exceptions import (
    RevertError, NotRevertibleError, AlreadyRevertedError, SourceMissingError,
    ContentModifiedError, OriginalOccupiedError, FileNotInCatalogError,
)
from ..models import (
    FileRecord, OperationEntry, RevertResult, RevertCheck, RevertPreview, BatchRevertResult,
    OP_MOVE, OP_REVERT, OP_REVERTED, OP_COMPLETED,
)
from ..scanning.hasher import FileHasher


class RevertEngine:
    """
    Replays move entries from the ledger backwards.

    A single revert is all-or-nothing: every precondition is checked before
    the file is touched, and the move is undone if the catalog cannot be
    updated afterwards. Batch revert is a best-effort sweep over the batch's
    moves, newest first.
    """
    def __init__(self, db_ops: DBOperations, hasher: Optional[FileHasher] = None):
        self.db = db_ops
        self.hasher = hasher or FileHasher()

    def revert(self, entry: OperationEntry) -> RevertResult:
        record = self._check_preconditions(entry)

        moved_to = entry.destination_path
        original = entry.source_path

        os.makedirs(os.path.dirname(original), exist_ok=True)
        shutil.move(moved_to, original)

        catalog_updated = False
        try:
            self.db.mark_pending(record.id, original)
            catalog_updated = True
            if not self.db.mark_operation_reverted(entry.id):
                raise AlreadyRevertedError("Operation already reverted")
        except Exception:
            # Undo the move and any catalog change
            shutil.move(original, moved_to)
            if catalog_updated:
                self.db.mark_moved(record.id, moved_to)
            raise
        entry.status = OP_REVERTED

        revert_batch_id = str(uuid.uuid4())
        self.db.insert_operation(OperationEntry(
            batch_id=revert_batch_id,
            file_id=record.id,
            operation_type=OP_REVERT,
            source_path=moved_to,
            destination_path=original,
            hash_used=entry.hash_used,
            reason=f"Reverted operation {entry.id}",
        ))
        logging.info(f"Reverted operation {entry.id}: {moved_to} -> {original}")

        # moved_to is base/YYYY/MM/DD/name; the base itself belongs to the user
        parents = Path(moved_to).parents
        if len(parents) > 3:
            self._cleanup_empty_directories(parents[0], stop_at=parents[3])

        return RevertResult(
            operation_id=entry.id,
            file_id=record.id,
            original_path=original,
            reverted_from=moved_to,
            revert_batch_id=revert_batch_id,
        )

    def revert_batch(self, batch_id: str) -> BatchRevertResult:
        operations = self.db.get_revertible_moves(batch_id)
        result = BatchRevertResult(batch_id=batch_id, total_operations=len(operations))

        if not operations:
            logging.warning(f"No revertible operations found in batch {batch_id}")
            return result

        for entry in operations:
            try:
                self.revert(entry)
                result.reverted += 1
            except AlreadyRevertedError:
                result.skipped += 1
            except Exception as e:
                result.failed += 1
                result.errors.append({'operation_id': entry.id, 'error': str(e)})
                logging.warning(f"Could not revert operation {entry.id}: {e}")

        logging.info(
            f"Batch {batch_id} revert: {result.reverted} reverted, "
            f"{result.skipped} skipped, {result.failed} failed"
        )
        return result

    def can_revert(self, entry: OperationEntry) -> RevertCheck:
        try:
            self._check_preconditions(entry)
        except (RevertError, FileNotInCatalogError) as e:
            return RevertCheck(can_revert=False, reason=str(e))
        except OSError as e:
            return RevertCheck(can_revert=False, reason=f"Cannot access file: {e}")
        return RevertCheck(can_revert=True)

    def preview_batch_revert(self, batch_id: str) -> List[RevertPreview]:
        preview = []
        for entry in self.db.get_revertible_moves(batch_id):
            check = self.can_revert(entry)
            preview.append(RevertPreview(
                operation_id=entry.id,
                file_id=entry.file_id,
                current_path=entry.destination_path,
                original_path=entry.source_path,
                can_revert=check.can_revert,
                reason=check.reason,
            ))
        return preview

    def file_history(self, file_id: int) -> List[OperationEntry]:
        return self.db.get_operations_by_file(file_id)

    # --- Internals ---

    def _check_preconditions(self, entry: OperationEntry) -> FileRecord:
        if entry.operation_type != OP_MOVE:
            raise NotRevertibleError("Only move operations can be reverted")
        if entry.reason == DRY_RUN_REASON:
            raise NotRevertibleError("Dry-run operations cannot be reverted")

        # The caller's copy may be stale; the ledger row is authoritative
        status = entry.status
        if entry.id is not None:
            stored = self.db.get_operation(entry.id)
            if stored is not None:
                status = stored.status
        if status == OP_REVERTED:
            raise AlreadyRevertedError("Operation already reverted")
        if status != OP_COMPLETED:
            raise NotRevertibleError(f"Operation status is '{status}'")

        record = self.db.get_file(entry.file_id) if entry.file_id is not None else None
        if record is None:
            raise FileNotInCatalogError("Associated file not found")

        moved_to = entry.destination_path
        if not moved_to or not os.path.isfile(moved_to):
            raise SourceMissingError("File no longer exists at destination path")

        if entry.hash_used and self.hasher.full_hash(moved_to) != entry.hash_used:
            raise ContentModifiedError("File has been modified since it was moved")

        if os.path.lexists(entry.source_path):
            raise OriginalOccupiedError("A file already exists at the original location")

        return record

    def _cleanup_empty_directories(self, directory: Path, stop_at: Path):
        """Removes directory and its ancestors below stop_at while they are empty. Never raises."""
        try:
            while (directory != stop_at
                   and stop_at in directory.parents
                   and not any(directory.iterdir())):
                directory.rmdir()
                directory = directory.parent
        except OSError as e:
            logging.debug(f"Stopped directory cleanup at {directory}: {e}")
