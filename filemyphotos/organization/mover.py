import os
import shutil
import logging
import traceback
import uuid
from pathlib import Path
from typing import List, Optional, Union

from tqdm import tqdm

from ..analysis.duplicates import DuplicateDetector
from ..database.ops import DBOperations, DRY_RUN_REASON, now_iso
from ..exceptions import OrganizeError, FileOperationError
from ..models import (
    FileRecord, OperationEntry, ErrorRecord, BatchResult, OrganizeDecision,
    OP_MOVE, OP_SKIP, OP_DUPLICATE, OP_ERROR,
    STATE_IN_PROGRESS, STATE_COMPLETED, STATE_ERROR, STATE_CANCELLED,
)
from .rules import DestinationPlanner, ACTION_DUPLICATE, ACTION_SKIP, ACTION_WOULD_MOVE


class FileMover:
    """
    Moves pending catalog entries into base/YYYY/MM/DD/ and writes one
    ledger entry per decision.

    The catalog is only updated after the filesystem move has returned, so
    a crash mid-batch leaves every row pointing at where its file really is.
    """
    def __init__(self,
                 db_ops: DBOperations,
                 detector: Optional[DuplicateDetector] = None,
                 progress: bool = False):
        self.db = db_ops
        self.detector = detector or DuplicateDetector(db_ops)
        self.progress = progress

    def organize(self,
                 destination_base: Union[str, Path],
                 dry_run: bool = False,
                 file_ids: Optional[List[int]] = None,
                 state: Optional[BatchResult] = None) -> BatchResult:
        base = str(destination_base)
        state = state or BatchResult(batch_id=str(uuid.uuid4()), destination_base=base)
        state.destination_base = base
        state.dry_run = dry_run
        state.status = STATE_IN_PROGRESS
        state.started_at = state.started_at or now_iso()

        try:
            if not dry_run:
                self._prepare_destination(base)

            files = self.db.get_pending_files(file_ids)
            state.total_files = len(files)
            logging.info(
                f"Organizing {len(files)} files into {base} "
                f"(batch={state.batch_id}, DryRun={dry_run})"
            )

            planner = DestinationPlanner(self.detector, base, simulate=dry_run)
            for record in tqdm(files, desc="Organizing", unit="file", disable=not self.progress):
                if state.cancel_requested:
                    state.status = STATE_CANCELLED
                    logging.warning(f"Organize batch {state.batch_id} cancelled after {state.processed_files} files")
                    break
                self._organize_file(record, planner, state, dry_run)
                state.processed_files += 1
            else:
                state.status = STATE_COMPLETED

            logging.info(
                f"Batch {state.batch_id}: {state.moved_files} moved, {state.duplicate_files} duplicates, "
                f"{state.skipped_files} skipped, {state.error_files} errors"
            )
        except OrganizeError as e:
            state.status = STATE_ERROR
            state.error = str(e)
            logging.error(str(e))
            raise
        except Exception as e:
            state.status = STATE_ERROR
            state.error = str(e)
            logging.exception(f"Organize batch {state.batch_id} failed")
            raise
        finally:
            state.completed_at = now_iso()

        return state

    def preview(self,
                destination_base: Union[str, Path],
                file_ids: Optional[List[int]] = None) -> List[OrganizeDecision]:
        """What organize would do, computed with the same planner a dry run uses. Read-only."""
        planner = DestinationPlanner(self.detector, destination_base, simulate=True)
        decisions = []
        for record in self.db.get_pending_files(file_ids):
            if not os.path.exists(record.location):
                decisions.append(OrganizeDecision(
                    file_id=record.id,
                    filename=record.filename,
                    source_path=record.location,
                    action=ACTION_SKIP,
                    resolved_date=record.resolved_date,
                    date_source=record.date_source,
                    size=record.size,
                ))
                continue
            decisions.append(planner.plan(record))
        return decisions

    # --- Per-file ---

    def _organize_file(self,
                       record: FileRecord,
                       planner: DestinationPlanner,
                       state: BatchResult,
                       dry_run: bool):
        source = record.location

        # Externally deleted files are an expected race, not an error
        if not os.path.exists(source):
            self._log_operation(state.batch_id, record, OP_SKIP, source, None, "Source file not found")
            state.skipped_files += 1
            return

        try:
            if not record.hash_sha256:
                raise FileOperationError(f"File {record.id} has no content fingerprint")

            decision = planner.plan(record)

            if decision.action == ACTION_DUPLICATE:
                if not dry_run:
                    self.db.mark_duplicate(record.id, decision.duplicate_of)
                reason = f"Duplicate of file {decision.duplicate_of}"
                self._log_operation(state.batch_id, record, OP_DUPLICATE, source,
                                    decision.destination_path, f"Dry run - {reason.lower()}" if dry_run else reason)
                state.duplicate_files += 1
                state.operations.append(decision)
                return

            dest = decision.destination_path

            if dry_run:
                logging.info(f"[DRY RUN] Move {source} -> {dest}")
                self._log_operation(state.batch_id, record, OP_MOVE, source, dest, DRY_RUN_REASON)
                decision.action = ACTION_WOULD_MOVE
                state.moved_files += 1
                state.operations.append(decision)
                return

            os.makedirs(os.path.dirname(dest), exist_ok=True)
            shutil.move(source, dest)
            catalog_updated = False
            try:
                self.db.mark_moved(record.id, dest)
                catalog_updated = True
                # Row and move entry land together or not at all
                self.db.insert_operation(
                    self._entry(state.batch_id, record, OP_MOVE, source, dest, "File moved successfully"))
            except Exception:
                # Put the file back so the catalog row stays truthful
                shutil.move(dest, source)
                if catalog_updated:
                    self.db.mark_pending(record.id, source)
                raise

            logging.debug(f"Moved {source} -> {dest}")
            state.moved_files += 1
            state.operations.append(decision)

        except Exception as e:
            state.error_files += 1
            logging.error(f"Failed to organize {source}: {e}")
            self._record_error(record.id, source, e)
            self._log_operation(state.batch_id, record, OP_ERROR, source, None, str(e))

    # --- Helpers ---

    def _prepare_destination(self, base: str):
        try:
            os.makedirs(base, exist_ok=True)
        except OSError as e:
            raise OrganizeError(f"Cannot create destination {base}: {e}") from e
        if not os.access(base, os.W_OK):
            raise OrganizeError(f"Destination {base} is not writable")

    def _entry(self,
               batch_id: str,
               record: FileRecord,
               operation_type: str,
               source: str,
               destination: Optional[str],
               reason: str) -> OperationEntry:
        return OperationEntry(
            batch_id=batch_id,
            file_id=record.id,
            operation_type=operation_type,
            source_path=source,
            destination_path=destination,
            hash_used=record.hash_sha256,
            reason=reason,
        )

    def _log_operation(self,
                       batch_id: str,
                       record: FileRecord,
                       operation_type: str,
                       source: str,
                       destination: Optional[str],
                       reason: str):
        try:
            self.db.insert_operation(self._entry(batch_id, record, operation_type, source, destination, reason))
        except Exception as e:
            logging.error(f"Failed to log {operation_type} operation for {source}: {e}")

    def _record_error(self, file_id: Optional[int], path: str, exc: BaseException):
        try:
            self.db.insert_error(ErrorRecord(
                file_id=file_id,
                file_path=path,
                error_type='organize_error',
                error_message=str(exc),
                stack_trace=''.join(traceback.format_exception(exc)),
            ))
        except Exception as db_err:
            logging.error(f"Failed to log error for {path}: {db_err}")
