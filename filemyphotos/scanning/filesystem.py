import os
import logging
import traceback
from pathlib import Path
from typing import Optional, List, Tuple, Union
from concurrent.futures import ThreadPoolExecutor

from tqdm import tqdm

from .. import config
from ..database.ops import DBOperations, now_iso
from ..exceptions import ScanError, FileNotInCatalogError, OperationCancelledError
from ..metadata.extract import MetadataExtractor
from ..metadata.dates import resolve_date
from ..models import (
    FileRecord, ErrorRecord, ScanResult,
    STATUS_PENDING, STATE_IN_PROGRESS, STATE_COMPLETED, STATE_ERROR, STATE_CANCELLED,
)
from .hasher import FileHasher


class DiskScanner:
    """
    Walks a tree and catalogues every eligible file.

    Two passes: the first counts eligible files so progress has a
    denominator, the second processes each directory's files in chunks of
    `batch_size` before descending into its subdirectories. Within a chunk
    the stat/sniff/EXIF/hash work runs on `max_workers` threads; catalog
    writes stay on the calling thread.

    The scanner keeps no per-run state of its own: progress lives in the
    ScanResult passed to (or created by) `scan`.
    """
    def __init__(self,
                 db_ops: DBOperations,
                 extractor: Optional[MetadataExtractor] = None,
                 hasher: Optional[FileHasher] = None,
                 batch_size: Optional[int] = None,
                 max_workers: int = 3,
                 progress: bool = False):
        self.db = db_ops
        self.extractor = extractor or MetadataExtractor()
        self.hasher = hasher or FileHasher()
        self.batch_size = max(1, batch_size or config.BATCH_SIZE)
        self.max_workers = max_workers
        self.progress = progress

    # --- Public API ---

    def scan(self,
             root: Union[str, Path],
             recursive: bool = True,
             state: Optional[ScanResult] = None,
             session_id: Optional[int] = None) -> ScanResult:
        """
        Catalogues everything under root. Returns the final progress snapshot.

        Raises ScanError if root itself cannot be listed. Every other failure
        is recorded in the errors table and counted.
        """
        root = Path(root)
        state = state or ScanResult(source_path=str(root))
        state.session_id = session_id if session_id is not None else state.session_id
        state.status = STATE_IN_PROGRESS
        state.started_at = state.started_at or now_iso()

        try:
            # Fail fast on the one structural error
            self._list_directory(root)

            state.total_files = self.count_files(root, recursive)
            self._save_session(state)
            logging.info(f"Scanning {root}: {state.total_files} eligible files")

            with tqdm(total=state.total_files, desc="Scanning", unit="file", disable=not self.progress) as bar:
                if self.max_workers > 1:
                    with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                        self._process_directory(root, recursive, state, bar, executor, is_root=True)
                else:
                    self._process_directory(root, recursive, state, bar, None, is_root=True)

            state.status = STATE_COMPLETED
            logging.info(
                f"Scan complete: {state.new_files} new, {state.skipped_files} skipped, "
                f"{state.error_files} errors"
            )
        except OperationCancelledError:
            state.status = STATE_CANCELLED
            logging.warning(f"Scan of {root} cancelled after {state.processed_files} files")
        except OSError as e:
            state.status = STATE_ERROR
            state.error = str(e)
            logging.error(f"Cannot scan {root}: {e}")
            raise ScanError(f"Cannot read scan root {root}: {e}") from e
        except Exception as e:
            state.status = STATE_ERROR
            state.error = str(e)
            logging.exception(f"Scan of {root} failed")
            raise
        finally:
            if state.status != STATE_IN_PROGRESS:
                state.completed_at = now_iso()
            self._save_session(state)

        return state

    def count_files(self, root: Path, recursive: bool = True) -> int:
        """First pass. Unreadable directories are logged and contribute zero."""
        try:
            dirs, files, _ = self._list_directory(root)
        except OSError as e:
            logging.warning(f"Error counting files in {root}: {e}")
            return 0

        count = len(files)
        if recursive:
            for d in dirs:
                count += self.count_files(d, recursive)
        return count

    def rescan(self, file_id: int) -> FileRecord:
        """
        Refreshes stat, type, EXIF, hashes and resolved date of a catalogued
        file from wherever it currently lives. Status and duplicate linkage
        are preserved.
        """
        existing = self.db.get_file(file_id)
        if existing is None:
            raise FileNotInCatalogError(f"File {file_id} not found")

        fresh = self._inspect(Path(existing.location))

        fresh.id = existing.id
        fresh.original_path = existing.original_path
        fresh.current_path = existing.location
        fresh.filename = existing.filename
        fresh.status = existing.status
        fresh.duplicate_of = existing.duplicate_of
        fresh.created_timestamp = existing.created_timestamp

        self.db.update_file(fresh)
        logging.info(f"Rescanned file {file_id} ({fresh.location})")
        return self.db.get_file(file_id)

    # --- Traversal ---

    def _list_directory(self, directory: Path) -> Tuple[List[Path], List[Path], int]:
        """
        Returns (subdirectories, eligible files, skipped file count), each
        sorted by name. Raises OSError if the directory cannot be read.
        """
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda e: e.name.lower())

        dirs: List[Path] = []
        files: List[Path] = []
        skipped = 0
        for e in entries:
            if e.is_dir(follow_symlinks=False):
                if not self.extractor.should_skip_directory(e.name):
                    dirs.append(Path(e.path))
            elif e.is_file(follow_symlinks=False):
                if self.extractor.should_skip_file(e.name):
                    skipped += 1
                else:
                    files.append(Path(e.path))
        return dirs, files, skipped

    def _process_directory(self,
                           directory: Path,
                           recursive: bool,
                           state: ScanResult,
                           bar,
                           executor: Optional[ThreadPoolExecutor],
                           is_root: bool = False):
        try:
            dirs, files, skipped = self._list_directory(directory)
        except OSError as e:
            if is_root:
                raise
            logging.error(f"Error processing directory {directory}: {e}")
            self._record_error(None, str(directory), 'directory_access', e)
            return

        state.skipped_files += skipped

        for start in range(0, len(files), self.batch_size):
            self._process_batch(files[start:start + self.batch_size], state, bar, executor)
            self._save_session(state)

        if recursive:
            for d in dirs:
                self._process_directory(d, recursive, state, bar, executor)

    def _process_batch(self,
                       paths: List[Path],
                       state: ScanResult,
                       bar,
                       executor: Optional[ThreadPoolExecutor]):
        self._checkpoint(state)

        # Re-scans are idempotent by path identity
        to_inspect = []
        for path in paths:
            if self.db.path_exists(str(path)):
                state.processed_files += 1
                state.skipped_files += 1
                bar.update(1)
            else:
                to_inspect.append(path)

        if executor is not None:
            pending = [(p, executor.submit(self._inspect, p)) for p in to_inspect]
        else:
            pending = [(p, None) for p in to_inspect]

        try:
            for path, future in pending:
                self._checkpoint(state)
                try:
                    record = future.result() if future is not None else self._inspect(path)
                    self.db.insert_file(record)
                    state.new_files += 1
                except Exception as e:
                    state.error_files += 1
                    logging.error(f"Error processing file {path}: {e}")
                    self._record_error(None, str(path), 'file_processing', e)
                finally:
                    state.processed_files += 1
                    bar.update(1)
        except OperationCancelledError:
            for _, future in pending:
                if future is not None:
                    future.cancel()
            raise

    # --- Per-file work (runs on worker threads) ---

    def _inspect(self, path: Path) -> FileRecord:
        record = self.extractor.extract(path)
        hashes = self.hasher.compute_hashes(path, record.size)
        record.hash_sha256 = hashes.full
        record.hash_partial = hashes.prefix

        resolved = resolve_date(record.exif_date, record.created_at, record.modified_at)
        record.resolved_date = resolved.date
        record.date_source = resolved.source
        record.status = STATUS_PENDING
        return record

    # --- Helpers ---

    def _checkpoint(self, state: ScanResult):
        if state.cancel_requested:
            raise OperationCancelledError("Scan cancelled")

    def _record_error(self, file_id: Optional[int], path: str, error_type: str, exc: BaseException):
        try:
            self.db.insert_error(ErrorRecord(
                file_id=file_id,
                file_path=path,
                error_type=error_type,
                error_message=str(exc),
                stack_trace=''.join(traceback.format_exception(exc)),
            ))
        except Exception as db_err:
            logging.error(f"Failed to log error for {path}: {db_err}")

    def _save_session(self, state: ScanResult):
        if state.session_id is None:
            return
        self.db.update_session(
            state.session_id,
            total_files=state.total_files,
            processed_files=state.processed_files,
            status=state.status,
            completed_at=state.completed_at,
        )
