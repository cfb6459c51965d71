import logging
import threading
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Optional, List, Dict, Any, Union

from . import config
from .analysis.duplicates import DuplicateDetector
from .database.db import DBManager
from .database.ops import DBOperations
from .exceptions import OperationInProgressError, FileNotInCatalogError
from .models import (
    ScanResult, BatchResult, OperationEntry, DuplicateGroup, DuplicateMatch, DuplicateStats,
    RevertResult, RevertCheck, RevertPreview, BatchRevertResult, OrganizeDecision, FileRecord,
    STATE_IN_PROGRESS,
)
from .organization.mover import FileMover
from .organization.revert import RevertEngine
from .reporting import ReportGenerator
from .scanning.filesystem import DiskScanner

SCAN = 'scan'
ORGANIZE = 'organize'

OperationRef = Union[int, OperationEntry]


class FileMyPhotosApp:
    """
    Entry point for callers (CLI, web layer).

    Owns the catalog connection and the "one active scan, one active
    organize" rule: each long-running kind has a non-blocking lock, and a
    second request while one is held raises OperationInProgressError. The
    components underneath hold no run state; the latest ScanResult and
    BatchResult are kept here so status can be polled and cancels delivered.
    """
    def __init__(self,
                 db_path: Union[str, Path] = config.DB_PATH,
                 max_workers: int = 3,
                 batch_size: Optional[int] = None,
                 progress: bool = False):
        self.db_manager = DBManager(Path(db_path))
        conn = self.db_manager.connect()
        self.db = DBOperations(conn, self.db_manager.write_lock)

        self.detector = DuplicateDetector(self.db)
        self.scanner = DiskScanner(self.db, batch_size=batch_size, max_workers=max_workers, progress=progress)
        self.mover = FileMover(self.db, self.detector, progress=progress)
        self.reverter = RevertEngine(self.db)
        self.reports = ReportGenerator(self.db)

        self._guards: Dict[str, threading.Lock] = {SCAN: threading.Lock(), ORGANIZE: threading.Lock()}
        self._latest: Dict[str, Any] = {}

    def close(self):
        self.db_manager.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @contextmanager
    def _exclusive(self, kind: str):
        lock = self._guards[kind]
        if not lock.acquire(blocking=False):
            raise OperationInProgressError(f"A {kind} is already in progress")
        try:
            yield
        finally:
            lock.release()

    # --- Scanning ---

    def scan_directory(self,
                       source_path: Union[str, Path],
                       recursive: bool = True,
                       session_id: Optional[int] = None) -> ScanResult:
        with self._exclusive(SCAN):
            if session_id is None:
                session_id = self.db.create_session(str(source_path))
            state = ScanResult(source_path=str(source_path), session_id=session_id)
            self._latest[SCAN] = state
            return self.scanner.scan(source_path, recursive, state=state)

    def get_scan_status(self) -> Optional[ScanResult]:
        return self._latest.get(SCAN)

    def cancel_scan(self) -> bool:
        return self._request_cancel(SCAN)

    def scan_history(self, limit: int = 20):
        return self.db.list_sessions(limit)

    def rescan_file(self, file_id: int) -> FileRecord:
        return self.scanner.rescan(file_id)

    # --- Organizing ---

    def organize_files(self,
                       destination_base: Union[str, Path],
                       dry_run: bool = False,
                       file_ids: Optional[List[int]] = None) -> BatchResult:
        with self._exclusive(ORGANIZE):
            state = BatchResult(batch_id=str(uuid.uuid4()), destination_base=str(destination_base), dry_run=dry_run)
            self._latest[ORGANIZE] = state
            return self.mover.organize(destination_base, dry_run=dry_run, file_ids=file_ids, state=state)

    def get_organize_status(self) -> Optional[BatchResult]:
        return self._latest.get(ORGANIZE)

    def cancel_organize(self) -> bool:
        return self._request_cancel(ORGANIZE)

    def preview_organization(self,
                             destination_base: Union[str, Path],
                             file_ids: Optional[List[int]] = None) -> List[OrganizeDecision]:
        return self.mover.preview(destination_base, file_ids)

    def _request_cancel(self, kind: str) -> bool:
        state = self._latest.get(kind)
        if state is None or state.status != STATE_IN_PROGRESS:
            return False
        state.cancel_requested = True
        logging.info(f"Cancellation requested for {kind}")
        return True

    # --- Duplicates ---

    def find_all_duplicate_groups(self) -> List[DuplicateGroup]:
        return self.detector.find_groups()

    def mark_duplicates(self) -> dict:
        return self.detector.mark_duplicates()

    def calculate_duplicate_stats(self) -> DuplicateStats:
        return self.detector.calculate_stats()

    def find_duplicates_for(self, file_id: int) -> List[DuplicateMatch]:
        return self.detector.find_matches_for(self._file(file_id))

    # --- Revert ---

    def revert_operation(self, operation: OperationRef) -> RevertResult:
        return self.reverter.revert(self._operation(operation))

    def revert_batch(self, batch_id: str) -> BatchRevertResult:
        return self.reverter.revert_batch(batch_id)

    def can_revert(self, operation: OperationRef) -> RevertCheck:
        return self.reverter.can_revert(self._operation(operation))

    def preview_batch_revert(self, batch_id: str) -> List[RevertPreview]:
        return self.reverter.preview_batch_revert(batch_id)

    def file_history(self, file_id: int) -> List[OperationEntry]:
        return self.reverter.file_history(file_id)

    # --- Catalog queries ---

    def get_file(self, file_id: int) -> FileRecord:
        return self._file(file_id)

    def search_files(self, **filters):
        return self.db.search_files(**filters)

    def list_operations(self, limit: int = 100, offset: int = 0) -> List[OperationEntry]:
        return self.db.list_operations(limit, offset)

    def recent_batches(self, limit: int = 20) -> List[Dict[str, Any]]:
        return self.db.recent_batches(limit)

    def batch_operations(self, batch_id: str) -> List[OperationEntry]:
        return self.db.get_operations_by_batch(batch_id)

    def list_errors(self, limit: int = 100, offset: int = 0):
        return self.db.list_errors(limit, offset)

    def catalog_stats(self) -> Dict[str, Any]:
        date_min, date_max = self.db.date_range()
        return {
            'total_files': self.db.count_files(),
            'by_status': self.db.count_by_status(),
            'total_size': self.db.total_size(),
            'extensions': self.db.extension_counts(),
            'date_range': {'min': date_min, 'max': date_max},
            'errors': self.db.count_errors(),
        }

    def export_batch(self, batch_id: str, output_csv: Union[str, Path]) -> int:
        return self.reports.export_batch(batch_id, output_csv)

    def export_errors(self, output_csv: Union[str, Path]) -> int:
        return self.reports.export_errors(output_csv)

    # --- Lookups ---

    def _file(self, file_id: int) -> FileRecord:
        record = self.db.get_file(file_id)
        if record is None:
            raise FileNotInCatalogError(f"File {file_id} not found")
        return record

    def _operation(self, operation: OperationRef) -> OperationEntry:
        if isinstance(operation, OperationEntry):
            return operation
        entry = self.db.get_operation(operation)
        if entry is None:
            raise LookupError(f"Operation {operation} not found")
        return entry
