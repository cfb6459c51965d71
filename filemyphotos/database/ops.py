import sqlite3
import threading
from datetime import datetime, UTC
from typing import Optional, List, Dict, Any, Tuple, Iterable

from ..exceptions import DatabaseError
from ..models import (
    FileRecord, OperationEntry, ErrorRecord, ScanSession,
    STATUS_PENDING, STATUS_MOVED, STATUS_DUPLICATE, STATUS_ERROR,
    OP_MOVE, OP_COMPLETED, OP_REVERTED, STATE_IN_PROGRESS,
    metadata_to_json, metadata_from_json,
)

# Ledger reason written for dry-run move decisions; these entries never touch disk
DRY_RUN_REASON = "Dry run - would move"


def now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec='microseconds')


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    """Canonical UTC text form used for every date column."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.astimezone()
    return dt.astimezone(UTC).isoformat(timespec='milliseconds')


def from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


class DBOperations:
    """
    Catalog query surface over the SQLite tables.

    Every write is a single statement committed on its own, so callers get
    row-level atomicity without holding transactions across components.
    """
    def __init__(self, conn: sqlite3.Connection, lock: Optional[threading.Lock] = None):
        self.conn = conn
        self.lock = lock or threading.Lock()

    # --- Internal helpers ---

    def _cursor(self) -> sqlite3.Cursor:
        cur = self.conn.cursor()
        cur.row_factory = sqlite3.Row
        return cur

    def _write(self, sql: str, params: Iterable[Any] = ()) -> sqlite3.Cursor:
        with self.lock:
            try:
                cur = self.conn.execute(sql, tuple(params))
                self.conn.commit()
            except sqlite3.Error as e:
                self.conn.rollback()
                raise DatabaseError(f"Catalog write failed: {e}") from e
            return cur

    @staticmethod
    def _row_to_file(row: sqlite3.Row) -> FileRecord:
        category, meta = metadata_from_json(row['metadata_json'])
        return FileRecord(
            id=row['id'],
            original_path=row['original_path'],
            current_path=row['current_path'],
            filename=row['filename'],
            extension=row['extension'] or '',
            size=row['size'],
            hash_sha256=row['hash_sha256'],
            hash_partial=row['hash_partial'],
            mime_type=row['mime_type'],
            category=row['category'] or category,
            created_at=from_iso(row['created_at']),
            modified_at=from_iso(row['modified_at']),
            exif_date=from_iso(row['exif_date']),
            resolved_date=from_iso(row['resolved_date']),
            date_source=row['date_source'],
            status=row['status'],
            duplicate_of=row['duplicate_of'],
            metadata=meta,
            created_timestamp=row['created_timestamp'],
            updated_timestamp=row['updated_timestamp'],
        )

    @staticmethod
    def _row_to_operation(row: sqlite3.Row) -> OperationEntry:
        return OperationEntry(
            id=row['id'],
            batch_id=row['batch_id'],
            file_id=row['file_id'],
            operation_type=row['operation_type'],
            source_path=row['source_path'],
            destination_path=row['destination_path'],
            hash_used=row['hash_used'],
            reason=row['reason'],
            status=row['status'],
            created_at=row['created_at'],
        )

    @staticmethod
    def _row_to_error(row: sqlite3.Row) -> ErrorRecord:
        return ErrorRecord(
            id=row['id'],
            file_id=row['file_id'],
            file_path=row['file_path'],
            error_type=row['error_type'],
            error_message=row['error_message'],
            stack_trace=row['stack_trace'],
            created_at=row['created_at'],
        )

    def _fetch_files(self, sql: str, params: Iterable[Any] = ()) -> List[FileRecord]:
        cur = self._cursor()
        cur.execute(sql, tuple(params))
        return [self._row_to_file(r) for r in cur.fetchall()]

    def _fetch_operations(self, sql: str, params: Iterable[Any] = ()) -> List[OperationEntry]:
        cur = self._cursor()
        cur.execute(sql, tuple(params))
        return [self._row_to_operation(r) for r in cur.fetchall()]

    # --- Files ---

    def insert_file(self, rec: FileRecord) -> int:
        """Inserts a new catalog row. The original path must not be catalogued yet."""
        now = now_iso()
        cur = self._write("""
            INSERT INTO files (
                original_path, current_path, filename, extension, size,
                hash_sha256, hash_partial, mime_type, category,
                created_at, modified_at, exif_date, resolved_date, date_source,
                status, duplicate_of, metadata_json, created_timestamp, updated_timestamp
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            rec.original_path, rec.current_path or rec.original_path, rec.filename, rec.extension, rec.size,
            rec.hash_sha256, rec.hash_partial, rec.mime_type, rec.category,
            to_iso(rec.created_at), to_iso(rec.modified_at), to_iso(rec.exif_date),
            to_iso(rec.resolved_date), rec.date_source,
            rec.status, rec.duplicate_of, metadata_to_json(rec.category, rec.metadata),
            now, now,
        ))
        if cur.lastrowid is None:
            raise RuntimeError("Database INSERT failed to return a row ID.")
        rec.id = cur.lastrowid
        rec.created_timestamp = rec.updated_timestamp = now
        return cur.lastrowid

    def update_file(self, rec: FileRecord):
        """Rewrites every mutable column of an existing row. original_path is never touched."""
        rec.updated_timestamp = now_iso()
        self._write("""
            UPDATE files SET
                current_path = ?, size = ?, hash_sha256 = ?, hash_partial = ?,
                mime_type = ?, category = ?, created_at = ?, modified_at = ?,
                exif_date = ?, resolved_date = ?, date_source = ?,
                status = ?, duplicate_of = ?, metadata_json = ?, updated_timestamp = ?
            WHERE id = ?
        """, (
            rec.current_path, rec.size, rec.hash_sha256, rec.hash_partial,
            rec.mime_type, rec.category, to_iso(rec.created_at), to_iso(rec.modified_at),
            to_iso(rec.exif_date), to_iso(rec.resolved_date), rec.date_source,
            rec.status, rec.duplicate_of, metadata_to_json(rec.category, rec.metadata),
            rec.updated_timestamp, rec.id,
        ))

    def mark_duplicate(self, file_id: int, original_id: int):
        if file_id == original_id:
            raise ValueError("A file cannot be a duplicate of itself.")
        self._write(
            "UPDATE files SET status = ?, duplicate_of = ?, updated_timestamp = ? WHERE id = ?",
            (STATUS_DUPLICATE, original_id, now_iso(), file_id),
        )

    def mark_moved(self, file_id: int, current_path: str):
        self._write(
            "UPDATE files SET status = ?, current_path = ?, duplicate_of = NULL, updated_timestamp = ? WHERE id = ?",
            (STATUS_MOVED, current_path, now_iso(), file_id),
        )

    def mark_pending(self, file_id: int, current_path: str):
        self._write(
            "UPDATE files SET status = ?, current_path = ?, duplicate_of = NULL, updated_timestamp = ? WHERE id = ?",
            (STATUS_PENDING, current_path, now_iso(), file_id),
        )

    def get_file(self, file_id: int) -> Optional[FileRecord]:
        rows = self._fetch_files("SELECT * FROM files WHERE id = ?", (file_id,))
        return rows[0] if rows else None

    def get_file_by_path(self, original_path: str) -> Optional[FileRecord]:
        rows = self._fetch_files("SELECT * FROM files WHERE original_path = ?", (original_path,))
        return rows[0] if rows else None

    def path_exists(self, original_path: str) -> bool:
        cur = self.conn.execute("SELECT 1 FROM files WHERE original_path = ? LIMIT 1", (original_path,))
        return cur.fetchone() is not None

    def get_files_by_hash(self, hash_sha256: str) -> List[FileRecord]:
        """Non-error rows carrying this full fingerprint."""
        return self._fetch_files(
            "SELECT * FROM files WHERE hash_sha256 = ? AND status != ? ORDER BY created_timestamp, id",
            (hash_sha256, STATUS_ERROR),
        )

    def get_files_by_partial_hash(self, hash_partial: str, size: int) -> List[FileRecord]:
        return self._fetch_files(
            "SELECT * FROM files WHERE hash_partial = ? AND size = ? AND status != ? ORDER BY created_timestamp, id",
            (hash_partial, size, STATUS_ERROR),
        )

    def get_files_by_status(self, status: str) -> List[FileRecord]:
        return self._fetch_files("SELECT * FROM files WHERE status = ? ORDER BY id", (status,))

    def get_pending_files(self, file_ids: Optional[List[int]] = None) -> List[FileRecord]:
        """All pending rows, or the pending subset of file_ids."""
        if not file_ids:
            return self.get_files_by_status(STATUS_PENDING)
        placeholders = ','.join('?' for _ in file_ids)
        return self._fetch_files(
            f"SELECT * FROM files WHERE id IN ({placeholders}) AND status = ? ORDER BY id",
            (*file_ids, STATUS_PENDING),
        )

    def find_moved_with_hash(self, hash_sha256: str, exclude_id: Optional[int] = None) -> Optional[FileRecord]:
        sql = "SELECT * FROM files WHERE hash_sha256 = ? AND status = ?"
        params: List[Any] = [hash_sha256, STATUS_MOVED]
        if exclude_id is not None:
            sql += " AND id != ?"
            params.append(exclude_id)
        sql += " ORDER BY created_timestamp, id LIMIT 1"
        rows = self._fetch_files(sql, params)
        return rows[0] if rows else None

    def duplicate_hashes(self) -> List[str]:
        """Full fingerprints shared by two or more non-error rows."""
        cur = self.conn.execute("""
            SELECT hash_sha256
            FROM files
            WHERE hash_sha256 IS NOT NULL AND status != ?
            GROUP BY hash_sha256
            HAVING COUNT(*) > 1
            ORDER BY MIN(created_timestamp)
        """, (STATUS_ERROR,))
        return [r[0] for r in cur.fetchall()]

    def list_files(self, limit: int = 100, offset: int = 0, status: Optional[str] = None) -> List[FileRecord]:
        if status:
            return self._fetch_files(
                "SELECT * FROM files WHERE status = ? ORDER BY resolved_date DESC, id LIMIT ? OFFSET ?",
                (status, limit, offset),
            )
        return self._fetch_files(
            "SELECT * FROM files ORDER BY resolved_date DESC, id LIMIT ? OFFSET ?", (limit, offset)
        )

    def search_files(self,
                     query: Optional[str] = None,
                     date_from: Optional[str] = None,
                     date_to: Optional[str] = None,
                     category: Optional[str] = None,
                     extension: Optional[str] = None,
                     min_size: Optional[int] = None,
                     max_size: Optional[int] = None,
                     status: Optional[str] = None,
                     limit: int = 100,
                     offset: int = 0) -> Tuple[List[FileRecord], int]:
        """Filtered listing. Returns (page, total matching rows)."""
        conditions = []
        params: List[Any] = []

        if query:
            conditions.append("(filename LIKE ? OR original_path LIKE ?)")
            params.extend([f"%{query}%", f"%{query}%"])
        if date_from:
            conditions.append("resolved_date >= ?")
            params.append(date_from)
        if date_to:
            conditions.append("resolved_date <= ?")
            params.append(date_to)
        if category:
            conditions.append("category = ?")
            params.append(category.lower())
        if extension:
            ext = extension.lower()
            conditions.append("extension = ?")
            params.append(ext if ext.startswith('.') else f".{ext}")
        if min_size is not None:
            conditions.append("size >= ?")
            params.append(min_size)
        if max_size is not None:
            conditions.append("size <= ?")
            params.append(max_size)
        if status:
            conditions.append("status = ?")
            params.append(status)

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        cur = self.conn.execute(f"SELECT COUNT(*) FROM files {where}", tuple(params))
        total = cur.fetchone()[0]

        rows = self._fetch_files(
            f"SELECT * FROM files {where} ORDER BY resolved_date DESC, id LIMIT ? OFFSET ?",
            (*params, limit, offset),
        )
        return rows, total

    def count_files(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM files").fetchone()[0]

    def count_by_status(self) -> Dict[str, int]:
        cur = self.conn.execute("SELECT status, COUNT(*) FROM files GROUP BY status")
        return {status: count for status, count in cur.fetchall()}

    def total_size(self) -> int:
        return self.conn.execute("SELECT COALESCE(SUM(size), 0) FROM files").fetchone()[0]

    def extension_counts(self) -> List[Tuple[str, int]]:
        cur = self.conn.execute("""
            SELECT extension, COUNT(*) AS count
            FROM files
            WHERE extension IS NOT NULL AND extension != ''
            GROUP BY extension
            ORDER BY count DESC, extension
        """)
        return [(ext, count) for ext, count in cur.fetchall()]

    def date_range(self) -> Tuple[Optional[str], Optional[str]]:
        cur = self.conn.execute(
            "SELECT MIN(resolved_date), MAX(resolved_date) FROM files WHERE resolved_date IS NOT NULL"
        )
        lo, hi = cur.fetchone()
        return lo, hi

    # --- Operations (ledger) ---

    def insert_operation(self, entry: OperationEntry) -> int:
        entry.created_at = now_iso()
        cur = self._write("""
            INSERT INTO operations
            (batch_id, file_id, operation_type, source_path, destination_path, hash_used, reason, status, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            entry.batch_id, entry.file_id, entry.operation_type, entry.source_path,
            entry.destination_path, entry.hash_used, entry.reason, entry.status, entry.created_at,
        ))
        if cur.lastrowid is None:
            raise RuntimeError("Database INSERT failed to return a row ID.")
        entry.id = cur.lastrowid
        return cur.lastrowid

    def get_operation(self, operation_id: int) -> Optional[OperationEntry]:
        rows = self._fetch_operations("SELECT * FROM operations WHERE id = ?", (operation_id,))
        return rows[0] if rows else None

    def get_operations_by_batch(self, batch_id: str) -> List[OperationEntry]:
        return self._fetch_operations(
            "SELECT * FROM operations WHERE batch_id = ? ORDER BY created_at, id", (batch_id,)
        )

    def get_revertible_moves(self, batch_id: str) -> List[OperationEntry]:
        """Completed real moves of a batch, newest first."""
        return self._fetch_operations("""
            SELECT * FROM operations
            WHERE batch_id = ? AND operation_type = ? AND status = ?
              AND (reason IS NULL OR reason != ?)
            ORDER BY created_at DESC, id DESC
        """, (batch_id, OP_MOVE, OP_COMPLETED, DRY_RUN_REASON))

    def get_operations_by_file(self, file_id: int) -> List[OperationEntry]:
        return self._fetch_operations(
            "SELECT * FROM operations WHERE file_id = ? ORDER BY created_at DESC, id DESC", (file_id,)
        )

    def list_operations(self, limit: int = 100, offset: int = 0) -> List[OperationEntry]:
        return self._fetch_operations(
            "SELECT * FROM operations ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?", (limit, offset)
        )

    def count_operations(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM operations").fetchone()[0]

    def mark_operation_reverted(self, operation_id: int) -> bool:
        """The only permitted ledger mutation: completed -> reverted."""
        cur = self._write(
            "UPDATE operations SET status = ? WHERE id = ? AND status = ?",
            (OP_REVERTED, operation_id, OP_COMPLETED),
        )
        return cur.rowcount == 1

    def recent_batches(self, limit: int = 20) -> List[Dict[str, Any]]:
        cur = self._cursor()
        cur.execute("""
            SELECT batch_id,
                   MIN(operation_type) AS operation_type,
                   COUNT(*) AS count,
                   SUM(CASE WHEN operation_type = ? AND status = ? THEN 1 ELSE 0 END) AS revertible,
                   MIN(created_at) AS started_at
            FROM operations
            GROUP BY batch_id
            ORDER BY started_at DESC
            LIMIT ?
        """, (OP_MOVE, OP_COMPLETED, limit))
        return [dict(r) for r in cur.fetchall()]

    # --- Errors ---

    def insert_error(self, err: ErrorRecord) -> int:
        err.created_at = now_iso()
        cur = self._write("""
            INSERT INTO errors (file_id, file_path, error_type, error_message, stack_trace, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (err.file_id, err.file_path, err.error_type, err.error_message, err.stack_trace, err.created_at))
        if cur.lastrowid is None:
            raise RuntimeError("Database INSERT failed to return a row ID.")
        err.id = cur.lastrowid
        return cur.lastrowid

    def list_errors(self, limit: int = 100, offset: int = 0) -> List[ErrorRecord]:
        cur = self._cursor()
        cur.execute("SELECT * FROM errors ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?", (limit, offset))
        return [self._row_to_error(r) for r in cur.fetchall()]

    def get_errors_by_file(self, file_id: int) -> List[ErrorRecord]:
        cur = self._cursor()
        cur.execute("SELECT * FROM errors WHERE file_id = ? ORDER BY created_at, id", (file_id,))
        return [self._row_to_error(r) for r in cur.fetchall()]

    def count_errors(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM errors").fetchone()[0]

    # --- Scan sessions ---

    def create_session(self, source_path: str) -> int:
        cur = self._write(
            "INSERT INTO scan_sessions (source_path, status, started_at) VALUES (?, ?, ?)",
            (source_path, STATE_IN_PROGRESS, now_iso()),
        )
        if cur.lastrowid is None:
            raise RuntimeError("Database INSERT failed to return a row ID.")
        return cur.lastrowid

    def update_session(self,
                       session_id: int,
                       total_files: int,
                       processed_files: int,
                       status: str,
                       completed_at: Optional[str] = None):
        self._write("""
            UPDATE scan_sessions
            SET total_files = ?, processed_files = ?, status = ?, completed_at = ?
            WHERE id = ?
        """, (total_files, processed_files, status, completed_at, session_id))

    def get_session(self, session_id: int) -> Optional[ScanSession]:
        cur = self._cursor()
        cur.execute("SELECT * FROM scan_sessions WHERE id = ?", (session_id,))
        row = cur.fetchone()
        return ScanSession(**dict(row)) if row else None

    def get_active_session(self) -> Optional[ScanSession]:
        cur = self._cursor()
        cur.execute(
            "SELECT * FROM scan_sessions WHERE status = ? ORDER BY started_at DESC, id DESC LIMIT 1",
            (STATE_IN_PROGRESS,),
        )
        row = cur.fetchone()
        return ScanSession(**dict(row)) if row else None

    def list_sessions(self, limit: int = 20) -> List[ScanSession]:
        cur = self._cursor()
        cur.execute("SELECT * FROM scan_sessions ORDER BY started_at DESC, id DESC LIMIT ?", (limit,))
        return [ScanSession(**dict(r)) for r in cur.fetchall()]
