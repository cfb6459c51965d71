"""
Database schema definitions.
"""
import sqlite3
import logging

CURRENT_SCHEMA_VERSION = 1

def init_schema(conn: sqlite3.Connection):
    """
    Applies the catalog schema to the database.
    Idempotent: safe to run on every startup.
    """
    with conn:
        # 1. Version Tracking (For future migrations)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            );
        """)

        cur = conn.cursor()
        cur.execute("SELECT version FROM schema_version")
        if not cur.fetchone():
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (CURRENT_SCHEMA_VERSION,))

        # 2. Files: one row per discovered path
        conn.execute("""
        CREATE TABLE IF NOT EXISTS files (
            id                INTEGER PRIMARY KEY AUTOINCREMENT,
            original_path     TEXT NOT NULL UNIQUE,   -- Discovery path, never changes
            current_path      TEXT,
            filename          TEXT NOT NULL,
            extension         TEXT,
            size              INTEGER NOT NULL,
            hash_sha256       TEXT,                   -- Full content fingerprint
            hash_partial      TEXT,                   -- Fingerprint of the leading bytes
            mime_type         TEXT,
            category          TEXT,
            created_at        TEXT,
            modified_at       TEXT,
            exif_date         TEXT,
            resolved_date     TEXT,
            date_source       TEXT,
            status            TEXT NOT NULL DEFAULT 'pending',
            duplicate_of      INTEGER REFERENCES files(id),
            metadata_json     TEXT,
            created_timestamp TEXT NOT NULL,
            updated_timestamp TEXT NOT NULL
        );
        """)

        # 3. Operations: append-only ledger
        conn.execute("""
        CREATE TABLE IF NOT EXISTS operations (
            id                INTEGER PRIMARY KEY AUTOINCREMENT,
            batch_id          TEXT NOT NULL,
            file_id           INTEGER REFERENCES files(id),
            operation_type    TEXT NOT NULL,
            source_path       TEXT NOT NULL,
            destination_path  TEXT,
            hash_used         TEXT,
            reason            TEXT,
            status            TEXT NOT NULL DEFAULT 'completed',
            created_at        TEXT NOT NULL
        );
        """)

        # 4. Errors
        conn.execute("""
        CREATE TABLE IF NOT EXISTS errors (
            id                INTEGER PRIMARY KEY AUTOINCREMENT,
            file_id           INTEGER REFERENCES files(id),
            file_path         TEXT NOT NULL,
            error_type        TEXT NOT NULL,
            error_message     TEXT,
            stack_trace       TEXT,
            created_at        TEXT NOT NULL
        );
        """)

        # 5. Scan sessions (progress tracking)
        conn.execute("""
        CREATE TABLE IF NOT EXISTS scan_sessions (
            id                INTEGER PRIMARY KEY AUTOINCREMENT,
            source_path       TEXT NOT NULL,
            status            TEXT NOT NULL DEFAULT 'in_progress',
            total_files       INTEGER NOT NULL DEFAULT 0,
            processed_files   INTEGER NOT NULL DEFAULT 0,
            started_at        TEXT NOT NULL,
            completed_at      TEXT
        );
        """)

        # 6. Indices for Performance
        conn.execute("CREATE INDEX IF NOT EXISTS idx_files_status ON files(status);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_files_hash_sha256 ON files(hash_sha256);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_files_hash_partial ON files(hash_partial);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_files_resolved_date ON files(resolved_date);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_files_extension ON files(extension);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_files_size ON files(size);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_operations_batch_id ON operations(batch_id);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_operations_file_id ON operations(file_id);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_errors_file_id ON errors(file_id);")

    logging.debug("Database schema initialized.")
