"""
Catalog connection.

One connection per app, shared by the facade, the scanner's writer and the
organize/revert engines. Journal mode is WAL; readers never block the
writer.
"""
import sqlite3
import logging
import threading
from pathlib import Path
from typing import Optional, Union

from .schema import init_schema

MEMORY = ":memory:"


class DBManager:
    def __init__(self, db_path: Union[str, Path]):
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        # Serializes catalog and ledger writes; hashing workers never write directly
        self._write_lock = threading.Lock()

    @property
    def in_memory(self) -> bool:
        return str(self.db_path) == MEMORY

    def connect(self) -> sqlite3.Connection:
        """Opens the catalog (creating its folder on first use) and applies the schema."""
        if self._conn:
            return self._conn

        if not self.in_memory:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        logging.info(f"Opening catalog: {self.db_path}")
        # Shared by the scanner writer and status polls on other threads
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)

        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._conn.execute("PRAGMA temp_store=MEMORY;")
        # files.duplicate_of and operations.file_id reference files.id
        self._conn.execute("PRAGMA foreign_keys=ON;")

        init_schema(self._conn)
        return self._conn

    def close(self):
        if self._conn:
            self._conn.close()
            self._conn = None
            logging.debug(f"Closed catalog: {self.db_path}")

    def __enter__(self):
        return self.connect()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def write_lock(self) -> threading.Lock:
        """Handed to DBOperations so every write commits under one lock."""
        return self._write_lock
