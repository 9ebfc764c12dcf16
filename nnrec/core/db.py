"""
Persistent storage environment for the forest backend, on SQLite.

An environment is a directory holding one database file. Named sub-databases
store (key -> row, vector) items plus metadata blobs. Write transactions are
serialized and all-or-nothing; readers use independent transactions.
"""

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Generator, Iterable, Iterator, List, Optional, Tuple, Union

from .errors import StorageError
from util.logging import logger

DB_FILENAME = "data.db"

SCHEMA = (
    '''
    CREATE TABLE IF NOT EXISTS databases (
        name TEXT PRIMARY KEY,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS items (
        db TEXT NOT NULL,
        key INTEGER NOT NULL,
        row INTEGER NOT NULL,
        vector BLOB NOT NULL,
        PRIMARY KEY (db, key)
    )
    ''',
    'CREATE UNIQUE INDEX IF NOT EXISTS idx_items_db_row ON items(db, row)',
    '''
    CREATE TABLE IF NOT EXISTS metadata (
        db TEXT NOT NULL,
        field TEXT NOT NULL,
        value BLOB,
        PRIMARY KEY (db, field)
    )
    ''',
)


class Transaction:
    """A read or write transaction on its own connection."""

    def __init__(self, conn: sqlite3.Connection, write: bool):
        self.conn = conn
        self.write = write
        self.committed = False

    def execute(self, sql: str, params: Iterable = ()) -> sqlite3.Cursor:
        try:
            return self.conn.execute(sql, tuple(params))
        except sqlite3.Error as e:
            raise StorageError(f"Statement failed: {e}") from e

    def executemany(self, sql: str, rows: Iterable[Tuple]) -> sqlite3.Cursor:
        if not self.write:
            raise StorageError("Cannot write in a read transaction")
        try:
            return self.conn.executemany(sql, rows)
        except sqlite3.Error as e:
            raise StorageError(f"Statement failed: {e}") from e

    def commit(self) -> None:
        if not self.write:
            raise StorageError("Cannot commit a read transaction")
        try:
            self.conn.execute("COMMIT")
        except sqlite3.Error as e:
            raise StorageError(f"Commit failed: {e}") from e
        self.committed = True


class Database:
    """Handle on a named sub-database."""

    def __init__(self, name: str):
        self.name = name

    def put(self, txn: Transaction, key: int, row: int, vector: bytes) -> None:
        self.put_many(txn, [(key, row, vector)])

    def put_many(self, txn: Transaction, items: Iterable[Tuple[int, int, bytes]]) -> None:
        txn.executemany(
            'INSERT INTO items (db, key, row, vector) VALUES (?, ?, ?, ?)',
            ((self.name, key, row, vector) for key, row, vector in items)
        )

    def get(self, txn: Transaction, key: int) -> Optional[Tuple[int, bytes]]:
        """Return (row, vector bytes) for a key, or None."""
        found = txn.execute(
            'SELECT row, vector FROM items WHERE db = ? AND key = ?', (self.name, key)
        ).fetchone()
        if found is None:
            return None
        return found[0], found[1]

    def keys_for_rows(self, txn: Transaction, rows: List[int]) -> Dict[int, int]:
        """Map item rows back to their keys."""
        if not rows:
            return {}
        placeholders = ",".join("?" for _ in rows)
        found = txn.execute(
            f'SELECT row, key FROM items WHERE db = ? AND row IN ({placeholders})',
            [self.name, *rows]
        ).fetchall()
        return {row: key for row, key in found}

    def count(self, txn: Transaction) -> int:
        return txn.execute('SELECT COUNT(*) FROM items WHERE db = ?', (self.name,)).fetchone()[0]

    def set_meta(self, txn: Transaction, field: str, value: Union[bytes, str, int]) -> None:
        txn.execute(
            'INSERT OR REPLACE INTO metadata (db, field, value) VALUES (?, ?, ?)',
            (self.name, field, value)
        )

    def get_meta(self, txn: Transaction, field: str):
        found = txn.execute(
            'SELECT value FROM metadata WHERE db = ? AND field = ?', (self.name, field)
        ).fetchone()
        return None if found is None else found[0]


class StorageEnvironment:
    """
    Directory-backed SQLite environment sized by capacity parameters.

    Args:
        path: Environment directory (created if missing)
        map_size: Maximum size of the database file in bytes
        max_dbs: Maximum number of named sub-databases
    """

    def __init__(self, path: Union[str, Path], map_size: int, max_dbs: int):
        self.path = Path(path)
        self.map_size = int(map_size)
        self.max_dbs = int(max_dbs)
        self.db_file = self.path / DB_FILENAME
        self._write_lock = threading.Lock()

        if self.map_size <= 0:
            raise StorageError("map_size must be positive")
        if self.max_dbs < 1:
            raise StorageError("max_dbs must be at least 1")
        try:
            self.path.mkdir(parents=True, exist_ok=True)
            with self._connect() as conn:
                conn.execute("PRAGMA journal_mode=WAL")
                for statement in SCHEMA:
                    conn.execute(statement)
        except (sqlite3.Error, OSError) as e:
            logger.log_storage_operation("open", str(self.path), "failed", {"error": str(e)})
            raise StorageError(f"Couldn't open storage environment at {self.path}: {e}") from e
        logger.log_storage_operation("open", str(self.path))

    @contextmanager
    def _connect(self) -> Generator[sqlite3.Connection, None, None]:
        conn = sqlite3.connect(str(self.db_file), isolation_level=None, timeout=30.0)
        try:
            page_size = conn.execute("PRAGMA page_size").fetchone()[0]
            conn.execute(f"PRAGMA max_page_count = {max(self.map_size // page_size, 1)}")
            yield conn
        finally:
            conn.close()

    @contextmanager
    def read_txn(self) -> Generator[Transaction, None, None]:
        """Open an independent read transaction."""
        try:
            with self._connect() as conn:
                conn.execute("PRAGMA query_only = ON")
                conn.execute("BEGIN")
                txn = Transaction(conn, write=False)
                try:
                    yield txn
                finally:
                    if conn.in_transaction:
                        conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            raise StorageError(f"Read transaction failed: {e}") from e

    @contextmanager
    def write_txn(self) -> Generator[Transaction, None, None]:
        """
        Open the single write transaction. Changes persist only if commit()
        is called; anything else discards them entirely.
        """
        with self._write_lock:
            try:
                with self._connect() as conn:
                    conn.execute("BEGIN IMMEDIATE")
                    txn = Transaction(conn, write=True)
                    try:
                        yield txn
                    finally:
                        if not txn.committed and conn.in_transaction:
                            conn.execute("ROLLBACK")
                            logger.log_storage_operation("write_txn", str(self.path), "rolled_back")
            except sqlite3.Error as e:
                raise StorageError(f"Write transaction failed: {e}") from e

    def database_names(self, txn: Transaction) -> List[str]:
        return [row[0] for row in txn.execute('SELECT name FROM databases ORDER BY name')]

    def open_database(self, txn: Transaction, name: str) -> Optional[Database]:
        """Open an existing named database, or None if it does not exist."""
        found = txn.execute('SELECT 1 FROM databases WHERE name = ?', (name,)).fetchone()
        return Database(name) if found else None

    def create_database(self, txn: Transaction, name: str) -> Database:
        """Create a named database, replacing any previous contents."""
        if not txn.write:
            raise StorageError("Cannot create a database in a read transaction")
        if self.open_database(txn, name) is None:
            if len(self.database_names(txn)) >= self.max_dbs:
                raise StorageError(f"Environment already holds max_dbs={self.max_dbs} databases")
            txn.execute('INSERT INTO databases (name) VALUES (?)', (name,))
        else:
            txn.execute('DELETE FROM items WHERE db = ?', (name,))
            txn.execute('DELETE FROM metadata WHERE db = ?', (name,))
        return Database(name)

    def iter_items(self, txn: Transaction, database: Database) -> Iterator[Tuple[int, int, bytes]]:
        cursor = txn.execute(
            'SELECT key, row, vector FROM items WHERE db = ? ORDER BY row', (database.name,)
        )
        yield from cursor
