from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager, nullcontext
from pathlib import Path
from typing import Any

from .errors import PretenderPyError, StoreError
from .keys import SortKeyRange
from .model import TableMetadata
from .schema import table_metadata_from_dict, table_metadata_to_dict
from .store import StoredRow

logger = logging.getLogger(__name__)

TABLE_PREFIX = "pdb_item_"
METADATA_TABLE = "pdb_table"


def item_table_name(table: str) -> str:
    return f"{TABLE_PREFIX}{table}"


def index_table_name(table: str, index: str) -> str:
    return f"{TABLE_PREFIX}{table}_gsi_{index}"


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


class SqliteSession:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def get(self, table: str, hash_key: bytes, sort_key: bytes) -> str | None:
        row = self._execute(
            f"SELECT document FROM {_quote(item_table_name(table))} WHERE hash_key = ? AND sort_key = ?",
            (hash_key, sort_key),
        ).fetchone()
        return None if row is None else str(row[0])

    def put(
        self, table: str, hash_key: bytes, sort_key: bytes, document: str, *, index: str | None = None
    ) -> None:
        self._execute(
            f"INSERT INTO {_quote(self._target(table, index))} (hash_key, sort_key, document) VALUES (?, ?, ?) "
            "ON CONFLICT(hash_key, sort_key) DO UPDATE SET document = excluded.document",
            (hash_key, sort_key, document),
        )

    def delete(self, table: str, hash_key: bytes, sort_key: bytes, *, index: str | None = None) -> None:
        self._execute(
            f"DELETE FROM {_quote(self._target(table, index))} WHERE hash_key = ? AND sort_key = ?",
            (hash_key, sort_key),
        )

    def query(
        self,
        table: str,
        hash_key: bytes,
        sort_range: SortKeyRange,
        *,
        limit: int | None = None,
        exclusive_start: bytes | None = None,
        descending: bool = False,
        index: str | None = None,
    ) -> list[StoredRow]:
        clauses = ["hash_key = ?"]
        params: list[Any] = [hash_key]
        if sort_range.lower is not None:
            clauses.append("sort_key >= ?")
            params.append(sort_range.lower)
        if sort_range.upper is not None:
            clauses.append("sort_key < ?")
            params.append(sort_range.upper)
        if sort_range.prefix is not None:
            clauses.append("substr(sort_key, 1, ?) = ?")
            params.extend([len(sort_range.prefix), sort_range.prefix])
        if exclusive_start is not None:
            clauses.append("sort_key < ?" if descending else "sort_key > ?")
            params.append(exclusive_start)

        order = "DESC" if descending else "ASC"
        params.append(-1 if limit is None else limit)
        rows = self._execute(
            f"SELECT hash_key, sort_key, document FROM {_quote(self._target(table, index))} "
            f"WHERE {' AND '.join(clauses)} ORDER BY sort_key {order} LIMIT ?",
            params,
        ).fetchall()
        return [StoredRow(bytes(r[0]), bytes(r[1]), str(r[2])) for r in rows]

    def scan(
        self,
        table: str,
        *,
        limit: int | None = None,
        exclusive_start: tuple[bytes, bytes] | None = None,
        index: str | None = None,
    ) -> list[StoredRow]:
        where = ""
        params: list[Any] = []
        if exclusive_start is not None:
            where = "WHERE hash_key > ? OR (hash_key = ? AND sort_key > ?)"
            params.extend([exclusive_start[0], exclusive_start[0], exclusive_start[1]])

        params.append(-1 if limit is None else limit)
        rows = self._execute(
            f"SELECT hash_key, sort_key, document FROM {_quote(self._target(table, index))} {where} "
            "ORDER BY hash_key, sort_key LIMIT ?",
            params,
        ).fetchall()
        return [StoredRow(bytes(r[0]), bytes(r[1]), str(r[2])) for r in rows]

    def _target(self, table: str, index: str | None) -> str:
        return item_table_name(table) if index is None else index_table_name(table, index)

    def _execute(self, sql: str, params: Any = ()) -> sqlite3.Cursor:
        try:
            return self._conn.execute(sql, params)
        except sqlite3.Error as err:
            raise StoreError(f"sqlite statement failed: {err}") from err


class SqliteItemStore:
    def __init__(self, database_path: str = ":memory:", *, busy_timeout_ms: int = 5000) -> None:
        self.database_path = database_path
        self._busy_timeout_ms = busy_timeout_ms
        self._memory = database_path == ":memory:"
        self._lock = threading.RLock()
        self._local = threading.local()
        self._connections: list[sqlite3.Connection] = []
        self._shared: sqlite3.Connection | None = None

        if not self._memory:
            parent = Path(database_path).parent
            if not parent.exists():
                parent.mkdir(parents=True, exist_ok=True)

        with self._lock:
            conn = self._connection()
            self._run_ddl(
                conn,
                f"CREATE TABLE IF NOT EXISTS {_quote(METADATA_TABLE)} ("
                "name TEXT PRIMARY KEY, definition TEXT NOT NULL)",
            )

    @contextmanager
    def transaction(self) -> Iterator[SqliteSession]:
        with self._lock if self._memory else nullcontext():
            conn = self._connection()
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as err:
                raise StoreError(f"unable to begin transaction: {err}") from err

            try:
                yield SqliteSession(conn)
            except PretenderPyError as err:
                _rollback(conn)
                if isinstance(err, StoreError):
                    logger.exception("transaction failed and was rolled back")
                else:
                    logger.debug("transaction rolled back: %s", err)
                raise
            except BaseException:
                _rollback(conn)
                logger.exception("transaction failed and was rolled back")
                raise

            try:
                conn.execute("COMMIT")
            except sqlite3.Error as err:
                _rollback(conn)
                raise StoreError(f"unable to commit transaction: {err}") from err

    def create_table(self, metadata: TableMetadata) -> None:
        definition = json.dumps(table_metadata_to_dict(metadata), sort_keys=True, separators=(",", ":"))
        statements = [_row_table_ddl(item_table_name(metadata.name))]
        statements += [_row_table_ddl(index_table_name(metadata.name, idx.name)) for idx in metadata.indexes]
        with self._lock:
            conn = self._connection()
            for ddl in statements:
                self._run_ddl(conn, ddl)
            self._run_ddl(
                conn,
                f"INSERT OR REPLACE INTO {_quote(METADATA_TABLE)} (name, definition) VALUES (?, ?)",
                (metadata.name, definition),
            )
        logger.debug("created backing tables for %s", metadata.name)

    def drop_table(self, metadata: TableMetadata) -> None:
        names = [item_table_name(metadata.name)]
        names += [index_table_name(metadata.name, idx.name) for idx in metadata.indexes]
        with self._lock:
            conn = self._connection()
            for name in names:
                self._run_ddl(conn, f"DROP TABLE IF EXISTS {_quote(name)}")
            self._run_ddl(conn, f"DELETE FROM {_quote(METADATA_TABLE)} WHERE name = ?", (metadata.name,))
        logger.debug("dropped backing tables for %s", metadata.name)

    def load_tables(self) -> list[TableMetadata]:
        with self._lock:
            conn = self._connection()
            try:
                rows = conn.execute(
                    f"SELECT definition FROM {_quote(METADATA_TABLE)} ORDER BY name"
                ).fetchall()
            except sqlite3.Error as err:
                raise StoreError(f"unable to read table definitions: {err}") from err
        return [table_metadata_from_dict(json.loads(row[0])) for row in rows]

    def close(self) -> None:
        with self._lock:
            for conn in self._connections:
                conn.close()
            self._connections.clear()
            self._shared = None
            self._local = threading.local()

    def _connection(self) -> sqlite3.Connection:
        if self._memory:
            if self._shared is None:
                self._shared = self._open()
            return self._shared

        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = self._open()
            self._local.conn = conn
        return conn

    def _open(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(self.database_path, isolation_level=None, check_same_thread=False)
            conn.execute(f"PRAGMA busy_timeout = {int(self._busy_timeout_ms)}")
            if not self._memory:
                conn.execute("PRAGMA journal_mode = WAL")
                conn.execute("PRAGMA synchronous = NORMAL")
        except sqlite3.Error as err:
            raise StoreError(f"unable to open sqlite database {self.database_path}: {err}") from err
        with self._lock:
            self._connections.append(conn)
        return conn

    def _run_ddl(self, conn: sqlite3.Connection, sql: str, params: Any = ()) -> None:
        try:
            conn.execute(sql, params)
        except sqlite3.Error as err:
            raise StoreError(f"sqlite statement failed: {err}") from err


def _rollback(conn: sqlite3.Connection) -> None:
    if conn.in_transaction:
        conn.execute("ROLLBACK")


def _row_table_ddl(name: str) -> str:
    return (
        f"CREATE TABLE IF NOT EXISTS {_quote(name)} ("
        "hash_key BLOB NOT NULL, "
        "sort_key BLOB NOT NULL, "
        "document TEXT NOT NULL, "
        "PRIMARY KEY (hash_key, sort_key)"
        ") WITHOUT ROWID"
    )
