# Course_Tracker_DB.py
# Description: Local SQLite store for courses, tee boxes, visits, wishlist entries and course suggestions.
#
"""
Course_Tracker_DB.py
--------------------

The local store behind the course tracker. It owns the SQLite connection, the
versioned schema, and the two statement primitives everything else is built on:

- `execute()` for mutating statements, returning the affected-row count and the
  last inserted rowid.
- `query()` for reads, returning a list of plain dict rows.

Any underlying `sqlite3.Error` is raised as a `StorageError` carrying the failed
statement and its parameters. Nothing in this module swallows it.

Schema creation is idempotent: opening an already-current database is a no-op,
an older one is migrated step by step, and one written by a newer version of the
code is refused with a `SchemaError`.
"""
# Imports
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union
#
# Third-Party Libraries
from loguru import logger
#
# Local Imports
#
########################################################################################################################
#
# Functions:

SqlParams = Union[Sequence[Any], Dict[str, Any]]


# --- Custom Exceptions ---
class StorageError(Exception):
    """Underlying persistence fault. Carries the failed statement and its parameters."""

    def __init__(self, message: str, statement: Optional[str] = None, params: Optional[SqlParams] = None):
        super().__init__(message)
        self.statement = statement
        self.params = params

    def __str__(self):
        base = super().__str__()
        if self.statement:
            return f"{base} (statement: {self.statement.strip()[:200]!r}, params: {self.params!r})"
        return base


class SchemaError(StorageError):
    """Schema version mismatch or migration failure."""
    pass


class ValidationError(ValueError):
    """An operation would violate a data invariant (caller's fault, not retried)."""

    def __init__(self, message: str, entity: Optional[str] = None, entity_id: Any = None):
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id


@dataclass(frozen=True)
class ExecuteResult:
    rows_affected: int
    last_insert_id: Optional[int]


class CourseTrackerDB:
    """
    SQLite local store for the course tracker.

    One connection per instance. Callers share it from a single event loop, so
    statements are serialized by the store itself and no extra locking is done.
    """
    _SCHEMA_NAME = "course_tracker_schema"
    _CURRENT_SCHEMA_VERSION = 2

    _SCHEMA_VERSION_SQL = """
    CREATE TABLE IF NOT EXISTS db_schema_version (
        schema_name TEXT PRIMARY KEY NOT NULL,
        version INTEGER NOT NULL
    );
    INSERT OR IGNORE INTO db_schema_version (schema_name, version) VALUES ('course_tracker_schema', 0);
    """

    _TABLES_SQL_V2 = """
    CREATE TABLE IF NOT EXISTS courses (
        id TEXT PRIMARY KEY NOT NULL,
        name TEXT NOT NULL,
        address1 TEXT NOT NULL,
        address2 TEXT,
        city TEXT NOT NULL,
        stateRegion TEXT,
        country TEXT NOT NULL,
        postalCode TEXT,
        latitude REAL,
        longitude REAL,
        phone TEXT,
        website TEXT,
        isApproved INTEGER NOT NULL DEFAULT 0,
        createdByUserId TEXT,
        createdAt TEXT NOT NULL,
        updatedAt TEXT NOT NULL,
        serverUpdatedAt TEXT
    );

    CREATE TABLE IF NOT EXISTS tee_boxes (
        id TEXT PRIMARY KEY NOT NULL,
        courseId TEXT NOT NULL,
        name TEXT NOT NULL,
        parTotal INTEGER,
        yardageTotal INTEGER,
        slope REAL,
        rating REAL,
        serverUpdatedAt TEXT,
        FOREIGN KEY (courseId) REFERENCES courses (id) ON DELETE CASCADE
    );

    CREATE TABLE IF NOT EXISTS visits (
        id TEXT PRIMARY KEY NOT NULL,
        userId TEXT NOT NULL,
        courseId TEXT NOT NULL,
        visitDate TEXT NOT NULL,
        holesPlayed INTEGER NOT NULL CHECK (holesPlayed IN (9, 18)),
        grossScore INTEGER,
        teeBoxId TEXT,
        teeName TEXT,
        toPar INTEGER,
        serverUpdatedAt TEXT,
        isDirty INTEGER NOT NULL DEFAULT 0,
        isDeleted INTEGER NOT NULL DEFAULT 0,
        FOREIGN KEY (courseId) REFERENCES courses (id)
    );

    CREATE TABLE IF NOT EXISTS wishlist_entries (
        id TEXT PRIMARY KEY NOT NULL,
        userId TEXT NOT NULL,
        courseId TEXT NOT NULL,
        createdAt TEXT NOT NULL,
        serverUpdatedAt TEXT,
        isDirty INTEGER NOT NULL DEFAULT 0,
        isDeleted INTEGER NOT NULL DEFAULT 0
    );

    CREATE TABLE IF NOT EXISTS course_suggestions (
        id TEXT PRIMARY KEY NOT NULL,
        submittedByUserId TEXT NOT NULL,
        name TEXT NOT NULL,
        address1 TEXT NOT NULL,
        address2 TEXT,
        city TEXT NOT NULL,
        stateRegion TEXT,
        country TEXT NOT NULL,
        postalCode TEXT,
        phone TEXT,
        website TEXT,
        status TEXT NOT NULL CHECK (status IN ('Pending', 'Approved', 'Rejected')),
        decisionBy TEXT,
        decisionAt TEXT,
        createdAt TEXT NOT NULL,
        serverUpdatedAt TEXT
    );

    CREATE TABLE IF NOT EXISTS sync_state (
        key TEXT PRIMARY KEY NOT NULL,
        value TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_courses_location ON courses (country, stateRegion, city);
    CREATE INDEX IF NOT EXISTS idx_tee_boxes_course ON tee_boxes (courseId);
    CREATE INDEX IF NOT EXISTS idx_visits_by_course ON visits (userId, courseId, visitDate);
    CREATE INDEX IF NOT EXISTS idx_visits_recent ON visits (userId, visitDate);
    CREATE INDEX IF NOT EXISTS idx_visits_dirty ON visits (isDirty);
    CREATE UNIQUE INDEX IF NOT EXISTS idx_wishlist_active_unique
        ON wishlist_entries (userId, courseId) WHERE isDeleted = 0;
    CREATE INDEX IF NOT EXISTS idx_wishlist_dirty ON wishlist_entries (isDirty);

    UPDATE db_schema_version SET version = 2 WHERE schema_name = 'course_tracker_schema' AND version < 2;
    """

    # V1 declared UNIQUE (userId, courseId) over every wishlist row, which blocked
    # re-adding a course while its previous removal was still pending push.
    _MIGRATE_V1_TO_V2_SQL = """
    CREATE TABLE wishlist_entries_v2 (
        id TEXT PRIMARY KEY NOT NULL,
        userId TEXT NOT NULL,
        courseId TEXT NOT NULL,
        createdAt TEXT NOT NULL,
        serverUpdatedAt TEXT,
        isDirty INTEGER NOT NULL DEFAULT 0,
        isDeleted INTEGER NOT NULL DEFAULT 0
    );
    INSERT INTO wishlist_entries_v2 (id, userId, courseId, createdAt, serverUpdatedAt, isDirty, isDeleted)
        SELECT id, userId, courseId, createdAt, serverUpdatedAt, isDirty, isDeleted FROM wishlist_entries;
    DROP TABLE wishlist_entries;
    ALTER TABLE wishlist_entries_v2 RENAME TO wishlist_entries;
    CREATE UNIQUE INDEX IF NOT EXISTS idx_wishlist_active_unique
        ON wishlist_entries (userId, courseId) WHERE isDeleted = 0;
    CREATE INDEX IF NOT EXISTS idx_wishlist_dirty ON wishlist_entries (isDirty);
    CREATE INDEX IF NOT EXISTS idx_visits_dirty ON visits (isDirty);
    CREATE INDEX IF NOT EXISTS idx_tee_boxes_course ON tee_boxes (courseId);
    UPDATE db_schema_version SET version = 2 WHERE schema_name = 'course_tracker_schema';
    """

    def __init__(self, db_path: Union[str, Path]):
        """
        Opens (or creates) the store and brings its schema to the current version.

        Args:
            db_path: Path to the SQLite file, or ':memory:'.

        Raises:
            StorageError: If the directory cannot be created or the database cannot be opened.
            SchemaError: If the schema cannot be created or migrated.
        """
        if isinstance(db_path, Path):
            self.is_memory_db = False
            self.db_path = db_path.resolve()
        else:
            self.is_memory_db = (db_path == ':memory:')
            self.db_path = Path(db_path).resolve() if not self.is_memory_db else Path(":memory:")
        self.db_path_str = str(self.db_path) if not self.is_memory_db else ':memory:'

        if not self.is_memory_db:
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StorageError(f"Failed to create database directory {self.db_path.parent}: {e}") from e

        logger.info(f"Initializing CourseTrackerDB for path: {self.db_path_str}")
        self._conn: Optional[sqlite3.Connection] = None
        try:
            self._initialize_schema()
        except StorageError:
            logger.critical(f"FATAL: DB initialization failed for {self.db_path_str}")
            self.close_connection()
            raise

    # --- Connection Management ---
    def get_connection(self) -> sqlite3.Connection:
        conn = self._conn
        if conn is not None:
            try:
                conn.execute("SELECT 1")
                return conn
            except (sqlite3.ProgrammingError, sqlite3.OperationalError):
                logger.warning(f"Connection to {self.db_path_str} was closed or became unusable. Reopening.")
                self._conn = None
                if self.is_memory_db:
                    raise StorageError("In-memory database connection was closed; its data is gone.")

        try:
            conn = sqlite3.connect(
                self.db_path_str,
                isolation_level=None,  # autocommit; transaction() issues BEGIN explicitly
                check_same_thread=False,
                timeout=15,
            )
            conn.row_factory = sqlite3.Row
            if not self.is_memory_db:
                conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA foreign_keys = ON;")
        except sqlite3.Error as e:
            logger.error(f"Failed to connect to database {self.db_path_str}: {e}")
            raise StorageError(f"Failed to connect to database '{self.db_path_str}': {e}") from e
        self._conn = conn
        logger.debug(f"Opened SQLite connection to {self.db_path_str}")
        return conn

    def close_connection(self):
        conn = self._conn
        self._conn = None
        if conn is None:
            return
        try:
            if conn.in_transaction:
                logger.warning(f"Connection to {self.db_path_str} closed inside a transaction. Rolling back.")
                conn.rollback()
            conn.close()
            logger.debug(f"Closed connection to {self.db_path_str}.")
        except sqlite3.Error as e:
            logger.warning(f"Error closing connection to {self.db_path_str}: {e}")

    # --- Statement Execution ---
    def execute(self, statement: str, params: Optional[SqlParams] = None) -> ExecuteResult:
        """
        Runs a mutating statement.

        Returns:
            ExecuteResult with the affected-row count and the last inserted rowid.

        Raises:
            StorageError: On any sqlite3 failure, including constraint violations.
        """
        conn = self.get_connection()
        try:
            cursor = conn.execute(statement, params or ())
            return ExecuteResult(rows_affected=cursor.rowcount, last_insert_id=cursor.lastrowid)
        except sqlite3.Error as e:
            logger.error(f"Statement failed: {statement.strip()[:300]} Params: {params!r} Error: {e}")
            raise StorageError(f"Statement execution failed: {e}", statement, params) from e

    def execute_many(self, statement: str, params_list: List[SqlParams]) -> ExecuteResult:
        conn = self.get_connection()
        if not params_list:
            return ExecuteResult(rows_affected=0, last_insert_id=None)
        try:
            cursor = conn.executemany(statement, params_list)
            return ExecuteResult(rows_affected=cursor.rowcount, last_insert_id=cursor.lastrowid)
        except sqlite3.Error as e:
            logger.error(f"Batch statement failed: {statement.strip()[:300]} ({len(params_list)} sets) Error: {e}")
            raise StorageError(f"Batch execution failed: {e}", statement, params_list) from e

    def query(self, statement: str, params: Optional[SqlParams] = None) -> List[Dict[str, Any]]:
        """
        Runs a read statement.

        Returns:
            The result rows as dicts keyed by column name.

        Raises:
            StorageError: On any sqlite3 failure.
        """
        conn = self.get_connection()
        try:
            rows = conn.execute(statement, params or ()).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Query failed: {statement.strip()[:300]} Params: {params!r} Error: {e}")
            raise StorageError(f"Query execution failed: {e}", statement, params) from e
        return [dict(row) for row in rows]

    def query_one(self, statement: str, params: Optional[SqlParams] = None) -> Optional[Dict[str, Any]]:
        rows = self.query(statement, params)
        return rows[0] if rows else None

    # --- Transaction Context ---
    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Groups statements atomically. Commits on success, rolls back on any exception.
        A nested use joins the outer transaction.
        """
        conn = self.get_connection()
        in_outer = conn.in_transaction
        if not in_outer:
            try:
                conn.execute("BEGIN")
            except sqlite3.Error as e:
                raise StorageError(f"Could not begin transaction: {e}", "BEGIN") from e
        try:
            yield conn
        except BaseException as e:
            if not in_outer:
                logger.debug(f"Transaction failed, rolling back: {type(e).__name__} - {e}")
                try:
                    conn.rollback()
                except sqlite3.Error as rb_err:
                    logger.critical(f"Rollback FAILED: {rb_err}")
            raise
        else:
            if not in_outer:
                try:
                    conn.commit()
                except sqlite3.Error as e:
                    logger.error(f"Commit failed, rolling back: {e}")
                    conn.rollback()
                    raise StorageError(f"Commit failed: {e}", "COMMIT") from e

    # --- Schema Initialization and Migration ---
    def _get_db_version(self, conn: sqlite3.Connection) -> int:
        try:
            row = conn.execute("SELECT version FROM db_schema_version WHERE schema_name = ? LIMIT 1",
                               (self._SCHEMA_NAME,)).fetchone()
            return row['version'] if row else 0
        except sqlite3.Error as e:
            if "no such table" in str(e).lower():
                return 0
            raise SchemaError(f"Could not determine schema version: {e}") from e

    def _migrate_v1_to_v2(self, conn: sqlite3.Connection):
        logger.info(f"Migrating {self.db_path_str} from schema V1 to V2 (wishlist uniqueness over active rows)")
        conn.executescript("BEGIN;" + self._MIGRATE_V1_TO_V2_SQL + "COMMIT;")

    _MIGRATIONS = {
        1: _migrate_v1_to_v2,
    }

    def _initialize_schema(self):
        conn = self.get_connection()
        target_version = self._CURRENT_SCHEMA_VERSION
        try:
            conn.executescript(self._SCHEMA_VERSION_SQL)
            current_version = self._get_db_version(conn)
            logger.debug(f"DB schema '{self._SCHEMA_NAME}' at version {current_version}; code supports {target_version}")

            if current_version > target_version:
                raise SchemaError(
                    f"Database schema version ({current_version}) is newer than supported by code ({target_version}).")
            if current_version == 0:
                conn.executescript("BEGIN;" + self._TABLES_SQL_V2 + "COMMIT;")
            while 0 < current_version < target_version:
                migration = self._MIGRATIONS.get(current_version)
                if migration is None:
                    raise SchemaError(f"No migration path from schema version {current_version} to {target_version}.")
                migration(self, conn)
                current_version = self._get_db_version(conn)

            final_version = self._get_db_version(conn)
            if final_version != target_version:
                raise SchemaError(f"Schema setup finished at version {final_version}, expected {target_version}.")
            logger.info(f"Database schema '{self._SCHEMA_NAME}' ready at version {final_version}.")
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.rollback()
            raise SchemaError(f"Schema initialization failed: {e}") from e

#
# End of Course_Tracker_DB.py
########################################################################################################################
