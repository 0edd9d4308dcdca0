"""
Database Manager Module - AttendAI QR Attendance Service

This module handles all database operations for the attendance service.
It manages SQLite connections, table creation, and the query/update helpers
the managers and the credential store build on.

Features:
- SQLite database connection management (one connection per thread)
- Table schema creation
- Query and update helpers
- Error handling and logging
"""

import sqlite3
import logging
from contextlib import contextmanager
import threading
import os


class DatabaseManager:
    """
    Database management class for the attendance service.
    Handles connection management, schema creation and data manipulation
    with per-thread connections that are closed when their thread is done.
    """

    def __init__(self, db_path, timeout=30.0):
        """
        Initialize the database manager with the specified database path.

        Args:
            db_path (str): Path to the SQLite database file
            timeout (float): Seconds to wait on a locked database
        """
        self.db_path = str(db_path)
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)
        self._local = threading.local()
        # Open connections keyed by owning thread ident
        self._connections = {}
        self._connections_lock = threading.Lock()

        # Ensure database directory exists
        directory = os.path.dirname(self.db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        self.initialize_database()

    @contextmanager
    def get_connection(self):
        """
        Context manager for database connections.
        Provides thread-local connections for thread safety.

        Yields:
            sqlite3.Connection: Database connection object
        """
        if not hasattr(self._local, 'connection'):
            connection = sqlite3.connect(
                self.db_path,
                check_same_thread=False,
                timeout=self.timeout
            )
            connection.row_factory = sqlite3.Row
            connection.execute("PRAGMA foreign_keys = ON")
            self._local.connection = connection
            self._register_connection(connection)

        try:
            yield self._local.connection
        except Exception as e:
            self._local.connection.rollback()
            self.logger.error(f"Database operation failed: {str(e)}")
            raise

    def initialize_database(self):
        """
        Create all tables used by the attendance service.
        Idempotent; safe to call on every startup.
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS users (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        username VARCHAR(50) UNIQUE NOT NULL,
                        password_hash VARCHAR(255) NOT NULL,
                        full_name VARCHAR(100) NOT NULL,
                        email VARCHAR(100) UNIQUE,
                        role VARCHAR(20) DEFAULT 'student',
                        is_active BOOLEAN DEFAULT 1,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS events (
                        event_id VARCHAR(64) PRIMARY KEY,
                        title VARCHAR(200) NOT NULL,
                        venue VARCHAR(200),
                        description TEXT,
                        event_date DATE NOT NULL,
                        start_time VARCHAR(5),
                        end_time VARCHAR(5),
                        created_by VARCHAR(64),
                        is_active BOOLEAN DEFAULT 1,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                """)

                # Issued credentials; expired is derived from expires_at and never stored
                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS credentials (
                        credential_id VARCHAR(64) PRIMARY KEY,
                        nonce VARCHAR(64) NOT NULL,
                        event_id VARCHAR(64) NOT NULL,
                        issued_to VARCHAR(64) NOT NULL,
                        issued_at INTEGER NOT NULL,
                        expires_at INTEGER NOT NULL,
                        state VARCHAR(16) NOT NULL DEFAULT 'active',
                        consumed_at INTEGER,
                        consumed_by VARCHAR(64)
                    )
                """)

                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS attendance (
                        attendance_id VARCHAR(64) PRIMARY KEY,
                        event_id VARCHAR(64) NOT NULL,
                        user_id VARCHAR(64) NOT NULL,
                        scan_time INTEGER NOT NULL,
                        scanned_by VARCHAR(64) NOT NULL,
                        credential_id VARCHAR(64) UNIQUE,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                """)

                cursor.execute("CREATE INDEX IF NOT EXISTS idx_events_date ON events(event_date)")
                cursor.execute("CREATE INDEX IF NOT EXISTS idx_credentials_expiry ON credentials(state, expires_at)")
                cursor.execute("CREATE INDEX IF NOT EXISTS idx_attendance_event ON attendance(event_id)")
                cursor.execute("CREATE INDEX IF NOT EXISTS idx_attendance_user ON attendance(user_id)")

                conn.commit()
                self.logger.info("Database initialized successfully")

        except Exception as e:
            self.logger.error(f"Failed to initialize database: {str(e)}")
            raise

    def execute_query(self, query, params=None, fetch_all=True):
        """
        Execute a SELECT query and return results.

        Args:
            query (str): SQL query string
            params (tuple): Query parameters
            fetch_all (bool): Whether to fetch all results or just one

        Returns:
            list or dict: Query results
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(query, params or ())

                if fetch_all:
                    return [dict(row) for row in cursor.fetchall()]
                result = cursor.fetchone()
                return dict(result) if result else None

        except Exception as e:
            self.logger.error(f"Query execution failed: {str(e)}")
            raise

    def execute_update(self, query, params=None):
        """
        Execute an INSERT, UPDATE, or DELETE query.

        Args:
            query (str): SQL query string
            params (tuple): Query parameters

        Returns:
            int: Number of affected rows or last inserted row ID
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(query, params or ())
                conn.commit()

                if query.strip().upper().startswith('INSERT'):
                    return cursor.lastrowid
                return cursor.rowcount

        except Exception as e:
            self.logger.error(f"Update execution failed: {str(e)}")
            raise

    def _register_connection(self, connection):
        """
        Track a new connection for the calling thread.

        Connections left behind by threads that have finished are closed
        here, so the registry never grows past the number of live threads.
        """
        current = threading.current_thread().ident
        alive = {thread.ident for thread in threading.enumerate()}
        with self._connections_lock:
            stale = [
                ident for ident in self._connections
                if ident not in alive or ident == current
            ]
            for ident in stale:
                self._close_quietly(self._connections.pop(ident))
            self._connections[current] = connection

        if stale:
            self.logger.debug(f"Closed {len(stale)} connections from finished threads")

    def open_connection_count(self):
        with self._connections_lock:
            return len(self._connections)

    def close_connection(self):
        """Close the calling thread's connection, if it has one."""
        connection = getattr(self._local, 'connection', None)
        if connection is None:
            return
        del self._local.connection
        with self._connections_lock:
            if self._connections.get(threading.current_thread().ident) is connection:
                del self._connections[threading.current_thread().ident]
        self._close_quietly(connection)

    def close_all_connections(self):
        """Close every connection opened by this manager, across threads."""
        with self._connections_lock:
            connections = list(self._connections.values())
            self._connections = {}
        for connection in connections:
            self._close_quietly(connection)
        if hasattr(self._local, 'connection'):
            del self._local.connection

    def _close_quietly(self, connection):
        try:
            connection.close()
        except sqlite3.Error as e:
            self.logger.error(f"Error closing connection: {str(e)}")
