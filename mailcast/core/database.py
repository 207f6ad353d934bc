import os
import sqlite3
from contextlib import contextmanager

from .config import Config


class Database:
    # Seconds a writer waits on a locked database before sqlite3 raises
    BUSY_TIMEOUT = 10

    @staticmethod
    def connect(path):
        conn = sqlite3.connect(path, timeout=Database.BUSY_TIMEOUT)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @staticmethod
    @contextmanager
    def connection(path):
        """
        Open a connection, commit on success, roll back on error, always close.
        Errors are re-raised to the caller.
        """
        conn = Database.connect(path)
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @staticmethod
    def ensure_dir(path):
        """Create the parent directory of a database file if needed"""
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)


def get_db_path(key):
    """Get a database path from config or environment (3-tier pattern)"""
    try:
        from flask import current_app
        val = current_app.config.get(key)
        if val:
            return val
    except RuntimeError:
        pass
    return getattr(Config, key, None) or os.getenv(key)
