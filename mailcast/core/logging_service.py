"""
Centralized logging service for Mailcast.
Provides structured logging with database storage so campaign activity
survives process restarts, alongside the standard library logger.
"""

import json
import logging
import sqlite3
from datetime import datetime, timedelta

from flask import request, has_request_context

from .database import Database, get_db_path

_fallback = logging.getLogger('mailcast')


class LoggingService:
    """Centralized logging service for application-wide logging"""

    @staticmethod
    def _ensure_logs_table(conn):
        """Ensure the app_logs table exists"""
        conn.execute("""
            CREATE TABLE IF NOT EXISTS app_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                level TEXT NOT NULL,
                source TEXT NOT NULL,
                message TEXT NOT NULL,
                details TEXT,
                request_path TEXT
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_logs_timestamp
            ON app_logs(timestamp DESC)
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_logs_source
            ON app_logs(source)
        """)

    @staticmethod
    def _get_request_path():
        if not has_request_context():
            return None
        return request.path

    @staticmethod
    def log(level, source, message, details=None):
        """
        Log a message to the database

        Args:
            level (str): Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            source (str): Source component (campaigns, subscribers, mailer)
            message (str): Main log message
            details (str/dict): Additional details (will be JSON-encoded if dict)
        """
        if isinstance(details, dict):
            details = json.dumps(details, indent=2, default=str)

        db_path = get_db_path('ANALYTICS_DB')
        try:
            Database.ensure_dir(db_path)
            with Database.connection(db_path) as conn:
                LoggingService._ensure_logs_table(conn)
                conn.execute("""
                    INSERT INTO app_logs (timestamp, level, source, message, details, request_path)
                    VALUES (?, ?, ?, ?, ?, ?)
                """, (
                    datetime.now().isoformat(), level.upper(), source, message, details,
                    LoggingService._get_request_path()
                ))
        except (sqlite3.Error, OSError, TypeError) as e:
            # Fallback to console logging if database fails
            _fallback.warning(f"[{level.upper()}] [{source}] {message} {details or ''}")
            _fallback.warning(f"Logging service error: {e}")

    @staticmethod
    def info(source, message, details=None):
        LoggingService.log('INFO', source, message, details)

    @staticmethod
    def warning(source, message, details=None):
        LoggingService.log('WARNING', source, message, details)

    @staticmethod
    def error(source, message, details=None):
        LoggingService.log('ERROR', source, message, details)

    @staticmethod
    def recent(source=None, limit=50):
        """Return the most recent log entries, newest first"""
        db_path = get_db_path('ANALYTICS_DB')
        Database.ensure_dir(db_path)
        with Database.connection(db_path) as conn:
            LoggingService._ensure_logs_table(conn)
            if source:
                rows = conn.execute(
                    'SELECT * FROM app_logs WHERE source = ? ORDER BY id DESC LIMIT ?',
                    (source, limit)
                ).fetchall()
            else:
                rows = conn.execute(
                    'SELECT * FROM app_logs ORDER BY id DESC LIMIT ?', (limit,)
                ).fetchall()
            return [dict(row) for row in rows]

    @staticmethod
    def cleanup_old_logs(days_to_keep=30):
        """Clean up old log entries"""
        cutoff_iso = (datetime.now() - timedelta(days=days_to_keep)).isoformat()
        db_path = get_db_path('ANALYTICS_DB')
        with Database.connection(db_path) as conn:
            LoggingService._ensure_logs_table(conn)
            cursor = conn.execute('DELETE FROM app_logs WHERE timestamp < ?', (cutoff_iso,))
            deleted_count = cursor.rowcount

        LoggingService.info('system', f"Cleaned up {deleted_count} old log entries")
        return deleted_count


def db_log(level, source, message, details=None):
    """Persist a log line for a module (survives container rebuilds)"""
    LoggingService.log(level, source, message, details)


# Convenience instance for easy importing
logger = LoggingService()
