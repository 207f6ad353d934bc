"""
Mailcast Core
=============

Core utilities and shared functionality for Mailcast modules.
"""

from .config import Config
from .database import Database, get_db_path
from .logging_service import LoggingService, logger, db_log

__all__ = ['Config', 'Database', 'get_db_path', 'LoggingService', 'logger', 'db_log']
