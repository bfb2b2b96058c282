"""
Database package for schema creation and persistence helpers.
"""

from .manager import AttachmentFilter, AttachmentRecord, DatabaseManager
from .schema import create_databases

__all__ = [
    "AttachmentFilter",
    "AttachmentRecord",
    "DatabaseManager",
    "create_databases",
]
