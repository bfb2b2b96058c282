"""
Local uploads discovery.
"""

from .scanner import ScanStats, UploadScanner

__all__ = ["ScanStats", "UploadScanner"]
