"""
Sweep control surface: in-process service and HTTP server.
"""

from .server import API_KEY_HEADER, SweepApiServer
from .service import SweepService, build_service

__all__ = ["API_KEY_HEADER", "SweepApiServer", "SweepService", "build_service"]
