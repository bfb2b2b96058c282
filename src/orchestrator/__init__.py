"""
Client-side sweep driver and its transports.
"""

from .client import ClientOrchestrator
from .tokens import CancellationToken
from .transport import HttpTransport, LocalTransport, SweepTransport

__all__ = [
    "CancellationToken",
    "ClientOrchestrator",
    "HttpTransport",
    "LocalTransport",
    "SweepTransport",
]
