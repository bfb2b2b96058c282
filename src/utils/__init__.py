"""
Utility helpers for the media offload service.
"""

from .instance_guard import InstanceLock, InstanceLockError, acquire_instance_lock
from .logging_setup import setup_logging
from .resource_monitor import ResourceMonitor

__all__ = [
    "setup_logging",
    "ResourceMonitor",
    "InstanceLock",
    "InstanceLockError",
    "acquire_instance_lock",
]
