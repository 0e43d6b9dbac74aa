"""
Utility helpers for the stream rotator.
"""

from .pidfile import PidFile
from .retry import ExponentialBackoff, retry

__all__ = ["PidFile", "ExponentialBackoff", "retry"]
