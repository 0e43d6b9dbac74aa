"""
Configuration loading for the stream rotator.
"""

from .config import (
    NamingScheme,
    RetryBackoff,
    RotationTrigger,
    RunConfig,
    WriteErrorPolicy,
    parse_duration,
    parse_size,
)

__all__ = [
    "RunConfig",
    "RotationTrigger",
    "RetryBackoff",
    "NamingScheme",
    "WriteErrorPolicy",
    "parse_size",
    "parse_duration",
]
