"""
Monitoring utilities for the stream rotator.
"""

from rotator.monitoring.metrics import (
    BYTES_WRITTEN,
    CONTENT_TYPE_LATEST,
    ROTATIONS,
    SOURCE_ATTACHMENTS,
    SOURCE_FAILURES,
    generate_latest,
    start_http_server,
)

__all__ = [
    "BYTES_WRITTEN",
    "ROTATIONS",
    "SOURCE_ATTACHMENTS",
    "SOURCE_FAILURES",
    "CONTENT_TYPE_LATEST",
    "generate_latest",
    "start_http_server",
]
