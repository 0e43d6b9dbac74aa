"""Prometheus metrics for the stream rotator."""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    generate_latest,
    start_http_server,
)

# Counters
BYTES_WRITTEN = Counter(
    "rotator_bytes_written_total", "Bytes written to output files"
)
CHUNKS_WRITTEN = Counter(
    "rotator_chunks_written_total", "Chunks written to output files"
)
ROTATIONS = Counter(
    "rotator_rotations_total", "Output file rotations", ["reason"]
)
SOURCE_ATTACHMENTS = Counter(
    "rotator_source_attachments_total", "Successful source attachments"
)
SOURCE_FAILURES = Counter(
    "rotator_source_failures_total",
    "Source failures seen by the supervisor",
    ["kind"],
)
WRITE_ERRORS = Counter(
    "rotator_write_errors_total", "Chunk writes that failed after retry"
)
DISCARDED_BYTES = Counter(
    "rotator_discarded_bytes_total",
    "Bytes read and dropped after the sink failed (discard policy)",
)
FILES_PRUNED = Counter(
    "rotator_files_pruned_total", "Finalized files deleted by retention"
)

# Gauges
CURRENT_FILE_BYTES = Gauge(
    "rotator_current_file_bytes", "Bytes written to the currently open file"
)
ENGINE_STATE = Gauge(
    "rotator_engine_state",
    "1 for the state the copy loop is in, 0 otherwise",
    ["state"],
)

__all__ = [
    "BYTES_WRITTEN",
    "CHUNKS_WRITTEN",
    "ROTATIONS",
    "SOURCE_ATTACHMENTS",
    "SOURCE_FAILURES",
    "WRITE_ERRORS",
    "DISCARDED_BYTES",
    "FILES_PRUNED",
    "CURRENT_FILE_BYTES",
    "ENGINE_STATE",
    "CONTENT_TYPE_LATEST",
    "generate_latest",
    "start_http_server",
]
