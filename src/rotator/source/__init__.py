"""
Input sources: standard input and named pipes.
"""

from .reader import Attachment, FifoSource, SourceReader, StdinSource, build_source

__all__ = ["Attachment", "SourceReader", "StdinSource", "FifoSource", "build_source"]
