"""Workload log snapshot, follow and buffering."""
from .models import LogEntry
from .parser import FrameDemuxer, LineAssembler, parse_line, parse_output
from .processor import LogStreamProcessor, filter_by_level, search

__all__ = [
    "FrameDemuxer",
    "LineAssembler",
    "LogEntry",
    "LogStreamProcessor",
    "filter_by_level",
    "parse_line",
    "parse_output",
    "search",
]
