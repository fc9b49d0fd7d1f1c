"""
File event source: directory watching, stability debounce, bounded
concurrent processing jobs and post-processing of watched files.
"""

from .handlers import HANDLERS, dispatch
from .post_processing import apply_post_processing, backup_file, move_file
from .reader import FileReadError, file_checksum, read_file
from .source import FileEventSource

__all__ = [
    "FileEventSource",
    "FileReadError",
    "HANDLERS",
    "dispatch",
    "read_file",
    "file_checksum",
    "apply_post_processing",
    "backup_file",
    "move_file",
]
