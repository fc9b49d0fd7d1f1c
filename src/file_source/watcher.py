"""
watchdog integration.

watchdog delivers file system events on its observer thread; the handler
hands them to the asyncio loop with ``call_soon_threadsafe`` so all
bookkeeping happens on the loop.
"""

import asyncio
import fnmatch
import re
from pathlib import Path
from typing import Callable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from src.core.models import WatchPath
from src.observability.logger import get_logger

logger = get_logger(__name__)

IGNORED_DIRECTORIES = frozenset({".git", "node_modules", "temp", "tmp"})

FsCallback = Callable[[str, Path], None]


def is_ignored(path: Path, root: Path, exclude_pattern: str | None = None) -> bool:
    """
    True for paths under a denylisted directory or whose name matches the exclude regex.

    Only components below ``root`` are checked, so a watch root that itself
    lives under ``/tmp`` still works.
    """
    try:
        parts = path.relative_to(root).parts
    except ValueError:
        parts = (path.name,)
    if any(part in IGNORED_DIRECTORIES for part in parts[:-1]):
        return True
    if exclude_pattern and re.search(exclude_pattern, path.name):
        return True
    return False


class DirectoryEventHandler(FileSystemEventHandler):
    """
    Forwards file events under one watch path to a loop callback.

    The callback receives ("added" | "changed" | "removed", path).
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        watch_path: WatchPath,
        callback: FsCallback,
        exclude_pattern: str | None = None,
        ignored_roots: list[Path] | None = None,
    ):
        super().__init__()
        self.loop = loop
        self.watch_path = watch_path
        self.root = Path(watch_path.path).resolve()
        self.callback = callback
        self.exclude_pattern = exclude_pattern
        # processed/error/backup directories that may sit inside the watch path
        self.ignored_roots = [p.resolve() for p in ignored_roots or []]

    def accepts(self, path: Path) -> bool:
        if not fnmatch.fnmatch(path.name, self.watch_path.pattern):
            return False
        parent = path.parent.resolve()
        if not self.watch_path.recursive and parent != self.root:
            return False
        if any(parent == r or r in parent.parents for r in self.ignored_roots):
            return False
        return not is_ignored(parent / path.name, self.root, self.exclude_pattern)

    def _forward(self, event_type: str, src: str | bytes) -> None:
        path = Path(src.decode() if isinstance(src, bytes) else src)
        if not self.accepts(path):
            return
        try:
            self.loop.call_soon_threadsafe(self.callback, event_type, path)
        except RuntimeError:
            # Loop already closed during shutdown
            logger.debug(f"Dropped {event_type} event for {path}, event loop closed")

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward("added", event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward("changed", event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward("removed", event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward("removed", event.src_path)
            self._forward("added", event.dest_path)


def start_observer(handlers: list[DirectoryEventHandler]) -> Observer:
    """Schedule every handler on one observer and start it."""
    observer = Observer()
    for handler in handlers:
        observer.schedule(handler, str(handler.root), recursive=handler.watch_path.recursive)
    observer.start()
    return observer


def existing_files(handler: DirectoryEventHandler) -> list[Path]:
    """Files already present under a watch path that the handler would accept."""
    candidates = handler.root.rglob("*") if handler.watch_path.recursive else handler.root.iterdir()
    return sorted(p for p in candidates if p.is_file() and handler.accepts(p))
