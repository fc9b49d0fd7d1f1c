"""
What happens to a file once processing is over.

Blocking helpers, run in a worker thread.
"""

import shutil
from datetime import datetime, timezone
from pathlib import Path

from src.core.models import PostProcessingRules


def _timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")


def backup_file(path: Path, backup_dir: Path | None = None) -> Path:
    """Copy ``path`` to ``<backup_dir>/<timestamp>_<name>`` (default ``<dir>/backup``)."""
    backup_dir = backup_dir or path.parent / "backup"
    backup_dir.mkdir(parents=True, exist_ok=True)
    target = backup_dir / f"{_timestamp()}_{path.name}"
    shutil.copy2(path, target)
    return target


def move_file(path: Path, target_dir: Path) -> Path:
    """Move into ``target_dir``; an existing file of the same name is kept and the new one timestamp-prefixed."""
    target_dir.mkdir(parents=True, exist_ok=True)
    target = target_dir / path.name
    if target.exists():
        target = target_dir / f"{_timestamp()}_{path.name}"
    return Path(shutil.move(str(path), str(target)))


def apply_post_processing(path: Path, rules: PostProcessingRules, success: bool) -> Path | None:
    """
    Back up, move or delete a processed file.

    On success: optional backup first, then move to ``processed_path`` or
    delete. On failure: move to ``error_path`` when one is configured.

    Returns:
        Where the file ended up, or None if it was deleted
    """
    if not path.exists():
        return None

    if not success:
        if rules.error_path:
            return move_file(path, Path(rules.error_path))
        return path

    if rules.backup_original:
        backup_file(path, Path(rules.backup_path) if rules.backup_path else None)

    if rules.move_after_processing and rules.processed_path:
        return move_file(path, Path(rules.processed_path))
    if rules.delete_after_processing:
        path.unlink()
        return None
    return path
