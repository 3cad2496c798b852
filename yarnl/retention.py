import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from .constants import BACKUP_EXTENSION

logger = logging.getLogger("Yarnl")


@dataclass
class PruneResult:
    deleted: list = field(default_factory=list)
    failed: list = field(default_factory=list)

    @property
    def deleted_count(self):
        return len(self.deleted)


def list_archives(backup_dir):
    """Backup archives in ``backup_dir`` as ``{filename, size, created}``, newest first."""
    if not os.path.isdir(backup_dir):
        return []
    items = []
    for entry in os.scandir(backup_dir):
        if not entry.is_file() or not entry.name.endswith(BACKUP_EXTENSION):
            continue
        stat = entry.stat()
        items.append(
            {
                "filename": entry.name,
                "size": stat.st_size,
                "created": datetime.fromtimestamp(stat.st_mtime),
            }
        )
    items.sort(key=lambda a: a["created"], reverse=True)
    return items


def plan_prune(archives, mode, value, now=None):
    """Filenames to delete under a ``keep`` or ``days`` retention policy."""
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid prune value: {value!r}")
    if value < 0:
        raise ValueError("Prune value must not be negative")

    ordered = sorted(archives, key=lambda a: a["created"], reverse=True)
    if mode == "keep":
        return [a["filename"] for a in ordered[value:]]
    if mode == "days":
        now = now or datetime.now()
        cutoff = now - timedelta(days=value)
        return [a["filename"] for a in ordered if a["created"] < cutoff]
    raise ValueError(f"Unsupported prune mode: {mode!r}")


def prune_backups(backup_dir, mode, value, now=None):
    result = PruneResult()
    for filename in plan_prune(list_archives(backup_dir), mode, value, now=now):
        try:
            os.remove(os.path.join(backup_dir, filename))
        except OSError as exc:
            logger.warning("Could not delete backup %s: %s", filename, exc)
            result.failed.append(filename)
            continue
        result.deleted.append(filename)

    if result.deleted:
        logger.info("Pruned %d backup(s) (mode=%s, value=%s)", result.deleted_count, mode, value)
    return result
