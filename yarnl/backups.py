import logging
import os
import shutil
import tempfile
from datetime import datetime

from .archive import extract_archive, write_archive
from .constants import BACKUP_EXTENSION, BACKUP_PREFIX
from .errors import ArchiveIOError, BackupNotFound, InvalidArchive
from .paths import get_backups_dir
from .restore import RestoreEngine
from .retention import list_archives, prune_backups
from .snapshot import export_snapshot

logger = logging.getLogger("Yarnl")


def backup_filename(now=None):
    now = now or datetime.now()
    return f"{BACKUP_PREFIX}{now.strftime('%Y-%m-%dT%H-%M-%S')}{BACKUP_EXTENSION}"


def check_backup_filename(filename):
    filename = str(filename or "")
    if (
        not filename
        or ".." in filename
        or "/" in filename
        or "\\" in filename
        or not filename.endswith(BACKUP_EXTENSION)
    ):
        raise InvalidArchive("Invalid filename")
    return filename


def _metadata(filename, size, created):
    return {
        "filename": filename,
        "size": size,
        "created": created.isoformat() if isinstance(created, datetime) else created,
    }


class BackupService:
    def __init__(self, store, backups_dir=None):
        self.store = store
        self.backups_dir = backups_dir or get_backups_dir()
        os.makedirs(self.backups_dir, exist_ok=True)

    def resolve_backup_path(self, filename):
        filename = check_backup_filename(filename)
        path = os.path.join(self.backups_dir, filename)
        if not os.path.isfile(path):
            raise BackupNotFound("Backup not found")
        return path

    def create_backup(
        self,
        client_settings=None,
        include_patterns=True,
        include_images=True,
        include_archive=False,
        now=None,
    ):
        now = now or datetime.now()
        filename = backup_filename(now)
        path = os.path.join(self.backups_dir, filename)

        snapshot = export_snapshot(
            self.store,
            include_patterns=include_patterns,
            include_images=include_images,
            include_archive=include_archive,
        )
        trees = []
        if include_patterns:
            trees.append(("patterns", self.store.patterns_dir))
        if include_images:
            trees.append(("images", self.store.images_dir))
        if include_archive:
            trees.append(("archive", self.store.archive_dir))

        write_archive(snapshot, path, trees=trees, client_settings=client_settings)

        if not os.path.isfile(path) or os.path.getsize(path) == 0:
            raise ArchiveIOError(f"Backup archive {filename} was not written")
        size = os.path.getsize(path)
        logger.info("Created backup %s (%d bytes)", filename, size)
        return _metadata(filename, size, now)

    def list_backups(self):
        return [_metadata(a["filename"], a["size"], a["created"]) for a in list_archives(self.backups_dir)]

    def delete_backup(self, filename):
        path = self.resolve_backup_path(filename)
        os.remove(path)
        logger.info("Deleted backup %s", filename)

    def restore_backup(self, filename):
        path = self.resolve_backup_path(filename)
        staging_dir = tempfile.mkdtemp(prefix="yarnl-restore-", dir=os.path.dirname(self.store.db_path))
        try:
            extract_archive(path, staging_dir)
            result = RestoreEngine(self.store).restore(staging_dir)
        finally:
            try:
                shutil.rmtree(staging_dir)
            except FileNotFoundError:
                pass

        logger.info("Restored backup %s", filename)
        return {
            "clientSettings": result.client_settings,
            "warning": str(result.file_sync_error) if result.file_sync_error else None,
        }

    def prune_backups(self, mode, value):
        result = prune_backups(self.backups_dir, mode, value)
        return {
            "deleted": result.deleted_count,
            "deletedFilenames": result.deleted,
            "failed": result.failed,
        }
