import logging
import os
import zipfile

from .constants import DATABASE_ENTRY, SETTINGS_ENTRY
from .errors import ArchiveIOError, InvalidArchive
from .utils import json_dumps

logger = logging.getLogger("Yarnl")

# Backups are rare; favour size over speed.
COMPRESS_LEVEL = 9


def _add_tree(zf, root, arcname):
    if not os.path.isdir(root):
        logger.debug("Skipping missing backup tree %s (%s)", arcname, root)
        return 0
    count = 0
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        rel_dir = os.path.relpath(dirpath, root)
        prefix = arcname if rel_dir == "." else f"{arcname}/{rel_dir.replace(os.sep, '/')}"
        if not filenames and not dirnames:
            zf.writestr(prefix + "/", "")
        for name in sorted(filenames):
            zf.write(os.path.join(dirpath, name), f"{prefix}/{name}")
            count += 1
    return count


def write_archive(snapshot, output_path, trees=None, client_settings=None):
    """Write ``snapshot`` and the selected file trees to a zip at ``output_path``.

    ``trees`` is a sequence of ``(arcname, directory)`` pairs. Returns the
    size of the finished archive.
    """
    os.makedirs(os.path.dirname(os.path.abspath(output_path)), exist_ok=True)
    try:
        with zipfile.ZipFile(
            output_path, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=COMPRESS_LEVEL
        ) as zf:
            zf.writestr(DATABASE_ENTRY, json_dumps(snapshot, indent=2))
            if client_settings is not None:
                zf.writestr(SETTINGS_ENTRY, json_dumps(client_settings, indent=2))
            for arcname, root in trees or ():
                added = _add_tree(zf, root, arcname)
                logger.debug("Added %d file(s) under %s/", added, arcname)
    except (OSError, zipfile.LargeZipFile) as exc:
        try:
            os.remove(output_path)
        except FileNotFoundError:
            pass
        raise ArchiveIOError(f"Failed to write backup archive: {exc}") from exc
    return os.path.getsize(output_path)


def _check_members(zf, staging_dir):
    base = os.path.realpath(staging_dir)
    for name in zf.namelist():
        target = os.path.realpath(os.path.join(base, name))
        if target != base and not target.startswith(base + os.sep):
            raise InvalidArchive(f"Archive member escapes staging directory: {name}")


def extract_archive(archive_path, staging_dir):
    os.makedirs(staging_dir, exist_ok=True)
    try:
        with zipfile.ZipFile(archive_path, "r") as zf:
            _check_members(zf, staging_dir)
            zf.extractall(staging_dir)
    except (zipfile.BadZipFile, OSError, EOFError) as exc:
        raise ArchiveIOError(f"Corrupt or unreadable archive: {exc}") from exc

    if not os.path.isfile(os.path.join(staging_dir, DATABASE_ENTRY)):
        raise InvalidArchive(f"Invalid backup: {DATABASE_ENTRY} not found")
    return staging_dir
