import json
import logging

from .constants import FORMAT_VERSION, TABLE_ORDER
from .errors import InvalidArchive
from .utils import now_iso

logger = logging.getLogger("Yarnl")


def export_snapshot(store, include_patterns=True, include_images=True, include_archive=False):
    """Read every row of the backed-up tables into a versioned snapshot dict.

    The inclusion flags only record which file trees the archive bundles;
    database rows are always exported in full.
    """
    conn = store._connect()
    try:
        tables = {table: store.fetch_table(table, conn=conn) for table in TABLE_ORDER}
    finally:
        conn.close()

    logger.debug(
        "snapshot rows: %s",
        ", ".join(f"{name}={len(rows)}" for name, rows in tables.items()),
    )
    return {
        "exportDate": now_iso(),
        "version": FORMAT_VERSION,
        "account": None,
        "includePatterns": bool(include_patterns),
        "includeImages": bool(include_images),
        "includeArchive": bool(include_archive),
        "tables": tables,
    }


def load_snapshot(path):
    try:
        with open(path, "r", encoding="utf-8") as fh:
            snapshot = json.load(fh)
    except json.JSONDecodeError as exc:
        raise InvalidArchive(f"database.json is not valid JSON: {exc}") from exc

    if not isinstance(snapshot, dict) or not isinstance(snapshot.get("tables"), dict):
        raise InvalidArchive("database.json has no tables object")

    tables = snapshot["tables"]
    for table in TABLE_ORDER:
        rows = tables.get(table) or []
        if not isinstance(rows, list):
            raise InvalidArchive(f"database.json table {table} is not a list")
        tables[table] = rows
    return snapshot
