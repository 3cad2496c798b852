import json
import logging
import os
import shutil
from dataclasses import dataclass

from .constants import DATABASE_ENTRY, KEEP_FILE, SEQUENCE_TABLES, SETTINGS_ENTRY, TABLE_ORDER
from .errors import FileSyncFailure, InvalidArchive, TransactionFailure
from .schema import BOOLEAN_COLUMNS
from .snapshot import load_snapshot

logger = logging.getLogger("Yarnl")


@dataclass
class RestoreResult:
    client_settings: object = None
    file_sync_error: FileSyncFailure | None = None
    restored_rows: dict | None = None
    restored_trees: tuple = ()


def _set_next_id(conn, table, next_id):
    # sqlite_sequence stores the last id handed out, not the next one.
    conn.execute("DELETE FROM sqlite_sequence WHERE name = ?", (table,))
    if next_id > 1:
        conn.execute("INSERT INTO sqlite_sequence(name, seq) VALUES(?, ?)", (table, next_id - 1))


def _max_id(rows):
    ids = []
    for row in rows:
        try:
            ids.append(int(row.get("id")))
        except (TypeError, ValueError):
            continue
    return max(ids, default=0)


def wipe_tree(root):
    """Remove everything under ``root`` except the keep-file marker."""
    os.makedirs(root, exist_ok=True)
    for entry in os.scandir(root):
        if entry.name == KEEP_FILE:
            continue
        if entry.is_dir(follow_symlinks=False):
            shutil.rmtree(entry.path)
        else:
            os.remove(entry.path)


class RestoreEngine:
    """Replace the live tables and file trees with an extracted backup."""

    def __init__(self, store, patterns_dir=None, images_dir=None, archive_dir=None):
        self.store = store
        self.trees = [
            ("patterns", patterns_dir or store.patterns_dir),
            ("images", images_dir or store.images_dir),
            ("archive", archive_dir or store.archive_dir),
        ]

    def restore(self, staging_dir):
        db_path = os.path.join(staging_dir, DATABASE_ENTRY)
        if not os.path.isfile(db_path):
            raise InvalidArchive(f"Invalid backup: {DATABASE_ENTRY} not found")
        snapshot = load_snapshot(db_path)

        client_settings = None
        settings_path = os.path.join(staging_dir, SETTINGS_ENTRY)
        if os.path.isfile(settings_path):
            try:
                with open(settings_path, "r", encoding="utf-8") as fh:
                    client_settings = json.load(fh)
            except json.JSONDecodeError as exc:
                raise InvalidArchive(f"settings.json is not valid JSON: {exc}") from exc

        counts = self.replace_tables(snapshot["tables"])
        result = RestoreResult(client_settings=client_settings, restored_rows=counts)

        try:
            result.restored_trees = self.replace_trees(staging_dir)
        except (OSError, shutil.Error) as exc:
            logger.exception("Database restored but file trees could not be replaced")
            result.file_sync_error = FileSyncFailure(f"Files were only partially restored: {exc}")
        try:
            self.store.sync_category_dirs()
        except OSError as exc:
            logger.warning("Could not re-create category folders: %s", exc)
            result.file_sync_error = result.file_sync_error or FileSyncFailure(str(exc))
        return result

    # ── transactional phase ──

    def replace_tables(self, tables):
        conn = self.store._connect()
        try:
            for table in reversed(TABLE_ORDER):
                conn.execute(f"DELETE FROM {table}")
            for table in SEQUENCE_TABLES:
                _set_next_id(conn, table, 1)

            counts = {}
            for table in TABLE_ORDER:
                rows = tables.get(table) or []
                counts[table] = self._insert_rows(conn, table, rows)
                if table in SEQUENCE_TABLES:
                    max_id = _max_id(rows)
                    _set_next_id(conn, table, max_id + 1 if max_id > 0 else 1)
            conn.commit()
        except Exception as exc:
            conn.rollback()
            logger.error("Restore rolled back: %s", exc)
            raise TransactionFailure(f"Restore failed and was rolled back: {exc}") from exc
        finally:
            conn.close()

        logger.info(
            "Restored rows: %s",
            ", ".join(f"{name}={n}" for name, n in counts.items()),
        )
        return counts

    def _insert_rows(self, conn, table, rows):
        if not rows:
            return 0
        live_cols = self.store.table_columns(conn, table)
        bool_cols = set(BOOLEAN_COLUMNS.get(table, ()))

        def value(row, col):
            v = row.get(col)
            if col in bool_cols and isinstance(v, bool):
                return int(v)
            return v

        # Rows missing a column must fall back to its default, not NULL,
        # so rows are batched by the columns they actually carry.
        groups = {}
        for row in rows:
            if not isinstance(row, dict):
                raise ValueError(f"{table} row is not an object")
            cols = tuple(c for c in live_cols if c in row)
            if not cols:
                raise ValueError(f"{table} row shares no columns with the live table")
            groups.setdefault(cols, []).append([value(row, c) for c in cols])

        for cols, values in groups.items():
            conn.executemany(
                f"INSERT INTO {table}({','.join(cols)}) VALUES({','.join('?' * len(cols))})",
                values,
            )
        return len(rows)

    # ── file phase ──

    def replace_trees(self, staging_dir):
        restored = []
        for arcname, live_root in self.trees:
            src = os.path.join(staging_dir, arcname)
            if not os.path.isdir(src):
                continue
            wipe_tree(live_root)
            shutil.copytree(src, live_root, dirs_exist_ok=True)
            restored.append(arcname)
            logger.info("Restored %s/ into %s", arcname, live_root)
        return tuple(restored)
