import errno
import json
import logging
import os
import shutil
import sqlite3
import threading
from datetime import datetime, timedelta, timezone

logger = logging.getLogger("Yarnl")

from .config import ArchiveRetentionConfig, BackupScheduleConfig, NotificationConfig, config_to_dict, merge_config
from .constants import SCHEMA_VERSION, SEQUENCE_TABLES, TABLE_ORDER, THUMBNAILS_DIRNAME
from .paths import get_archive_dir, get_db_path, get_images_dir, get_patterns_dir
from .schema import BOOLEAN_COLUMNS, SCHEMA_SQL
from .utils import normalize_hashtag, normalize_text, now_iso, parse_iso

RESERVED_DIRS = {THUMBNAILS_DIRNAME, "images"}


class YarnlStore:
    _instance = None
    _lock = threading.Lock()

    @classmethod
    def get(cls):
        with cls._lock:
            if cls._instance is None:
                cls._instance = cls()
            return cls._instance

    def __init__(self):
        self.db_path = get_db_path()
        self.patterns_dir = get_patterns_dir()
        self.archive_dir = get_archive_dir()
        self.images_dir = get_images_dir()
        os.makedirs(os.path.dirname(self.db_path), exist_ok=True)
        os.makedirs(os.path.join(self.patterns_dir, THUMBNAILS_DIRNAME), exist_ok=True)
        self._init_db()
        self.sync_category_dirs()

    def _connect(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA busy_timeout = 5000")
        return conn

    def _init_db(self):
        conn = self._connect()
        try:
            conn.executescript(SCHEMA_SQL)
            self._migrate_db(conn)
            conn.execute(
                "INSERT OR REPLACE INTO meta(key,value) VALUES('schema_version', ?)",
                (SCHEMA_VERSION,),
            )
            conn.commit()
        finally:
            conn.close()

    def _migrate_db(self, conn):
        cols = {row["name"] for row in conn.execute("PRAGMA table_info(patterns)").fetchall()}
        if "is_archived" not in cols:
            conn.execute("ALTER TABLE patterns ADD COLUMN is_archived INTEGER NOT NULL DEFAULT 0")
        if "archived_at" not in cols:
            conn.execute("ALTER TABLE patterns ADD COLUMN archived_at TEXT")
        if "is_favorite" not in cols:
            conn.execute("ALTER TABLE patterns ADD COLUMN is_favorite INTEGER NOT NULL DEFAULT 0")
        if "timer_seconds" not in cols:
            conn.execute("ALTER TABLE patterns ADD COLUMN timer_seconds INTEGER NOT NULL DEFAULT 0")

    # ── table access ──

    @staticmethod
    def _check_table(table):
        if table not in TABLE_ORDER:
            raise ValueError(f"Unknown table: {table}")

    def table_columns(self, conn, table):
        self._check_table(table)
        return [row["name"] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()]

    def fetch_table(self, table, conn=None):
        self._check_table(table)
        own = conn is None
        if own:
            conn = self._connect()
        try:
            order = "pattern_id, hashtag_id" if table == "pattern_hashtags" else "id"
            rows = conn.execute(f"SELECT * FROM {table} ORDER BY {order}").fetchall()
            return [self._row_to_record(table, row) for row in rows]
        finally:
            if own:
                conn.close()

    def count_rows(self, table):
        self._check_table(table)
        conn = self._connect()
        try:
            return int(conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0])
        finally:
            conn.close()

    def next_id(self, table):
        """Id the next plain INSERT into ``table`` will receive."""
        if table not in SEQUENCE_TABLES:
            raise ValueError(f"Table has no sequence: {table}")
        conn = self._connect()
        try:
            row = conn.execute("SELECT seq FROM sqlite_sequence WHERE name = ?", (table,)).fetchone()
            return int(row["seq"]) + 1 if row else 1
        finally:
            conn.close()

    @staticmethod
    def _row_to_record(table, row):
        record = dict(row)
        for col in BOOLEAN_COLUMNS.get(table, ()):
            if col in record and record[col] is not None:
                record[col] = bool(record[col])
        return record

    # ── settings ──

    def get_setting(self, key, default=None):
        conn = self._connect()
        try:
            row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
            if not row:
                return default
            try:
                return json.loads(row["value"])
            except (json.JSONDecodeError, TypeError):
                logger.warning("Ignoring unreadable setting %s", key)
                return default
        finally:
            conn.close()

    def set_setting(self, key, value):
        conn = self._connect()
        try:
            conn.execute(
                "INSERT OR REPLACE INTO settings(key, value, updated_at) VALUES(?, ?, ?)",
                (key, json.dumps(value, ensure_ascii=False), now_iso()),
            )
            conn.commit()
        finally:
            conn.close()

    def _get_config(self, cls):
        return merge_config(cls, self.get_setting(cls.SETTINGS_KEY))

    def _set_config(self, config):
        config.normalized()
        self.set_setting(config.SETTINGS_KEY, config_to_dict(config))
        return config

    def get_backup_schedule(self) -> BackupScheduleConfig:
        return self._get_config(BackupScheduleConfig)

    def set_backup_schedule(self, config: BackupScheduleConfig):
        return self._set_config(config)

    def get_notification_config(self) -> NotificationConfig:
        return self._get_config(NotificationConfig)

    def set_notification_config(self, config: NotificationConfig):
        return self._set_config(config)

    def get_archive_retention(self) -> ArchiveRetentionConfig:
        return self._get_config(ArchiveRetentionConfig)

    def set_archive_retention(self, config: ArchiveRetentionConfig):
        return self._set_config(config)

    # ── categories / hashtags ──

    def list_categories(self):
        conn = self._connect()
        try:
            rows = conn.execute("SELECT * FROM categories ORDER BY position, name").fetchall()
            return [dict(r) for r in rows]
        finally:
            conn.close()

    def create_category(self, name, position=None):
        name = normalize_text(name)
        if not name or name in RESERVED_DIRS or "/" in name or name.startswith("."):
            raise ValueError(f"Invalid category name: {name!r}")
        conn = self._connect()
        try:
            if position is None:
                position = conn.execute("SELECT COALESCE(MAX(position), -1) + 1 FROM categories").fetchone()[0]
            cur = conn.execute(
                "INSERT INTO categories(name, position, created_at) VALUES(?,?,?)",
                (name, int(position), now_iso()),
            )
            conn.commit()
            category_id = cur.lastrowid
        finally:
            conn.close()
        self.sync_category_dirs()
        return {"id": category_id, "name": name, "position": int(position)}

    def create_hashtag(self, name, position=0):
        name = normalize_hashtag(name)
        if not name:
            raise ValueError("Hashtag name is empty")
        conn = self._connect()
        try:
            cur = conn.execute(
                "INSERT INTO hashtags(name, position, created_at) VALUES(?,?,?)",
                (name, int(position), now_iso()),
            )
            conn.commit()
            return {"id": cur.lastrowid, "name": name, "position": int(position)}
        finally:
            conn.close()

    def sync_category_dirs(self):
        """Create a pattern folder for every category row; rows are the source of truth."""
        conn = self._connect()
        try:
            names = [r["name"] for r in conn.execute("SELECT name FROM categories").fetchall()]
        finally:
            conn.close()
        for name in names:
            os.makedirs(os.path.join(self.patterns_dir, name), exist_ok=True)
        return names

    def remove_empty_category_dirs(self):
        removed = []
        for entry in os.scandir(self.patterns_dir):
            if not entry.is_dir() or entry.name in RESERVED_DIRS:
                continue
            try:
                os.rmdir(entry.path)
            except OSError as exc:
                if exc.errno in (errno.ENOTEMPTY, errno.EEXIST):
                    continue
                raise
            logger.info("Removed empty category directory: %s", entry.name)
            removed.append(entry.name)
        return removed

    # ── patterns ──

    def create_pattern(self, payload):
        now = now_iso()
        category = normalize_text(payload.get("category")) or "Amigurumi"
        record = {
            "name": normalize_text(payload.get("name")) or "Untitled",
            "filename": payload.get("filename") or "",
            "original_name": payload.get("original_name") or payload.get("filename") or "",
            "upload_date": now,
            "category": category,
            "description": payload.get("description") or "",
            "is_current": int(bool(payload.get("is_current"))),
            "thumbnail": payload.get("thumbnail"),
            "notes": payload.get("notes") or "",
            "pattern_type": payload.get("pattern_type") or "pdf",
            "content": payload.get("content"),
            "is_favorite": int(bool(payload.get("is_favorite"))),
            "created_at": now,
            "updated_at": now,
        }
        cols = list(record.keys())
        conn = self._connect()
        try:
            cur = conn.execute(
                f"INSERT INTO patterns({','.join(cols)}) VALUES({','.join('?' * len(cols))})",
                [record[c] for c in cols],
            )
            conn.commit()
            pattern_id = cur.lastrowid
        finally:
            conn.close()
        return self.get_pattern(pattern_id)

    def get_pattern(self, pattern_id):
        conn = self._connect()
        try:
            row = conn.execute("SELECT * FROM patterns WHERE id = ?", (pattern_id,)).fetchone()
            if not row:
                raise KeyError("pattern not found")
            return self._row_to_record("patterns", row)
        finally:
            conn.close()

    def create_counter(self, pattern_id, name, value=0, position=0):
        now = now_iso()
        conn = self._connect()
        try:
            cur = conn.execute(
                "INSERT INTO counters(pattern_id, name, value, position, created_at, updated_at) VALUES(?,?,?,?,?,?)",
                (pattern_id, normalize_text(name), int(value), int(position), now, now),
            )
            conn.commit()
            return {"id": cur.lastrowid, "pattern_id": pattern_id, "name": normalize_text(name), "value": int(value)}
        finally:
            conn.close()

    def tag_pattern(self, pattern_id, hashtag_id):
        conn = self._connect()
        try:
            conn.execute(
                "INSERT OR IGNORE INTO pattern_hashtags(pattern_id, hashtag_id) VALUES(?,?)",
                (pattern_id, hashtag_id),
            )
            conn.commit()
        finally:
            conn.close()

    def pattern_file_paths(self, pattern):
        root = self.archive_dir if pattern.get("is_archived") else self.patterns_dir
        paths = [os.path.join(root, pattern["category"], pattern["filename"])]
        if pattern.get("thumbnail"):
            paths.append(os.path.join(root, THUMBNAILS_DIRNAME, pattern["thumbnail"]))
        return paths

    def delete_pattern(self, pattern_id):
        pattern = self.get_pattern(pattern_id)
        conn = self._connect()
        try:
            # Cascades are declared, but not every store path enables them.
            conn.execute("DELETE FROM pattern_hashtags WHERE pattern_id = ?", (pattern_id,))
            conn.execute("DELETE FROM counters WHERE pattern_id = ?", (pattern_id,))
            conn.execute("DELETE FROM patterns WHERE id = ?", (pattern_id,))
            conn.commit()
        finally:
            conn.close()
        for path in self.pattern_file_paths(pattern):
            try:
                os.remove(path)
            except FileNotFoundError:
                pass
        self.remove_empty_category_dirs()
        return pattern

    def _move_pattern_files(self, pattern, src_root, dest_root):
        moves = [(pattern["category"], pattern["filename"])]
        if pattern.get("thumbnail"):
            moves.append((THUMBNAILS_DIRNAME, pattern["thumbnail"]))
        for folder, name in moves:
            if not name:
                continue
            src = os.path.join(src_root, folder, name)
            if not os.path.exists(src):
                logger.warning("Pattern %s is missing %s", pattern["id"], src)
                continue
            dest_dir = os.path.join(dest_root, folder)
            os.makedirs(dest_dir, exist_ok=True)
            shutil.move(src, os.path.join(dest_dir, name))

    def archive_pattern(self, pattern_id):
        pattern = self.get_pattern(pattern_id)
        if pattern["is_archived"]:
            return pattern
        self._move_pattern_files(pattern, self.patterns_dir, self.archive_dir)
        now = now_iso()
        conn = self._connect()
        try:
            conn.execute(
                "UPDATE patterns SET is_archived = 1, archived_at = ?, is_current = 0, updated_at = ? WHERE id = ?",
                (now, now, pattern_id),
            )
            conn.commit()
        finally:
            conn.close()
        return self.get_pattern(pattern_id)

    def purge_archived_patterns(self, older_than_days, now=None):
        """Hard-delete archived patterns whose ``archived_at`` is older than the cutoff."""
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=int(older_than_days))
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT id, archived_at FROM patterns WHERE is_archived = 1 AND archived_at IS NOT NULL"
            ).fetchall()
        finally:
            conn.close()

        purged = []
        for row in rows:
            archived_at = parse_iso(row["archived_at"])
            if archived_at is None:
                continue
            if archived_at.tzinfo is None:
                archived_at = archived_at.replace(tzinfo=timezone.utc)
            if archived_at < cutoff:
                self.delete_pattern(row["id"])
                purged.append(row["id"])
        if purged:
            logger.info("Auto-deleted %d archived pattern(s)", len(purged))
        return purged

