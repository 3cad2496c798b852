import json
import os
import tempfile
import unittest
import zipfile
from pathlib import Path
from unittest import mock

from yarnl.backups import BackupService
from yarnl.constants import TABLE_ORDER
from yarnl.db import YarnlStore
from yarnl.errors import ArchiveIOError, InvalidArchive, TransactionFailure
from yarnl.restore import RestoreEngine


class BackupRestoreTests(unittest.TestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.data_dir = Path(self.temp_dir.name)
        patcher = mock.patch.dict(os.environ, {"YARNL_DATA_DIR": str(self.data_dir)})
        self.addCleanup(patcher.stop)
        patcher.start()
        self.store = YarnlStore()
        self.service = BackupService(self.store)

    def tearDown(self):
        self.temp_dir.cleanup()

    def _seed_data(self):
        self.store.create_category("Amigurumi")
        self.store.create_category("Blankets")
        cozy = self.store.create_hashtag("#Cozy")
        gift = self.store.create_hashtag("gift")

        pattern_file = Path(self.store.patterns_dir) / "Amigurumi" / "bunny.pdf"
        pattern_file.write_bytes(b"%PDF-bunny")
        thumb = Path(self.store.patterns_dir) / "thumbnails" / "thumb-bunny.jpg"
        thumb.write_bytes(b"jpeg-bunny")

        bunny = self.store.create_pattern(
            {
                "name": "Bunny",
                "filename": "bunny.pdf",
                "original_name": "Bunny Pattern.pdf",
                "category": "Amigurumi",
                "thumbnail": "thumb-bunny.jpg",
                "is_current": True,
            }
        )
        blanket = self.store.create_pattern(
            {
                "name": "Granny Square",
                "filename": "granny.md",
                "category": "Blankets",
                "pattern_type": "markdown",
                "content": "# Granny square\n\nRound 1: ch 4",
            }
        )
        self.store.create_counter(bunny["id"], "Rows", value=12)
        self.store.create_counter(bunny["id"], "Stitches", value=3, position=1)
        self.store.tag_pattern(bunny["id"], cozy["id"])
        self.store.tag_pattern(blanket["id"], gift["id"])
        return bunny, blanket

    def _tables(self):
        return {table: self.store.fetch_table(table) for table in TABLE_ORDER}

    def test_restore_reproduces_rows_and_ids(self):
        bunny, _blanket = self._seed_data()
        before = self._tables()
        meta = self.service.create_backup(client_settings={"theme": "dark"})

        self.store.delete_pattern(bunny["id"])
        self.store.create_category("Socks")
        self.store.create_hashtag("scrappy")

        result = self.service.restore_backup(meta["filename"])

        self.assertEqual(result["clientSettings"], {"theme": "dark"})
        self.assertIsNone(result["warning"])
        self.assertEqual(self._tables(), before)
        self.assertTrue(self.store.get_pattern(bunny["id"])["is_current"])

    def test_restore_realigns_sequences_past_restored_ids(self):
        self._seed_data()
        meta = self.service.create_backup()
        self.service.restore_backup(meta["filename"])

        for table in ("categories", "hashtags", "patterns", "counters"):
            max_id = max(row["id"] for row in self.store.fetch_table(table))
            self.assertGreater(self.store.next_id(table), max_id)

        created = self.store.create_category("Socks")
        self.assertEqual(created["id"], 3)

    def test_restore_replaces_pattern_files_and_keeps_marker(self):
        self._seed_data()
        marker = Path(self.store.patterns_dir) / ".gitkeep"
        marker.write_text("")
        meta = self.service.create_backup()

        stray = Path(self.store.patterns_dir) / "Amigurumi" / "added-later.pdf"
        stray.write_bytes(b"later")
        (Path(self.store.patterns_dir) / "Amigurumi" / "bunny.pdf").write_bytes(b"changed")

        self.service.restore_backup(meta["filename"])

        self.assertFalse(stray.exists())
        self.assertTrue(marker.exists())
        self.assertEqual((Path(self.store.patterns_dir) / "Amigurumi" / "bunny.pdf").read_bytes(), b"%PDF-bunny")
        self.assertEqual(
            (Path(self.store.patterns_dir) / "thumbnails" / "thumb-bunny.jpg").read_bytes(),
            b"jpeg-bunny",
        )

    def test_restore_without_pattern_tree_leaves_files_alone(self):
        self._seed_data()
        meta = self.service.create_backup(include_patterns=False, include_images=False)
        kept = Path(self.store.patterns_dir) / "Amigurumi" / "added-later.pdf"
        kept.write_bytes(b"later")

        self.service.restore_backup(meta["filename"])

        self.assertTrue(kept.exists())

    def test_empty_tables_restore_empty_with_default_sequence(self):
        meta = self.service.create_backup()
        self._seed_data()

        self.service.restore_backup(meta["filename"])

        for table in TABLE_ORDER:
            self.assertEqual(self.store.count_rows(table), 0, table)
        for table in ("categories", "hashtags", "patterns", "counters"):
            self.assertEqual(self.store.next_id(table), 1, table)

    def test_failed_insert_rolls_back_everything(self):
        self._seed_data()
        before = self._tables()
        snapshot_tables = {table: rows for table, rows in before.items()}
        snapshot_tables["categories"] = [
            {"id": 10, "name": "Hats", "position": 0, "created_at": "2026-01-01T00:00:00+00:00"}
        ]
        snapshot_tables["counters"] = [
            {
                "id": 1,
                "pattern_id": 999,
                "name": "Rows",
                "value": 1,
                "position": 0,
                "created_at": "2026-01-01T00:00:00+00:00",
                "updated_at": "2026-01-01T00:00:00+00:00",
            }
        ]
        staging = self.data_dir / "staging"
        staging.mkdir()
        (staging / "database.json").write_text(json.dumps({"version": "1.0", "tables": snapshot_tables}))

        with self.assertRaises(TransactionFailure):
            RestoreEngine(self.store).restore(str(staging))

        self.assertEqual(self._tables(), before)
        self.assertNotIn("Hats", [c["name"] for c in self.store.list_categories()])

    def test_zero_max_id_leaves_sequence_at_start(self):
        staging = self.data_dir / "staging"
        staging.mkdir()
        tables = {
            "categories": [{"id": 0, "name": "Odd", "position": 0, "created_at": "2026-01-01T00:00:00+00:00"}],
        }
        (staging / "database.json").write_text(json.dumps({"tables": tables}))

        RestoreEngine(self.store).restore(str(staging))

        self.assertEqual(self.store.next_id("categories"), 1)
        self.assertEqual(self.store.count_rows("categories"), 1)

    def test_older_snapshot_without_new_columns_uses_defaults(self):
        staging = self.data_dir / "staging"
        staging.mkdir()
        tables = {
            "categories": [{"id": 1, "name": "Amigurumi", "position": 0, "created_at": "2026-01-01T00:00:00+00:00"}],
            "patterns": [
                {
                    "id": 4,
                    "name": "Bear",
                    "filename": "bear.pdf",
                    "original_name": "bear.pdf",
                    "category": "Amigurumi",
                    "is_current": False,
                    "created_at": "2026-01-01T00:00:00+00:00",
                    "updated_at": "2026-01-01T00:00:00+00:00",
                }
            ],
        }
        (staging / "database.json").write_text(json.dumps({"tables": tables}))

        RestoreEngine(self.store).restore(str(staging))

        bear = self.store.get_pattern(4)
        self.assertFalse(bear["is_archived"])
        self.assertEqual(bear["timer_seconds"], 0)
        self.assertEqual(self.store.next_id("patterns"), 5)
        self.assertTrue((Path(self.store.patterns_dir) / "Amigurumi").is_dir())

    def test_rows_missing_a_column_take_its_default(self):
        staging = self.data_dir / "staging"
        staging.mkdir()
        base = {
            "filename": "x.pdf",
            "original_name": "x.pdf",
            "category": "Amigurumi",
            "created_at": "2026-01-01T00:00:00+00:00",
            "updated_at": "2026-01-01T00:00:00+00:00",
        }
        tables = {
            "categories": [{"id": 1, "name": "Amigurumi", "position": 0, "created_at": "2026-01-01T00:00:00+00:00"}],
            "patterns": [
                {**base, "id": 1, "name": "Timed", "timer_seconds": 5},
                {**base, "id": 2, "name": "Untimed"},
            ],
        }
        (staging / "database.json").write_text(json.dumps({"tables": tables}))

        RestoreEngine(self.store).restore(str(staging))

        self.assertEqual(self.store.get_pattern(1)["timer_seconds"], 5)
        self.assertEqual(self.store.get_pattern(2)["timer_seconds"], 0)
        self.assertEqual(self.store.next_id("patterns"), 3)

    def test_file_copy_failure_keeps_rows_and_warns(self):
        self._seed_data()
        before = self._tables()
        meta = self.service.create_backup()
        self.store.create_category("Socks")

        with mock.patch("yarnl.restore.shutil.copytree", side_effect=OSError("disk full")):
            result = self.service.restore_backup(meta["filename"])

        self.assertIn("disk full", result["warning"])
        self.assertEqual(self._tables(), before)
        self.assertTrue((Path(self.store.patterns_dir) / "Amigurumi").is_dir())

    def test_archive_without_database_json_is_invalid_and_staging_removed(self):
        self._seed_data()
        bad = Path(self.service.backups_dir) / "yarnl-backup-bad.zip"
        with zipfile.ZipFile(bad, "w") as zf:
            zf.writestr("settings.json", "{}")

        with self.assertRaises(InvalidArchive):
            self.service.restore_backup(bad.name)

        self.assertEqual(self.store.count_rows("patterns"), 2)
        self.assertEqual([p for p in os.listdir(self.data_dir) if p.startswith("yarnl-restore-")], [])

    def test_corrupt_archive_raises_io_error(self):
        bad = Path(self.service.backups_dir) / "yarnl-backup-corrupt.zip"
        bad.write_bytes(b"not a zip at all")

        with self.assertRaises(ArchiveIOError):
            self.service.restore_backup(bad.name)


if __name__ == "__main__":
    unittest.main()
