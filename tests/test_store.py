import os
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest import mock

from yarnl.db import YarnlStore


class YarnlStoreTests(unittest.TestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        patcher = mock.patch.dict(os.environ, {"YARNL_DATA_DIR": self.temp_dir.name})
        self.addCleanup(patcher.stop)
        patcher.start()
        self.store = YarnlStore()

    def tearDown(self):
        self.temp_dir.cleanup()

    def _pattern_with_file(self, category="Amigurumi", filename="bunny.pdf"):
        self.store.create_category(category)
        (Path(self.store.patterns_dir) / category / filename).write_bytes(b"pdf")
        (Path(self.store.patterns_dir) / "thumbnails" / f"thumb-{filename}.jpg").write_bytes(b"jpg")
        return self.store.create_pattern(
            {
                "name": "Bunny",
                "filename": filename,
                "category": category,
                "thumbnail": f"thumb-{filename}.jpg",
            }
        )

    def test_hashtags_are_normalized(self):
        tag = self.store.create_hashtag("  #Cozy ")

        self.assertEqual(tag["name"], "cozy")
        with self.assertRaises(ValueError):
            self.store.create_hashtag("#")

    def test_category_rows_drive_directories(self):
        self.store.create_category("Blankets")

        self.assertTrue((Path(self.store.patterns_dir) / "Blankets").is_dir())
        with self.assertRaises(ValueError):
            self.store.create_category("thumbnails")

        (Path(self.store.patterns_dir) / "Orphan").mkdir()
        self.store.sync_category_dirs()
        self.assertEqual([c["name"] for c in self.store.list_categories()], ["Blankets"])

    def test_remove_empty_category_dirs_skips_non_empty_and_reserved(self):
        pattern = self._pattern_with_file()
        self.store.create_category("Empty")

        removed = self.store.remove_empty_category_dirs()

        self.assertEqual(removed, ["Empty"])
        self.assertTrue((Path(self.store.patterns_dir) / pattern["category"]).is_dir())
        self.assertTrue((Path(self.store.patterns_dir) / "thumbnails").is_dir())

    def test_delete_pattern_cascades_counters_tags_and_files(self):
        pattern = self._pattern_with_file()
        tag = self.store.create_hashtag("gift")
        self.store.create_counter(pattern["id"], "Rows", value=4)
        self.store.tag_pattern(pattern["id"], tag["id"])

        self.store.delete_pattern(pattern["id"])

        self.assertEqual(self.store.count_rows("counters"), 0)
        self.assertEqual(self.store.count_rows("pattern_hashtags"), 0)
        self.assertEqual(self.store.count_rows("hashtags"), 1)
        self.assertFalse((Path(self.store.patterns_dir) / "Amigurumi").exists())
        self.assertTrue((Path(self.store.patterns_dir) / "thumbnails").is_dir())
        with self.assertRaises(KeyError):
            self.store.get_pattern(pattern["id"])

    def test_archive_moves_files_to_exactly_one_tree(self):
        pattern = self._pattern_with_file()
        live = Path(self.store.patterns_dir) / "Amigurumi" / "bunny.pdf"
        archived = Path(self.store.archive_dir) / "Amigurumi" / "bunny.pdf"

        result = self.store.archive_pattern(pattern["id"])

        self.assertTrue(result["is_archived"])
        self.assertIsNotNone(result["archived_at"])
        self.assertFalse(live.exists())
        self.assertTrue(archived.exists())
        self.assertTrue((Path(self.store.archive_dir) / "thumbnails" / "thumb-bunny.pdf.jpg").exists())

        self.assertEqual(self.store.archive_pattern(pattern["id"])["archived_at"], result["archived_at"])

    def test_purge_archived_patterns_respects_cutoff(self):
        old = self._pattern_with_file(filename="old.pdf")
        recent = self.store.create_pattern({"name": "Recent", "filename": "recent.pdf", "category": "Amigurumi"})
        self.store.archive_pattern(old["id"])
        self.store.archive_pattern(recent["id"])
        now = datetime.now(timezone.utc)
        conn = self.store._connect()
        try:
            conn.execute(
                "UPDATE patterns SET archived_at = ? WHERE id = ?",
                ((now - timedelta(days=45)).isoformat(), old["id"]),
            )
            conn.commit()
        finally:
            conn.close()

        purged = self.store.purge_archived_patterns(30, now=now)

        self.assertEqual(purged, [old["id"]])
        self.assertEqual(self.store.get_pattern(recent["id"])["name"], "Recent")
        self.assertFalse((Path(self.store.archive_dir) / "Amigurumi" / "old.pdf").exists())

    def test_fetch_table_rejects_unknown_tables(self):
        with self.assertRaises(ValueError):
            self.store.fetch_table("settings")


if __name__ == "__main__":
    unittest.main()
