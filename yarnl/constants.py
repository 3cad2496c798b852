APP_NAME = "Yarnl"
SCHEMA_VERSION = "3"

FORMAT_VERSION = "1.0"

BACKUP_PREFIX = "yarnl-backup-"
BACKUP_EXTENSION = ".zip"

DATABASE_ENTRY = "database.json"
SETTINGS_ENTRY = "settings.json"

# Insert order; deletes run in reverse.
TABLE_ORDER = ("categories", "hashtags", "patterns", "counters", "pattern_hashtags")
SEQUENCE_TABLES = ("categories", "hashtags", "patterns", "counters")

KEEP_FILE = ".gitkeep"
THUMBNAILS_DIRNAME = "thumbnails"
