import re
from dataclasses import asdict, dataclass, fields

from .utils import to_bool, to_int

SCHEDULES = ("daily", "weekly", "monthly")
PRUNE_MODES = ("keep", "days")

_time_re = re.compile(r"^(\d{1,2}):(\d{2})$")


def parse_hhmm(value, default=(3, 0)):
    match = _time_re.match(str(value or "").strip())
    if not match:
        return default
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        return default
    return hour, minute


@dataclass
class BackupScheduleConfig:
    enabled: bool = False
    schedule: str = "daily"
    time: str = "03:00"
    last_backup: str | None = None
    include_patterns: bool = True
    include_images: bool = True
    include_archive: bool = False
    prune_enabled: bool = False
    prune_mode: str = "keep"
    prune_value: int = 5

    SETTINGS_KEY = "backup_schedule"

    def normalized(self):
        self.enabled = to_bool(self.enabled)
        self.schedule = str(self.schedule or "").strip().lower()
        if self.schedule not in SCHEDULES:
            self.schedule = "daily"
        hour, minute = parse_hhmm(self.time)
        self.time = f"{hour:02d}:{minute:02d}"
        self.last_backup = str(self.last_backup) if self.last_backup else None
        self.include_patterns = to_bool(self.include_patterns, True)
        self.include_images = to_bool(self.include_images, True)
        self.include_archive = to_bool(self.include_archive)
        self.prune_enabled = to_bool(self.prune_enabled)
        self.prune_mode = str(self.prune_mode or "").strip().lower()
        if self.prune_mode not in PRUNE_MODES:
            self.prune_mode = "keep"
        self.prune_value = max(1, to_int(self.prune_value, 5))
        return self

    @property
    def hour_minute(self):
        return parse_hhmm(self.time)


@dataclass
class NotificationConfig:
    enabled: bool = False
    url: str = ""
    token: str = ""
    notify_on_success: bool = True
    notify_on_failure: bool = True
    timeout: int = 10

    SETTINGS_KEY = "notifications"

    def normalized(self):
        self.enabled = to_bool(self.enabled)
        self.url = str(self.url or "").strip()
        self.token = str(self.token or "").strip()
        self.notify_on_success = to_bool(self.notify_on_success, True)
        self.notify_on_failure = to_bool(self.notify_on_failure, True)
        self.timeout = min(60, max(1, to_int(self.timeout, 10)))
        return self


@dataclass
class ArchiveRetentionConfig:
    auto_delete_enabled: bool = False
    auto_delete_days: int = 30

    SETTINGS_KEY = "archive_retention"

    def normalized(self):
        self.auto_delete_enabled = to_bool(self.auto_delete_enabled)
        self.auto_delete_days = max(1, to_int(self.auto_delete_days, 30))
        return self


def merge_config(cls, stored=None):
    """Build a ``cls`` from defaults overlaid with the known keys of ``stored``."""
    known = {f.name for f in fields(cls)}
    values = {}
    if isinstance(stored, dict):
        values = {k: v for k, v in stored.items() if k in known}
    return cls(**values).normalized()


def config_to_dict(config):
    return asdict(config)


def mask_secret(value):
    if value and len(value) > 4:
        return value[:2] + "*" * (len(value) - 4) + value[-2:]
    return value
