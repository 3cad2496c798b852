import asyncio
import logging
from datetime import datetime, timezone

from .config import BackupScheduleConfig
from .notify import Notifier
from .utils import parse_iso

logger = logging.getLogger("Yarnl")

# Minimum days between runs; a little under the nominal period so a
# once-a-minute tick that lands early still fires.
PERIOD_FLOOR_DAYS = {
    "daily": 0.9,
    "weekly": 6.9,
    "monthly": 29,
}

TICK_SECONDS = 60


def days_since(last_backup, now):
    last = parse_iso(last_backup)
    if last is None:
        return None
    if last.tzinfo is None and now.tzinfo is not None:
        last = last.replace(tzinfo=now.tzinfo)
    elif last.tzinfo is not None and now.tzinfo is None:
        last = last.astimezone().replace(tzinfo=None)
    return (now - last).total_seconds() / 86400.0


def is_backup_due(config: BackupScheduleConfig, now: datetime) -> bool:
    if not config.enabled:
        return False
    if (now.hour, now.minute) < config.hour_minute:
        return False
    elapsed = days_since(config.last_backup, now)
    if elapsed is None:
        return True
    return elapsed >= PERIOD_FLOOR_DAYS.get(config.schedule, PERIOD_FLOOR_DAYS["daily"])


class BackupScheduler:
    """Checks once per tick whether a scheduled backup is due and runs it."""

    def __init__(self, service, store=None, notifier_factory=Notifier, interval=TICK_SECONDS):
        self.service = service
        self.store = store or service.store
        self.notifier_factory = notifier_factory
        self.interval = interval
        self._task = None

    def _notifier(self):
        return self.notifier_factory(self.store.get_notification_config())

    async def _notify(self, success, detail):
        try:
            await self._notifier().notify_backup_result(success, detail)
        except Exception:
            logger.exception("Backup notification failed")

    async def tick(self, now=None) -> bool:
        now = now or datetime.now()
        ran = await self.run_scheduled_backup(now)
        await asyncio.to_thread(self.purge_expired_archive, now)
        return ran

    async def run_scheduled_backup(self, now) -> bool:
        config = self.store.get_backup_schedule()
        if not is_backup_due(config, now):
            return False

        logger.info("Running scheduled %s backup", config.schedule)
        try:
            meta = await asyncio.to_thread(
                self.service.create_backup,
                include_patterns=config.include_patterns,
                include_images=config.include_images,
                include_archive=config.include_archive,
                now=now,
            )
        except Exception as exc:
            logger.exception("Scheduled backup failed")
            await self._notify(False, f"Scheduled backup failed: {exc}")
            return False

        config.last_backup = now.isoformat()
        self.store.set_backup_schedule(config)

        detail = f"Created {meta['filename']} ({meta['size']} bytes)"
        if config.prune_enabled:
            try:
                pruned = await asyncio.to_thread(self.service.prune_backups, config.prune_mode, config.prune_value)
            except (OSError, ValueError) as exc:
                logger.warning("Scheduled prune failed: %s", exc)
            else:
                if pruned["deleted"]:
                    detail += f", pruned {pruned['deleted']} old backup(s)"

        await self._notify(True, detail)
        return True

    def purge_expired_archive(self, now):
        retention = self.store.get_archive_retention()
        if not retention.auto_delete_enabled:
            return []
        try:
            return self.store.purge_archived_patterns(retention.auto_delete_days, now=now.astimezone(timezone.utc))
        except Exception:
            logger.exception("Archive auto-delete failed")
            return []

    async def run(self):
        logger.info("Backup scheduler started (every %ss)", self.interval)
        while True:
            try:
                await self.tick()
            except Exception:
                logger.exception("Scheduler tick failed")
            await asyncio.sleep(self.interval)

    def start(self):
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Backup scheduler stopped")
