import logging
import os

from aiohttp import web

from . import VERSION
from .api import BACKUPS_KEY, STORE_KEY, setup_routes
from .constants import APP_NAME, SCHEMA_VERSION
from .db import YarnlStore
from .scheduler import BackupScheduler

logger = logging.getLogger("Yarnl")


async def _scheduler_ctx(app):
    scheduler = BackupScheduler(app[BACKUPS_KEY], app[STORE_KEY])
    scheduler.start()
    yield
    await scheduler.stop()


def create_app(store=None, with_scheduler=True):
    app = web.Application()
    setup_routes(app, store=store)
    if with_scheduler:
        app.cleanup_ctx.append(_scheduler_ctx)
    return app


def main():
    logging.basicConfig(
        level=os.environ.get("YARNL_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    _banner = f" {APP_NAME} "
    logger.info("=" * 30 + _banner + "=" * 30)
    logger.info(f"Version: {VERSION}")
    logger.info(f"Schema version: {SCHEMA_VERSION}")

    store = YarnlStore.get()
    logger.info(f"Database: {store.db_path}")
    logger.info(f"Patterns: {store.patterns_dir}")

    host = os.environ.get("YARNL_HOST", "0.0.0.0")
    port = int(os.environ.get("YARNL_PORT", "3000"))
    web.run_app(create_app(store=store), host=host, port=port)


if __name__ == "__main__":
    main()
