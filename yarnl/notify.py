import asyncio
import logging

import aiohttp

from .config import NotificationConfig

logger = logging.getLogger("Yarnl")


class Notifier:
    """Posts short messages to an ntfy-style topic URL."""

    def __init__(self, config: NotificationConfig):
        self.config = config

    @property
    def _headers(self) -> dict:
        headers = {"Content-Type": "text/plain; charset=utf-8"}
        token = self.config.token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def send(self, title: str, message: str) -> bool:
        if not self.config.enabled or not self.config.url:
            return False

        headers = self._headers
        headers["Title"] = title
        timeout = aiohttp.ClientTimeout(total=self.config.timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout, trust_env=False) as session:
                async with session.post(
                    self.config.url, data=message.encode("utf-8"), headers=headers
                ) as resp:
                    if resp.status >= 300:
                        text = await resp.text()
                        logger.warning("[notify] %s returned %d: %s", self.config.url, resp.status, text[:200])
                        return False
        except aiohttp.ClientError as e:
            logger.warning("[notify] send failed: %s", e)
            return False
        except asyncio.TimeoutError:
            logger.warning("[notify] timeout after %ds", self.config.timeout)
            return False

        logger.info("[notify] sent %r", title)
        return True

    async def notify_backup_result(self, success: bool, detail: str) -> bool:
        if success and not self.config.notify_on_success:
            return False
        if not success and not self.config.notify_on_failure:
            return False
        title = "Yarnl backup complete" if success else "Yarnl backup failed"
        return await self.send(title, detail)
