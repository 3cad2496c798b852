import asyncio
import json
import logging

from aiohttp import web

from .backups import BackupService
from .config import (
    ArchiveRetentionConfig,
    BackupScheduleConfig,
    NotificationConfig,
    config_to_dict,
    mask_secret,
    merge_config,
)
from .db import YarnlStore
from .errors import BackupError
from .notify import Notifier
from .utils import to_bool

logger = logging.getLogger("Yarnl")

routes = web.RouteTableDef()

STORE_KEY = web.AppKey("store", YarnlStore)
BACKUPS_KEY = web.AppKey("backups", BackupService)
NOTIFIER_KEY = web.AppKey("notifier_factory", object)


def _json_response(obj, status=200):
    return web.Response(
        status=status,
        text=json.dumps(obj, ensure_ascii=False, default=str),
        content_type="application/json",
    )


def _bad_request(msg):
    return _json_response({"error": msg}, status=400)


def _error_response(exc):
    return _json_response({"error": str(exc)}, status=getattr(exc, "status", 500))


async def _read_json(request):
    if not request.can_read_body:
        return {}
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return payload if isinstance(payload, dict) else None


def _store(request) -> YarnlStore:
    return request.app[STORE_KEY]


def _service(request) -> BackupService:
    return request.app[BACKUPS_KEY]


@routes.get("/api/health")
async def health(request):
    return _json_response({"ok": True, "db_path": _store(request).db_path})


# ── backups ──


@routes.get("/api/backups")
async def list_backups(request):
    return _json_response(await asyncio.to_thread(_service(request).list_backups))


@routes.post("/api/backups")
async def create_backup(request):
    payload = await _read_json(request)
    if payload is None:
        return _bad_request("Request body must be a JSON object")
    try:
        meta = await asyncio.to_thread(
            _service(request).create_backup,
            client_settings=payload.get("clientSettings"),
            include_patterns=to_bool(payload.get("includePatterns"), True),
            include_images=to_bool(payload.get("includeImages"), True),
            include_archive=to_bool(payload.get("includeArchive"), False),
        )
    except BackupError as exc:
        logger.exception("Error creating backup")
        return _error_response(exc)
    return _json_response({"success": True, **meta})


@routes.post("/api/backups/prune")
async def prune_backups(request):
    payload = await _read_json(request)
    if payload is None:
        return _bad_request("Request body must be a JSON object")
    try:
        result = await asyncio.to_thread(_service(request).prune_backups, payload.get("mode"), payload.get("value"))
    except ValueError as exc:
        return _bad_request(str(exc))
    return _json_response({"success": True, **result})


@routes.delete("/api/backups/{filename}")
async def delete_backup(request):
    try:
        await asyncio.to_thread(_service(request).delete_backup, request.match_info["filename"])
    except BackupError as exc:
        return _error_response(exc)
    return _json_response({"success": True})


@routes.post("/api/backups/{filename}/restore")
async def restore_backup(request):
    filename = request.match_info["filename"]
    try:
        result = await asyncio.to_thread(_service(request).restore_backup, filename)
    except BackupError as exc:
        logger.error("Error restoring backup %s: %s", filename, exc)
        return _error_response(exc)
    body = {
        "success": True,
        "clientSettings": result["clientSettings"],
        "message": "Backup restored successfully",
    }
    if result["warning"]:
        body["warning"] = result["warning"]
    return _json_response(body)


@routes.get("/api/backups/{filename}/download")
async def download_backup(request):
    filename = request.match_info["filename"]
    try:
        path = _service(request).resolve_backup_path(filename)
    except BackupError as exc:
        return _error_response(exc)
    return web.FileResponse(
        path,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ── settings ──


def _schedule_view(config):
    return config_to_dict(config)


def _notification_view(config):
    data = config_to_dict(config)
    data["token"] = mask_secret(data.get("token", ""))
    return data


@routes.get("/api/settings/backup-schedule")
async def get_backup_schedule(request):
    return _json_response(_schedule_view(_store(request).get_backup_schedule()))


@routes.put("/api/settings/backup-schedule")
async def put_backup_schedule(request):
    payload = await _read_json(request)
    if payload is None:
        return _bad_request("Request body must be a JSON object")
    store = _store(request)
    current = config_to_dict(store.get_backup_schedule())
    # last_backup belongs to the scheduler.
    payload.pop("last_backup", None)
    current.update(payload)
    config = store.set_backup_schedule(merge_config(BackupScheduleConfig, current))
    return _json_response(_schedule_view(config))


@routes.get("/api/settings/notifications")
async def get_notifications(request):
    return _json_response(_notification_view(_store(request).get_notification_config()))


@routes.put("/api/settings/notifications")
async def put_notifications(request):
    payload = await _read_json(request)
    if payload is None:
        return _bad_request("Request body must be a JSON object")
    store = _store(request)
    current = config_to_dict(store.get_notification_config())
    if payload.get("token") == mask_secret(current["token"]):
        payload.pop("token")
    current.update(payload)
    config = store.set_notification_config(merge_config(NotificationConfig, current))
    return _json_response(_notification_view(config))


@routes.post("/api/settings/notifications/test")
async def test_notifications(request):
    config = _store(request).get_notification_config()
    ok = await request.app[NOTIFIER_KEY](config).send("Yarnl test", "Notifications are working.")
    return _json_response({"success": ok})


@routes.get("/api/settings/archive-retention")
async def get_archive_retention(request):
    return _json_response(config_to_dict(_store(request).get_archive_retention()))


@routes.put("/api/settings/archive-retention")
async def put_archive_retention(request):
    payload = await _read_json(request)
    if payload is None:
        return _bad_request("Request body must be a JSON object")
    store = _store(request)
    current = config_to_dict(store.get_archive_retention())
    current.update(payload)
    config = store.set_archive_retention(merge_config(ArchiveRetentionConfig, current))
    return _json_response(config_to_dict(config))


def setup_routes(app, store=None, backups=None, notifier_factory=Notifier):
    store = store or YarnlStore.get()
    app[STORE_KEY] = store
    app[BACKUPS_KEY] = backups or BackupService(store)
    app[NOTIFIER_KEY] = notifier_factory
    app.add_routes(routes)
    return app
