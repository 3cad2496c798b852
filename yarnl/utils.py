import json
import re
from datetime import datetime, timezone


def now_iso():
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def parse_iso(value):
    """Parse an ISO-8601 string (``Z`` suffix allowed); ``None`` for anything unparsable."""
    if isinstance(value, datetime):
        return value
    if not value or not isinstance(value, str):
        return None
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        return None


_ws_re = re.compile(r"\s+")


def normalize_text(s):
    if s is None:
        return ""
    s = str(s).strip()
    s = _ws_re.sub(" ", s)
    return s


def normalize_hashtag(name):
    name = normalize_text(name).lstrip("#").strip()
    return name.lower()


def json_dumps(obj, indent=None):
    return json.dumps(obj, ensure_ascii=False, indent=indent, default=str)


def to_bool(value, default=False):
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    if isinstance(value, (int, float)):
        return bool(value)
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def to_int(value, default=0):
    try:
        return int(value)
    except (TypeError, ValueError):
        return default
