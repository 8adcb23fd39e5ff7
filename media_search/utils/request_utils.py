import json
import re
from typing import Any

from starlette.datastructures import Headers

REQUEST_KEY_REGEXP_BLACKLIST = [
    r"api_key",
    r"password",
    r"secret",
    r"token",
    r"authorization",
    r"cookie",
]

CURSOR_HEADERS = ("x-pit-id", "x-search-after", "x-current-page")
CURSOR_ID_PREVIEW_LENGTH = 12


def key_is_blacklisted(key: str):
    for regexp in REQUEST_KEY_REGEXP_BLACKLIST:
        if re.search(regexp, key.lower()):
            return True
    return False


def strip_sensitive_items(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: strip_sensitive_items(v)
            for (k, v) in value.items()
            if not key_is_blacklisted(k)
        }
    if isinstance(value, list):
        return [strip_sensitive_items(e) for e in value]
    if isinstance(value, Headers):
        return Headers(strip_sensitive_items(dict(value)))
    return value


def decode_request_body(request_body: bytes):
    if not request_body:
        return {}
    try:
        request_dict = strip_sensitive_items(json.loads(request_body.decode("utf-8")))
    except json.JSONDecodeError:
        request_dict = request_body.decode("utf-8")
    except UnicodeDecodeError:
        request_dict = {}
    return request_dict


def summarize_cursor_headers(headers: Headers) -> dict[str, str]:
    """
    Pagination headers for request logs. Cursor ids are several hundred bytes
    of base64, so only a prefix is kept.
    """
    summary = {}
    for name in CURSOR_HEADERS:
        value = headers.get(name)
        if value is None:
            continue
        if name == "x-pit-id" and len(value) > CURSOR_ID_PREVIEW_LENGTH:
            value = f"{value[:CURSOR_ID_PREVIEW_LENGTH]}..."
        summary[name] = value
    return summary
