"""
Utility helper functions
"""
from datetime import datetime
from typing import Optional
import base64
import re
import secrets
import time


def generate_notice_id() -> str:
    """Millisecond timestamp plus a random suffix"""
    return f"{int(time.time() * 1000)}{secrets.randbelow(1000):03d}"


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601 with a trailing Z for naive UTC datetimes"""
    if not value:
        return None
    text = value.isoformat()
    return text if value.tzinfo else text + "Z"


def safe_file_name(name: str) -> str:
    """Strip any directory part and characters outside [A-Za-z0-9._-]"""
    base = re.split(r"[\\/]", name or "")[-1]
    base = re.sub(r"[^A-Za-z0-9._-]", "_", base)
    return base.lstrip(".")


def decode_base64_payload(data: str) -> tuple[bytes, Optional[str]]:
    """
    Decode plain base64 or a data URI.
    Returns (bytes, mime type from the data URI if present).
    """
    mime = None
    match = re.match(r"^data:([\w/+.-]+);base64,(.*)$", data or "", re.DOTALL)
    if match:
        mime, data = match.group(1), match.group(2)
    return base64.b64decode(data, validate=False), mime


def absolute_url(base_url: str, path: Optional[str]) -> Optional[str]:
    """Prefix relative URLs with the public base URL"""
    if not path:
        return None
    if path.startswith("http://") or path.startswith("https://") or path.startswith("data:"):
        return path
    return base_url.rstrip("/") + "/" + path.lstrip("/")
