from __future__ import annotations
import re
from datetime import datetime
from typing import Optional
from urllib.parse import urlsplit

# ========================================
#           URL HELPERS
# ========================================
"""
Helpers the client config uses to validate the backend base URL
and derive the realtime channel URL from it.
"""

def is_http_url(s: str) -> bool:
    """
    returns True for an absolute http:// or https:// URL with a host, otherwise False.
    """
    try:
        parts = urlsplit(s)
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and bool(parts.netloc)

def strip_trailing_slash(s: str) -> str:
    return s[:-1] if s.endswith("/") else s

def http_to_ws(url: str) -> str:
    """
    Map http:// to ws:// and https:// to wss://, leaving the rest of the URL untouched.
    """
    if url.startswith("https://"):
        return "wss://" + url[len("https://"):]
    if url.startswith("http://"):
        return "ws://" + url[len("http://"):]
    return url


# ========================================
#           TIMESTAMP PARSING
# ========================================

# Go encodes time.Time as RFC 3339 with up to nanosecond precision
_FRACTION_RE = re.compile(r'(\.\d+)')

def parse_rfc3339(value: str) -> Optional[datetime]:
    """
    Parse an RFC 3339 timestamp such as '2024-05-01T10:20:30.123456789Z'.

    - A trailing 'Z' is read as UTC.
    - Fractional seconds are truncated to microseconds.
    - Anything that is not a timestamp → returns None.
    """
    if not value:
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    match = _FRACTION_RE.search(text)
    if match:
        digits = match.group(1)[1:7].ljust(6, "0")
        text = text[:match.start()] + "." + digits + text[match.end():]
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None
