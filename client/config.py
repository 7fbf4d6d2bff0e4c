from __future__ import annotations
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote, urlencode

from shared.utils import http_to_ws, is_http_url, strip_trailing_slash

DEFAULT_BACKEND_URL = "http://localhost:8080"
DEFAULT_DISPLAY_NAME = "Guest"


@dataclass(frozen=True)
class ClientConfig:
    """Where the backend lives and how often to talk to it."""
    backend_url: str = DEFAULT_BACKEND_URL
    poll_interval: float = 5.0
    request_timeout: float = 10.0
    open_timeout: float = 10.0
    ping_interval: Optional[float] = 20.0

    def __post_init__(self) -> None:
        url = strip_trailing_slash(self.backend_url.strip())
        if not is_http_url(url):
            raise ValueError(f"backend_url must be an http(s) URL, got {self.backend_url!r}")
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        object.__setattr__(self, "backend_url", url)

    def http_url(self, path: str) -> str:
        return f"{self.backend_url}/{path.lstrip('/')}"

    @property
    def health_url(self) -> str:
        return self.http_url("/healthz")

    @property
    def users_url(self) -> str:
        return self.http_url("/api/users")

    def ws_url(self, display_name: str) -> str:
        return f"{http_to_ws(self.backend_url)}/ws?{urlencode({'username': display_name}, quote_via=quote)}"
