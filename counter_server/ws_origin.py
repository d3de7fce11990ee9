"""
WebSocket origin check for deployments behind a proxy.

Channels' AllowedHostsOriginValidator rejects sockets without an Origin header, which
shuts out non-browser clients such as counter_client.py. This validator:
- allows when the Origin's host matches ALLOWED_HOSTS;
- allows a socket with no Origin at all when its Host or X-Forwarded-Host matches;
- logs every denial (header values only).
"""
from __future__ import annotations

import logging
from typing import Iterable, Optional
from urllib.parse import urlparse

from channels.security.websocket import WebsocketDenier
from django.conf import settings
from django.http.request import is_same_domain

logger = logging.getLogger(__name__)

_denier_app = WebsocketDenier.as_asgi()


def _get_header(scope: dict, name: str) -> Optional[str]:
    want = name.lower().encode("ascii")
    for key, value in scope.get("headers") or []:
        if key == want:
            return value.decode("utf-8", errors="replace").strip()
    return None


def _hostname(value: str) -> str:
    """Hostname part of a Host header or origin URL, lowercased, without port."""
    if not value:
        return ""
    parsed = urlparse(value if "://" in value else "//" + value)
    return (parsed.hostname or "").lower()


def host_allowed(hostname: str, allowed_hosts: Iterable[str]) -> bool:
    if not hostname:
        return False
    for pattern in allowed_hosts:
        if pattern == "*":
            return True
        pattern_host = _hostname(pattern) if not pattern.startswith(".") else pattern.lower()
        if pattern_host and is_same_domain(hostname, pattern_host):
            return True
    return False


class AllowedHostsOrForwardedHostOriginValidator:
    def __init__(self, application):
        self.application = application

    async def __call__(self, scope, receive, send):
        if scope.get("type") != "websocket":
            raise ValueError("AllowedHostsOrForwardedHostOriginValidator only supports WebSocket")

        allowed_hosts = list(getattr(settings, "ALLOWED_HOSTS", None) or [])
        if settings.DEBUG and not allowed_hosts:
            allowed_hosts = ["localhost", "127.0.0.1", "[::1]"]

        origin = _get_header(scope, "origin")
        host = _get_header(scope, "host")
        forwarded_host = _get_header(scope, "x-forwarded-host")
        if forwarded_host:
            forwarded_host = forwarded_host.split(",")[0].strip()

        if origin:
            allowed = host_allowed(_hostname(origin), allowed_hosts)
        else:
            allowed = any(
                host_allowed(_hostname(value), allowed_hosts) for value in (host, forwarded_host) if value
            )

        if allowed:
            return await self.application(scope, receive, send)
        logger.warning(
            "WebSocket origin denied: origin=%s host=%s x_forwarded_host=%s path=%s",
            origin or "(none)",
            host or "(none)",
            forwarded_host or "(none)",
            scope.get("path", ""),
        )
        return await _denier_app(scope, receive, send)
