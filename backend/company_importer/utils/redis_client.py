"""Redis clients for the session store and health checks."""

from __future__ import annotations

import ssl
from typing import Any

from redis import Redis

# Session reads happen once per row, so a dead server should fail fast
DEFAULT_CLIENT_OPTIONS: dict[str, Any] = {
    "socket_connect_timeout": 5,
    "socket_timeout": 5,
    "health_check_interval": 30,
}


def _is_tls(url: str) -> bool:
    return url.startswith("rediss://") or ".upstash.io" in url


def create_redis_client(url: str, **kwargs: Any) -> Redis:
    """Build a client from a redis:// or rediss:// URL.

    Upstash hosts only accept TLS, so a plain redis:// URL pointing at one is
    upgraded, and certificate verification is disabled for TLS connections.
    """
    if ".upstash.io" in url and url.startswith("redis://"):
        url = url.replace("redis://", "rediss://", 1)

    options = {**DEFAULT_CLIENT_OPTIONS, **kwargs}
    client = Redis.from_url(url, **options)

    if _is_tls(url):
        client.connection_pool.connection_kwargs["ssl_cert_reqs"] = ssl.CERT_NONE

    return client
