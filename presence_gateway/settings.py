"""
Settings for the presence gateway (Django + Channels, ASGI).

Key requirements implemented:
- Django + Django Channels (ASGI)
- RedisChannelLayer so join/leave broadcasts reach sockets on every instance
- Environment-based configuration, including the presence shard pool
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import List

try:
    # Optional: allows local dev to load env vars from a `.env` file.
    from dotenv import load_dotenv

    load_dotenv()
except ImportError:
    pass


BASE_DIR = Path(__file__).resolve().parent.parent


def _env(name: str, default: str | None = None) -> str | None:
    v = os.environ.get(name)
    return v if v not in (None, "") else default


def _env_bool(name: str, default: bool = False) -> bool:
    v = _env(name)
    if v is None:
        return default
    return v.strip().lower() in ("1", "true", "yes", "y", "on")


def _env_csv(name: str, default: str = "") -> List[str]:
    raw = _env(name, default) or ""
    return [x.strip() for x in raw.split(",") if x.strip()]


# SECURITY WARNING: Do not hardcode secrets in code.
DEBUG = _env_bool("DJANGO_DEBUG", default=False)

SECRET_KEY = _env("DJANGO_SECRET_KEY", "dev-insecure-secret-key-change-me")
if not DEBUG and (not SECRET_KEY or SECRET_KEY.startswith("dev-insecure-")):
    raise RuntimeError("DJANGO_SECRET_KEY must be set in production")

ALLOWED_HOSTS = _env_csv("DJANGO_ALLOWED_HOSTS", default="localhost,127.0.0.1")

# When serving behind a load balancer, Django must respect X-Forwarded-* headers.
USE_X_FORWARDED_HOST = True
SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https")


INSTALLED_APPS = [
    # Channels must be installed to enable ASGI + websocket routing.
    "channels",
    "presence_gateway.presence.apps.PresenceConfig",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "presence_gateway.urls"

ASGI_APPLICATION = "presence_gateway.asgi.application"

# This service keeps all of its state in Redis.
DATABASES = {}

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = False
USE_TZ = True


#
# Channels / Redis configuration
#
REDIS_URL = _env("REDIS_URL", "redis://127.0.0.1:6379/0")
CHANNEL_LAYERS = {
    "default": {
        "BACKEND": "channels_redis.core.RedisChannelLayer",
        "CONFIG": {
            "hosts": [REDIS_URL],
            "capacity": int(_env("CHANNEL_LAYER_CAPACITY", "1000") or "1000"),
            "expiry": int(_env("CHANNEL_LAYER_EXPIRY", "60") or "60"),
        },
    }
}


#
# Presence registry
#
# PRESENCE_REDIS_SERVERS lists one Redis node per shard ("host:port" or redis:// URL).
# Every instance must list the same nodes in the same order: channels are routed
# to shards by name (node0, node1, ...).
PRESENCE_BACKEND = _env("PRESENCE_BACKEND", "redis")
PRESENCE_REDIS_SERVERS = _env_csv("PRESENCE_REDIS_SERVERS", default=REDIS_URL or "")
PRESENCE_KEY_PREFIX = _env("PRESENCE_KEY_PREFIX", "presence")
PRESENCE_PAGE_SIZE = int(_env("PRESENCE_PAGE_SIZE", "100") or "100")

# "local": only this process's sockets count as alive (single instance / sticky sessions).
# "redis": connection records shared by all instances, refreshed while the socket is open.
PRESENCE_LIVENESS = _env("PRESENCE_LIVENESS", "local")
PRESENCE_LIVENESS_REDIS_URL = _env("PRESENCE_LIVENESS_REDIS_URL", REDIS_URL)
PRESENCE_CONNECTION_TTL_SECONDS = int(_env("PRESENCE_CONNECTION_TTL_SECONDS", "120") or "120")
PRESENCE_CONNECTION_REFRESH_SECONDS = int(_env("PRESENCE_CONNECTION_REFRESH_SECONDS", "30") or "30")

# Instance identifier injected at deploy time; owns this process's connection records.
INSTANCE_ID = _env("INSTANCE_ID", "unknown-instance")


LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "handlers": {"console": {"class": "logging.StreamHandler"}},
    "root": {"handlers": ["console"], "level": _env("DJANGO_LOG_LEVEL", "INFO") or "INFO"},
}
