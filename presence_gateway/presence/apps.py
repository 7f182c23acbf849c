"""
Django app configuration for the presence app.
"""

import logging

from django.apps import AppConfig

logger = logging.getLogger(__name__)


class PresenceConfig(AppConfig):
    name = "presence_gateway.presence"
    label = "presence"

    def ready(self):
        from django.conf import settings

        logger.info(
            "Presence app ready (backend=%s, liveness=%s, shards=%d)",
            getattr(settings, "PRESENCE_BACKEND", "redis"),
            getattr(settings, "PRESENCE_LIVENESS", "local"),
            len(getattr(settings, "PRESENCE_REDIS_SERVERS", []) or [None]),
        )
