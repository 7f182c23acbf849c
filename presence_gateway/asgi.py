"""
ASGI config for the presence gateway.

It exposes the ASGI callable as a module-level variable named ``application``.
"""

import os

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "presence_gateway.settings")

from channels.routing import ProtocolTypeRouter, URLRouter
from channels.security.websocket import AllowedHostsOriginValidator
from django.conf import settings
from django.core.asgi import get_asgi_application

# Django must be set up before importing anything that touches models/apps.
django_asgi_app = get_asgi_application()

from presence_gateway.routing import websocket_urlpatterns  # noqa: E402

websocket_app = URLRouter(websocket_urlpatterns)
if not settings.DEBUG:
    websocket_app = AllowedHostsOriginValidator(websocket_app)

application = ProtocolTypeRouter(
    {
        "http": django_asgi_app,
        "websocket": websocket_app,
    }
)
