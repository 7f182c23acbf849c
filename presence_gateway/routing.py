"""
Project-level Channels routing.

Keeping routing in the Django project package ensures `presence_gateway.asgi` can import it.
"""

from presence_gateway.presence.routing import websocket_urlpatterns

__all__ = ["websocket_urlpatterns"]
