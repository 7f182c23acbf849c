"""
URL configuration for the presence gateway.

WebSocket routes live in `presence_gateway.routing`; only HTTP health checks are here.
"""
from django.urls import path

from .health import health, presence_health

urlpatterns = [
    path("health/", health),
    path("health/presence/", presence_health),
]
