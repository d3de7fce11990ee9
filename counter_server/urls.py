"""
URL configuration for counter_server.

WebSocket routes live in `counter_room.routing`; these are the plain HTTP endpoints.
"""
from django.urls import path

from counter_room.views import room_users
from .health import health

urlpatterns = [
    # health check endpoint for the load balancer
    path("health/", health),
    # roster snapshot for dashboards and the CLI client
    path("api/room/users/", room_users),
]
