"""
Project-level Channels routing.

The WebSocket routes are bound to the room built by the counter_room app, so the
app registry must be ready before this module is imported.
"""

from django.apps import apps

from counter_room.routing import websocket_urlpatterns as _room_urlpatterns

websocket_urlpatterns = _room_urlpatterns(apps.get_app_config("counter_room").room)

__all__ = ["websocket_urlpatterns"]
