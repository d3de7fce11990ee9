from typing import List

from django.urls import re_path

from .consumers import CounterConsumer
from .coordinator import RoomCoordinator


def websocket_urlpatterns(room: RoomCoordinator) -> List:
    return [
        # Kept apart from any other upgrade traffic on the host.
        re_path(r"^ws/?$", CounterConsumer.as_asgi(room=room)),
    ]
