from __future__ import annotations

import time

from django.apps import apps
from django.conf import settings
from django.http import JsonResponse


def health(request):
    """
    Load balancer health check endpoint.

    Keep it cheap and dependency-free: no store call, so a Redis outage does not
    take the instance out of rotation while live sockets keep working.
    """

    room = apps.get_app_config("counter_room").room
    return JsonResponse(
        {
            "status": "ok",
            "ts": int(time.time()),
            "instance_id": settings.INSTANCE_ID,
            "connections": len(room.registry),
        }
    )
