"""
HTTP views for the counter room.
"""

import logging

from django.apps import apps
from django.http import JsonResponse
from django.views.decorators.http import require_GET

from .store import IdentityStoreError

logger = logging.getLogger(__name__)


def get_room():
    return apps.get_app_config("counter_room").room


@require_GET
async def room_users(request):
    """Roster snapshot: the same list a `user_list` frame carries."""
    room = get_room()
    try:
        users = await room.roster()
    except IdentityStoreError:
        logger.exception("Roster lookup for room %s failed", room.name)
        return JsonResponse({"detail": "identity store unavailable"}, status=503)
    return JsonResponse(
        {
            "room": room.name,
            "users": [user.model_dump() for user in users],
            "connections": len(room.registry),
        }
    )
