"""
Django app configuration for the counter room.
Builds the room coordinator once per process.
"""

import logging

from django.apps import AppConfig

logger = logging.getLogger(__name__)


class CounterRoomConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "counter_room"
    verbose_name = "Counter room"

    def ready(self):
        """Create the room from COUNTER_* settings.

        The heartbeat starts with the first connection, so nothing here needs an
        event loop.
        """
        from counter_server.config import config

        from .coordinator import RoomCoordinator

        self.room = RoomCoordinator.from_settings(config)
        logger.info(
            "Room %s ready (policy=%s, store=%s, heartbeat=%ss)",
            config.room_name,
            config.identity_policy.value,
            config.store_backend.value,
            config.heartbeat_interval_seconds,
        )
