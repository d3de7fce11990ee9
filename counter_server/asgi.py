"""
ASGI config for counter_server.

It exposes the ASGI callable as a module-level variable named ``application``.

For more information on this file, see
https://docs.djangoproject.com/en/5.0/howto/deployment/asgi/
"""

import os

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "counter_server.settings")

from channels.routing import ProtocolTypeRouter, URLRouter
from django.conf import settings
from django.core.asgi import get_asgi_application

# Initialise Django (and build the room) before importing anything that needs the app registry.
django_asgi_app = get_asgi_application()

from counter_server.routing import websocket_urlpatterns  # noqa: E402
from counter_server.ws_origin import AllowedHostsOrForwardedHostOriginValidator  # noqa: E402

# Channels router for WebSockets.
#
# When DEBUG is False the origin validator allows a socket when its Origin, Host or
# X-Forwarded-Host is in ALLOWED_HOSTS, and logs every denial.
websocket_app = URLRouter(websocket_urlpatterns)
if not settings.DEBUG:
    websocket_app = AllowedHostsOrForwardedHostOriginValidator(websocket_app)

application = ProtocolTypeRouter(
    {
        "http": django_asgi_app,
        "websocket": websocket_app,
    }
)
