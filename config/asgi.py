# config/asgi.py
import os
import django

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')
django.setup()

from django.core.asgi import get_asgi_application
from channels.routing import ProtocolTypeRouter, URLRouter
from channels.security.websocket import AllowedHostsOriginValidator

from apps.accounts.middleware import TicketAuthMiddleware
from apps.realtime import routing as realtime_routing

application = ProtocolTypeRouter({
    "http": get_asgi_application(),
    "websocket": AllowedHostsOriginValidator(
        TicketAuthMiddleware(
            URLRouter(
                realtime_routing.websocket_urlpatterns
            )
        )
    ),
})
