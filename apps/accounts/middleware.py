from urllib.parse import parse_qs

from channels.db import database_sync_to_async
from django.contrib.auth.models import AnonymousUser
from django.contrib.auth import get_user_model

from apps.utils.kvstore import get_key_value_store

WS_TICKET_TTL = 30


def ws_ticket_key(ticket):
    return f"ws_ticket:{ticket}"


@database_sync_to_async
def get_user_from_id(user_id):
    User = get_user_model()
    try:
        return User.objects.get(id=user_id)
    except User.DoesNotExist:
        return AnonymousUser()


class TicketAuthMiddleware:
    """
    Channels middleware that authenticates via One-Time Ticket (OTT).
    Replaces AuthMiddlewareStack for WebSockets so JWTs never travel in URLs.
    """
    def __init__(self, inner, store=None):
        self.inner = inner
        self.store = store

    async def __call__(self, scope, receive, send):
        query_string = scope.get("query_string", b"").decode("utf-8")
        params = parse_qs(query_string)
        ticket = params.get("ticket", [None])[0]

        scope = dict(scope)
        scope["user"] = AnonymousUser()

        if ticket:
            store = self.store or get_key_value_store()
            # IMMEDIATE INVALIDATION (One-Time Use)
            user_id = store.pop(ws_ticket_key(ticket))
            if user_id:
                scope["user"] = await get_user_from_id(user_id)

        return await self.inner(scope, receive, send)
