import uuid

from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated

from apps.utils.kvstore import get_key_value_store
from .middleware import WS_TICKET_TTL, ws_ticket_key


class CreateWsTicketView(APIView):
    """
    Generates a short-lived One-Time Ticket (OTT) for WebSocket connection.
    Prevents passing sensitive JWT tokens in URL query parameters.
    """
    permission_classes = [IsAuthenticated]

    def post(self, request):
        ticket = str(uuid.uuid4())
        get_key_value_store().set(ws_ticket_key(ticket), str(request.user.id), ttl=WS_TICKET_TTL)
        return Response({"ticket": ticket, "expires_in": WS_TICKET_TTL})
