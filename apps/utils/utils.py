import json

from django.core.serializers.json import DjangoJSONEncoder


def json_safe(data):
    """
    Convert serializer output (Decimal, UUID, datetime) into plain JSON types
    so it survives the channel layer's msgpack encoding.
    """
    return json.loads(json.dumps(data, cls=DjangoJSONEncoder))
