from rest_framework import serializers


def validate_lat_lng(lat, lng):
    if not (-90 <= lat <= 90):
        raise ValueError("Latitude must be between -90 and 90.")
    if not (-180 <= lng <= 180):
        raise ValueError("Longitude must be between -180 and 180.")


def validate_coordinates(value):
    """
    Serializer-level validator for {"latitude": .., "longitude": ..} dicts.
    """
    try:
        validate_lat_lng(float(value["latitude"]), float(value["longitude"]))
    except (KeyError, TypeError):
        raise serializers.ValidationError("latitude and longitude are required.")
    except ValueError as e:
        raise serializers.ValidationError(str(e))
    return value
