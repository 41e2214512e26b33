"""
Geofence math for bonus zones.

Boundaries are lists of {'lat': .., 'lng': ..} vertices. Ray casting treats
lng as x and lat as y, which is fine at zone scale (tens of km, no antimeridian).
"""
from math import radians, degrees, sin, cos, asin, atan2, sqrt, pi
from typing import Dict, List

from gamification.errors import ValidationError

EARTH_RADIUS_KM = 6371


def haversine_km(lat1, lng1, lat2, lng2) -> float:
    """Great-circle distance in km."""
    phi1, phi2 = radians(lat1), radians(lat2)
    dphi = radians(lat2 - lat1)
    dlambda = radians(lng2 - lng1)
    a = sin(dphi / 2) ** 2 + cos(phi1) * cos(phi2) * sin(dlambda / 2) ** 2
    return EARTH_RADIUS_KM * 2 * atan2(sqrt(a), sqrt(1 - a))


def destination_point(lat, lng, distance_km, bearing_rad) -> Dict[str, float]:
    """Point reached travelling distance_km from (lat, lng) on the given bearing."""
    angular = distance_km / EARTH_RADIUS_KM
    phi1, lambda1 = radians(lat), radians(lng)
    phi2 = asin(sin(phi1) * cos(angular) + cos(phi1) * sin(angular) * cos(bearing_rad))
    lambda2 = lambda1 + atan2(
        sin(bearing_rad) * sin(angular) * cos(phi1),
        cos(angular) - sin(phi1) * sin(phi2),
    )
    # Normalise longitude to [-180, 180)
    lng2 = (degrees(lambda2) + 540) % 360 - 180
    return {'lat': degrees(phi2), 'lng': lng2}


def circle_polygon(lat, lng, radius_km, points=64) -> List[Dict[str, float]]:
    """Materialize a circle as `points` vertices (not closed)."""
    return [
        destination_point(lat, lng, radius_km, 2 * pi * i / points)
        for i in range(points)
    ]


def validate_boundary(boundary) -> List[Dict[str, float]]:
    """Normalise to [{'lat', 'lng'}] floats; at least 3 distinct vertices."""
    if not isinstance(boundary, (list, tuple)):
        raise ValidationError("boundary must be a list of {lat, lng} points")
    vertices = []
    for point in boundary:
        try:
            lat, lng = float(point['lat']), float(point['lng'])
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Invalid boundary point {point!r}") from e
        if not -90 <= lat <= 90 or not -180 <= lng <= 180:
            raise ValidationError(f"Boundary point out of range {point!r}")
        vertices.append({'lat': lat, 'lng': lng})

    # A repeated closing vertex adds nothing to the ray cast
    if len(vertices) > 1 and vertices[0] == vertices[-1]:
        vertices = vertices[:-1]
    if len(vertices) < 3:
        raise ValidationError("boundary needs at least 3 vertices")
    return vertices


def contains_point(boundary, lat, lng) -> bool:
    """Ray-casting point-in-polygon test."""
    inside = False
    n = len(boundary)
    j = n - 1
    for i in range(n):
        xi, yi = boundary[i]['lng'], boundary[i]['lat']
        xj, yj = boundary[j]['lng'], boundary[j]['lat']
        if (yi > lat) != (yj > lat):
            x_cross = (xj - xi) * (lat - yi) / (yj - yi) + xi
            if lng < x_cross:
                inside = not inside
        j = i
    return inside
