# karuna/core/geo.py
from math import radians, sin, cos, asin, sqrt
from typing import Any, Dict, Optional

EARTH_RADIUS_M = 6_371_000.0

def haversine_m(lat1, lng1, lat2, lng2) -> float:
    dlat = radians(lat2 - lat1)
    dlng = radians(lng2 - lng1)
    a = sin(dlat/2)**2 + cos(radians(lat1)) * cos(radians(lat2)) * sin(dlng/2)**2
    c = 2 * asin(sqrt(a))
    return EARTH_RADIUS_M * c

def latlng(point: Optional[Dict[str, Any]]) -> tuple:
    """
    Accepts {"lat","lng"}, {"latitude","longitude"} or a GeoJSON Point.
    Raises ValueError when no usable coordinates are present.
    """
    if not point:
        raise ValueError("missing location")
    if point.get("type") == "Point":
        lng, lat = point["coordinates"][:2]
    elif "latitude" in point:
        lat, lng = point["latitude"], point["longitude"]
    else:
        lat, lng = point.get("lat"), point.get("lng")
    lat = float(lat); lng = float(lng)
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0):
        raise ValueError(f"coordinates out of range: {lat},{lng}")
    return lat, lng

def to_geojson(lat: float, lng: float) -> dict:
    return {"type": "Point", "coordinates": [float(lng), float(lat)]}

def distance_between(a: Dict[str, Any], b: Dict[str, Any]) -> float:
    lat1, lng1 = latlng(a)
    lat2, lng2 = latlng(b)
    return haversine_m(lat1, lng1, lat2, lng2)
