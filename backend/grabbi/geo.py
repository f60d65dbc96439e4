# Overview: Great-circle distance helpers for franchise delivery coverage.

from __future__ import annotations

import math

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Distance in kilometres between two (lat, lng) points on a spherical earth."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def estimate_delivery_time(distance_km: float) -> str:
    """Fifteen minutes of handling plus travel at an urban 20 km/h, shown as a 15 minute window."""
    min_time = 15 + int(distance_km / 20.0 * 60)
    return f"{min_time}-{min_time + 15} min"
