# Overview: Service-layer operations for customer location; reverse geocoding and distance helpers.

"""
Customer Location

Signup and profile updates may send bare coordinates. reverse_geocode()
fills in city/state/country through OpenCage. Without an API key it picks
the nearest entry of a small fallback table, and when the API call fails it
returns a record with "Unknown" fields and an error message. When no
coordinates or address are sent, locate_ip() asks ip-api.com instead and
falls back to New York. Only resolved locations are stored; promo location
rules read the city/state saved here.
"""

from __future__ import annotations

import math

import httpx
from flask import current_app


OPENCAGE_URL = "https://api.opencagedata.com/geocode/v1/json"
IP_API_URL = "http://ip-api.com/json/"
IP_API_FIELDS = "status,country,countryCode,region,regionName,city,lat,lon,query"

EARTH_RADIUS_MILES = 3959

FALLBACK_LOCATIONS = [
    {"lat": 40.7128, "lng": -74.0060, "city": "New York", "state": "NY", "country": "USA"},
    {"lat": 34.0522, "lng": -118.2437, "city": "Los Angeles", "state": "CA", "country": "USA"},
    {"lat": 41.8781, "lng": -87.6298, "city": "Chicago", "state": "IL", "country": "USA"},
    {"lat": 29.7604, "lng": -95.3698, "city": "Houston", "state": "TX", "country": "USA"},
    {"lat": 33.4484, "lng": -112.0740, "city": "Phoenix", "state": "AZ", "country": "USA"},
]


class GeocodingError(Exception):
    """Raised when a forward geocode cannot produce coordinates."""
    pass


def fallback_location(latitude: float, longitude: float) -> dict:
    """Nearest fallback city by |dlat| + |dlng|."""
    closest = min(
        FALLBACK_LOCATIONS,
        key=lambda loc: abs(latitude - loc["lat"]) + abs(longitude - loc["lng"]),
    )
    return {
        "latitude": latitude,
        "longitude": longitude,
        "address": f"{closest['city']}, {closest['state']}, {closest['country']}",
        "city": closest["city"],
        "state": closest["state"],
        "country": closest["country"],
        "country_code": "us",
        "postal_code": None,
        "confidence": 8,
        "mock": True,
    }


def unknown_location(latitude: float, longitude: float) -> dict:
    return {
        "latitude": latitude,
        "longitude": longitude,
        "address": f"{latitude}, {longitude}",
        "city": "Unknown",
        "state": "Unknown",
        "country": "Unknown",
        "country_code": "unknown",
        "postal_code": None,
        "confidence": 0,
        "error": "Could not determine location details",
    }


def ip_fallback_location() -> dict:
    return {
        "latitude": 40.7128,
        "longitude": -74.0060,
        "address": "New York, NY, USA",
        "city": "New York",
        "state": "NY",
        "country": "USA",
        "country_code": "us",
        "postal_code": None,
        "confidence": 1,
        "method": "fallback",
        "error": "Could not determine location",
    }


def is_resolved(location: dict | None) -> bool:
    """False for missing locations and the error records returned on lookup failure."""
    return bool(location) and not location.get("error")


def _from_result(result: dict) -> dict:
    components = result.get("components") or {}
    return {
        "address": result.get("formatted"),
        "city": components.get("city") or components.get("town") or components.get("village") or "Unknown",
        "state": components.get("state") or components.get("province") or "Unknown",
        "country": components.get("country") or "Unknown",
        "country_code": components.get("country_code") or "unknown",
        "postal_code": components.get("postcode"),
        "confidence": result.get("confidence") or 0,
    }


class Geocoder:
    """OpenCage client. The httpx client is injectable (tests use MockTransport)."""

    def __init__(self, api_key: str = "", client: httpx.Client | None = None, timeout: float = 10):
        self.api_key = api_key
        self.client = client or httpx.Client(timeout=timeout)

    @classmethod
    def from_config(cls, config) -> "Geocoder":
        return cls(
            api_key=config.get("OPENCAGE_API_KEY", ""),
            timeout=config.get("GEOCODER_TIMEOUT_SECONDS", 10),
        )

    def _query(self, q: str) -> dict:
        response = self.client.get(
            OPENCAGE_URL,
            params={"q": q, "key": self.api_key, "limit": 1, "no_annotations": 1},
        )
        response.raise_for_status()
        results = response.json().get("results") or []
        if not results:
            raise GeocodingError("No location data found")
        return results[0]

    def reverse_geocode(self, latitude: float, longitude: float) -> dict:
        """Never raises; failures come back as an "Unknown" record with an error."""
        if not self.api_key:
            return fallback_location(latitude, longitude)
        try:
            result = self._query(f"{latitude}+{longitude}")
        except (httpx.HTTPError, GeocodingError, ValueError):
            return unknown_location(latitude, longitude)
        location = {"latitude": latitude, "longitude": longitude}
        location.update(_from_result(result))
        return location

    def geocode(self, address: str) -> dict:
        """Address -> coordinates. Raises GeocodingError."""
        if not self.api_key:
            raise GeocodingError("OPENCAGE_API_KEY not configured")
        try:
            result = self._query(address)
        except (httpx.HTTPError, ValueError) as e:
            raise GeocodingError(str(e)) from e
        geometry = result.get("geometry") or {}
        location = {"latitude": geometry.get("lat"), "longitude": geometry.get("lng")}
        location.update(_from_result(result))
        return location

    def locate_ip(self, ip_address: str | None = None) -> dict:
        """
        Approximate location for an IP address through ip-api.com.

        An empty address asks about the caller. Never raises; any failure
        returns the New York fallback with an error field.
        """
        try:
            response = self.client.get(f"{IP_API_URL}{ip_address or ''}", params={"fields": IP_API_FIELDS})
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            current_app.logger.warning("IP geolocation failed for %s: %s", ip_address, e)
            return ip_fallback_location()
        if not isinstance(data, dict) or data.get("status") != "success":
            current_app.logger.warning("IP geolocation found nothing for %s", ip_address)
            return ip_fallback_location()

        return {
            "latitude": data.get("lat"),
            "longitude": data.get("lon"),
            "address": f"{data.get('city')}, {data.get('regionName')}, {data.get('country')}",
            "city": data.get("city") or "Unknown",
            "state": data.get("regionName") or "Unknown",
            "country": data.get("country") or "Unknown",
            "country_code": (data.get("countryCode") or "unknown").lower(),
            "postal_code": None,
            "confidence": 5,
            "method": "ip_geolocation",
            "ip": data.get("query"),
        }


def get_geocoder() -> Geocoder:
    return current_app.extensions["storefront.geocoder"]


def validate_location_data(data) -> tuple[bool, str | None]:
    """Coordinates must be numbers within lat [-90, 90] and lng [-180, 180]."""
    if not isinstance(data, dict):
        return False, "Location data must be an object"
    lat = data.get("latitude")
    lng = data.get("longitude")
    if lat is None or lng is None:
        return False, "Latitude and longitude are required"
    if isinstance(lat, bool) or isinstance(lng, bool) or not isinstance(lat, (int, float)) or not isinstance(lng, (int, float)):
        return False, "Latitude and longitude must be numbers"
    if not -90 <= lat <= 90:
        return False, "Latitude must be between -90 and 90"
    if not -180 <= lng <= 180:
        return False, "Longitude must be between -180 and 180"
    return True, None


def calculate_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in miles (haversine)."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_MILES * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def resolve_location(data: dict | None) -> dict | None:
    """
    Complete a location payload for storage.

    Bare coordinates are reverse geocoded; a payload that already names a
    city is stored as sent. A failed lookup returns None rather than the
    "Unknown" record. Invalid coordinates raise ValueError.
    """
    if not data:
        return None
    ok, error = validate_location_data(data)
    if not ok:
        raise ValueError(error)
    if data.get("city"):
        return dict(data)
    location = get_geocoder().reverse_geocode(data["latitude"], data["longitude"])
    if not is_resolved(location):
        current_app.logger.warning(
            "Reverse geocoding failed for %s,%s", data["latitude"], data["longitude"]
        )
        return None
    return location
