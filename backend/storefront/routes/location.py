# Overview: Flask API routes for location lookups; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..services import location_service


location_bp = Blueprint("location", __name__, url_prefix="/api/location")


@location_bp.post("/reverse")
def reverse_geocode_route():
    """
    Resolve coordinates to a city/state record.

    Request body: {"latitude": 40.7128, "longitude": -74.006}

    Without a geocoder key the nearest city of a fixed table is returned,
    flagged with "mock": true.
    """
    try:
        data = request.get_json(silent=True) or {}
        ok, error = location_service.validate_location_data(data)
        if not ok:
            return jsonify({"success": False, "error": error}), 400

        location = location_service.get_geocoder().reverse_geocode(data["latitude"], data["longitude"])
        return jsonify({"success": True, "location": location})

    except Exception:
        current_app.logger.exception("Failed to reverse geocode")
        return jsonify({"success": False, "error": "Failed to get location data"}), 500


@location_bp.post("/ip")
def ip_location_route():
    """
    Approximate the caller's location from their IP address.

    Falls back to New York (with an "error" field) when the lookup fails.
    """
    try:
        location = location_service.get_geocoder().locate_ip(request.remote_addr)
        return jsonify({"success": True, "location": location})

    except Exception:
        current_app.logger.exception("Failed to locate IP address")
        return jsonify({"success": False, "error": "Failed to get location from IP"}), 500
