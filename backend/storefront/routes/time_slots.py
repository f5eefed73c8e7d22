# Overview: Flask API routes for pickup time slots; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..services import time_slot_service
from ..services.time_slot_service import TimeSlotError
from ..decorators import require_auth, require_admin
from storefront.time_utils import parse_iso_date, utcnow
from storefront.validation import ValidationError


time_slots_bp = Blueprint("time_slots", __name__, url_prefix="/api/time-slots")


@time_slots_bp.get("")
def list_slots_route():
    """
    Pickup slots.

    With ?date=YYYY-MM-DD, returns each active slot with its load for that
    date. Without it, returns the configured slots.
    """
    try:
        raw_date = request.args.get("date")
        if not raw_date:
            slots = time_slot_service.list_slots(active_only=True)
            return jsonify({"success": True, "slots": [s.to_dict() for s in slots]})

        try:
            on_date = parse_iso_date(raw_date)
        except ValueError:
            return jsonify({"success": False, "error": "date must be YYYY-MM-DD"}), 400

        config = time_slot_service.get_config()
        bookable = on_date in time_slot_service.available_dates(config, utcnow().date())
        slots = time_slot_service.available_slots(on_date)
        return jsonify({
            "success": True,
            "date": on_date.isoformat(),
            "isBookableDate": bookable,
            "slots": [s.to_dict() for s in slots],
        })

    except Exception:
        current_app.logger.exception("Failed to get time slots")
        return jsonify({"success": False, "error": "Failed to get time slots"}), 500


@time_slots_bp.get("/dates")
def available_dates_route():
    try:
        config = time_slot_service.get_config()
        dates = time_slot_service.available_dates(config, utcnow().date())
        return jsonify({"success": True, "dates": [d.isoformat() for d in dates]})
    except Exception:
        current_app.logger.exception("Failed to get available dates")
        return jsonify({"success": False, "error": "Failed to get available dates"}), 500


@time_slots_bp.get("/config")
def get_config_route():
    try:
        config = time_slot_service.get_config()
        slots = time_slot_service.list_slots(active_only=False)
        return jsonify({
            "success": True,
            "config": {**config.to_dict(), "timeSlots": [s.to_dict() for s in slots]},
        })
    except Exception:
        current_app.logger.exception("Failed to get time slot configuration")
        return jsonify({"success": False, "error": "Failed to get time slot configuration"}), 500


@time_slots_bp.put("/config")
@require_auth
@require_admin
def update_config_route():
    """Request body (all optional): {"availableDays": [...], "leadTime": 1, "maxAdvanceBookingDays": 14}"""
    try:
        data = request.get_json(silent=True) or {}
        config = time_slot_service.update_config(data)
        return jsonify({"success": True, "config": config.to_dict()})

    except ValidationError as e:
        return jsonify({"success": False, "error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update time slot configuration")
        return jsonify({"success": False, "error": "Failed to update time slot configuration"}), 500


@time_slots_bp.post("")
@require_auth
@require_admin
def create_slot_route():
    """Request body: {"startTime": "11:00", "endTime": "12:00", "maxOrders": 10}"""
    try:
        data = request.get_json(silent=True) or {}
        slot = time_slot_service.create_slot(data)
        return jsonify({"success": True, "slot": slot.to_dict()}), 201

    except ValidationError as e:
        return jsonify({"success": False, "error": str(e)}), 400
    except TimeSlotError as e:
        return jsonify({"success": False, "error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to create time slot")
        return jsonify({"success": False, "error": "Failed to create time slot"}), 500


@time_slots_bp.put("/<int:slot_id>")
@require_auth
@require_admin
def update_slot_route(slot_id: int):
    try:
        data = request.get_json(silent=True) or {}
        slot = time_slot_service.update_slot(slot_id, data)
        if slot is None:
            return jsonify({"success": False, "error": "Time slot not found"}), 404
        return jsonify({"success": True, "slot": slot.to_dict()})

    except ValidationError as e:
        return jsonify({"success": False, "error": str(e)}), 400
    except TimeSlotError as e:
        return jsonify({"success": False, "error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to update time slot")
        return jsonify({"success": False, "error": "Failed to update time slot"}), 500


@time_slots_bp.delete("/<int:slot_id>")
@require_auth
@require_admin
def delete_slot_route(slot_id: int):
    try:
        if not time_slot_service.delete_slot(slot_id):
            return jsonify({"success": False, "error": "Time slot not found"}), 404
        return jsonify({"success": True, "message": "Time slot deleted"})
    except Exception:
        current_app.logger.exception("Failed to delete time slot")
        return jsonify({"success": False, "error": "Failed to delete time slot"}), 500
