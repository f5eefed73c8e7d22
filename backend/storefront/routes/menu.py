# Overview: Flask API routes for the menu; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, current_app

from ..services import menu_service
from ..decorators import require_auth, require_admin
from storefront.validation import ValidationError


menu_bp = Blueprint("menu", __name__, url_prefix="/api/menu")


@menu_bp.get("/items")
def list_items_route():
    """
    Menu items ordered by category, then name.

    Query params:
        category: filter to one category (case-insensitive)
        featured: "true" for featured items only
        all: "true" to include unavailable items
    """
    try:
        items = menu_service.list_items(
            available_only=request.args.get("all") != "true",
            featured_only=request.args.get("featured") == "true",
            category=request.args.get("category"),
        )
        return jsonify({"success": True, "items": [i.to_dict() for i in items]})
    except Exception:
        current_app.logger.exception("Failed to list menu items")
        return jsonify({"success": False, "error": "Failed to list menu items"}), 500


@menu_bp.get("/items/<int:item_id>")
def get_item_route(item_id: int):
    try:
        item = menu_service.get_item(item_id)
        if item is None:
            return jsonify({"success": False, "error": "Menu item not found"}), 404
        return jsonify({"success": True, "item": item.to_dict()})
    except Exception:
        current_app.logger.exception("Failed to get menu item")
        return jsonify({"success": False, "error": "Failed to get menu item"}), 500


@menu_bp.get("/categories")
def list_categories_route():
    try:
        return jsonify({"success": True, "categories": menu_service.list_categories()})
    except Exception:
        current_app.logger.exception("Failed to list menu categories")
        return jsonify({"success": False, "error": "Failed to list menu categories"}), 500


@menu_bp.get("/categories/<category>")
def category_items_route(category: str):
    try:
        items = menu_service.list_items(category=category)
        return jsonify({"success": True, "category": category, "items": [i.to_dict() for i in items]})
    except Exception:
        current_app.logger.exception("Failed to list menu category")
        return jsonify({"success": False, "error": "Failed to list menu category"}), 500


@menu_bp.post("/items")
@require_auth
@require_admin
def create_item_route():
    """
    Request body:
    {
        "name": "Lentil Bowl", "price": 12.50, "category": "Bowls",
        "description": "...", "imageUrl": "...",
        "dietaryTags": ["vegan"], "isAvailable": true, "isFeatured": false
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        item = menu_service.create_item(data)
        return jsonify({"success": True, "item": item.to_dict()}), 201
    except ValidationError as e:
        return jsonify({"success": False, "error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create menu item")
        return jsonify({"success": False, "error": "Failed to create menu item"}), 500


@menu_bp.put("/items/<int:item_id>")
@require_auth
@require_admin
def update_item_route(item_id: int):
    try:
        data = request.get_json(silent=True) or {}
        item = menu_service.update_item(item_id, data)
        if item is None:
            return jsonify({"success": False, "error": "Menu item not found"}), 404
        return jsonify({"success": True, "item": item.to_dict()})
    except ValidationError as e:
        return jsonify({"success": False, "error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update menu item")
        return jsonify({"success": False, "error": "Failed to update menu item"}), 500


@menu_bp.delete("/items/<int:item_id>")
@require_auth
@require_admin
def delete_item_route(item_id: int):
    try:
        if not menu_service.delete_item(item_id):
            return jsonify({"success": False, "error": "Menu item not found"}), 404
        return jsonify({"success": True, "message": "Menu item deleted"})
    except Exception:
        current_app.logger.exception("Failed to delete menu item")
        return jsonify({"success": False, "error": "Failed to delete menu item"}), 500
