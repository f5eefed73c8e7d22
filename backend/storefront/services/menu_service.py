# Overview: Service-layer operations for the menu; encapsulates business logic and database work.

from __future__ import annotations

from ..extensions import db
from ..models import MenuItem
from storefront.validation import ValidationError, to_cents


def list_items(available_only: bool = True, featured_only: bool = False, category: str | None = None) -> list[MenuItem]:
    q = db.session.query(MenuItem)
    if available_only:
        q = q.filter_by(is_available=True)
    if featured_only:
        q = q.filter_by(is_featured=True)
    if category:
        q = q.filter(db.func.lower(MenuItem.category) == category.strip().lower())
    return q.order_by(MenuItem.category, MenuItem.name, MenuItem.id).all()


def list_categories() -> list[str]:
    rows = (
        db.session.query(MenuItem.category)
        .filter(MenuItem.is_available.is_(True))
        .distinct()
        .order_by(MenuItem.category)
        .all()
    )
    return [row[0] for row in rows]


def get_item(item_id: int) -> MenuItem | None:
    return db.session.get(MenuItem, item_id)


def _parse_tags(value) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(t, str) for t in value):
        raise ValidationError("dietaryTags must be a list of strings")
    return [t.strip() for t in value if t.strip()]


def create_item(data: dict) -> MenuItem:
    name = (data.get("name") or "").strip()
    category = (data.get("category") or "").strip()
    if not name:
        raise ValidationError("name is required")
    if not category:
        raise ValidationError("category is required")

    item = MenuItem(
        name=name,
        description=data.get("description"),
        price_cents=to_cents(data.get("price"), "price", allow_zero=True),
        category=category,
        image_url=data.get("imageUrl"),
        dietary_tags=_parse_tags(data.get("dietaryTags")),
        is_available=bool(data.get("isAvailable", True)),
        is_featured=bool(data.get("isFeatured", False)),
    )
    db.session.add(item)
    db.session.commit()
    return item


def update_item(item_id: int, data: dict) -> MenuItem | None:
    item = db.session.get(MenuItem, item_id)
    if item is None:
        return None

    if "name" in data:
        name = (data["name"] or "").strip()
        if not name:
            raise ValidationError("name cannot be empty")
        item.name = name
    if "category" in data:
        category = (data["category"] or "").strip()
        if not category:
            raise ValidationError("category cannot be empty")
        item.category = category
    if "description" in data:
        item.description = data["description"]
    if "price" in data:
        item.price_cents = to_cents(data["price"], "price", allow_zero=True)
    if "imageUrl" in data:
        item.image_url = data["imageUrl"]
    if "dietaryTags" in data:
        item.dietary_tags = _parse_tags(data["dietaryTags"])
    if "isAvailable" in data:
        item.is_available = bool(data["isAvailable"])
    if "isFeatured" in data:
        item.is_featured = bool(data["isFeatured"])

    db.session.commit()
    return item


def delete_item(item_id: int) -> bool:
    item = db.session.get(MenuItem, item_id)
    if item is None:
        return False
    db.session.delete(item)
    db.session.commit()
    return True
