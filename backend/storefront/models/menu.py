from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z
from storefront.validation import cents_to_dollars


class MenuItem(db.Model):
    """Dishes offered on the storefront menu."""
    __tablename__ = "menu_items"
    __table_args__ = (
        db.Index("ix_menu_items_category_available", "category", "is_available"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    price_cents = db.Column(db.Integer, nullable=False)
    category = db.Column(db.String(64), nullable=False, index=True)
    image_url = db.Column(db.String(512), nullable=True)
    dietary_tags = db.Column(db.JSON, nullable=True)  # e.g. ["vegan", "gluten-free"]

    is_available = db.Column(db.Boolean, nullable=False, default=True)
    is_featured = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price": cents_to_dollars(self.price_cents),
            "price_cents": self.price_cents,
            "category": self.category,
            "image_url": self.image_url,
            "dietary_tags": self.dietary_tags or [],
            "is_available": self.is_available,
            "is_featured": self.is_featured,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
