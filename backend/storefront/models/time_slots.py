from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


class TimeSlotConfig(db.Model):
    """
    Weekly pickup schedule (single row).

    available_days holds English weekday names ("Monday" ... "Sunday").
    """
    __tablename__ = "time_slot_config"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    available_days = db.Column(db.JSON, nullable=False)
    lead_time_days = db.Column(db.Integer, nullable=False, default=1)
    max_advance_booking_days = db.Column(db.Integer, nullable=False, default=14)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "availableDays": list(self.available_days or []),
            "leadTime": self.lead_time_days,
            "maxAdvanceBookingDays": self.max_advance_booking_days,
            "updatedAt": to_utc_z(self.updated_at),
        }


class TimeSlot(db.Model):
    """Daily recurring pickup window with a per-date order cap."""
    __tablename__ = "time_slots"
    __table_args__ = (
        db.UniqueConstraint("start_time", name="uq_time_slots_start"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    start_time = db.Column(db.String(5), nullable=False)  # HH:MM
    end_time = db.Column(db.String(5), nullable=False)  # HH:MM
    max_orders = db.Column(db.Integer, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "maxOrders": self.max_orders,
            "isActive": self.is_active,
        }
