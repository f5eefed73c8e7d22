# Overview: Service-layer operations for pickup time slots; encapsulates business logic and database work.

"""
Pickup Time-Slot Availability

The weekly schedule (bookable weekdays, lead time, booking window) lives in a
single TimeSlotConfig row. Each TimeSlot is a daily recurring window with a
per-date order cap. Capacity is counted from live orders, so cancelled,
refunded and failed orders free their slot.

reserve_capacity() is called inside order creation while the order is still
uncommitted. It locks the slot row so two orders cannot both take the last
place on databases that honor SELECT ... FOR UPDATE.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta

from sqlalchemy import func

from ..extensions import db
from ..models import Order, TimeSlot, TimeSlotConfig
from ..models.orders import INACTIVE_ORDER_STATUSES
from storefront.time_utils import parse_hhmm
from storefront.validation import ValidationError, parse_int
from .concurrency import lock_for_update


WEEKDAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]

DEFAULT_AVAILABLE_DAYS = ["Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
DEFAULT_LEAD_TIME_DAYS = 1
DEFAULT_MAX_ADVANCE_BOOKING_DAYS = 14

DEFAULT_SLOTS = [
    ("11:00", "12:00", 10),
    ("12:00", "13:00", 10),
    ("17:00", "18:00", 10),
    ("18:00", "19:00", 10),
]


class TimeSlotError(Exception):
    """Raised when a pickup slot cannot take another order."""
    pass


@dataclass
class SlotAvailability:
    slot: TimeSlot
    current_orders: int

    @property
    def capacity_remaining(self) -> int:
        return max(0, self.slot.max_orders - self.current_orders)

    @property
    def is_bookable(self) -> bool:
        return self.current_orders < self.slot.max_orders

    def to_dict(self) -> dict:
        return {
            "id": self.slot.id,
            "startTime": self.slot.start_time,
            "endTime": self.slot.end_time,
            "maxOrders": self.slot.max_orders,
            "currentOrders": self.current_orders,
            "capacityRemaining": self.capacity_remaining,
            "isBookable": self.is_bookable,
        }


# =============================================================================
# CONFIG
# =============================================================================

def get_config() -> TimeSlotConfig:
    """The schedule row, created with defaults on first access."""
    config = db.session.query(TimeSlotConfig).order_by(TimeSlotConfig.id).first()
    if config is None:
        config = TimeSlotConfig(
            available_days=list(DEFAULT_AVAILABLE_DAYS),
            lead_time_days=DEFAULT_LEAD_TIME_DAYS,
            max_advance_booking_days=DEFAULT_MAX_ADVANCE_BOOKING_DAYS,
        )
        db.session.add(config)
        db.session.commit()
    return config


def _parse_days(value) -> list[str]:
    if not isinstance(value, list):
        raise ValidationError("availableDays must be a list of weekday names")
    days = []
    for entry in value:
        name = str(entry).strip().capitalize()
        if name not in WEEKDAY_NAMES:
            raise ValidationError(f"Unknown weekday '{entry}'")
        if name not in days:
            days.append(name)
    # Keep calendar order regardless of input order
    return sorted(days, key=WEEKDAY_NAMES.index)


def update_config(data: dict) -> TimeSlotConfig:
    config = get_config()
    if "availableDays" in data:
        config.available_days = _parse_days(data["availableDays"])
    if "leadTime" in data:
        config.lead_time_days = parse_int(data["leadTime"], "leadTime", minimum=0)
    if "maxAdvanceBookingDays" in data:
        config.max_advance_booking_days = parse_int(data["maxAdvanceBookingDays"], "maxAdvanceBookingDays", minimum=1)
    db.session.commit()
    return config


def ensure_default_slots() -> int:
    """Create the default daily slots when none exist. Returns slots created."""
    if db.session.query(TimeSlot).count():
        return 0
    for start, end, max_orders in DEFAULT_SLOTS:
        db.session.add(TimeSlot(start_time=start, end_time=end, max_orders=max_orders, is_active=True))
    db.session.commit()
    return len(DEFAULT_SLOTS)


# =============================================================================
# SLOT CRUD
# =============================================================================

def list_slots(active_only: bool = True) -> list[TimeSlot]:
    q = db.session.query(TimeSlot)
    if active_only:
        q = q.filter_by(is_active=True)
    return q.order_by(TimeSlot.start_time).all()


def _parse_window(start, end) -> tuple[str, str]:
    try:
        start_time = parse_hhmm(start)
        end_time = parse_hhmm(end)
    except ValueError as e:
        raise ValidationError(str(e))
    if not start_time or not end_time:
        raise ValidationError("startTime and endTime are required")
    if end_time <= start_time:
        raise ValidationError("endTime must be after startTime")
    return start_time, end_time


def create_slot(data: dict) -> TimeSlot:
    start_time, end_time = _parse_window(data.get("startTime"), data.get("endTime"))
    max_orders = parse_int(data.get("maxOrders"), "maxOrders", minimum=1)

    if db.session.query(TimeSlot).filter_by(start_time=start_time).first():
        raise TimeSlotError(f"A slot starting at {start_time} already exists")

    slot = TimeSlot(
        start_time=start_time,
        end_time=end_time,
        max_orders=max_orders,
        is_active=bool(data.get("isActive", True)),
    )
    db.session.add(slot)
    db.session.commit()
    return slot


def update_slot(slot_id: int, data: dict) -> TimeSlot | None:
    slot = db.session.get(TimeSlot, slot_id)
    if slot is None:
        return None

    if "startTime" in data or "endTime" in data:
        start_time, end_time = _parse_window(
            data.get("startTime", slot.start_time),
            data.get("endTime", slot.end_time),
        )
        clash = db.session.query(TimeSlot).filter(
            TimeSlot.start_time == start_time, TimeSlot.id != slot.id
        ).first()
        if clash:
            raise TimeSlotError(f"A slot starting at {start_time} already exists")
        slot.start_time = start_time
        slot.end_time = end_time
    if "maxOrders" in data:
        slot.max_orders = parse_int(data["maxOrders"], "maxOrders", minimum=1)
    if "isActive" in data:
        slot.is_active = bool(data["isActive"])

    db.session.commit()
    return slot


def delete_slot(slot_id: int) -> bool:
    slot = db.session.get(TimeSlot, slot_id)
    if slot is None:
        return False
    db.session.delete(slot)
    db.session.commit()
    return True


# =============================================================================
# AVAILABILITY
# =============================================================================

def available_dates(config: TimeSlotConfig, today: date) -> list[date]:
    """
    Bookable pickup dates.

    Walks max_advance_booking_days calendar days starting at
    today + lead_time_days and keeps the allowed weekdays.
    """
    allowed = set(config.available_days or [])
    first = today + timedelta(days=config.lead_time_days)
    dates = []
    for offset in range(config.max_advance_booking_days):
        candidate = first + timedelta(days=offset)
        if WEEKDAY_NAMES[candidate.weekday()] in allowed:
            dates.append(candidate)
    return dates


def count_orders(on_date: date, start_time: str) -> int:
    """Live orders holding the given slot on the given date."""
    return (
        db.session.query(func.count(Order.id))
        .filter(
            Order.pickup_date == on_date,
            Order.pickup_time == start_time,
            Order.status.notin_(INACTIVE_ORDER_STATUSES),
        )
        .scalar()
    ) or 0


def available_slots(on_date: date) -> list[SlotAvailability]:
    """Every active slot for a date, with its current load."""
    counts = dict(
        db.session.query(Order.pickup_time, func.count(Order.id))
        .filter(
            Order.pickup_date == on_date,
            Order.status.notin_(INACTIVE_ORDER_STATUSES),
        )
        .group_by(Order.pickup_time)
        .all()
    )
    return [
        SlotAvailability(slot=slot, current_orders=counts.get(slot.start_time, 0))
        for slot in list_slots(active_only=True)
    ]


def reserve_capacity(on_date: date, start_time: str) -> TimeSlot | None:
    """
    Lock the slot and make sure one more order fits.

    Must run inside the caller's uncommitted order transaction. Returns the
    slot, or None when the pickup time matches no configured slot (no cap).
    Raises TimeSlotError when the slot is full or disabled.
    """
    slot = lock_for_update(
        db.session.query(TimeSlot).filter_by(start_time=start_time)
    ).first()
    if slot is None:
        return None
    if not slot.is_active:
        raise TimeSlotError(f"Pickup time {start_time} is not available")

    if count_orders(on_date, start_time) >= slot.max_orders:
        raise TimeSlotError(f"Pickup time {start_time} on {on_date.isoformat()} is fully booked")
    return slot
