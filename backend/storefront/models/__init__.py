from .accounts import User, SessionToken
from .menu import MenuItem
from .orders import Order
from .points import PointsConfig, PointsAccount, PointsTransaction
from .promos import PromoCode, PromoUsage
from .time_slots import TimeSlotConfig, TimeSlot

__all__ = [
    'User', 'SessionToken',
    'MenuItem',
    'Order',
    'PointsConfig', 'PointsAccount', 'PointsTransaction',
    'PromoCode', 'PromoUsage',
    'TimeSlotConfig', 'TimeSlot',
]
