# Models
from .listing import Listing, ListingStatus
from .seller_profile import SellerProfile
from .reservations import Reservation
from .orders import Order, OrderItem, OrderStatus
from .order_events import OrderEvent, OrderEventType
from .ledger_entries import LedgerEntry, EntryType, EntryCategory
from .rate_limits import RateLimitBucket

__all__ = [
    "Listing",
    "ListingStatus",
    "SellerProfile",
    "Reservation",
    "Order",
    "OrderItem",
    "OrderStatus",
    "OrderEvent",
    "OrderEventType",
    "LedgerEntry",
    "EntryType",
    "EntryCategory",
    "RateLimitBucket",
]
