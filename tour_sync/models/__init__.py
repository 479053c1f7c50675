from tour_sync.models.api_token import ApiToken
from tour_sync.models.booking import Customer, Product, Reservation, TeamMember, Tour
from tour_sync.models.sync_log import SyncLog

__all__ = [
    "ApiToken",
    "Customer",
    "Product",
    "Reservation",
    "SyncLog",
    "TeamMember",
    "Tour",
]
