"""Services package."""

from backend.app.services.customer_matching import CustomerMatchingService
from backend.app.services.mapping_store import MappingStore, StoreError
from backend.app.services.vip_status import StatusCache, VipStatusService

__all__ = [
    "CustomerMatchingService",
    "MappingStore",
    "StoreError",
    "StatusCache",
    "VipStatusService",
]
