from slotwise.stores.base import AvailabilityRuleStore, BookingRepository, ServiceCatalog
from slotwise.stores.memory import (
    InMemoryAvailabilityRuleStore,
    InMemoryBookingRepository,
    InMemoryServiceCatalog,
)
from slotwise.stores.sql import SqlStores, open_sql_stores

__all__ = [
    "AvailabilityRuleStore",
    "ServiceCatalog",
    "BookingRepository",
    "InMemoryAvailabilityRuleStore",
    "InMemoryServiceCatalog",
    "InMemoryBookingRepository",
    "SqlStores",
    "open_sql_stores",
]
