from .ledger import VersionLedger, async_database_url
from .models import ObjectVersion, VersionEvent

__all__ = [
    "ObjectVersion",
    "VersionEvent",
    "VersionLedger",
    "async_database_url",
]
