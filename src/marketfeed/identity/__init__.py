"""Instrument identity: internal id resolution and the TASE dataset."""

from marketfeed.identity.resolver import (
    is_numeric_security_id,
    migrate_legacy_id,
    normalize_asset_api_id,
    resolve,
    route,
)
from marketfeed.identity.tase import (
    TaseDataset,
    TaseInstrument,
    get_instrument,
    load_dataset,
    search_instruments,
)

__all__ = [
    "resolve",
    "route",
    "migrate_legacy_id",
    "is_numeric_security_id",
    "normalize_asset_api_id",
    "TaseInstrument",
    "TaseDataset",
    "load_dataset",
    "get_instrument",
    "search_instruments",
]
