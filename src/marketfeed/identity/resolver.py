"""Internal id resolution: the one place ids get canonicalized.

Internal id format:

- Crypto:  ``cg:<coingeckoId>``        e.g. ``cg:bitcoin``
- Equity:  ``yahoo:<symbol>``          e.g. ``yahoo:AAPL``, ``yahoo:^GSPC``
- TASE:    ``tase:<securityNumber>``   e.g. ``tase:1183441``

Legacy records stored TASE securities as ``yahoo:<digits>`` or
``yahoo:<digits>.TA``; those are migrated to ``tase:<digits>``. The
migration treats any 4-10 digit equity symbol as a TASE security number,
which can collide with genuinely numeric tickers on other exchanges
(e.g. Tokyo). That ambiguity is preserved deliberately.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Mapping

from marketfeed.core.models import AssetRecord, IdKind, InternalId, Provider
from marketfeed.identity.tase import get_instrument

logger = logging.getLogger(__name__)

_PREFIXES = tuple(f"{kind.value}:" for kind in IdKind)
_PREFIX_RE = re.compile(r"^(?:cg:|yahoo:|tase:)")
_NUMERIC_ID_RE = re.compile(r"^\d{4,10}$")
_LEGACY_TASE_RE = re.compile(r"^yahoo:(\d{4,10})(?:\.TA)?$")

_CRYPTO_SOURCES = {"coingecko"}
_CRYPTO_TYPES = {"CRYPTO"}
_CRYPTO_CATEGORIES = {"קריפטו", "crypto"}
_TASE_SOURCES = {"tase", "tase-local"}

TASE_SUFFIX = ".TA"


def is_numeric_security_id(text: str | None) -> bool:
    """True for a bare (or prefixed) 4-10 digit security number."""
    if not text or not isinstance(text, str):
        return False
    return bool(_NUMERIC_ID_RE.match(_PREFIX_RE.sub("", text.strip())))


def migrate_legacy_id(text: str) -> str:
    """Rewrite ``yahoo:<digits>[.TA]`` to ``tase:<digits>``; else unchanged."""
    match = _LEGACY_TASE_RE.match(text)
    if match:
        return f"{IdKind.TASE.value}:{match.group(1)}"
    return text


def _strip_prefix(text: str) -> str:
    return _PREFIX_RE.sub("", text.strip())


def _resolve_string(text: str, fallback_hint: str | None) -> InternalId | None:
    text = text.strip()
    if not text:
        return None

    migrated = migrate_legacy_id(text)
    if migrated != text:
        logger.debug("Migrated legacy id %s -> %s", text, migrated)
        return InternalId.parse(migrated)

    if text.startswith(_PREFIXES):
        try:
            return InternalId.parse(text)
        except ValueError:
            return None

    if fallback_hint == "tase" or is_numeric_security_id(text):
        return InternalId.tase(text)
    if fallback_hint == "coingecko":
        return InternalId.crypto(text)

    return InternalId.equity(text)


def _is_crypto(asset: AssetRecord) -> bool:
    return (
        asset.market_data_source in _CRYPTO_SOURCES
        or asset.instrument_type in _CRYPTO_TYPES
        or asset.asset_type in _CRYPTO_TYPES
        or (asset.category or "").strip().lower() in _CRYPTO_CATEGORIES
    )


def _is_tase(asset: AssetRecord) -> bool:
    return (
        asset.market_data_source in _TASE_SOURCES
        or asset.exchange == "TASE"
        or asset.provider == "tase-local"
        or (
            asset.currency == "ILS"
            and is_numeric_security_id(asset.api_id or asset.symbol)
        )
        or (
            bool(asset.symbol)
            and asset.symbol.endswith(TASE_SUFFIX)
            and is_numeric_security_id(asset.api_id)
        )
    )


def _resolve_record(asset: AssetRecord) -> InternalId | None:
    api_id = migrate_legacy_id(asset.api_id.strip()) if asset.api_id else None

    # (a) explicit prefix on apiId
    if api_id and api_id.startswith(_PREFIXES):
        try:
            return InternalId.parse(api_id)
        except ValueError:
            pass

    # (b) crypto markers beat symbol heuristics
    if _is_crypto(asset):
        coin_id = api_id or asset.coingecko_id or asset.symbol
        if coin_id and _strip_prefix(coin_id):
            return InternalId.crypto(_strip_prefix(coin_id))

    # (c) local-exchange markers
    if _is_tase(asset):
        extra_number = (asset.extra or {}).get("securityNumber")
        candidate = (
            asset.security_id
            or (str(extra_number) if extra_number else None)
            or asset.tase_security_number
            or api_id
            or asset.symbol
        )
        if candidate:
            clean = _strip_prefix(str(candidate)).removesuffix(TASE_SUFFIX)
            if is_numeric_security_id(clean):
                return InternalId.tase(clean)

    # (d) everything else is an equity/index symbol
    symbol = api_id or asset.symbol
    if symbol and symbol.strip():
        return InternalId.equity(symbol.strip())

    return None


def resolve(
    id_or_record: str | InternalId | AssetRecord | Mapping[str, Any] | None,
    fallback_hint: str | None = None,
) -> InternalId | None:
    """Canonicalize an id string or asset record.

    Args:
        id_or_record: Prefixed id, bare symbol, ``InternalId``, or an asset
            record (model or mapping with apiId/symbol/currency/...).
        fallback_hint: ``"tase"`` or ``"coingecko"`` to steer bare strings.

    Returns:
        The canonical ``InternalId``, or None if no id information exists.
    """
    if id_or_record is None:
        return None
    if isinstance(id_or_record, InternalId):
        return id_or_record
    if isinstance(id_or_record, str):
        return _resolve_string(id_or_record, fallback_hint)
    if isinstance(id_or_record, AssetRecord):
        return _resolve_record(id_or_record)
    if isinstance(id_or_record, Mapping):
        return _resolve_record(AssetRecord.model_validate(dict(id_or_record)))
    return None


def normalize_asset_api_id(record: Mapping[str, Any]) -> dict[str, Any]:
    """Return a copy of an asset record with a canonical ``apiId``.

    TASE ids also get ``securityId`` and a default ``marketDataSource``.
    Records that cannot be resolved are returned unchanged.
    """
    result = dict(record)
    internal_id = resolve(result)
    if internal_id is None:
        return result

    canonical = str(internal_id)
    if canonical != result.get("apiId"):
        result["apiId"] = canonical
        if internal_id.kind is IdKind.TASE:
            result["securityId"] = internal_id.value
            result["marketDataSource"] = result.get("marketDataSource") or "tase-local"
    return result


def route(internal_id: InternalId) -> tuple[Provider, str]:
    """Map an internal id to ``(provider, provider-native symbol)``.

    TASE securities go to Yahoo under the dataset's ticker, or
    ``<securityId>.TA`` when the dataset has no entry.
    """
    if internal_id.kind is IdKind.CRYPTO:
        return Provider.COINGECKO, internal_id.value
    if internal_id.kind is IdKind.TASE:
        inst = get_instrument(internal_id.value)
        symbol = inst.yahoo_symbol if inst else f"{internal_id.value}{TASE_SUFFIX}"
        return Provider.YAHOO, symbol
    return Provider.YAHOO, internal_id.value
