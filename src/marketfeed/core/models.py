"""Pydantic data models shared by providers, aggregators and the API."""

from __future__ import annotations

import re
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

# --- Enumerations ---


class IdKind(StrEnum):
    """Internal id variants, valued by their serialized prefix."""

    CRYPTO = "cg"
    EQUITY = "yahoo"
    TASE = "tase"


class Provider(StrEnum):
    """Upstream data providers."""

    COINGECKO = "coingecko"
    YAHOO = "yahoo"
    BINANCE = "binance"
    EXCHANGERATE = "exchangerate"


class QuoteSource(StrEnum):
    """Value of the ``source`` field on quote and history results."""

    COINGECKO = "coingecko"
    YAHOO = "yahoo"
    BINANCE_FALLBACK = "binance-fallback"


_WIRE = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Identity ---


class InternalId(BaseModel):
    """Canonical ``"<prefix>:<value>"`` instrument identifier.

    Created once at request ingress and immutable thereafter. Use
    ``marketfeed.identity.resolve`` to build one from loose input; ``parse``
    only accepts the canonical form.
    """

    model_config = ConfigDict(frozen=True)

    kind: IdKind
    value: str

    @field_validator("value")
    @classmethod
    def value_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("InternalId value must not be empty")
        return v

    @classmethod
    def parse(cls, text: str) -> InternalId:
        prefix, sep, value = text.strip().partition(":")
        if not sep:
            raise ValueError(f"Not a prefixed internal id: {text!r}")
        try:
            kind = IdKind(prefix)
        except ValueError:
            raise ValueError(f"Unknown internal id prefix: {prefix!r}") from None
        return cls(kind=kind, value=value)

    @classmethod
    def crypto(cls, coin_id: str) -> InternalId:
        return cls(kind=IdKind.CRYPTO, value=coin_id)

    @classmethod
    def equity(cls, symbol: str) -> InternalId:
        return cls(kind=IdKind.EQUITY, value=symbol)

    @classmethod
    def tase(cls, security_id: str) -> InternalId:
        return cls(kind=IdKind.TASE, value=security_id)

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.value}"


class AssetRecord(BaseModel):
    """Asset record as stored by the portfolio collaborator.

    Every field is optional; unknown fields are ignored. Numeric ids stored
    as numbers are coerced to strings.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        coerce_numbers_to_str=True,
    )

    api_id: str | None = None
    symbol: str | None = None
    currency: str | None = None
    market_data_source: str | None = None
    category: str | None = None
    security_id: str | None = None
    asset_type: str | None = None
    instrument_type: str | None = Field(default=None, alias="type")
    exchange: str | None = None
    provider: str | None = None
    coingecko_id: str | None = None
    tase_security_number: str | None = None
    extra: dict[str, Any] | None = None


# --- Quotes ---


class QuoteResult(BaseModel):
    """Latest price for one requested id.

    Exactly one of ``price`` / ``error`` is set. ``timestamp`` is epoch
    milliseconds.
    """

    model_config = _WIRE

    id: str
    price: float | None = None
    currency: str | None = None
    change_pct: float | None = None
    timestamp: int | None = None
    source: QuoteSource | None = None
    is_stale: bool | None = None
    error: str | None = None

    @model_validator(mode="after")
    def value_xor_error(self) -> QuoteResult:
        if (self.price is None) == (self.error is None):
            raise ValueError(
                f"QuoteResult for {self.id!r} must carry exactly one of price or error"
            )
        return self

    @classmethod
    def failure(
        cls, id: str, error: str, source: QuoteSource | None = None
    ) -> QuoteResult:
        return cls(id=id, error=error, source=source)

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# --- History ---


class HistoryPoint(BaseModel):
    """A single ``{t, v}`` sample (epoch ms, value)."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    timestamp: int = Field(alias="t")
    value: float = Field(alias="v")


class HistoryResult(BaseModel):
    """Historical series for one id."""

    model_config = _WIRE

    id: str
    points: list[HistoryPoint]
    currency: str
    source: QuoteSource

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class HistoryError(BaseModel):
    """History lookup that produced no series.

    ``upstream_status`` is set when the provider failed with an
    authentication or server error (or timed out); it drives the HTTP status
    of the API response and is never serialized.
    """

    model_config = _WIRE

    id: str
    error: str
    upstream_status: int | None = Field(default=None, exclude=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# --- FX & search ---


class FxResult(BaseModel):
    """Exchange rate between two currencies."""

    model_config = _WIRE

    base: str
    quote: str
    rate: float
    timestamp: int
    source: str = "exchangerate-api"


_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


class SearchResult(BaseModel):
    """One instrument matched by a search query."""

    model_config = _WIRE

    id: str
    type: str
    provider: str
    symbol: str
    name: str
    currency: str
    exchange: str | None = None
    country: str | None = None
    extra: dict[str, Any] | None = None

    @field_validator("currency")
    @classmethod
    def currency_upper(cls, v: str) -> str:
        v = v.strip().upper()
        if not _CURRENCY_RE.match(v):
            raise ValueError(f"currency must be a 3-letter code, got {v!r}")
        return v

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
