"""Static dataset of Tel Aviv Stock Exchange instruments.

Maps TASE security numbers to Yahoo Finance tickers and powers local search.
Loaded once from the bundled ``tase_instruments.csv``.
"""

from __future__ import annotations

import csv
import io
import logging
from functools import lru_cache
from importlib import resources

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

_DATA_FILE = "tase_instruments.csv"
_MAX_RESULTS = 20


class TaseInstrument(BaseModel):
    """One TASE-listed instrument."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    security_id: str
    name_he: str
    name_en: str
    yahoo_symbol: str
    currency: str = "ILS"
    type: str = "equity"
    sector: str | None = None


class TaseDataset:
    """Immutable lookup over TASE instruments, keyed by security number."""

    def __init__(self, instruments: list[TaseInstrument]) -> None:
        self._instruments = instruments
        self._by_id: dict[str, TaseInstrument] = {}
        for inst in instruments:
            # First entry wins on duplicate security numbers
            self._by_id.setdefault(inst.security_id, inst)

    @classmethod
    def from_csv_text(cls, text: str) -> TaseDataset:
        reader = csv.DictReader(io.StringIO(text))
        instruments = [
            TaseInstrument(
                security_id=row["security_id"].strip(),
                name_he=row["name_he"],
                name_en=row["name_en"],
                yahoo_symbol=row["yahoo_symbol"].strip(),
                currency=row.get("currency") or "ILS",
                type=row.get("type") or "equity",
                sector=row.get("sector") or None,
            )
            for row in reader
            if row.get("security_id")
        ]
        return cls(instruments)

    def __len__(self) -> int:
        return len(self._by_id)

    def get(self, security_id: str) -> TaseInstrument | None:
        return self._by_id.get(security_id.strip())

    def search(self, query: str) -> list[TaseInstrument]:
        """Search by security number, Hebrew/English name, or Yahoo symbol.

        Numeric queries return the exact match alone when there is one,
        otherwise prefix matches. Text queries match case-insensitive
        substrings. At most 20 results.
        """
        q = (query or "").strip()
        if not q:
            return []

        if q.isdigit():
            exact = self._by_id.get(q)
            if exact is not None:
                return [exact]
            return [
                inst for inst in self._by_id.values() if inst.security_id.startswith(q)
            ][:_MAX_RESULTS]

        needle = q.lower()
        return [
            inst
            for inst in self._by_id.values()
            if needle in inst.name_he.lower()
            or needle in inst.name_en.lower()
            or needle in inst.yahoo_symbol.lower()
        ][:_MAX_RESULTS]


@lru_cache(maxsize=1)
def load_dataset() -> TaseDataset:
    """Load the bundled dataset (cached)."""
    text = resources.files("marketfeed.identity").joinpath(_DATA_FILE).read_text(
        encoding="utf-8"
    )
    dataset = TaseDataset.from_csv_text(text)
    logger.debug("Loaded %d TASE instruments", len(dataset))
    return dataset


def get_instrument(security_id: str) -> TaseInstrument | None:
    return load_dataset().get(security_id)


def search_instruments(query: str) -> list[TaseInstrument]:
    return load_dataset().search(query)
