"""
Scraped product records, their identity and price normalization.
"""

import math
import re
from dataclasses import dataclass, fields
from typing import Dict, Iterable, List, Mapping, Optional

from .errors import MissingIdentity, NoDataExtracted, PriceParseError

# Currency markers removed before parsing a price. Longest first.
CURRENCY_MARKERS = ("S/.", "S/")

DECIMAL_PATTERN = re.compile(r'^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$')

IDENTITY_FIELD = "id"
OPTIONAL_FIELDS = ("brand", "uri", "name", "price", "category")


def parse_price(value: str) -> float:
    """
    Normalize a price-like string such as ``"S/. 1,234.50"`` into a float.

    Raises:
        PriceParseError: if what is left after removing currency markers
            and thousands separators is not a decimal number
    """
    text = value
    for marker in CURRENCY_MARKERS:
        text = text.replace(marker, "")
    text = text.replace(",", "").strip()
    if not DECIMAL_PATTERN.match(text):
        raise PriceParseError(value)
    price = float(text)
    if not math.isfinite(price):
        raise PriceParseError(value)
    return price


@dataclass(frozen=True, eq=False)
class Record:
    """
    One product observation. Two records are the same product when they
    share ``id``, whatever the other fields say.
    """

    id: str
    brand: Optional[str] = None
    uri: Optional[str] = None
    name: Optional[str] = None
    price: Optional[float] = None
    category: Optional[str] = None

    def __eq__(self, other):
        if not isinstance(other, Record):
            return NotImplemented
        return self.id == other.id

    def __hash__(self):
        return hash(self.id)

    @classmethod
    def from_attributes(cls, attributes: Mapping[str, str], page_context: Optional[str] = None) -> "Record":
        """
        Build a record from a raw attribute map.

        Args:
            attributes: field name -> raw string value, absent keys missing
            page_context: page-level value (the subroute url) used as
                category when the node has none

        Raises:
            MissingIdentity: the map has no identity key
            NoDataExtracted: the map has nothing but the identity key
            PriceParseError: the price is not a number
        """
        raw = dict(attributes)
        identity = raw.pop(IDENTITY_FIELD, None)
        if identity is None:
            raise MissingIdentity(attributes)

        values = {name: raw.get(name) for name in OPTIONAL_FIELDS}
        if all(value is None for value in values.values()):
            raise NoDataExtracted(attributes)

        if values["price"] is not None:
            values["price"] = parse_price(values["price"])
        if values["category"] is None:
            values["category"] = page_context
        return cls(id=identity, **values)

    def as_row(self) -> Dict[str, object]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def column_names() -> List[str]:
    return [f.name for f in fields(Record)]


def dedupe_records(records: Iterable[Record]) -> List[Record]:
    """Keep one record per identity key, the last one seen wins."""
    unique: Dict[str, Record] = {}
    for record in records:
        unique[record.id] = record
    return list(unique.values())
