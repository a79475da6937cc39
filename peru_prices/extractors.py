"""
Site-specific mappings from one HTML node to a raw attribute map.

The mapping is configuration: each extractor only knows where every record
field lives inside a product node. Turning that map into a Record is shared
(see ``Record.from_attributes``).
"""

import logging
from typing import Dict, Mapping, Optional

import soupsieve
from bs4.element import Tag

from .errors import ConfigurationError
from .records import IDENTITY_FIELD, OPTIONAL_FIELDS, Record

logger = logging.getLogger(__name__)

RECORD_FIELDS = (IDENTITY_FIELD,) + OPTIONAL_FIELDS

# VTEX storefronts (Metro, Wong) expose product data as attributes on each card
DEFAULT_ATTRIBUTE_FIELDS = {
    "id": "data-id",
    "brand": "data-brand",
    "uri": "data-uri",
    "name": "data-name",
    "price": "data-price",
    "category": "data-category",
}


class Extractor:
    """Base extractor. Subclasses implement ``raw_attributes``."""

    def __init__(self, fields: Mapping[str, str]):
        unknown = set(fields) - set(RECORD_FIELDS)
        if unknown:
            raise ConfigurationError(f"Unknown record fields in extractor: {sorted(unknown)}")
        if IDENTITY_FIELD not in fields:
            raise ConfigurationError(f"Extractor needs a mapping for `{IDENTITY_FIELD}`")
        self.fields = dict(fields)

    def raw_attributes(self, node: Tag) -> Dict[str, str]:
        raise NotImplementedError

    def extract(self, node: Tag, page_context: Optional[str] = None) -> Record:
        raw = self.raw_attributes(node)
        logger.debug(f"Received data: {raw}")
        return Record.from_attributes(raw, page_context)


class AttributeExtractor(Extractor):
    """Reads every field from an attribute of the node itself."""

    def __init__(self, fields: Optional[Mapping[str, str]] = None):
        super().__init__(fields or DEFAULT_ATTRIBUTE_FIELDS)

    def raw_attributes(self, node: Tag) -> Dict[str, str]:
        raw = {}
        for field, attribute in self.fields.items():
            value = node.get(attribute)
            if value is None:
                continue
            # bs4 returns multi-valued attributes (class, rel) as lists
            if isinstance(value, list):
                value = " ".join(value)
            raw[field] = value
        return raw


class SelectorExtractor(Extractor):
    """
    Reads fields from elements nested inside the node.

    Each mapping value is a CSS selector. ``selector@attr`` reads an
    attribute of the first match, a bare selector reads its stripped text,
    and ``@attr`` reads an attribute of the node itself.
    """

    def __init__(self, fields: Mapping[str, str]):
        super().__init__(fields)
        for field, location in self.fields.items():
            selector = location.partition("@")[0]
            if not selector.strip():
                continue
            try:
                soupsieve.compile(selector)
            except soupsieve.SelectorSyntaxError:
                raise ConfigurationError(f"Invalid selector for `{field}`: {selector!r}") from None

    def raw_attributes(self, node: Tag) -> Dict[str, str]:
        raw = {}
        for field, location in self.fields.items():
            selector, _, attribute = location.partition("@")
            target = node.select_one(selector) if selector.strip() else node
            if target is None:
                continue
            if attribute:
                value = target.get(attribute)
                if isinstance(value, list):
                    value = " ".join(value)
            else:
                value = target.get_text(" ", strip=True) or None
            if value is not None:
                raw[field] = value
        return raw


EXTRACTORS = {
    "attributes": AttributeExtractor,
    "selectors": SelectorExtractor,
}


def build_extractor(kind: str, fields: Optional[Mapping[str, str]] = None) -> Extractor:
    try:
        extractor_cls = EXTRACTORS[kind]
    except KeyError:
        raise ConfigurationError(
            f"Unknown extractor {kind!r}, use one of {sorted(EXTRACTORS)}"
        ) from None
    if extractor_cls is SelectorExtractor and not fields:
        raise ConfigurationError("The `selectors` extractor needs a `fields` mapping")
    return extractor_cls(fields)
