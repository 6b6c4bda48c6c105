# apcore/activitypub/collection.py
"""
ActivityStreams collections and collection pages.

Two base shapes (plain ``items`` vs ordered ``orderedItems``) and a
paging extension (``next``/``prev``/``partOf``). Servers vary in which
optional fields they send, so the shape is chosen from the fields that
are present rather than from ``type``, and every shape answers the same
accessors: items(), total(), first(), last(), next(), prev().

See https://www.w3.org/TR/activitystreams-core/#collection
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union

from ..errors import LocatorError
from ..locator import ResourceLocator
from .context import Context
from .objects import APObject, expect_dict, invalid, optional_context, optional_locator, put

# An item is a link, or an embedded object (parsed when a parser is given).
Item = Union[ResourceLocator, Any]

PAGE_FIELDS = ("next", "prev", "partOf")


@dataclass
class Collection(APObject):
    """Unordered collection (``items``)."""
    id: Optional[ResourceLocator] = None
    members: Optional[List[Item]] = None
    total_items: Optional[int] = None
    first_page: Optional[ResourceLocator] = None
    last_page: Optional[ResourceLocator] = None
    context: Optional[Context] = None

    TYPE = "Collection"
    ITEMS_FIELD = "items"

    def items(self) -> List[Item]:
        return list(self.members) if self.members is not None else []

    def total(self) -> Optional[int]:
        return self.total_items

    def first(self) -> Optional[ResourceLocator]:
        return self.first_page

    def last(self) -> Optional[ResourceLocator]:
        return self.last_page

    def next(self) -> Optional[ResourceLocator]:
        return None

    def prev(self) -> Optional[ResourceLocator]:
        return None

    @property
    def is_ordered(self) -> bool:
        return self.ITEMS_FIELD == "orderedItems"

    @property
    def is_page(self) -> bool:
        return False

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.context is not None:
            out["@context"] = self.context.to_json()
        put(out, "id", self.id)
        out["type"] = self.TYPE
        put(out, "totalItems", self.total_items)
        put(out, "first", self.first_page)
        put(out, "last", self.last_page)
        if self.members is not None:
            out[self.ITEMS_FIELD] = [_item_json(i) for i in self.members]
        return out


@dataclass
class OrderedCollection(Collection):
    """Ordered collection (``orderedItems``), newest first by convention."""

    TYPE = "OrderedCollection"
    ITEMS_FIELD = "orderedItems"


@dataclass
class CollectionPage(Collection):
    """One page of a collection."""
    next_page: Optional[ResourceLocator] = None
    prev_page: Optional[ResourceLocator] = None
    part_of: Optional[ResourceLocator] = None

    TYPE = "CollectionPage"

    def next(self) -> Optional[ResourceLocator]:
        return self.next_page

    def prev(self) -> Optional[ResourceLocator]:
        return self.prev_page

    @property
    def is_page(self) -> bool:
        return True

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        put(out, "next", self.next_page)
        put(out, "prev", self.prev_page)
        put(out, "partOf", self.part_of)
        return out


@dataclass
class OrderedCollectionPage(CollectionPage):
    """One page of an ordered collection."""

    TYPE = "OrderedCollectionPage"
    ITEMS_FIELD = "orderedItems"


def _item_json(item: Any) -> Any:
    if isinstance(item, APObject):
        return item.to_dict()
    if isinstance(item, ResourceLocator):
        return str(item)
    return item


def _parse_items(values: Any, item_parser: Optional[Callable[[Any], Any]]) -> List[Item]:
    if not isinstance(values, list):
        values = [values]
    items: List[Item] = []
    for value in values:
        if isinstance(value, str):
            try:
                items.append(ResourceLocator.parse(value))
            except LocatorError:
                items.append(value)
        elif item_parser is not None:
            items.append(item_parser(value))
        else:
            items.append(value)
    return items


def parse_collection(
    data: Any,
    item_parser: Optional[Callable[[Any], Any]] = None,
) -> Collection:
    """
    Deserialize any collection or page by field presence.

    Args:
        data: Decoded JSON object
        item_parser: Optional parser for embedded (non-link) items

    Returns:
        Collection, OrderedCollection, CollectionPage or OrderedCollectionPage
    """
    data = expect_dict(data, "collection")

    ordered = "orderedItems" in data
    if not ordered and "items" not in data:
        # No items at all: fall back to the declared type for ordering.
        declared = data.get("type")
        ordered = isinstance(declared, str) and declared.startswith("Ordered")
    paged = any(data.get(f) is not None for f in PAGE_FIELDS)
    if not paged:
        declared = data.get("type")
        paged = isinstance(declared, str) and declared.endswith("Page")

    raw_items = data.get("orderedItems" if "orderedItems" in data else "items")
    members = _parse_items(raw_items, item_parser) if raw_items is not None else None

    total = data.get("totalItems")
    if total is not None and (not isinstance(total, int) or isinstance(total, bool) or total < 0):
        raise invalid(f"totalItems must be a non-negative integer, got {total!r}")

    common = dict(
        id=optional_locator(data, "id"),
        members=members,
        total_items=total,
        first_page=optional_locator(data, "first"),
        last_page=optional_locator(data, "last"),
        context=optional_context(data),
    )

    if paged:
        page_cls = OrderedCollectionPage if ordered else CollectionPage
        return page_cls(
            **common,
            next_page=optional_locator(data, "next"),
            prev_page=optional_locator(data, "prev"),
            part_of=optional_locator(data, "partOf"),
        )
    collection_cls = OrderedCollection if ordered else Collection
    return collection_cls(**common)
