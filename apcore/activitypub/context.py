# apcore/activitypub/context.py
"""
JSON-LD ``@context`` values.

A context is one entry or a list of entries; each entry is a URI, an
inline JSON-LD object, or some other JSON value kept opaque. No
expansion is attempted.
"""

import functools
from dataclasses import dataclass
from typing import Any, Tuple

from ..errors import LocatorError
from ..locator import ResourceLocator

ACTIVITY_STREAMS_URI = "https://www.w3.org/ns/activitystreams"
SECURITY_URI = "https://w3id.org/security/v1"
PUBLIC_COLLECTION = "https://www.w3.org/ns/activitystreams#Public"


@dataclass(frozen=True)
class ContextEntry:
    """
    One member of a context.

    Attributes:
        value: The raw JSON value
        kind: "uri", "object" or "opaque"
    """
    value: Any
    kind: str

    @classmethod
    def from_json(cls, value: Any) -> "ContextEntry":
        if isinstance(value, str):
            try:
                ResourceLocator.parse(value)
                return cls(value, "uri")
            except LocatorError:
                return cls(value, "opaque")
        if isinstance(value, dict):
            return cls(dict(value), "object")
        return cls(value, "opaque")

    @property
    def uri(self) -> ResourceLocator | None:
        if self.kind != "uri":
            return None
        return ResourceLocator.parse(self.value)


@dataclass(frozen=True)
class Context:
    """Single-or-many union of context entries."""
    entries: Tuple[ContextEntry, ...]
    many: bool = False

    @classmethod
    def from_json(cls, value: Any) -> "Context":
        if isinstance(value, list):
            return cls(tuple(ContextEntry.from_json(v) for v in value), many=True)
        return cls((ContextEntry.from_json(value),), many=False)

    @classmethod
    def of(cls, *uris: str) -> "Context":
        """Build a context from URIs; a single URI stays single."""
        entries = tuple(ContextEntry.from_json(u) for u in uris)
        return cls(entries, many=len(entries) != 1)

    def to_json(self) -> Any:
        if self.many:
            return [e.value for e in self.entries]
        return self.entries[0].value

    def uris(self) -> list[str]:
        return [e.value for e in self.entries if e.kind == "uri"]

    def includes_activity_streams(self) -> bool:
        return ACTIVITY_STREAMS_URI in self.uris()


@functools.lru_cache(maxsize=None)
def activity_streams() -> Context:
    """The shared ActivityStreams context, built on first use."""
    return Context.of(ACTIVITY_STREAMS_URI)


@functools.lru_cache(maxsize=None)
def activity_streams_with_security() -> Context:
    """Context for actor documents that publish a public key."""
    return Context.of(ACTIVITY_STREAMS_URI, SECURITY_URI)
