# apcore/activitypub/objects.py
"""
ActivityStreams object model.

Capabilities:
- APObject: anything with a wire discriminant (``type``)
- ActorCapable: an object with an identity locator and an inbox
- ActivityCapable: an object with optional actor/object/target references

Concrete objects here are the ones federation actually exchanges: Note,
the closed set of actor kinds (Person, Service, Group, Application,
Organization) and the publicKey block actors publish.

Parsing is strict: every ``from_dict`` raises ActivityError (kind
INVALID_OBJECT) or LocatorError when the payload does not fit, so
callers can try shapes in order and fail closed.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Type, runtime_checkable

from ..errors import ActivityError, ActivityErrorKind
from ..locator import ResourceLocator, TypedIdentifier
from .context import Context, activity_streams, activity_streams_with_security


class APObject(ABC):
    """Base for every object that carries a wire ``type``."""

    TYPE = "Object"

    @property
    def kind(self) -> str:
        """Wire discriminant."""
        return self.TYPE

    @abstractmethod
    def to_dict(self) -> Dict[str, Any]:
        """Return the ActivityStreams JSON representation."""

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))


@runtime_checkable
class ActorCapable(Protocol):
    """Anything that can receive activities."""

    kind: str
    id: Any
    inbox: ResourceLocator


@runtime_checkable
class ActivityCapable(Protocol):
    """Anything that is an action taken by an actor."""

    kind: str
    actor: Any
    object: Any
    target: Any


# -- parsing helpers ----------------------------------------------------


def invalid(message: str) -> ActivityError:
    return ActivityError(ActivityErrorKind.INVALID_OBJECT, message)


def wire_types(data: Dict[str, Any]) -> List[str]:
    """Return the ``type`` field as a list (it may be a string or array)."""
    value = data.get("type")
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return list(value)
    raise invalid(f"type must be a string or list of strings, got {value!r}")


def expect_type(data: Dict[str, Any], name: str, optional: bool = False) -> None:
    """
    Check the wire discriminant.

    With optional=True a missing ``type`` is accepted (remote servers
    often omit it on embedded sub-objects) but a different one is not.
    """
    types = wire_types(data)
    if not types:
        if optional:
            return
        raise invalid(f"missing type, expected {name}")
    if name not in types:
        raise invalid(f"expected type {name}, got {types}")


def expect_dict(value: Any, what: str) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise invalid(f"{what} must be an object, got {type(value).__name__}")
    return value


def reference_locator(value: Any, what: str) -> ResourceLocator:
    """A reference is either a URL string or an embedded object with an id."""
    if isinstance(value, str):
        return ResourceLocator.parse(value)
    if isinstance(value, dict) and isinstance(value.get("id"), str):
        return ResourceLocator.parse(value["id"])
    raise invalid(f"{what} must be a url or an object with an id")


def required_locator(data: Dict[str, Any], key: str) -> ResourceLocator:
    value = data.get(key)
    if not isinstance(value, str):
        raise invalid(f"{key} must be a url string")
    return ResourceLocator.parse(value)


def optional_locator(data: Dict[str, Any], key: str) -> Optional[ResourceLocator]:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, dict) and "id" in value:
        value = value["id"]
    if not isinstance(value, str):
        raise invalid(f"{key} must be a url string")
    return ResourceLocator.parse(value)


def optional_context(data: Dict[str, Any]) -> Optional[Context]:
    if "@context" not in data:
        return None
    return Context.from_json(data["@context"])


def string_list(value: Any) -> List[str]:
    """Normalise a single-or-many addressing field."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [v for v in value if isinstance(v, str)]
    raise invalid(f"expected string or list, got {value!r}")


def put(out: Dict[str, Any], key: str, value: Any) -> None:
    """Set a key unless the value is empty."""
    if value is None or value == []:
        return
    if isinstance(value, (ResourceLocator, TypedIdentifier)):
        value = str(value)
    out[key] = value


# -- objects --------------------------------------------------------------


@dataclass
class Note(APObject):
    """
    ActivityStreams Note.

    Attributes:
        content: HTML content
        id: Note URL (omitted on some embedded notes)
        attributed_to: Author actor URL
        to: Primary audience
        cc: Secondary audience
        in_reply_to: Note this replies to
    """
    content: str
    id: Optional[TypedIdentifier["Note"]] = None
    name: Optional[str] = None
    summary: Optional[str] = None
    published: Optional[str] = None
    attributed_to: Optional[ResourceLocator] = None
    to: List[str] = field(default_factory=list)
    cc: List[str] = field(default_factory=list)
    in_reply_to: Optional[ResourceLocator] = None
    context: Optional[Context] = None

    TYPE = "Note"

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.context is not None:
            out["@context"] = self.context.to_json()
        out["type"] = self.TYPE
        put(out, "id", self.id)
        put(out, "name", self.name)
        put(out, "summary", self.summary)
        out["content"] = self.content
        put(out, "published", self.published)
        put(out, "attributedTo", self.attributed_to)
        put(out, "to", self.to)
        put(out, "cc", self.cc)
        put(out, "inReplyTo", self.in_reply_to)
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any], embedded: bool = False) -> "Note":
        expect_dict(data, "note")
        expect_type(data, cls.TYPE, optional=embedded)
        content = data.get("content")
        if not isinstance(content, str):
            raise invalid("note content must be a string")
        note_id = optional_locator(data, "id")
        return cls(
            content=content,
            id=TypedIdentifier(note_id) if note_id else None,
            name=data.get("name"),
            summary=data.get("summary"),
            published=data.get("published"),
            attributed_to=optional_locator(data, "attributedTo"),
            to=string_list(data.get("to")),
            cc=string_list(data.get("cc")),
            in_reply_to=optional_locator(data, "inReplyTo"),
            context=optional_context(data),
        )


@dataclass
class PublicKey:
    """
    The ``publicKey`` block of an actor document.

    See https://docs.joinmastodon.org/spec/security/#http
    """
    id: ResourceLocator
    owner: ResourceLocator
    public_key_pem: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "owner": str(self.owner),
            "publicKeyPem": self.public_key_pem,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PublicKey":
        expect_dict(data, "publicKey")
        pem = data.get("publicKeyPem")
        if not isinstance(pem, str):
            raise invalid("publicKeyPem must be a string")
        return cls(
            id=required_locator(data, "id"),
            owner=required_locator(data, "owner"),
            public_key_pem=pem,
        )


@dataclass
class ActorDocument(APObject):
    """
    A remote or local actor as published at its id.

    Attributes:
        id: Actor URL
        inbox: Inbox URL
        preferred_username: The user part of the actor's acct URI
        outbox: Outbox URL (optional on the wire)
        shared_inbox: ``endpoints.sharedInbox`` when the server offers one
        public_key: Published signing key
    """
    id: TypedIdentifier["ActorDocument"]
    inbox: ResourceLocator
    preferred_username: Optional[str] = None
    name: Optional[str] = None
    summary: Optional[str] = None
    outbox: Optional[ResourceLocator] = None
    followers: Optional[ResourceLocator] = None
    following: Optional[ResourceLocator] = None
    shared_inbox: Optional[ResourceLocator] = None
    public_key: Optional[PublicKey] = None
    context: Optional[Context] = None

    TYPE = "Person"

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        context = self.context
        if context is None:
            context = activity_streams_with_security() if self.public_key else activity_streams()
        out["@context"] = context.to_json()
        out["type"] = self.TYPE
        out["id"] = str(self.id)
        put(out, "preferredUsername", self.preferred_username)
        put(out, "name", self.name)
        put(out, "summary", self.summary)
        out["inbox"] = str(self.inbox)
        put(out, "outbox", self.outbox)
        put(out, "followers", self.followers)
        put(out, "following", self.following)
        if self.shared_inbox is not None:
            out["endpoints"] = {"sharedInbox": str(self.shared_inbox)}
        if self.public_key is not None:
            out["publicKey"] = self.public_key.to_dict()
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActorDocument":
        expect_dict(data, "actor")
        endpoints = data.get("endpoints")
        shared_inbox = None
        if isinstance(endpoints, dict) and isinstance(endpoints.get("sharedInbox"), str):
            shared_inbox = ResourceLocator.parse(endpoints["sharedInbox"])
        public_key = None
        if isinstance(data.get("publicKey"), dict):
            public_key = PublicKey.from_dict(data["publicKey"])
        username = data.get("preferredUsername")
        return cls(
            id=TypedIdentifier(required_locator(data, "id")),
            inbox=required_locator(data, "inbox"),
            preferred_username=username if isinstance(username, str) else None,
            name=data.get("name") if isinstance(data.get("name"), str) else None,
            summary=data.get("summary") if isinstance(data.get("summary"), str) else None,
            outbox=optional_locator(data, "outbox"),
            followers=optional_locator(data, "followers"),
            following=optional_locator(data, "following"),
            shared_inbox=shared_inbox,
            public_key=public_key,
            context=optional_context(data),
        )


class Person(ActorDocument):
    TYPE = "Person"


class Service(ActorDocument):
    TYPE = "Service"


class Group(ActorDocument):
    TYPE = "Group"


class Application(ActorDocument):
    TYPE = "Application"


class Organization(ActorDocument):
    TYPE = "Organization"


ACTOR_KINDS: Dict[str, Type[ActorDocument]] = {
    cls.TYPE: cls for cls in (Person, Service, Group, Application, Organization)
}


def parse_actor(data: Any) -> ActorDocument:
    """
    Deserialize an actor into the closed actor-kind union.

    The class is selected by the wire ``type``; a missing type means
    Person. Any other type fails closed.
    """
    data = expect_dict(data, "actor")
    types = wire_types(data)
    if not types:
        return Person.from_dict(data)
    known = [t for t in types if t in ACTOR_KINDS]
    if not known:
        raise ActivityError(ActivityErrorKind.UNRECOGNIZED, f"not an actor type: {types}")
    if len(set(known)) > 1:
        raise ActivityError(ActivityErrorKind.AMBIGUOUS, f"several actor types: {known}")
    return ACTOR_KINDS[known[0]].from_dict(data)
