# apcore/activitypub/activity.py
"""
ActivityPub activity types.

Activities represent actions taken by actors on objects.
Federated activity types:
- Follow: Actor asks to receive another actor's posts
- Accept: Actor approves a Follow
- Undo: Actor retracts an earlier activity (a Follow)
- Create: Actor publishes an object (a Note)

Inbound payloads are classified by ordered trial deserialization:
each known shape is tried from most to least specific and the first
that parses wins. Nothing matching means the payload is rejected.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, List, Optional, Tuple, TypeVar, Union

from ..errors import ActivityError, ActivityErrorKind, LocatorError
from ..locator import ResourceLocator, TypedIdentifier
from .context import Context, activity_streams
from .objects import (
    APObject,
    Note,
    Person,
    expect_dict,
    expect_type,
    invalid,
    optional_context,
    put,
    reference_locator,
    required_locator,
    string_list,
    wire_types,
)

logger = logging.getLogger(__name__)

A = TypeVar("A")
O = TypeVar("O")


def _context_json(context: Optional[Context]) -> Dict[str, Any]:
    if context is None:
        return {}
    return {"@context": context.to_json()}


@dataclass
class Follow(APObject, Generic[A, O]):
    """
    Follow activity.

    Attributes:
        id: Activity URL
        actor: The actor doing the following
        object: The actor being followed
    """
    id: TypedIdentifier["Follow"]
    actor: TypedIdentifier[A]
    object: TypedIdentifier[O]
    context: Optional[Context] = field(default_factory=activity_streams)

    TYPE = "Follow"

    @property
    def target(self) -> None:
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            **_context_json(self.context),
            "id": str(self.id),
            "type": self.TYPE,
            "actor": str(self.actor),
            "object": str(self.object),
        }


@dataclass
class Accept(APObject, Generic[A, O]):
    """
    Accept activity.

    The object is the accepted activity, embedded when the sender
    included it and otherwise just its id.
    """
    id: TypedIdentifier["Accept"]
    actor: TypedIdentifier[A]
    object: Union[O, TypedIdentifier[O]]
    context: Optional[Context] = field(default_factory=activity_streams)

    TYPE = "Accept"

    @property
    def target(self) -> None:
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            **_context_json(self.context),
            "id": str(self.id),
            "type": self.TYPE,
            "actor": str(self.actor),
            "object": _object_json(self.object),
        }


@dataclass
class Undo(APObject, Generic[A, O]):
    """Undo activity; the object is the activity being retracted."""
    id: TypedIdentifier["Undo"]
    actor: TypedIdentifier[A]
    object: Union[O, TypedIdentifier[O]]
    context: Optional[Context] = field(default_factory=activity_streams)

    TYPE = "Undo"

    @property
    def target(self) -> None:
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            **_context_json(self.context),
            "id": str(self.id),
            "type": self.TYPE,
            "actor": str(self.actor),
            "object": _object_json(self.object),
        }


@dataclass
class Create(APObject, Generic[A, O]):
    """Create activity carrying the created object inline."""
    id: TypedIdentifier["Create"]
    actor: TypedIdentifier[A]
    object: O
    to: List[str] = field(default_factory=list)
    cc: List[str] = field(default_factory=list)
    published: Optional[str] = None
    context: Optional[Context] = field(default_factory=activity_streams)

    TYPE = "Create"

    @property
    def target(self) -> None:
        return None

    def to_dict(self) -> Dict[str, Any]:
        out = {
            **_context_json(self.context),
            "id": str(self.id),
            "type": self.TYPE,
            "actor": str(self.actor),
            "object": _object_json(self.object),
        }
        put(out, "to", self.to)
        put(out, "cc", self.cc)
        put(out, "published", self.published)
        return out


def _object_json(value: Any) -> Any:
    if isinstance(value, APObject):
        data = value.to_dict()
        # Embedded objects inherit the outer context.
        data.pop("@context", None)
        return data
    return str(value)


# Combinations actually exchanged between servers.
FollowPerson = Follow[Person, Person]
AcceptFollow = Accept[Person, Follow[Person, Person]]
UndoFollow = Undo[Person, Follow[Person, Person]]
CreateNote = Create[Person, Note]

ACTIVITY_TYPES = (Follow.TYPE, Accept.TYPE, Undo.TYPE, Create.TYPE)


# -- shapes ---------------------------------------------------------------


def _activity_id(data: Dict[str, Any]) -> TypedIdentifier:
    return TypedIdentifier(required_locator(data, "id"))


def _actor_ref(data: Dict[str, Any]) -> TypedIdentifier:
    if "actor" not in data:
        raise invalid("missing actor")
    return TypedIdentifier(reference_locator(data["actor"], "actor"))


def _follow_person(data: Dict[str, Any]) -> Follow:
    """Follow whose object is a plain actor URL."""
    expect_type(data, Follow.TYPE)
    obj = data.get("object")
    if not isinstance(obj, str):
        raise invalid("follow object is not a url")
    return Follow(
        id=_activity_id(data),
        actor=_actor_ref(data),
        object=TypedIdentifier(ResourceLocator.parse(obj)),
        context=optional_context(data),
    )


def _follow_embedded(data: Dict[str, Any]) -> Follow:
    """Follow whose object was sent as an embedded document."""
    expect_type(data, Follow.TYPE)
    obj = expect_dict(data.get("object"), "follow object")
    return Follow(
        id=_activity_id(data),
        actor=_actor_ref(data),
        object=TypedIdentifier(reference_locator(obj, "follow object")),
        context=optional_context(data),
    )


def _embedded_follow(value: Any) -> Follow:
    data = expect_dict(value, "embedded follow")
    expect_type(data, Follow.TYPE, optional=True)
    if "object" not in data:
        raise invalid("embedded follow has no object")
    return Follow(
        id=_activity_id(data),
        actor=_actor_ref(data),
        object=TypedIdentifier(reference_locator(data["object"], "follow object")),
        context=optional_context(data),
    )


def _undo_follow(data: Dict[str, Any]) -> Undo:
    expect_type(data, Undo.TYPE)
    return Undo(
        id=_activity_id(data),
        actor=_actor_ref(data),
        object=_embedded_follow(data.get("object")),
        context=optional_context(data),
    )


def _undo_reference(data: Dict[str, Any]) -> Undo:
    expect_type(data, Undo.TYPE)
    obj = data.get("object")
    if not isinstance(obj, str):
        raise invalid("undo object is not a url")
    return Undo(
        id=_activity_id(data),
        actor=_actor_ref(data),
        object=TypedIdentifier(ResourceLocator.parse(obj)),
        context=optional_context(data),
    )


def _accept_follow(data: Dict[str, Any]) -> Accept:
    expect_type(data, Accept.TYPE)
    return Accept(
        id=_activity_id(data),
        actor=_actor_ref(data),
        object=_embedded_follow(data.get("object")),
        context=optional_context(data),
    )


def _accept_reference(data: Dict[str, Any]) -> Accept:
    expect_type(data, Accept.TYPE)
    obj = data.get("object")
    if not isinstance(obj, str):
        raise invalid("accept object is not a url")
    return Accept(
        id=_activity_id(data),
        actor=_actor_ref(data),
        object=TypedIdentifier(ResourceLocator.parse(obj)),
        context=optional_context(data),
    )


def _create_note(data: Dict[str, Any]) -> Create:
    expect_type(data, Create.TYPE)
    return Create(
        id=_activity_id(data),
        actor=_actor_ref(data),
        object=Note.from_dict(expect_dict(data.get("object"), "create object"), embedded=True),
        to=string_list(data.get("to")),
        cc=string_list(data.get("cc")),
        published=data.get("published") if isinstance(data.get("published"), str) else None,
        context=optional_context(data),
    )


# Most specific first. Order matters: the first shape that parses wins.
INBOUND_SHAPES: Tuple[Tuple[str, Callable[[Dict[str, Any]], APObject]], ...] = (
    ("follow-person", _follow_person),
    ("follow-embedded", _follow_embedded),
    ("undo-follow", _undo_follow),
    ("undo-reference", _undo_reference),
    ("accept-follow", _accept_follow),
    ("accept-reference", _accept_reference),
    ("create-note", _create_note),
)


def classify_activity(payload: Union[str, bytes, Dict[str, Any]]) -> APObject:
    """
    Deserialize an inbound activity.

    Args:
        payload: JSON text/bytes or an already decoded object

    Returns:
        Follow, Undo, Accept or Create

    Raises:
        ActivityError: UNRECOGNIZED if no shape matches, AMBIGUOUS if the
            payload claims several activity types at once
    """
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except ValueError as e:
            raise ActivityError(ActivityErrorKind.UNRECOGNIZED, f"not json: {e}") from e
    if not isinstance(payload, dict):
        raise ActivityError(ActivityErrorKind.UNRECOGNIZED, "activity must be a json object")

    try:
        types = wire_types(payload)
    except ActivityError as e:
        raise ActivityError(ActivityErrorKind.UNRECOGNIZED, str(e)) from e
    known = {t for t in types if t in ACTIVITY_TYPES}
    if len(known) > 1:
        raise ActivityError(ActivityErrorKind.AMBIGUOUS, f"several activity types: {sorted(known)}")

    reasons = []
    for name, shape in INBOUND_SHAPES:
        try:
            activity = shape(payload)
        except (ActivityError, LocatorError) as e:
            reasons.append(f"{name}: {e}")
            continue
        logger.debug(f"Classified {types} as {name}")
        return activity

    raise ActivityError(
        ActivityErrorKind.UNRECOGNIZED,
        f"unrecognized activity {types or '(no type)'}: " + "; ".join(reasons),
    )
