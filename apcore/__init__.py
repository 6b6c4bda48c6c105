# apcore - ActivityPub federation core
#
# Discovers remote actors, verifies and signs HTTP requests, and delivers
# activities between servers that speak ActivityPub.
#
# Core concepts:
# - ResourceLocator: A validated http(s) URL; TypedIdentifier tags one
# - AcctUri / WebFinger: How acct:user@host becomes an actor URL
# - ActorResolver: Fetches remote actors once and stores them
# - Deliverer: Signed POSTs to many inboxes, failures kept per recipient
# - InboxProcessor / Outbox: Follow, Undo, Accept and Create handling

from .errors import (
    FederationError,
    LocatorError,
    AcctUriError,
    ActivityError,
    SignatureError,
    ResolutionError,
    TransportError,
    DeliveryError,
    status_for_error,
)
from .locator import ResourceLocator, TypedIdentifier
from .webfinger import AcctUri, WebFingerDocument, WebFingerResolver, build_webfinger_document
from .transport import Transport, UrllibTransport, HttpRequest, HttpResponse
from .store import FederationStore, MemoryStore, JsonStore, ActorRecord, FollowRecord
from .resolver import ActorResolver
from .delivery import Deliverer, DeliveryReport
from .config import FederationConfig
from .accounts import register_local_actor, local_actor_document
from .inbox import InboxProcessor
from .outbox import Outbox

__all__ = [
    # Errors
    "FederationError",
    "LocatorError",
    "AcctUriError",
    "ActivityError",
    "SignatureError",
    "ResolutionError",
    "TransportError",
    "DeliveryError",
    "status_for_error",
    # Identifiers and discovery
    "ResourceLocator",
    "TypedIdentifier",
    "AcctUri",
    "WebFingerDocument",
    "WebFingerResolver",
    "build_webfinger_document",
    # Collaborators
    "Transport",
    "UrllibTransport",
    "HttpRequest",
    "HttpResponse",
    "FederationStore",
    "MemoryStore",
    "JsonStore",
    "ActorRecord",
    "FollowRecord",
    # Federation
    "ActorResolver",
    "Deliverer",
    "DeliveryReport",
    "FederationConfig",
    "register_local_actor",
    "local_actor_document",
    "InboxProcessor",
    "Outbox",
]

__version__ = "0.1.0"
