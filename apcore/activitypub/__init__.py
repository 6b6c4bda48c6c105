# apcore/activitypub/__init__.py
"""
ActivityStreams wire model and HTTP signatures.

Core concepts:
- Context: The @context union, with one shared ActivityStreams value
- Actor kinds: Person, Service, Group, Application, Organization
- Activity: Follow, Accept, Undo, Create (classified by trial parsing)
- Collection: Plain, ordered and paged collections behind one interface
- Signature: RSA-SHA256 HTTP signatures over request-target, host, date, digest
"""

from .context import Context, activity_streams, PUBLIC_COLLECTION
from .objects import (
    APObject,
    ActorDocument,
    Person,
    Service,
    Group,
    Application,
    Organization,
    Note,
    PublicKey,
    parse_actor,
)
from .activity import Follow, Accept, Undo, Create, classify_activity
from .collection import (
    Collection,
    OrderedCollection,
    CollectionPage,
    OrderedCollectionPage,
    parse_collection,
)
from .keys import KeyPair, SigningKey, VerifyingKey
from .signatures import RequestSigner, SignatureVerifier, verify_signature, digest_header

__all__ = [
    "Context",
    "activity_streams",
    "PUBLIC_COLLECTION",
    "APObject",
    "ActorDocument",
    "Person",
    "Service",
    "Group",
    "Application",
    "Organization",
    "Note",
    "PublicKey",
    "parse_actor",
    "Follow",
    "Accept",
    "Undo",
    "Create",
    "classify_activity",
    "Collection",
    "OrderedCollection",
    "CollectionPage",
    "OrderedCollectionPage",
    "parse_collection",
    "KeyPair",
    "SigningKey",
    "VerifyingKey",
    "RequestSigner",
    "SignatureVerifier",
    "verify_signature",
    "digest_header",
]
