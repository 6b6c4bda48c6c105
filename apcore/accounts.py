# apcore/accounts.py
"""
Local actor provisioning.

A local actor is an ActorRecord linked to a local username, plus the
one key pair it signs with. Registration is idempotent: calling it
again returns the same record and never replaces the key pair.
"""

import logging
from typing import Optional

from .activitypub.keys import KeyPair, VerifyingKey
from .activitypub.objects import Person, PublicKey
from .activitypub.signatures import RequestSigner
from .config import FederationConfig
from .errors import AcctUriError
from .locator import TypedIdentifier
from .store import ActorRecord, FederationStore, PublicKeyRecord
from .webfinger import AcctUri, WebFingerDocument, build_webfinger_document

logger = logging.getLogger(__name__)


def register_local_actor(
    store: FederationStore,
    config: FederationConfig,
    username: str,
    display_name: Optional[str] = None,
) -> ActorRecord:
    """
    Create a local actor and its key pair, once.

    Args:
        store: Federation store
        config: Server configuration (base URL, key size)
        username: Local username; must be a valid acct user part
        display_name: Shown name (defaults to the username)

    Returns:
        The actor record, existing or new

    Raises:
        AcctUriError: INVALID_USER for usernames that cannot appear in an acct URI
    """
    acct = AcctUri.parse(f"acct:{username}@{config.host}")
    url = config.actor_url(acct.user)

    record = store.find_actor_by_url(url)
    if record is None:
        record = store.create_actor(
            ActorRecord.new(
                url=url,
                inbox=config.inbox_url(username),
                preferred_username=username,
                shared_inbox=config.shared_inbox_url(),
                name=display_name or username,
                local_username=username,
            )
        )

    key_pair = store.find_key_pair(record.id)
    if key_pair is None:
        key_pair = store.save_key_pair(record.id, KeyPair.generate(config.key_size))
        store.save_public_key(
            PublicKeyRecord(
                key_id=str(config.key_id(username)),
                owner_url=record.url,
                public_key_pem=key_pair.public_key.to_pkcs8_pem(),
            )
        )
        logger.info(f"Registered local actor {acct} ({key_pair.private_key.key_size}-bit key)")
    return record


def find_local_actor(
    store: FederationStore,
    config: FederationConfig,
    username: str,
) -> Optional[ActorRecord]:
    """Get a local actor by username, or None."""
    record = store.find_actor_by_url(config.actor_url(username))
    if record is None or not record.is_local:
        return None
    return record


def local_signer(
    store: FederationStore,
    config: FederationConfig,
    record: ActorRecord,
) -> RequestSigner:
    """Signer for requests sent on behalf of a local actor."""
    key_pair = store.find_key_pair(record.id)
    if key_pair is None:
        raise LookupError(f"No key pair for {record.url}")
    return RequestSigner(key_pair.private_key, config.key_id(record.local_username))


def local_actor_document(
    record: ActorRecord,
    public_key: VerifyingKey,
    config: FederationConfig,
) -> Person:
    """Person document served at a local actor's URL."""
    username = record.local_username
    actor_url = record.locator
    return Person(
        id=TypedIdentifier(actor_url),
        inbox=config.inbox_url(username),
        preferred_username=username,
        name=record.name,
        outbox=config.outbox_url(username),
        followers=config.followers_url(username),
        shared_inbox=config.shared_inbox_url(),
        public_key=PublicKey(
            id=config.key_id(username),
            owner=actor_url,
            public_key_pem=public_key.to_pkcs8_pem(),
        ),
    )


def local_webfinger(
    store: FederationStore,
    config: FederationConfig,
    resource: str,
) -> Optional[WebFingerDocument]:
    """
    Answer ``/.well-known/webfinger?resource=...`` for a local account.

    Returns None when the resource is not a local account.
    """
    try:
        acct = AcctUri.from_handle(resource)
    except AcctUriError:
        return None
    if acct.host != config.host:
        return None
    record = find_local_actor(store, config, acct.user)
    if record is None:
        return None
    return build_webfinger_document(acct, record.locator)
