# apcore/resolver.py
"""
Remote actor resolution.

Turns an actor locator (or an acct URI) into a stored ActorRecord,
fetching and persisting the actor document the first time it is seen.

At most one fetch per locator is in flight at any time: the first
caller becomes the leader and does the work; concurrent callers for
the same locator wait for the leader's outcome. Outcomes are not
cached beyond the store itself, so a failed fetch is retried by the
next caller. A leader interrupted by a non-Exception (KeyboardInterrupt,
SystemExit, cancellation) abandons its flight and waiters start over.
"""

import logging
import threading
from concurrent.futures import CancelledError, Future
from typing import Dict, Optional

from .activitypub.objects import ActorDocument, parse_actor
from .activitypub.signatures import RequestSigner
from .errors import (
    ActivityError,
    FederationError,
    ResolutionError,
    ResolutionErrorKind,
)
from .locator import ResourceLocator
from .store import ActorRecord, FederationStore, PublicKeyRecord
from .transport import AP_ACCEPT, HttpRequest, Transport
from .webfinger import AcctUri, WebFingerResolver

logger = logging.getLogger(__name__)


class ActorResolver:
    """
    Resolves remote actors into stored records.

    Args:
        store: Where actors and their keys are persisted
        transport: Outbound transport
        webfinger: WebFinger resolver (built on the transport if omitted)
        signer: Signs the GETs (for servers in authorized-fetch mode)
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        store: FederationStore,
        transport: Transport,
        webfinger: Optional[WebFingerResolver] = None,
        signer: Optional[RequestSigner] = None,
        timeout: Optional[float] = None,
    ):
        self.store = store
        self.transport = transport
        self.webfinger = webfinger or WebFingerResolver(transport, timeout=timeout)
        self.signer = signer
        self.timeout = timeout
        self._lock = threading.Lock()
        self._flights: Dict[str, Future] = {}

    def resolve(self, url: ResourceLocator | str) -> ActorRecord:
        """
        Return the stored actor for a locator, fetching it if unknown.

        Raises:
            ResolutionError: FETCH or DESERIALIZE
        """
        url = ResourceLocator.coerce(url)
        record = self.store.find_actor_by_url(url)
        if record is not None:
            logger.debug(f"Actor cache hit: {url}")
            return record

        key = str(url)
        while True:
            with self._lock:
                future = self._flights.get(key)
                leader = future is None
                if leader:
                    future = Future()
                    self._flights[key] = future

            if leader:
                return self._lead(key, url, future)

            logger.debug(f"Waiting on in-flight fetch of {key}")
            try:
                return future.result()
            except CancelledError:
                logger.debug(f"Fetch of {key} was abandoned, retrying")

    def _lead(self, key: str, url: ResourceLocator, future: Future) -> ActorRecord:
        try:
            # Another flight may have finished between the miss and now.
            record = self.store.find_actor_by_url(url)
            if record is None:
                record = self._fetch_and_store(url)
            if record.url != key:
                self.store.add_actor_alias(url, record.id)
        except Exception as e:
            self._land(key)
            future.set_exception(e)
            raise
        except BaseException:
            self._land(key)
            future.cancel()
            raise
        self._land(key)
        future.set_result(record)
        return record

    def _land(self, key: str) -> None:
        with self._lock:
            self._flights.pop(key, None)

    def fetch_document(self, url: ResourceLocator) -> ActorDocument:
        """
        GET an actor document without touching the store.

        Raises:
            ResolutionError: FETCH or DESERIALIZE
        """
        headers = {"Accept": AP_ACCEPT}
        if self.signer is not None:
            headers.update(self.signer.sign("GET", url))

        try:
            response = self.transport.send(HttpRequest("GET", url, headers), timeout=self.timeout)
        except FederationError as e:
            raise ResolutionError(ResolutionErrorKind.FETCH, f"fetching {url}: {e}") from e

        try:
            document = parse_actor(response.json())
        except (ValueError, ActivityError) as e:
            raise ResolutionError(ResolutionErrorKind.DESERIALIZE, f"{url} is not an actor: {e}") from e

        if document.id.locator.authority != url.authority:
            raise ResolutionError(
                ResolutionErrorKind.DESERIALIZE,
                f"{url} served an actor from another origin: {document.id}",
            )
        return document

    def _fetch_and_store(self, url: ResourceLocator) -> ActorRecord:
        document = self.fetch_document(url)
        logger.info(f"Fetched {document.kind} {document.id}")

        record = self.store.create_actor(
            ActorRecord.new(
                url=document.id.locator,
                inbox=document.inbox,
                preferred_username=document.preferred_username,
                shared_inbox=document.shared_inbox,
                name=document.name,
                kind=document.kind,
            )
        )
        self._save_public_key(document, url)
        return record

    def _save_public_key(self, document: ActorDocument, url: ResourceLocator) -> None:
        key = document.public_key
        if key is None:
            return
        if key.owner != document.id or key.id.authority != url.authority:
            logger.warning(f"Ignoring key {key.id} published by {document.id} for {key.owner}")
            return
        self.store.save_public_key(
            PublicKeyRecord(
                key_id=str(key.id),
                owner_url=str(key.owner),
                public_key_pem=key.public_key_pem,
            )
        )

    def resolve_acct(self, acct: AcctUri | str) -> ActorRecord:
        """
        Resolve ``acct:user@host`` through WebFinger.

        Raises:
            AcctUriError: if the string is not an acct URI
            ResolutionError: WEBFINGER, NO_SELF_LINK, FETCH or DESERIALIZE
        """
        if isinstance(acct, str):
            acct = AcctUri.from_handle(acct)
        record = self.store.find_actor_by_acct(acct)
        if record is not None:
            logger.debug(f"Actor cache hit: {acct}")
            return record

        document = self.webfinger.resolve(acct)
        actor_url = document.self_link()
        if actor_url is None:
            raise ResolutionError(ResolutionErrorKind.NO_SELF_LINK, f"no self link for {acct}")
        return self.resolve(actor_url)

    def resolve_public_key(self, key_id: ResourceLocator | str) -> PublicKeyRecord:
        """
        Return the published key with this id, fetching its owner if needed.

        Raises:
            ResolutionError: NO_PUBLIC_KEY if the owner publishes no such key
        """
        key_id = ResourceLocator.coerce(key_id)
        record = self.store.find_public_key(key_id)
        if record is not None:
            return record

        owner = key_id.copy().clear_fragment()
        if self.store.find_actor_by_url(owner) is None:
            self.resolve(owner)
        else:
            # Known owner without this key; read its current document.
            logger.debug(f"Refetching {owner} for key {key_id}")
            self._save_public_key(self.fetch_document(owner), owner)
        record = self.store.find_public_key(key_id)
        if record is None:
            raise ResolutionError(ResolutionErrorKind.NO_PUBLIC_KEY, f"no public key {key_id}")
        return record
