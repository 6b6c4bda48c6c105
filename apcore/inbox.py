# apcore/inbox.py
"""
Inbound activity processing for local actors' inboxes.

Every request must carry a valid HTTP signature from a key owned by the
activity's actor. Then:

- Follow: record the follower and send back a signed Accept
- Undo(Follow): remove the follower
- Accept, Create: acknowledged and logged
"""

import logging
from dataclasses import dataclass
from typing import Mapping, Optional

from .accounts import find_local_actor, local_signer
from .activitypub.activity import Accept, Create, Follow, Undo, classify_activity
from .activitypub.objects import APObject
from .activitypub.signatures import SignatureVerifier
from .config import FederationConfig
from .delivery import Deliverer, DeliveryReport
from .errors import (
    ActivityError,
    ActivityErrorKind,
    DeliveryError,
    SignatureError,
    SignatureErrorKind,
)
from .locator import TypedIdentifier
from .resolver import ActorResolver
from .store import ActorRecord, FederationStore

logger = logging.getLogger(__name__)


@dataclass
class InboxResult:
    """What processing an inbound activity did."""
    activity: APObject
    action: str
    delivery: Optional[DeliveryReport] = None


class InboxProcessor:
    """
    Handles POSTs to ``/users/<username>/inbox``.

    Args:
        store: Federation store
        config: Server configuration
        resolver: Resolves remote actors and their keys
        deliverer: Sends Accept replies
    """

    def __init__(
        self,
        store: FederationStore,
        config: FederationConfig,
        resolver: ActorResolver,
        deliverer: Deliverer,
    ):
        self.store = store
        self.config = config
        self.resolver = resolver
        self.deliverer = deliverer
        self.verifier = SignatureVerifier(self._public_key_pem, window=config.signature_window)

    def _public_key_pem(self, key_id) -> str:
        return self.resolver.resolve_public_key(key_id).public_key_pem

    def process(
        self,
        username: str,
        method: str,
        path: str,
        headers: Mapping[str, str],
        body: bytes,
        now: Optional[float] = None,
    ) -> InboxResult:
        """
        Verify and apply one inbound activity.

        Args:
            username: Local actor owning the inbox
            method: Request method
            path: Request path plus query, as received
            headers: Request headers
            body: Raw request body
            now: Reference time for signature freshness

        Raises:
            LookupError: no such local actor
            SignatureError: unsigned, invalid, or signed by someone else
            ActivityError: payload is not a supported activity
            ResolutionError: the signer's key could not be fetched
        """
        record = find_local_actor(self.store, self.config, username)
        if record is None:
            raise LookupError(f"No local actor {username}")

        params = self.verifier.verify(method, path, headers, body, now=now)
        activity = classify_activity(body)

        key = self.resolver.resolve_public_key(params.key_id)
        if key.owner_url != str(activity.actor):
            raise SignatureError(
                SignatureErrorKind.ACTOR_MISMATCH,
                f"{params.key_id} belongs to {key.owner_url}, not {activity.actor}",
            )

        if isinstance(activity, Follow):
            return self._on_follow(record, activity)
        if isinstance(activity, Undo):
            return self._on_undo(record, activity)
        if isinstance(activity, Accept):
            logger.info(f"{activity.actor} accepted {_object_id(activity.object)}")
            return InboxResult(activity, "accepted")
        if isinstance(activity, Create):
            logger.info(f"{activity.actor} created {activity.object.kind} {activity.object.id}")
            return InboxResult(activity, "created")
        raise ActivityError(ActivityErrorKind.UNRECOGNIZED, f"unsupported activity {activity.kind}")

    def _on_follow(self, record: ActorRecord, follow: Follow) -> InboxResult:
        if follow.object != record.locator:
            raise ActivityError(ActivityErrorKind.INVALID_OBJECT, f"follow of {follow.object} sent to {record.url}")

        follower = self.resolver.resolve(follow.actor.locator)
        self.store.create_follow(record.id, follower.locator)
        logger.info(f"{follower.url} now follows {record.url}")

        accept = Accept(
            id=TypedIdentifier(self.config.new_activity_url()),
            actor=TypedIdentifier(record.locator),
            object=follow,
        )
        signer = local_signer(self.store, self.config, record)
        try:
            report = self.deliverer.deliver(accept, [follower], signer)
        except DeliveryError as e:
            # The follow is kept even when the Accept is lost.
            logger.warning(f"Accept to {follower.url} not delivered: {e}")
            report = e.report
        return InboxResult(follow, "followed", report)

    def _on_undo(self, record: ActorRecord, undo: Undo) -> InboxResult:
        undone = undo.object
        if not isinstance(undone, Follow):
            logger.info(f"{undo.actor} undid {undone}; nothing to do")
            return InboxResult(undo, "ignored")
        if undone.actor != undo.actor:
            raise ActivityError(ActivityErrorKind.INVALID_OBJECT, "undo of someone else's follow")
        if undone.object != record.locator:
            raise ActivityError(ActivityErrorKind.INVALID_OBJECT, f"unfollow of {undone.object} sent to {record.url}")

        removed = self.store.delete_follow(record.id, undo.actor.locator)
        logger.info(f"{undo.actor} unfollowed {record.url} (removed={removed})")
        return InboxResult(undo, "unfollowed")


def _object_id(value) -> str:
    if isinstance(value, TypedIdentifier):
        return str(value)
    return str(getattr(value, "id", value))
