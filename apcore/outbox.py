# apcore/outbox.py
"""
Publishing from local actors.

publish_note() wraps a message in a public Note, wraps that in a
Create, and delivers it to every follower of the author.
"""

import html
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from .accounts import find_local_actor, local_signer
from .activitypub.activity import Create
from .activitypub.context import PUBLIC_COLLECTION
from .activitypub.objects import Note
from .config import FederationConfig
from .delivery import Deliverer, DeliveryReport
from .locator import TypedIdentifier
from .store import FederationStore

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass
class PublishResult:
    create: Create
    report: DeliveryReport


class Outbox:
    """
    Sends local actors' posts to their followers.

    Args:
        store: Federation store
        config: Server configuration
        deliverer: Outbound delivery
    """

    def __init__(self, store: FederationStore, config: FederationConfig, deliverer: Deliverer):
        self.store = store
        self.config = config
        self.deliverer = deliverer

    def publish_note(self, username: str, content: str) -> PublishResult:
        """
        Publish a public note to all followers.

        Args:
            username: Local author
            content: Plain text message (HTML-escaped into a paragraph)

        Returns:
            The Create activity and the per-follower delivery report

        Raises:
            LookupError: no such local actor
            DeliveryError: every follower failed
        """
        record = find_local_actor(self.store, self.config, username)
        if record is None:
            raise LookupError(f"No local actor {username}")

        published = _now_iso()
        to = [PUBLIC_COLLECTION]
        cc = [str(self.config.followers_url(username))]
        note = Note(
            content=f"<p>{html.escape(content)}</p>",
            id=TypedIdentifier(self.config.new_note_url()),
            published=published,
            attributed_to=record.locator,
            to=to,
            cc=cc,
        )
        create = Create(
            id=TypedIdentifier(self.config.new_activity_url()),
            actor=TypedIdentifier(record.locator),
            object=note,
            to=to,
            cc=cc,
            published=published,
        )

        followers = [follow.follower_locator for follow in self.store.find_followees(record.id)]
        logger.info(f"Publishing {note.id} from {username} to {len(followers)} followers")
        signer = local_signer(self.store, self.config, record)
        report = self.deliverer.deliver(create, followers, signer)
        return PublishResult(create=create, report=report)
