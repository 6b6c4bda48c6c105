# apcore/delivery.py
"""
Outbound delivery of activities to recipient inboxes.

Each inbox gets its own signed POST on a worker thread. A failing
recipient never stops the others; failures are collected in the
DeliveryReport and only when nobody could be reached does deliver()
raise.
"""

import json
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Union

from .activitypub.objects import APObject
from .activitypub.signatures import RequestSigner
from .errors import DeliveryError, DeliveryErrorKind
from .locator import ResourceLocator
from .resolver import ActorResolver
from .store import ActorRecord
from .transport import AP_MEDIA_TYPE, HttpRequest, Transport

logger = logging.getLogger(__name__)

Recipient = Union[ActorRecord, ResourceLocator, str]


@dataclass
class DeliveryReport:
    """Outcome per recipient, keyed by inbox URL (or actor URL if unresolvable)."""
    delivered: List[str] = field(default_factory=list)
    failed: Dict[str, Exception] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def attempted(self) -> int:
        return len(self.delivered) + len(self.failed)


def _activity_body(activity: Union[APObject, Dict[str, Any]]) -> bytes:
    if isinstance(activity, APObject):
        return activity.to_json().encode("utf-8")
    return json.dumps(activity, separators=(",", ":")).encode("utf-8")


class Deliverer:
    """
    Delivers activities to many inboxes concurrently.

    Args:
        resolver: Used to find the inbox of recipients given as locators
        transport: Outbound transport
        max_workers: Thread pool size
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        resolver: ActorResolver,
        transport: Transport,
        max_workers: int = 8,
        timeout: Optional[float] = None,
    ):
        self.resolver = resolver
        self.transport = transport
        self.max_workers = max_workers
        self.timeout = timeout

    def deliver(
        self,
        activity: Union[APObject, Dict[str, Any]],
        recipients: Iterable[Recipient],
        signer: RequestSigner,
    ) -> DeliveryReport:
        """
        POST an activity to every recipient's inbox.

        Args:
            activity: Activity object or its JSON dict
            recipients: Actor records or actor locators
            signer: Signs each request as the sending actor

        Returns:
            Report of delivered and failed inboxes

        Raises:
            DeliveryError: ALL_RECIPIENTS_FAILED, carrying the report
        """
        body = _activity_body(activity)
        recipients = list(recipients)
        report = DeliveryReport()
        if not recipients:
            return report

        workers = max(1, min(self.max_workers, len(recipients)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            inboxes = self._inboxes(pool, recipients, report)
            futures = {
                pool.submit(self.post, inbox, body, signer): key
                for key, inbox in inboxes.items()
            }
            for future in as_completed(futures):
                key = futures[future]
                try:
                    future.result()
                except Exception as e:
                    logger.warning(f"Delivery to {key} failed: {e}")
                    report.failed[key] = e
                else:
                    logger.info(f"Delivered to {key}")
                    report.delivered.append(key)

        if report.failed and not report.delivered:
            raise DeliveryError(
                DeliveryErrorKind.ALL_RECIPIENTS_FAILED,
                f"all {len(report.failed)} recipients failed",
                report=report,
            )
        return report

    def _inboxes(
        self,
        pool: ThreadPoolExecutor,
        recipients: List[Recipient],
        report: DeliveryReport,
    ) -> Dict[str, ResourceLocator]:
        """Map each distinct inbox URL to its locator, resolving actors as needed."""
        inboxes: Dict[str, ResourceLocator] = {}
        pending = {}
        for recipient in recipients:
            if isinstance(recipient, ActorRecord):
                inboxes.setdefault(recipient.inbox, recipient.inbox_locator)
            else:
                key = str(recipient)
                if key not in pending:
                    pending[key] = pool.submit(self.resolver.resolve, recipient)

        for key, future in pending.items():
            try:
                record = future.result()
            except Exception as e:
                logger.warning(f"Cannot resolve recipient {key}: {e}")
                report.failed[key] = e
                continue
            inboxes.setdefault(record.inbox, record.inbox_locator)
        return inboxes

    def post(self, inbox: ResourceLocator, body: bytes, signer: RequestSigner) -> None:
        """Send one signed POST; raises TransportError on failure."""
        headers = {
            "Content-Type": AP_MEDIA_TYPE,
            "Accept": AP_MEDIA_TYPE,
        }
        headers.update(signer.sign("POST", inbox, body))
        self.transport.send(HttpRequest("POST", inbox, headers, body), timeout=self.timeout)
