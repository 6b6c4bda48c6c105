# apcore/webfinger.py
"""
Actor discovery via WebFinger (RFC 7033) and acct URIs (RFC 7565).

    acct = AcctUri.parse("acct:bob@example.com")
    doc = WebFingerResolver(transport).resolve(acct)
    actor_url = doc.self_link()
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from .errors import (
    AcctUriError,
    AcctUriErrorKind,
    FederationError,
    LocatorError,
    ResolutionError,
    ResolutionErrorKind,
)
from .locator import ResourceLocator
from .transport import AP_MEDIA_TYPE, JRD_MEDIA_TYPE, HttpRequest, Transport

logger = logging.getLogger(__name__)

ACCT_SCHEME = "acct:"
SELF_REL = "self"
PROFILE_REL = "http://webfinger.net/rel/profile-page"
WELL_KNOWN_PATH = "/.well-known/webfinger"

# unreserved / pct-encoded / sub-delims plus ':' and IP-literal brackets
_AUTHORITY_TOKEN = re.compile(r"^[A-Za-z0-9\-._~%!$&'()*+,;=:\[\]]+$")


@dataclass(frozen=True)
class AcctUri:
    """An ``acct:user@host`` URI."""
    user: str
    host: str

    @classmethod
    def parse(cls, value: str) -> "AcctUri":
        """
        Parse an acct URI.

        Raises:
            AcctUriError: MISSING_SCHEME, MISSING_SEPARATOR,
                MULTIPLE_SEPARATORS, INVALID_USER or INVALID_HOST
        """
        if not isinstance(value, str) or not value.lower().startswith(ACCT_SCHEME):
            raise AcctUriError(AcctUriErrorKind.MISSING_SCHEME, f"expected acct: uri, got {value!r}")
        rest = value[len(ACCT_SCHEME):]

        count = rest.count("@")
        if count == 0:
            raise AcctUriError(AcctUriErrorKind.MISSING_SEPARATOR, f"no '@' in {value!r}")
        if count > 1:
            raise AcctUriError(AcctUriErrorKind.MULTIPLE_SEPARATORS, f"more than one '@' in {value!r}")

        user, host = rest.split("@")
        if not _AUTHORITY_TOKEN.match(user):
            raise AcctUriError(AcctUriErrorKind.INVALID_USER, f"invalid user {user!r}")
        if not _AUTHORITY_TOKEN.match(host):
            raise AcctUriError(AcctUriErrorKind.INVALID_HOST, f"invalid host {host!r}")
        return cls(user=user, host=host.lower())

    @classmethod
    def from_handle(cls, handle: str) -> "AcctUri":
        """Accept ``@user@host``, ``user@host`` or ``acct:user@host``."""
        if handle.lower().startswith(ACCT_SCHEME):
            return cls.parse(handle)
        return cls.parse(ACCT_SCHEME + handle.lstrip("@"))

    def webfinger_url(self, scheme: str = "https") -> ResourceLocator:
        url = ResourceLocator.parse(f"{scheme}://{self.host}{WELL_KNOWN_PATH}")
        return url.set_query("resource=" + quote(str(self), safe=":@"))

    def __str__(self) -> str:
        return f"{ACCT_SCHEME}{self.user}@{self.host}"


@dataclass
class WebFingerLink:
    rel: str
    type: Optional[str] = None
    href: Optional[str] = None
    template: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"rel": self.rel}
        for key in ("type", "href", "template"):
            value = getattr(self, key)
            if value is not None:
                out[key] = value
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WebFingerLink":
        if not isinstance(data, dict) or not isinstance(data.get("rel"), str):
            raise ValueError(f"webfinger link needs a rel: {data!r}")
        return cls(
            rel=data["rel"],
            type=data.get("type"),
            href=data.get("href"),
            template=data.get("template"),
        )


@dataclass
class WebFingerDocument:
    """JRD answer to a WebFinger query."""
    subject: str
    aliases: List[str] = field(default_factory=list)
    links: List[WebFingerLink] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"subject": self.subject}
        if self.aliases:
            out["aliases"] = list(self.aliases)
        out["links"] = [link.to_dict() for link in self.links]
        return out

    @classmethod
    def from_dict(cls, data: Any) -> "WebFingerDocument":
        if not isinstance(data, dict) or not isinstance(data.get("subject"), str):
            raise ValueError("webfinger document needs a subject")
        aliases = data.get("aliases") or []
        if not isinstance(aliases, list):
            raise ValueError("webfinger aliases must be a list")
        links = data.get("links") or []
        if not isinstance(links, list):
            raise ValueError("webfinger links must be a list")
        return cls(
            subject=data["subject"],
            aliases=[a for a in aliases if isinstance(a, str)],
            links=[WebFingerLink.from_dict(link) for link in links],
        )

    def self_link(self) -> Optional[ResourceLocator]:
        """
        The actor locator (``rel=self``), preferring an ActivityPub media type.
        """
        candidates = [link for link in self.links if link.rel == SELF_REL and link.href]
        candidates.sort(key=lambda link: 0 if link.type and "activity" in link.type else 1)
        for link in candidates:
            try:
                return ResourceLocator.parse(link.href)
            except LocatorError:
                logger.debug(f"Skipping invalid self link {link.href!r}")
        return None


def build_webfinger_document(
    acct: AcctUri,
    actor_url: ResourceLocator,
    profile_url: Optional[ResourceLocator] = None,
) -> WebFingerDocument:
    """
    Answer a WebFinger query for a local account.

    Args:
        acct: The queried account
        actor_url: Where the actor document lives
        profile_url: Optional HTML profile page
    """
    links = [WebFingerLink(rel=SELF_REL, type=AP_MEDIA_TYPE, href=str(actor_url))]
    if profile_url is not None:
        links.append(WebFingerLink(rel=PROFILE_REL, type="text/html", href=str(profile_url)))
    return WebFingerDocument(subject=str(acct), aliases=[str(actor_url)], links=links)


class WebFingerResolver:
    """
    Looks up acct URIs on their home server.

    Tries HTTPS first and falls back to plain HTTP exactly once. If both
    fail, the HTTPS failure is the one reported.

    Args:
        transport: Outbound transport
        timeout: Per-request timeout in seconds
    """

    def __init__(self, transport: Transport, timeout: Optional[float] = None):
        self.transport = transport
        self.timeout = timeout

    def _fetch(self, url: ResourceLocator) -> WebFingerDocument:
        request = HttpRequest("GET", url, {"Accept": JRD_MEDIA_TYPE})
        response = self.transport.send(request, timeout=self.timeout)
        try:
            return WebFingerDocument.from_dict(response.json())
        except ValueError as e:
            raise ResolutionError(ResolutionErrorKind.DESERIALIZE, f"bad webfinger document from {url}: {e}") from e

    def resolve(self, acct: AcctUri) -> WebFingerDocument:
        """
        Fetch the WebFinger document for an account.

        Raises:
            ResolutionError: WEBFINGER, chained from the HTTPS failure
        """
        try:
            return self._fetch(acct.webfinger_url("https"))
        except FederationError as https_error:
            logger.warning(f"WebFinger over https failed for {acct}: {https_error}; trying http")
            try:
                return self._fetch(acct.webfinger_url("http"))
            except FederationError as http_error:
                logger.warning(f"WebFinger over http failed for {acct}: {http_error}")
            raise ResolutionError(
                ResolutionErrorKind.WEBFINGER,
                f"webfinger lookup failed for {acct}: {https_error}",
            ) from https_error
