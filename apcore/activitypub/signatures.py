# apcore/activitypub/signatures.py
"""
HTTP Signatures for ActivityPub.

Uses RSA-SHA256 signatures compatible with the HTTP Signatures draft
(draft-cavage-http-signatures) as deployed by Mastodon and friends.

The signed string is built from these lines, in this order:

    (request-target): post /users/bob/inbox
    host: example.com
    date: Tue, 07 Jun 2024 20:51:35 GMT
    digest: SHA-256=...            (only when the request has a body)

Verification always rebuilds the string from the received request
(method, target and header values), never from anything the sender
claims about them.
"""

import base64
import hashlib
import logging
import re
import time
from dataclasses import dataclass
from email.utils import formatdate, parsedate_to_datetime
from typing import Callable, Dict, List, Mapping, Optional

from ..errors import SignatureError, SignatureErrorKind
from ..locator import ResourceLocator
from .keys import SigningKey, VerifyingKey

logger = logging.getLogger(__name__)

REQUEST_TARGET = "(request-target)"
BASE_HEADERS = (REQUEST_TARGET, "host", "date")
DIGEST = "digest"
ALGORITHM = "rsa-sha256"
# hs2019 means "derive from the key"; with an RSA key that is rsa-sha256.
ACCEPTED_ALGORITHMS = (ALGORITHM, "hs2019")
DEFAULT_WINDOW = 300  # seconds either side of now

_PARAM_RE = re.compile(r'\s*([A-Za-z]+)\s*=\s*"([^"]*)"\s*(?:,|$)')


def digest_header(body: bytes) -> str:
    """Digest header value: ``SHA-256=<base64(sha256(body))>``."""
    return "SHA-256=" + base64.b64encode(hashlib.sha256(body).digest()).decode("ascii")


def http_date(timestamp: Optional[float] = None) -> str:
    """RFC 7231 IMF-fixdate, e.g. ``Tue, 07 Jun 2024 20:51:35 GMT``."""
    return formatdate(timestamp, usegmt=True)


def signing_string(
    method: str,
    target: str,
    host: str,
    date: str,
    digest: Optional[str] = None,
) -> str:
    """
    Build the canonical signing string for an outbound request.

    Args:
        method: HTTP method (lowercased in the output)
        target: Path plus query, as on the request line
        host: Host header value
        date: Date header value
        digest: Digest header value, only when the request has a body
    """
    lines = [
        f"{REQUEST_TARGET}: {method.lower()} {target}",
        f"host: {host}",
        f"date: {date}",
    ]
    if digest is not None:
        lines.append(f"{DIGEST}: {digest}")
    return "\n".join(lines)


@dataclass
class SignatureParams:
    """Parsed ``Signature`` header."""
    key_id: str
    headers: List[str]
    signature: bytes
    algorithm: Optional[str] = ALGORITHM

    @classmethod
    def from_header(cls, value: str) -> "SignatureParams":
        """
        Parse ``keyId="…",algorithm="…",headers="…",signature="…"``.

        Raises:
            SignatureError: MALFORMED
        """
        params: Dict[str, str] = {}
        pos = 0
        value = value.strip()
        while pos < len(value):
            match = _PARAM_RE.match(value, pos)
            if match is None:
                raise SignatureError(SignatureErrorKind.MALFORMED, f"cannot parse signature header: {value!r}")
            params[match.group(1)] = match.group(2)
            pos = match.end()

        if "keyId" not in params or "signature" not in params:
            raise SignatureError(SignatureErrorKind.MALFORMED, "signature header needs keyId and signature")
        try:
            signature = base64.b64decode(params["signature"], validate=True)
        except ValueError as e:
            raise SignatureError(SignatureErrorKind.MALFORMED, f"signature is not base64: {e}") from e

        headers = params.get("headers", "date").lower().split()
        return cls(
            key_id=params["keyId"],
            headers=headers,
            signature=signature,
            algorithm=params.get("algorithm"),
        )

    def to_header(self) -> str:
        encoded = base64.b64encode(self.signature).decode("ascii")
        return (
            f'keyId="{self.key_id}",algorithm="{self.algorithm}",'
            f'headers="{" ".join(self.headers)}",signature="{encoded}"'
        )


class RequestSigner:
    """
    Signs outbound requests on behalf of one local actor.

    Args:
        private_key: The actor's signing key
        key_id: Locator of the published public key (``<actor>#main-key``)
    """

    def __init__(self, private_key: SigningKey, key_id: ResourceLocator):
        self.private_key = private_key
        self.key_id = key_id

    def sign(
        self,
        method: str,
        url: ResourceLocator,
        body: Optional[bytes] = None,
        date: Optional[str] = None,
    ) -> Dict[str, str]:
        """
        Produce the headers that authenticate a request.

        Returns:
            Host, Date, Signature and (with a body) Digest headers
        """
        date = date or http_date()
        digest = digest_header(body) if body else None
        message = signing_string(method, url.request_target, url.authority, date, digest)

        names = list(BASE_HEADERS)
        if digest is not None:
            names.append(DIGEST)
        params = SignatureParams(
            key_id=str(self.key_id),
            headers=names,
            signature=self.private_key.sign(message.encode("utf-8")),
            algorithm=ALGORITHM,
        )

        headers = {"Host": url.authority, "Date": date, "Signature": params.to_header()}
        if digest is not None:
            headers["Digest"] = digest
        return headers


def _lower(headers: Mapping[str, str]) -> Dict[str, str]:
    return {k.lower(): v for k, v in headers.items()}


def _declared_sha256(digest_value: str) -> Optional[str]:
    # A Digest header may list several algorithms: "SHA-256=…,SHA-512=…"
    for part in digest_value.split(","):
        name, sep, value = part.strip().partition("=")
        if sep and name.strip().lower() == "sha-256":
            return value.strip()
    return None


def _check_date(date_value: str, now: float, window: float) -> None:
    try:
        sent = parsedate_to_datetime(date_value).timestamp()
    except (TypeError, ValueError) as e:
        raise SignatureError(SignatureErrorKind.MALFORMED, f"unparseable date: {date_value!r}") from e
    if abs(now - sent) > window:
        raise SignatureError(
            SignatureErrorKind.STALE_DATE,
            f"date {date_value!r} is outside the {int(window)}s window",
        )


def parse_signature(headers: Mapping[str, str]) -> SignatureParams:
    """Extract and parse the Signature header of a received request."""
    lowered = _lower(headers)
    value = lowered.get("signature")
    if not value:
        raise SignatureError(SignatureErrorKind.MISSING_HEADER, "request is not signed")
    params = SignatureParams.from_header(value)
    if params.algorithm and params.algorithm.lower() not in ACCEPTED_ALGORITHMS:
        raise SignatureError(
            SignatureErrorKind.UNSUPPORTED_ALGORITHM, f"unsupported algorithm {params.algorithm!r}"
        )
    return params


def verify_signature(
    method: str,
    target: str,
    headers: Mapping[str, str],
    body: Optional[bytes],
    public_key: VerifyingKey | str,
    now: Optional[float] = None,
    window: float = DEFAULT_WINDOW,
) -> SignatureParams:
    """
    Verify a received request against a known public key.

    Args:
        method: Request method as received
        target: Request path plus query as received
        headers: Received headers (any case)
        body: Received body bytes, or None/empty for bodiless requests
        public_key: VerifyingKey or its PEM (PKCS#1 or PKCS#8)
        now: Reference time for the date window (defaults to time.time())
        window: Allowed clock skew in seconds

    Returns:
        The parsed signature parameters

    Raises:
        SignatureError: on any failure; never returns a partial success
    """
    params = parse_signature(headers)
    message = _received_signing_string(params, method, target, headers, body)
    _check_date(_lower(headers)["date"], time.time() if now is None else now, window)

    if isinstance(public_key, (str, bytes)):
        public_key = VerifyingKey.from_pem(public_key)
    public_key.verify(message.encode("utf-8"), params.signature)
    return params


def _received_signing_string(
    params: SignatureParams,
    method: str,
    target: str,
    headers: Mapping[str, str],
    body: Optional[bytes],
) -> str:
    lowered = _lower(headers)

    for required in BASE_HEADERS:
        if required not in params.headers:
            raise SignatureError(SignatureErrorKind.MISSING_HEADER, f"signature does not cover {required}")

    if body:
        if DIGEST not in params.headers:
            raise SignatureError(SignatureErrorKind.UNSIGNED_DIGEST, "request has a body but digest is not signed")
        declared = _declared_sha256(lowered.get(DIGEST, ""))
        if declared is None:
            raise SignatureError(SignatureErrorKind.MISSING_HEADER, "missing SHA-256 digest header")
        if declared != digest_header(body).split("=", 1)[1]:
            raise SignatureError(SignatureErrorKind.DIGEST_MISMATCH, "body does not match digest")

    lines = []
    for name in params.headers:
        if name == REQUEST_TARGET:
            lines.append(f"{REQUEST_TARGET}: {method.lower()} {target}")
            continue
        if name not in lowered:
            raise SignatureError(SignatureErrorKind.MISSING_HEADER, f"signed header {name!r} not present")
        lines.append(f"{name}: {lowered[name]}")
    return "\n".join(lines)


KeyLookup = Callable[[ResourceLocator], VerifyingKey | str]


class SignatureVerifier:
    """
    Verifies inbound requests, fetching signer keys by key locator.

    Args:
        key_lookup: Returns the public key (or PEM) published at a keyId;
            normally ActorResolver.resolve_public_key
        window: Allowed clock skew in seconds
    """

    def __init__(self, key_lookup: KeyLookup, window: float = DEFAULT_WINDOW):
        self._key_lookup = key_lookup
        self.window = window

    def verify(
        self,
        method: str,
        target: str,
        headers: Mapping[str, str],
        body: Optional[bytes],
        now: Optional[float] = None,
    ) -> SignatureParams:
        params = parse_signature(headers)
        try:
            key_id = ResourceLocator.parse(params.key_id)
        except ValueError as e:
            raise SignatureError(SignatureErrorKind.MALFORMED, f"keyId is not a url: {params.key_id!r}") from e

        public_key = self._key_lookup(key_id)
        params = verify_signature(method, target, headers, body, public_key, now=now, window=self.window)
        logger.debug(f"Verified signature from {params.key_id}")
        return params
