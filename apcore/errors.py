# apcore/errors.py
"""
Error taxonomy for the federation core.

Every error carries a ``kind`` so the web layer can map failures to
status codes without string matching. Validation errors (locator, acct,
activity shape) are terminal and never retried.
"""

from enum import Enum, auto
from typing import Any, Optional


class FederationError(Exception):
    """Base class for all federation core errors."""

    def __init__(self, kind: Enum, message: str = ""):
        self.kind = kind
        super().__init__(message or kind.name.lower().replace("_", " "))


class LocatorErrorKind(Enum):
    INVALID_SYNTAX = auto()
    INVALID_SCHEME = auto()
    MISSING_HOST = auto()
    EMBEDDED_CREDENTIALS = auto()


class LocatorError(FederationError, ValueError):
    """A string could not be validated as a resource locator."""


class AcctUriErrorKind(Enum):
    MISSING_SCHEME = auto()
    MISSING_SEPARATOR = auto()
    MULTIPLE_SEPARATORS = auto()
    INVALID_USER = auto()
    INVALID_HOST = auto()


class AcctUriError(FederationError, ValueError):
    """A string is not a valid ``acct:user@host`` URI."""


class ActivityErrorKind(Enum):
    UNRECOGNIZED = auto()
    AMBIGUOUS = auto()
    INVALID_OBJECT = auto()


class ActivityError(FederationError):
    """An inbound payload did not match any known shape."""


class SignatureErrorKind(Enum):
    MALFORMED = auto()
    MISSING_HEADER = auto()
    UNSIGNED_DIGEST = auto()
    DIGEST_MISMATCH = auto()
    STALE_DATE = auto()
    KEY_DECODE = auto()
    UNSUPPORTED_ALGORITHM = auto()
    ACTOR_MISMATCH = auto()
    INVALID = auto()


class SignatureError(FederationError):
    """An HTTP signature could not be produced or did not verify."""


class ResolutionErrorKind(Enum):
    FETCH = auto()
    DESERIALIZE = auto()
    WEBFINGER = auto()
    NO_SELF_LINK = auto()
    NO_PUBLIC_KEY = auto()


class ResolutionError(FederationError):
    """A remote document could not be fetched or understood."""


class TransportErrorKind(Enum):
    CONNECTION = auto()
    TIMEOUT = auto()
    STATUS = auto()


class TransportError(FederationError):
    """Raised by transports for network failures and non-2xx responses."""

    def __init__(self, kind: Enum, message: str = "", status: Optional[int] = None):
        super().__init__(kind, message)
        self.status = status


class DeliveryErrorKind(Enum):
    ALL_RECIPIENTS_FAILED = auto()


class DeliveryError(FederationError):
    """Every recipient of a delivery failed."""

    def __init__(self, kind: Enum, message: str = "", report: Any = None):
        super().__init__(kind, message)
        self.report = report


# Status codes the inbound web layer should answer with for each error family.
_STATUS_BY_TYPE = (
    (LookupError, 404),
    (LocatorError, 400),
    (AcctUriError, 400),
    (ActivityError, 422),
    (SignatureError, 401),
    (ResolutionError, 502),
    (TransportError, 502),
    (DeliveryError, 502),
)


def status_for_error(error: Exception) -> int:
    """
    Map a core error to the HTTP status an inbound handler should return.

    LookupError (an unknown local account) maps to 404.
    """
    for error_type, status in _STATUS_BY_TYPE:
        if isinstance(error, error_type):
            return status
    return 500
