# apcore/locator.py
"""
Validated resource locators and type-tagged identifiers.

A ResourceLocator is an absolute http(s) URL with a host and no
embedded credentials. Once validated it can be rewritten in place
(path, query, fragment) without being parsed again: none of those
mutations can change the scheme, host or userinfo.

TypedIdentifier tags a locator with the entity it identifies, purely
for static checking:

    PersonId = TypedIdentifier["Person"]
    NoteId = TypedIdentifier["Note"]
"""

import functools
import re
from typing import Any, Generic, Optional, TypeVar
from urllib.parse import quote, urlsplit, urlunsplit

from .errors import LocatorError, LocatorErrorKind

ALLOWED_SCHEMES = ("http", "https")

# Characters kept verbatim when rewriting components; anything else is
# percent-encoded so the rewritten URL re-parses to the same structure.
_PATH_SAFE = "/:@!$&'()*+,;=%-._~"
_QUERY_SAFE = "/?:@!$&'()*+,;=%-._~"
_FRAGMENT_SAFE = _QUERY_SAFE


def _has_forbidden_chars(value: str) -> bool:
    return any(ch.isspace() or ord(ch) < 0x20 or ord(ch) == 0x7F for ch in value)


# RFC 3986 reg-name (non-ASCII allowed for IDNs) and the inside of an IP-literal.
_REG_NAME = re.compile(r"^(?:[A-Za-z0-9\-._~!$&'()*+,;=]|%[0-9A-Fa-f]{2}|[^\x00-\x7f])+$")
_IP_LITERAL = re.compile(r"^[0-9A-Fa-f:.]+$")


def _valid_host(host: str, bracketed: bool) -> bool:
    if bracketed:
        return bool(_IP_LITERAL.match(host))
    return bool(_REG_NAME.match(host))


@functools.total_ordering
class ResourceLocator:
    """
    An absolute http/https URL.

    Construct with ResourceLocator.parse(); the constructor is used
    internally once the components are known to be valid.
    """

    __slots__ = ("_scheme", "_host", "_port", "_path", "_query", "_fragment")

    def __init__(
        self,
        scheme: str,
        host: str,
        port: Optional[int] = None,
        path: str = "",
        query: str = "",
        fragment: str = "",
    ):
        self._scheme = scheme
        self._host = host
        self._port = port
        self._path = path
        self._query = query
        self._fragment = fragment

    @classmethod
    def parse(cls, url: str) -> "ResourceLocator":
        """
        Validate a URL string.

        Raises:
            LocatorError: with kind INVALID_SYNTAX, INVALID_SCHEME,
                MISSING_HOST or EMBEDDED_CREDENTIALS
        """
        if not isinstance(url, str) or not url or _has_forbidden_chars(url):
            raise LocatorError(LocatorErrorKind.INVALID_SYNTAX, f"invalid url: {url!r}")

        try:
            parts = urlsplit(url)
            port = parts.port
        except ValueError as e:
            raise LocatorError(LocatorErrorKind.INVALID_SYNTAX, f"invalid url {url!r}: {e}") from e

        scheme = parts.scheme.lower()
        if scheme not in ALLOWED_SCHEMES:
            raise LocatorError(
                LocatorErrorKind.INVALID_SCHEME,
                f"expected http or https, got {parts.scheme or 'no scheme'}: {url!r}",
            )
        if "@" in parts.netloc:
            raise LocatorError(LocatorErrorKind.EMBEDDED_CREDENTIALS, f"credentials in url: {url!r}")
        if not parts.hostname:
            raise LocatorError(LocatorErrorKind.MISSING_HOST, f"missing host: {url!r}")
        if not _valid_host(parts.hostname, "[" in parts.netloc):
            raise LocatorError(LocatorErrorKind.INVALID_SYNTAX, f"invalid host {parts.hostname!r}: {url!r}")

        return cls(
            scheme=scheme,
            host=parts.hostname.lower(),
            port=port,
            path=parts.path,
            query=parts.query,
            fragment=parts.fragment,
        )

    @classmethod
    def coerce(cls, value: Any) -> "ResourceLocator":
        """Accept a locator, typed identifier or string."""
        if isinstance(value, ResourceLocator):
            return value
        if isinstance(value, TypedIdentifier):
            return value.locator
        return cls.parse(value)

    # -- read access ----------------------------------------------------

    @property
    def scheme(self) -> str:
        return self._scheme

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> Optional[int]:
        return self._port

    @property
    def authority(self) -> str:
        """Host plus explicit port, as sent in the Host header."""
        host = f"[{self._host}]" if ":" in self._host else self._host
        if self._port is not None:
            return f"{host}:{self._port}"
        return host

    @property
    def path(self) -> str:
        return self._path

    @property
    def query(self) -> Optional[str]:
        return self._query or None

    @property
    def fragment(self) -> Optional[str]:
        return self._fragment or None

    @property
    def request_target(self) -> str:
        """Path and query as they appear on the HTTP request line."""
        target = self._path or "/"
        if self._query:
            target = f"{target}?{self._query}"
        return target

    # -- in-place rewriting ---------------------------------------------

    def set_path(self, path: str) -> "ResourceLocator":
        if path and not path.startswith("/"):
            path = "/" + path
        self._path = quote(path, safe=_PATH_SAFE)
        return self

    def set_query(self, query: str) -> "ResourceLocator":
        self._query = quote(query.lstrip("?"), safe=_QUERY_SAFE)
        return self

    def clear_query(self) -> "ResourceLocator":
        self._query = ""
        return self

    def set_fragment(self, fragment: str) -> "ResourceLocator":
        self._fragment = quote(fragment.lstrip("#"), safe=_FRAGMENT_SAFE)
        return self

    def clear_fragment(self) -> "ResourceLocator":
        self._fragment = ""
        return self

    def with_scheme(self, scheme: str) -> "ResourceLocator":
        """Return a copy using the other allowed scheme."""
        if scheme not in ALLOWED_SCHEMES:
            raise LocatorError(LocatorErrorKind.INVALID_SCHEME, f"expected http or https, got {scheme}")
        copied = self.copy()
        copied._scheme = scheme
        return copied

    def copy(self) -> "ResourceLocator":
        return ResourceLocator(
            self._scheme, self._host, self._port, self._path, self._query, self._fragment
        )

    def join(self, path: str) -> "ResourceLocator":
        """Copy with the path replaced and query/fragment cleared."""
        return self.copy().clear_query().clear_fragment().set_path(path)

    # -- dunder ---------------------------------------------------------

    def __str__(self) -> str:
        return urlunsplit((self._scheme, self.authority, self._path, self._query, self._fragment))

    def __repr__(self) -> str:
        return f"ResourceLocator({str(self)!r})"

    def __eq__(self, other: Any) -> bool:
        if isinstance(other, TypedIdentifier):
            other = other.locator
        if not isinstance(other, ResourceLocator):
            return NotImplemented
        return str(self) == str(other)

    def __lt__(self, other: Any) -> bool:
        if isinstance(other, TypedIdentifier):
            other = other.locator
        if not isinstance(other, ResourceLocator):
            return NotImplemented
        return str(self) < str(other)

    # Mutable, so not hashable; key dictionaries on str(locator).
    __hash__ = None


K = TypeVar("K")


@functools.total_ordering
class TypedIdentifier(Generic[K]):
    """
    A ResourceLocator tagged with the kind of entity it identifies.

    The type parameter only exists for type checkers; at runtime this is
    the inner locator and nothing else.
    """

    __slots__ = ("locator",)

    def __init__(self, locator: ResourceLocator):
        self.locator = locator

    @classmethod
    def parse(cls, url: str) -> "TypedIdentifier[K]":
        return cls(ResourceLocator.parse(url))

    @classmethod
    def coerce(cls, value: Any) -> "TypedIdentifier[K]":
        if isinstance(value, TypedIdentifier):
            return cls(value.locator)
        return cls(ResourceLocator.coerce(value))

    def __str__(self) -> str:
        return str(self.locator)

    def __repr__(self) -> str:
        return f"TypedIdentifier({str(self.locator)!r})"

    def __eq__(self, other: Any) -> bool:
        if isinstance(other, TypedIdentifier):
            return self.locator == other.locator
        if isinstance(other, ResourceLocator):
            return self.locator == other
        return NotImplemented

    def __lt__(self, other: Any) -> bool:
        if isinstance(other, TypedIdentifier):
            return self.locator < other.locator
        if isinstance(other, ResourceLocator):
            return self.locator < other
        return NotImplemented

    __hash__ = None
