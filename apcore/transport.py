# apcore/transport.py
"""
Outbound HTTP transport.

Everything that talks to remote servers goes through a Transport so the
network can be replaced in tests. A transport either returns a 2xx
response or raises TransportError; callers never inspect status codes
for failure.

Usage:
    transport = UrllibTransport(user_agent="apcore/0.1")
    response = transport.send(HttpRequest("GET", url, {"Accept": AP_MEDIA_TYPE}))
    data = response.json()
"""

import http.client
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from .errors import TransportError, TransportErrorKind
from .locator import ResourceLocator

logger = logging.getLogger(__name__)

AP_MEDIA_TYPE = "application/activity+json"
LD_MEDIA_TYPE = 'application/ld+json; profile="https://www.w3.org/ns/activitystreams"'
JRD_MEDIA_TYPE = "application/jrd+json"
# Accept header for fetching actors and objects.
AP_ACCEPT = f"{AP_MEDIA_TYPE}, {LD_MEDIA_TYPE}"


@dataclass
class HttpRequest:
    """An outbound request."""
    method: str
    url: ResourceLocator
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None


@dataclass
class HttpResponse:
    """A received 2xx response."""
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    def json(self) -> Any:
        """Decode the body as JSON (raises ValueError if it is not)."""
        return json.loads(self.body.decode("utf-8"))


class Transport(ABC):
    """Sends one request and returns the response or raises TransportError."""

    @abstractmethod
    def send(self, request: HttpRequest, timeout: Optional[float] = None) -> HttpResponse:
        """
        Send a request.

        Args:
            request: The request to send
            timeout: Per-request timeout in seconds

        Raises:
            TransportError: CONNECTION, TIMEOUT, or STATUS for non-2xx
        """


class UrllibTransport(Transport):
    """
    Transport on top of urllib.

    Args:
        user_agent: User-Agent header added to every request
        timeout: Default timeout in seconds
    """

    def __init__(self, user_agent: Optional[str] = None, timeout: float = 10):
        self.user_agent = user_agent
        self.timeout = timeout

    def send(self, request: HttpRequest, timeout: Optional[float] = None) -> HttpResponse:
        url = str(request.url)
        headers = dict(request.headers)
        if self.user_agent and "User-Agent" not in headers:
            headers["User-Agent"] = self.user_agent

        req = Request(url, data=request.body, headers=headers, method=request.method)
        timeout = self.timeout if timeout is None else timeout

        try:
            with urlopen(req, timeout=timeout) as response:
                return HttpResponse(
                    status=response.status,
                    headers=dict(response.headers.items()),
                    body=response.read(),
                )
        except HTTPError as e:
            raise TransportError(
                TransportErrorKind.STATUS,
                f"{request.method} {url}: HTTP {e.code}",
                status=e.code,
            ) from e
        except URLError as e:
            if isinstance(e.reason, TimeoutError):
                raise TransportError(TransportErrorKind.TIMEOUT, f"{request.method} {url}: timed out") from e
            raise TransportError(TransportErrorKind.CONNECTION, f"{request.method} {url}: {e.reason}") from e
        except TimeoutError as e:
            raise TransportError(TransportErrorKind.TIMEOUT, f"{request.method} {url}: timed out") from e
        except OSError as e:
            raise TransportError(TransportErrorKind.CONNECTION, f"{request.method} {url}: {e}") from e
        except http.client.HTTPException as e:
            raise TransportError(
                TransportErrorKind.CONNECTION,
                f"{request.method} {url}: malformed response: {e!r}",
            ) from e
