# tests/conftest.py
"""Shared fixtures: an in-process transport, keys and configuration."""

import json
import threading

import pytest

from apcore.activitypub.keys import KeyPair
from apcore.config import FederationConfig
from apcore.errors import TransportError, TransportErrorKind
from apcore.store import MemoryStore
from apcore.transport import HttpResponse, Transport


class FakeTransport(Transport):
    """
    Transport answering from a routing table.

    Routes map (method, url) to a JSON-able value, an HttpResponse, or a
    callable taking the request. Unknown routes are unreachable.
    """

    def __init__(self):
        self.routes = {}
        self.requests = []
        self._lock = threading.Lock()

    def route(self, method, url, answer):
        self.routes[(method, str(url))] = answer

    def send(self, request, timeout=None):
        with self._lock:
            self.requests.append(request)
        answer = self.routes.get((request.method, str(request.url)))
        if answer is None:
            raise TransportError(TransportErrorKind.CONNECTION, f"unreachable: {request.url}")
        if callable(answer):
            answer = answer(request)
        if not isinstance(answer, HttpResponse):
            answer = HttpResponse(200, {"Content-Type": "application/json"}, json.dumps(answer).encode())
        if not 200 <= answer.status < 300:
            raise TransportError(TransportErrorKind.STATUS, f"HTTP {answer.status}", status=answer.status)
        return answer

    def sent(self, method, url):
        """Requests sent to one route."""
        with self._lock:
            return [r for r in self.requests if r.method == method and str(r.url) == str(url)]


def person_document(url, key_pair=None, username="bob"):
    """A Mastodon-style Person document."""
    doc = {
        "@context": [
            "https://www.w3.org/ns/activitystreams",
            "https://w3id.org/security/v1",
        ],
        "id": url,
        "type": "Person",
        "preferredUsername": username,
        "inbox": f"{url}/inbox",
        "outbox": f"{url}/outbox",
    }
    if key_pair is not None:
        doc["publicKey"] = {
            "id": f"{url}#main-key",
            "owner": url,
            "publicKeyPem": key_pair.public_key.to_pkcs8_pem(),
        }
    return doc


@pytest.fixture(scope="session")
def key_pair():
    """2048-bit key pair shared by the whole run."""
    return KeyPair.generate(2048)


@pytest.fixture(scope="session")
def other_key_pair():
    """A second, unrelated key pair."""
    return KeyPair.generate(2048)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def config():
    return FederationConfig(base_url="https://local.example", key_size=2048)


@pytest.fixture
def make_person():
    return person_document
