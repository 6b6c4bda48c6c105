# tests/test_resolver.py
"""Tests for actor resolution and single-flight fetching."""

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from apcore.activitypub.signatures import RequestSigner
from apcore.errors import ResolutionError, ResolutionErrorKind
from apcore.locator import ResourceLocator
from apcore.resolver import ActorResolver
from apcore.webfinger import AcctUri

BOB = "https://example.com/users/bob"
WEBFINGER = "https://example.com/.well-known/webfinger?resource=acct:bob@example.com"


class Abort(BaseException):
    """Stands in for KeyboardInterrupt / task cancellation."""


@pytest.fixture
def resolver(store, transport):
    return ActorResolver(store, transport)


class TestResolve:
    """Test resolving actor locators."""

    def test_fetches_and_persists(self, resolver, store, transport, key_pair, make_person):
        transport.route("GET", BOB, make_person(BOB, key_pair))

        record = resolver.resolve(BOB)

        assert record.url == BOB
        assert record.inbox == BOB + "/inbox"
        assert record.preferred_username == "bob"
        assert record.host == "example.com"
        assert not record.is_local
        assert store.find_actor_by_url(ResourceLocator.parse(BOB)) == record
        key = store.find_public_key(ResourceLocator.parse(BOB + "#main-key"))
        assert key.owner_url == BOB

        request = transport.requests[0]
        assert "application/activity+json" in request.headers["Accept"]
        assert "Signature" not in request.headers

    def test_store_hit_skips_fetch(self, resolver, transport, make_person):
        transport.route("GET", BOB, make_person(BOB))
        first = resolver.resolve(BOB)
        second = resolver.resolve(ResourceLocator.parse(BOB))
        assert first is second
        assert len(transport.sent("GET", BOB)) == 1

    def test_alias_resolves_once(self, resolver, store, transport, make_person):
        alias = "https://example.com/@bob"
        transport.route("GET", alias, make_person(BOB))

        records = [resolver.resolve(alias) for _ in range(3)]

        assert all(r is records[0] for r in records)
        assert records[0].url == BOB
        assert len(transport.sent("GET", alias)) == 1
        assert store.find_actor_by_url(ResourceLocator.parse(BOB)) is records[0]
        assert len(store) == 1

    def test_alias_of_known_actor(self, resolver, store, transport, make_person):
        alias = "https://example.com/@bob"
        transport.route("GET", BOB, make_person(BOB))
        transport.route("GET", alias, make_person(BOB))

        first = resolver.resolve(BOB)
        second = resolver.resolve(alias)
        resolver.resolve(alias)

        assert second is first
        assert len(transport.sent("GET", alias)) == 1

    def test_signed_fetch(self, store, transport, key_pair, make_person):
        transport.route("GET", BOB, make_person(BOB))
        signer = RequestSigner(key_pair.private_key, ResourceLocator.parse("https://local.example/users/alice#main-key"))
        ActorResolver(store, transport, signer=signer).resolve(BOB)
        headers = transport.requests[0].headers
        assert headers["Host"] == "example.com"
        assert 'keyId="https://local.example/users/alice#main-key"' in headers["Signature"]

    def test_unreachable(self, resolver):
        with pytest.raises(ResolutionError) as exc:
            resolver.resolve(BOB)
        assert exc.value.kind == ResolutionErrorKind.FETCH

    def test_errors_are_not_cached(self, resolver, transport, make_person):
        with pytest.raises(ResolutionError):
            resolver.resolve(BOB)
        transport.route("GET", BOB, make_person(BOB))
        assert resolver.resolve(BOB).url == BOB

    def test_not_an_actor(self, resolver, transport):
        transport.route("GET", BOB, {"id": BOB, "type": "Note", "content": "hi"})
        with pytest.raises(ResolutionError) as exc:
            resolver.resolve(BOB)
        assert exc.value.kind == ResolutionErrorKind.DESERIALIZE

    def test_actor_from_other_origin(self, resolver, transport, make_person):
        transport.route("GET", BOB, make_person("https://evil.example/users/bob"))
        with pytest.raises(ResolutionError) as exc:
            resolver.resolve(BOB)
        assert exc.value.kind == ResolutionErrorKind.DESERIALIZE

    def test_ignores_key_claimed_for_another_owner(self, resolver, store, transport, key_pair, make_person):
        doc = make_person(BOB, key_pair)
        doc["publicKey"]["owner"] = "https://example.com/users/alice"
        transport.route("GET", BOB, doc)

        resolver.resolve(BOB)

        assert store.find_public_key(ResourceLocator.parse(BOB + "#main-key")) is None


class TestSingleFlight:
    """Test at-most-one fetch per locator."""

    def test_fifty_concurrent_resolves_fetch_once(self, resolver, store, transport, make_person):
        release = threading.Event()

        def slow_actor(request):
            release.wait(5)
            return make_person(BOB)

        transport.route("GET", BOB, slow_actor)

        with ThreadPoolExecutor(max_workers=50) as pool:
            futures = [pool.submit(resolver.resolve, BOB) for _ in range(50)]
            time.sleep(0.2)
            release.set()
            records = [f.result(timeout=10) for f in futures]

        assert len(transport.sent("GET", BOB)) == 1
        assert len(store) == 1
        assert all(r.id == records[0].id for r in records)

    def test_waiters_share_failure(self, resolver, transport):
        release = threading.Event()

        def failing(request):
            release.wait(5)
            return {"not": "an actor"}

        transport.route("GET", BOB, failing)

        with ThreadPoolExecutor(max_workers=10) as pool:
            futures = [pool.submit(resolver.resolve, BOB) for _ in range(10)]
            time.sleep(0.2)
            release.set()
            for future in futures:
                with pytest.raises(ResolutionError):
                    future.result(timeout=10)

    def test_abandoned_flight_is_retried(self, resolver, transport, make_person):
        calls = []
        started = threading.Event()
        release = threading.Event()

        def first_call_aborts(request):
            calls.append(request)
            if len(calls) == 1:
                started.set()
                release.wait(5)
                raise Abort()
            return make_person(BOB)

        transport.route("GET", BOB, first_call_aborts)

        outcome = []

        def lead():
            try:
                resolver.resolve(BOB)
            except Abort:
                outcome.append("aborted")

        leader = threading.Thread(target=lead)
        leader.start()
        assert started.wait(5)

        with ThreadPoolExecutor(max_workers=1) as pool:
            waiter = pool.submit(resolver.resolve, BOB)
            time.sleep(0.1)
            release.set()
            record = waiter.result(timeout=10)
        leader.join(5)

        assert outcome == ["aborted"]
        assert record.url == BOB
        assert len(calls) == 2


class TestResolveAcct:
    """Test WebFinger-backed resolution."""

    def test_resolve_acct(self, resolver, transport, make_person):
        transport.route("GET", WEBFINGER, {
            "subject": "acct:bob@example.com",
            "links": [{"rel": "self", "type": "application/activity+json", "href": BOB}],
        })
        transport.route("GET", BOB, make_person(BOB))

        record = resolver.resolve_acct("acct:bob@example.com")
        assert record.url == BOB
        assert record.acct == AcctUri("bob", "example.com")

        resolver.resolve_acct(AcctUri("bob", "example.com"))
        assert len(transport.requests) == 2

    def test_no_self_link(self, resolver, transport):
        transport.route("GET", WEBFINGER, {"subject": "acct:bob@example.com", "links": []})
        with pytest.raises(ResolutionError) as exc:
            resolver.resolve_acct("acct:bob@example.com")
        assert exc.value.kind == ResolutionErrorKind.NO_SELF_LINK


class TestResolvePublicKey:
    """Test key lookup for signature verification."""

    def test_fetches_owner(self, resolver, transport, key_pair, make_person):
        transport.route("GET", BOB, make_person(BOB, key_pair))

        record = resolver.resolve_public_key(BOB + "#main-key")

        assert record.owner_url == BOB
        assert record.public_key_pem == key_pair.public_key.to_pkcs8_pem()
        assert str(transport.requests[0].url) == BOB

    def test_no_key_published(self, resolver, transport, make_person):
        transport.route("GET", BOB, make_person(BOB))
        with pytest.raises(ResolutionError) as exc:
            resolver.resolve_public_key(BOB + "#main-key")
        assert exc.value.kind == ResolutionErrorKind.NO_PUBLIC_KEY

    def test_refetches_known_owner_for_missing_key(self, resolver, transport, key_pair, make_person):
        transport.route("GET", BOB, make_person(BOB))
        resolver.resolve(BOB)

        transport.route("GET", BOB, make_person(BOB, key_pair))
        record = resolver.resolve_public_key(BOB + "#main-key")

        assert record.public_key_pem == key_pair.public_key.to_pkcs8_pem()
        assert len(transport.sent("GET", BOB)) == 2

    def test_stored_key_skips_fetch(self, resolver, transport, key_pair, make_person):
        transport.route("GET", BOB, make_person(BOB, key_pair))
        resolver.resolve_public_key(BOB + "#main-key")
        resolver.resolve_public_key(BOB + "#main-key")
        assert len(transport.sent("GET", BOB)) == 1
