# tests/test_federation.py
"""End-to-end tests: local accounts, inbox and outbox."""

import json

import pytest

from apcore.accounts import (
    find_local_actor,
    local_actor_document,
    local_webfinger,
    register_local_actor,
)
from apcore.activitypub.activity import Follow, Undo
from apcore.activitypub.keys import VerifyingKey
from apcore.activitypub.objects import parse_actor
from apcore.activitypub.signatures import RequestSigner, verify_signature
from apcore.delivery import Deliverer
from apcore.errors import (
    ActivityError,
    AcctUriError,
    DeliveryError,
    SignatureError,
    SignatureErrorKind,
)
from apcore.inbox import InboxProcessor
from apcore.locator import ResourceLocator, TypedIdentifier
from apcore.outbox import Outbox
from apcore.resolver import ActorResolver
from apcore.transport import HttpResponse

BOB = "https://example.com/users/bob"
CAROL = "https://example.com/users/carol"
ALICE = "https://local.example/users/alice"
ALICE_INBOX = ResourceLocator.parse(ALICE + "/inbox")


@pytest.fixture
def alice(store, config):
    return register_local_actor(store, config, "alice", "Alice")


@pytest.fixture
def resolver(store, transport):
    return ActorResolver(store, transport)


@pytest.fixture
def deliverer(resolver, transport):
    return Deliverer(resolver, transport, max_workers=4)


@pytest.fixture
def inbox(store, config, resolver, deliverer):
    return InboxProcessor(store, config, resolver, deliverer)


@pytest.fixture
def bob_signer(key_pair):
    return RequestSigner(key_pair.private_key, ResourceLocator.parse(BOB + "#main-key"))


@pytest.fixture
def remote_bob(transport, key_pair, make_person):
    """Bob's server: actor document plus an inbox that records deliveries."""
    received = []

    def bob_inbox(request):
        received.append(request)
        return HttpResponse(202)

    transport.route("GET", BOB, make_person(BOB, key_pair))
    transport.route("POST", BOB + "/inbox", bob_inbox)
    return received


def follow_body(actor=BOB, obj=ALICE, activity_id="https://example.com/follows/1"):
    return json.dumps({
        "@context": "https://www.w3.org/ns/activitystreams",
        "id": activity_id,
        "type": "Follow",
        "actor": actor,
        "object": obj,
    }).encode()


def post_to_alice(inbox, signer, body):
    headers = signer.sign("POST", ALICE_INBOX, body)
    return inbox.process("alice", "POST", "/users/alice/inbox", headers, body)


class TestAccounts:
    """Test local actor provisioning."""

    def test_register_is_idempotent(self, store, config, alice):
        key_pair = store.find_key_pair(alice.id)
        again = register_local_actor(store, config, "alice")

        assert again.id == alice.id
        assert store.find_key_pair(alice.id).public_key == key_pair.public_key
        assert len(store) == 1

    def test_register_record(self, alice, config):
        assert alice.url == ALICE
        assert alice.local_username == "alice"
        assert alice.is_local
        assert alice.inbox == str(ALICE_INBOX)
        assert str(alice.acct) == "acct:alice@local.example"

    def test_invalid_username(self, store, config):
        with pytest.raises(AcctUriError):
            register_local_actor(store, config, "al ice")

    def test_actor_document(self, store, config, alice):
        key_pair = store.find_key_pair(alice.id)
        data = local_actor_document(alice, key_pair.public_key, config).to_dict()

        assert data["@context"] == [
            "https://www.w3.org/ns/activitystreams",
            "https://w3id.org/security/v1",
        ]
        assert data["type"] == "Person"
        assert data["id"] == ALICE
        assert data["preferredUsername"] == "alice"
        assert data["inbox"] == ALICE + "/inbox"
        assert data["outbox"] == ALICE + "/outbox"
        assert data["endpoints"] == {"sharedInbox": "https://local.example/inbox"}
        assert data["publicKey"]["id"] == ALICE + "#main-key"
        assert data["publicKey"]["owner"] == ALICE
        assert parse_actor(data).id == TypedIdentifier.parse(ALICE)

    def test_local_webfinger(self, store, config, alice):
        doc = local_webfinger(store, config, "acct:alice@local.example")
        assert doc.self_link() == ResourceLocator.parse(ALICE)
        assert local_webfinger(store, config, "acct:nobody@local.example") is None
        assert local_webfinger(store, config, "acct:alice@elsewhere.example") is None
        assert local_webfinger(store, config, "not an acct") is None

    def test_find_local_actor_ignores_remote(self, store, config, resolver, remote_bob):
        resolver.resolve(BOB)
        assert find_local_actor(store, config, "bob") is None


class TestEndToEnd:
    """Discover a remote actor and deliver a signed Follow to it."""

    def test_follow_delivery_verifies(self, store, config, alice, resolver, deliverer, transport, make_person, other_key_pair):
        transport.route(
            "GET",
            "https://example.com/.well-known/webfinger?resource=acct:bob@example.com",
            {
                "subject": "acct:bob@example.com",
                "links": [{"rel": "self", "type": "application/activity+json", "href": BOB}],
            },
        )
        transport.route("GET", BOB, make_person(BOB, other_key_pair))
        received = []
        transport.route("POST", BOB + "/inbox", lambda r: received.append(r) or HttpResponse(202))

        bob = resolver.resolve_acct("acct:bob@example.com")
        assert bob.url == BOB
        assert bob.inbox == BOB + "/inbox"

        follow = Follow(
            id=TypedIdentifier(config.new_activity_url()),
            actor=TypedIdentifier(alice.locator),
            object=TypedIdentifier(bob.locator),
        )
        signer = RequestSigner(store.find_key_pair(alice.id).private_key, config.key_id("alice"))
        report = deliverer.deliver(follow, [bob], signer)
        assert report.delivered == [BOB + "/inbox"]

        # Bob's side: verify against the key alice publishes.
        published = local_actor_document(alice, store.find_key_pair(alice.id).public_key, config).to_dict()
        request = received[0]
        params = verify_signature(
            "POST",
            request.url.request_target,
            request.headers,
            request.body,
            VerifyingKey.from_pem(published["publicKey"]["publicKeyPem"]),
        )
        assert params.key_id == published["publicKey"]["id"]
        assert json.loads(request.body)["type"] == "Follow"


class TestInbox:
    """Test inbound activity processing."""

    def test_follow_records_and_accepts(self, store, config, alice, inbox, remote_bob, bob_signer):
        result = post_to_alice(inbox, bob_signer, follow_body())

        assert result.action == "followed"
        assert result.delivery.delivered == [BOB + "/inbox"]
        assert [f.follower_url for f in store.find_followees(alice.id)] == [BOB]

        accept = remote_bob[0]
        data = json.loads(accept.body)
        assert data["type"] == "Accept"
        assert data["actor"] == ALICE
        assert data["object"]["type"] == "Follow"
        assert data["object"]["actor"] == BOB
        verify_signature(
            "POST", "/users/bob/inbox", accept.headers, accept.body,
            store.find_key_pair(alice.id).public_key,
        )

    def test_undo_follow(self, store, alice, inbox, remote_bob, bob_signer):
        post_to_alice(inbox, bob_signer, follow_body())
        undo = json.dumps({
            "@context": "https://www.w3.org/ns/activitystreams",
            "id": "https://example.com/follows/1/undo",
            "type": "Undo",
            "actor": BOB,
            "object": json.loads(follow_body()),
        }).encode()

        result = post_to_alice(inbox, bob_signer, undo)

        assert result.action == "unfollowed"
        assert isinstance(result.activity, Undo)
        assert store.find_followees(alice.id) == []

    def test_accept_and_create_are_acknowledged(self, alice, inbox, remote_bob, bob_signer):
        accept = json.dumps({
            "id": "https://example.com/accepts/1",
            "type": "Accept",
            "actor": BOB,
            "object": "https://local.example/activities/1",
        }).encode()
        create = json.dumps({
            "id": "https://example.com/statuses/1/activity",
            "type": "Create",
            "actor": BOB,
            "object": {"type": "Note", "id": "https://example.com/statuses/1", "content": "<p>hi</p>"},
        }).encode()

        assert post_to_alice(inbox, bob_signer, accept).action == "accepted"
        assert post_to_alice(inbox, bob_signer, create).action == "created"

    def test_key_owned_by_someone_else(self, alice, inbox, transport, remote_bob, make_person, other_key_pair):
        transport.route("GET", CAROL, make_person(CAROL, other_key_pair, username="carol"))
        carol_signer = RequestSigner(other_key_pair.private_key, ResourceLocator.parse(CAROL + "#main-key"))

        with pytest.raises(SignatureError) as exc:
            post_to_alice(inbox, carol_signer, follow_body(actor=BOB))
        assert exc.value.kind == SignatureErrorKind.ACTOR_MISMATCH

    def test_forged_signature(self, store, alice, inbox, remote_bob, other_key_pair):
        forger = RequestSigner(other_key_pair.private_key, ResourceLocator.parse(BOB + "#main-key"))
        with pytest.raises(SignatureError) as exc:
            post_to_alice(inbox, forger, follow_body())
        assert exc.value.kind == SignatureErrorKind.INVALID
        assert store.find_followees(alice.id) == []

    def test_unsigned(self, alice, inbox):
        with pytest.raises(SignatureError):
            inbox.process("alice", "POST", "/users/alice/inbox", {}, follow_body())

    def test_follow_for_another_actor(self, alice, inbox, remote_bob, bob_signer):
        with pytest.raises(ActivityError):
            post_to_alice(inbox, bob_signer, follow_body(obj="https://local.example/users/zed"))

    def test_unknown_local_actor(self, inbox, bob_signer):
        with pytest.raises(LookupError):
            inbox.process("nobody", "POST", "/users/nobody/inbox", {}, b"{}")


class TestOutbox:
    """Test publishing notes to followers."""

    def test_publish_to_followers(self, store, config, alice, deliverer, transport, remote_bob):
        carol_inbox = CAROL + "/inbox"
        transport.route("GET", CAROL, {
            "id": CAROL, "type": "Person", "preferredUsername": "carol", "inbox": carol_inbox,
        })
        transport.route("POST", carol_inbox, HttpResponse(500))
        store.create_follow(alice.id, ResourceLocator.parse(BOB))
        store.create_follow(alice.id, ResourceLocator.parse(CAROL))

        result = Outbox(store, config, deliverer).publish_note("alice", "hello <world>")

        assert result.report.delivered == [BOB + "/inbox"]
        assert list(result.report.failed) == [carol_inbox]
        data = json.loads(remote_bob[0].body)
        assert data["type"] == "Create"
        assert data["actor"] == ALICE
        assert data["to"] == ["https://www.w3.org/ns/activitystreams#Public"]
        assert data["object"]["type"] == "Note"
        assert data["object"]["content"] == "<p>hello &lt;world&gt;</p>"
        assert data["object"]["attributedTo"] == ALICE
        assert data["object"]["id"].startswith("https://local.example/notes/")

    def test_no_followers(self, store, config, alice, deliverer, transport):
        result = Outbox(store, config, deliverer).publish_note("alice", "anyone?")
        assert result.report.attempted == 0
        assert transport.requests == []

    def test_all_followers_unreachable(self, store, config, alice, deliverer):
        store.create_follow(alice.id, ResourceLocator.parse(BOB))
        with pytest.raises(DeliveryError):
            Outbox(store, config, deliverer).publish_note("alice", "hello")

    def test_unknown_author(self, store, config, deliverer):
        with pytest.raises(LookupError):
            Outbox(store, config, deliverer).publish_note("nobody", "hello")
