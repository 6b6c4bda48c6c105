# apcore/store.py
"""
Persistent storage collaborator.

The federation core only needs a handful of find/create/delete
operations; FederationStore names them. Two implementations ship here:

- MemoryStore: lock-guarded dictionaries, for tests and embedding
- JsonStore: the same, written to ``store_dir/federation.json`` after
  every change and loaded on start

Records keep URLs as strings so they serialize as-is; use the
``*_locator`` properties to get validated locators back.
"""

import json
import logging
import threading
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .activitypub.keys import KeyPair
from .locator import ResourceLocator
from .webfinger import AcctUri

logger = logging.getLogger(__name__)


@dataclass
class ActorRecord:
    """
    A known actor, local or remote.

    Attributes:
        id: Store-assigned identifier
        url: Canonical actor URL (unique)
        inbox: Inbox URL
        preferred_username: User part of the actor's acct URI
        host: Authority of the actor URL
        shared_inbox: Shared inbox URL, when the server offers one
        local_username: Set for actors hosted here
    """
    id: str
    url: str
    inbox: str
    preferred_username: Optional[str] = None
    host: str = ""
    shared_inbox: Optional[str] = None
    name: Optional[str] = None
    kind: str = "Person"
    local_username: Optional[str] = None
    created_at: float = field(default_factory=time.time)

    @classmethod
    def new(
        cls,
        url: ResourceLocator,
        inbox: ResourceLocator,
        preferred_username: Optional[str] = None,
        shared_inbox: Optional[ResourceLocator] = None,
        name: Optional[str] = None,
        kind: str = "Person",
        local_username: Optional[str] = None,
    ) -> "ActorRecord":
        return cls(
            id=uuid.uuid4().hex,
            url=str(url),
            inbox=str(inbox),
            preferred_username=preferred_username,
            host=url.authority,
            shared_inbox=str(shared_inbox) if shared_inbox is not None else None,
            name=name,
            kind=kind,
            local_username=local_username,
        )

    @property
    def locator(self) -> ResourceLocator:
        return ResourceLocator.parse(self.url)

    @property
    def inbox_locator(self) -> ResourceLocator:
        return ResourceLocator.parse(self.inbox)

    @property
    def is_local(self) -> bool:
        return self.local_username is not None

    @property
    def acct(self) -> Optional[AcctUri]:
        if not self.preferred_username:
            return None
        return AcctUri(user=self.preferred_username, host=self.host)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActorRecord":
        return cls(**data)


@dataclass
class FollowRecord:
    """``follower_url`` follows the local actor ``actor_id``."""
    actor_id: str
    follower_url: str
    created_at: float = field(default_factory=time.time)

    @property
    def follower_locator(self) -> ResourceLocator:
        return ResourceLocator.parse(self.follower_url)


@dataclass
class PublicKeyRecord:
    """A remote actor's published key."""
    key_id: str
    owner_url: str
    public_key_pem: str


@dataclass
class KeyPairRecord:
    """A local actor's key pair as PEM."""
    actor_id: str
    private_key_pem: str
    public_key_pem: str

    def to_key_pair(self) -> KeyPair:
        return KeyPair.from_private_pem(self.private_key_pem)


class FederationStore(ABC):
    """Storage operations the federation core depends on."""

    @abstractmethod
    def find_actor_by_url(self, url: ResourceLocator) -> Optional[ActorRecord]:
        ...

    @abstractmethod
    def add_actor_alias(self, url: ResourceLocator, actor_id: str) -> None:
        """Make find_actor_by_url(url) return the actor ``actor_id``."""

    @abstractmethod
    def find_actor_by_acct(self, acct: AcctUri) -> Optional[ActorRecord]:
        ...

    @abstractmethod
    def find_actor_by_id(self, actor_id: str) -> Optional[ActorRecord]:
        ...

    @abstractmethod
    def create_actor(self, record: ActorRecord) -> ActorRecord:
        """Insert an actor; if its URL is already known, return the existing record."""

    @abstractmethod
    def find_followees(self, actor_id: str) -> List[FollowRecord]:
        """Follow rows whose followed actor is ``actor_id``."""

    @abstractmethod
    def create_follow(self, actor_id: str, follower_url: ResourceLocator) -> FollowRecord:
        ...

    @abstractmethod
    def delete_follow(self, actor_id: str, follower_url: ResourceLocator) -> bool:
        """Remove a follow row; returns False if there was none."""

    @abstractmethod
    def find_key_pair(self, actor_id: str) -> Optional[KeyPair]:
        ...

    @abstractmethod
    def save_key_pair(self, actor_id: str, key_pair: KeyPair) -> KeyPair:
        """Store a key pair unless one exists; returns the stored pair."""

    @abstractmethod
    def find_public_key(self, key_id: ResourceLocator) -> Optional[PublicKeyRecord]:
        ...

    @abstractmethod
    def save_public_key(self, record: PublicKeyRecord) -> None:
        ...


class MemoryStore(FederationStore):
    """In-process store; every operation is atomic under one lock."""

    def __init__(self):
        self._lock = threading.Lock()
        self._actors: Dict[str, ActorRecord] = {}
        self._actor_ids: Dict[str, str] = {}  # url -> id
        self._aliases: Dict[str, str] = {}  # alias url -> id
        self._follows: List[FollowRecord] = []
        self._key_pairs: Dict[str, KeyPairRecord] = {}
        self._public_keys: Dict[str, PublicKeyRecord] = {}

    def _persist(self) -> None:
        """Called with the lock held after every change."""

    def __len__(self) -> int:
        with self._lock:
            return len(self._actors)

    # -- actors ----------------------------------------------------------

    def find_actor_by_url(self, url: ResourceLocator) -> Optional[ActorRecord]:
        with self._lock:
            actor_id = self._actor_ids.get(str(url)) or self._aliases.get(str(url))
            return self._actors.get(actor_id) if actor_id else None

    def add_actor_alias(self, url: ResourceLocator, actor_id: str) -> None:
        key = str(url)
        with self._lock:
            if key in self._actor_ids or self._aliases.get(key) == actor_id:
                return
            self._aliases[key] = actor_id
            self._persist()
        logger.debug(f"Stored alias {key} for actor {actor_id}")

    def find_actor_by_acct(self, acct: AcctUri) -> Optional[ActorRecord]:
        with self._lock:
            for record in self._actors.values():
                if record.preferred_username == acct.user and record.host == acct.host:
                    return record
        return None

    def find_actor_by_id(self, actor_id: str) -> Optional[ActorRecord]:
        with self._lock:
            return self._actors.get(actor_id)

    def create_actor(self, record: ActorRecord) -> ActorRecord:
        with self._lock:
            existing = self._actor_ids.get(record.url)
            if existing is not None:
                return self._actors[existing]
            self._actors[record.id] = record
            self._actor_ids[record.url] = record.id
            self._persist()
        logger.debug(f"Stored actor {record.url}")
        return record

    # -- follows ---------------------------------------------------------

    def find_followees(self, actor_id: str) -> List[FollowRecord]:
        with self._lock:
            return [f for f in self._follows if f.actor_id == actor_id]

    def create_follow(self, actor_id: str, follower_url: ResourceLocator) -> FollowRecord:
        url = str(follower_url)
        with self._lock:
            for follow in self._follows:
                if follow.actor_id == actor_id and follow.follower_url == url:
                    return follow
            follow = FollowRecord(actor_id=actor_id, follower_url=url)
            self._follows.append(follow)
            self._persist()
        return follow

    def delete_follow(self, actor_id: str, follower_url: ResourceLocator) -> bool:
        url = str(follower_url)
        with self._lock:
            kept = [f for f in self._follows if not (f.actor_id == actor_id and f.follower_url == url)]
            removed = len(kept) != len(self._follows)
            if removed:
                self._follows = kept
                self._persist()
        return removed

    # -- keys ------------------------------------------------------------

    def find_key_pair(self, actor_id: str) -> Optional[KeyPair]:
        with self._lock:
            record = self._key_pairs.get(actor_id)
        return record.to_key_pair() if record else None

    def save_key_pair(self, actor_id: str, key_pair: KeyPair) -> KeyPair:
        private_pem, public_pem = key_pair.to_pem()
        with self._lock:
            existing = self._key_pairs.get(actor_id)
            if existing is None:
                self._key_pairs[actor_id] = KeyPairRecord(actor_id, private_pem, public_pem)
                self._persist()
        if existing is not None:
            return existing.to_key_pair()
        return key_pair

    def find_public_key(self, key_id: ResourceLocator) -> Optional[PublicKeyRecord]:
        with self._lock:
            return self._public_keys.get(str(key_id))

    def save_public_key(self, record: PublicKeyRecord) -> None:
        with self._lock:
            self._public_keys[record.key_id] = record
            self._persist()


class JsonStore(MemoryStore):
    """
    MemoryStore persisted to a JSON file.

    Structure:
        store_dir/
            federation.json
    """

    def __init__(self, store_dir: Path | str):
        super().__init__()
        self.store_dir = Path(store_dir)
        self.store_dir.mkdir(parents=True, exist_ok=True)
        self._load()

    def _index_path(self) -> Path:
        return self.store_dir / "federation.json"

    def _load(self):
        """Load records from disk."""
        index_path = self._index_path()
        if not index_path.exists():
            return
        with open(index_path) as f:
            data = json.load(f)
        for actor_data in data.get("actors", []):
            record = ActorRecord.from_dict(actor_data)
            self._actors[record.id] = record
            self._actor_ids[record.url] = record.id
        self._aliases = dict(data.get("aliases", {}))
        self._follows = [FollowRecord(**f) for f in data.get("follows", [])]
        self._key_pairs = {
            k["actor_id"]: KeyPairRecord(**k) for k in data.get("key_pairs", [])
        }
        self._public_keys = {
            k["key_id"]: PublicKeyRecord(**k) for k in data.get("public_keys", [])
        }
        logger.debug(f"Loaded {len(self._actors)} actors from {index_path}")

    def _persist(self):
        data = {
            "version": "1.0",
            "actors": [a.to_dict() for a in self._actors.values()],
            "aliases": dict(self._aliases),
            "follows": [asdict(f) for f in self._follows],
            "key_pairs": [asdict(k) for k in self._key_pairs.values()],
            "public_keys": [asdict(k) for k in self._public_keys.values()],
        }
        with open(self._index_path(), "w") as f:
            json.dump(data, f, indent=2)
