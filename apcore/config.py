# apcore/config.py
"""
Federation configuration.

Loaded from YAML:

    base_url: https://social.example
    key_size: 4096
    max_workers: 8
    request_timeout: 10
    signature_window: 300
    store_dir: ./federation
    log_level: INFO

Also builds every URL this server publishes, so actor, inbox and key
locators are spelled the same way everywhere.
"""

import uuid
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .locator import ResourceLocator

DEFAULT_USER_AGENT = "apcore/0.1"


@dataclass
class FederationConfig:
    """
    Settings for one federating server.

    Attributes:
        base_url: Public origin, e.g. https://social.example
        key_size: RSA modulus size for new actor keys
        max_workers: Delivery thread pool size
        request_timeout: Outbound request timeout in seconds
        signature_window: Allowed Date skew on inbound signatures, seconds
        user_agent: User-Agent for outbound requests
        store_dir: JsonStore directory (None means in-memory)
        log_level: Root log level for the CLI
    """
    base_url: str
    key_size: int = 4096
    max_workers: int = 8
    request_timeout: float = 10
    signature_window: float = 300
    user_agent: str = DEFAULT_USER_AGENT
    store_dir: Optional[str] = None
    log_level: str = "INFO"

    def __post_init__(self):
        self.base_url = str(ResourceLocator.parse(self.base_url.rstrip("/")))
        if self.key_size < 1024:
            raise ValueError(f"key_size too small: {self.key_size}")
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be positive: {self.max_workers}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FederationConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown config keys: {sorted(unknown)}")
        if "base_url" not in data:
            raise ValueError("Config requires base_url")
        return cls(**data)

    @classmethod
    def from_yaml(cls, text: str) -> "FederationConfig":
        data = yaml.safe_load(text) or {}
        if not isinstance(data, dict):
            raise ValueError("Config must be a YAML mapping")
        return cls.from_dict(data)

    @classmethod
    def from_file(cls, path: Path | str) -> "FederationConfig":
        with open(path) as f:
            return cls.from_yaml(f.read())

    # -- published URLs --------------------------------------------------

    @property
    def host(self) -> str:
        return self.base.authority

    @property
    def base(self) -> ResourceLocator:
        return ResourceLocator.parse(self.base_url)

    def _url(self, path: str) -> ResourceLocator:
        return self.base.join(self.base.path.rstrip("/") + path)

    def actor_url(self, username: str) -> ResourceLocator:
        return self._url(f"/users/{username}")

    def inbox_url(self, username: str) -> ResourceLocator:
        return self._url(f"/users/{username}/inbox")

    def outbox_url(self, username: str) -> ResourceLocator:
        return self._url(f"/users/{username}/outbox")

    def followers_url(self, username: str) -> ResourceLocator:
        return self._url(f"/users/{username}/followers")

    def key_id(self, username: str) -> ResourceLocator:
        return self.actor_url(username).set_fragment("main-key")

    def shared_inbox_url(self) -> ResourceLocator:
        return self._url("/inbox")

    def new_activity_url(self) -> ResourceLocator:
        return self._url(f"/activities/{uuid.uuid4()}")

    def new_note_url(self) -> ResourceLocator:
        return self._url(f"/notes/{uuid.uuid4()}")
