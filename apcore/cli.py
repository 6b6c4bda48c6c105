#!/usr/bin/env python3
"""
apcore CLI

Command-line tools for poking at the fediverse:
  apcore webfinger - Look up an acct URI
  apcore actor - Fetch and decode an actor document
  apcore keygen - Generate an RSA key pair for signing
  apcore register - Create a local actor in the configured store

Usage:
  apcore webfinger acct:bob@example.com
  apcore actor https://example.com/users/bob
  apcore keygen [--bits 4096] [--format pkcs8|pkcs1] [--out DIR]
  apcore --config federation.yaml register alice
"""

import argparse
import json
import logging
import sys
from pathlib import Path

import yaml

from .accounts import local_actor_document, register_local_actor
from .activitypub.keys import DEFAULT_KEY_SIZE, KeyPair
from .config import DEFAULT_USER_AGENT, FederationConfig
from .errors import FederationError
from .locator import ResourceLocator
from .resolver import ActorResolver
from .store import JsonStore, MemoryStore
from .transport import UrllibTransport
from .webfinger import AcctUri, WebFingerResolver

logger = logging.getLogger(__name__)


def _transport(config):
    if config is None:
        return UrllibTransport(user_agent=DEFAULT_USER_AGENT)
    return UrllibTransport(user_agent=config.user_agent, timeout=config.request_timeout)


def _print_json(data):
    print(json.dumps(data, indent=2))


def cmd_webfinger(args, config):
    """Resolve an acct URI to its WebFinger document."""
    acct = AcctUri.from_handle(args.acct)
    document = WebFingerResolver(_transport(config)).resolve(acct)
    _print_json(document.to_dict())

    actor_url = document.self_link()
    if actor_url is not None:
        print(f"\nActor: {actor_url}", file=sys.stderr)


def cmd_actor(args, config):
    """Fetch an actor document."""
    resolver = ActorResolver(MemoryStore(), _transport(config))
    document = resolver.fetch_document(ResourceLocator.parse(args.url))
    _print_json(document.to_dict())


def cmd_keygen(args, config):
    """Generate a key pair."""
    key_pair = KeyPair.generate(args.bits)
    if args.format == "pkcs1":
        private_pem = key_pair.private_key.to_pkcs1_pem()
        public_pem = key_pair.public_key.to_pkcs1_pem()
    else:
        private_pem, public_pem = key_pair.to_pem()

    if not args.out:
        print(private_pem, end="")
        print(public_pem, end="")
        return

    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)
    private_path = out_dir / "private.pem"
    public_path = out_dir / "public.pem"
    private_path.write_text(private_pem)
    private_path.chmod(0o600)
    public_path.write_text(public_pem)
    print(f"Private key: {private_path}")
    print(f"Public key: {public_path}")


def cmd_register(args, config):
    """Register a local actor and print its actor document."""
    if config is None:
        print("register needs --config", file=sys.stderr)
        sys.exit(2)

    store = JsonStore(config.store_dir) if config.store_dir else MemoryStore()
    record = register_local_actor(store, config, args.username, args.name)
    key_pair = store.find_key_pair(record.id)
    _print_json(local_actor_document(record, key_pair.public_key, config).to_dict())


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="apcore",
        description="apcore - ActivityPub federation tools",
    )
    parser.add_argument("--config", help="Federation config YAML file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # webfinger command
    webfinger_parser = subparsers.add_parser("webfinger", help="Look up an acct URI")
    webfinger_parser.add_argument("acct", help="acct:user@host or @user@host")

    # actor command
    actor_parser = subparsers.add_parser("actor", help="Fetch an actor document")
    actor_parser.add_argument("url", help="Actor URL")

    # keygen command
    keygen_parser = subparsers.add_parser("keygen", help="Generate an RSA key pair")
    keygen_parser.add_argument("--bits", type=int, default=DEFAULT_KEY_SIZE,
                               help=f"Key size (default: {DEFAULT_KEY_SIZE})")
    keygen_parser.add_argument("--format", choices=["pkcs8", "pkcs1"], default="pkcs8",
                               help="PEM format (default: pkcs8)")
    keygen_parser.add_argument("--out", help="Directory for private.pem and public.pem")

    # register command
    register_parser = subparsers.add_parser("register", help="Create a local actor")
    register_parser.add_argument("username", help="Local username")
    register_parser.add_argument("--name", help="Display name")

    args = parser.parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    commands = {
        "webfinger": cmd_webfinger,
        "actor": cmd_actor,
        "keygen": cmd_keygen,
        "register": cmd_register,
    }
    if args.command not in commands:
        parser.print_help()
        sys.exit(1)

    try:
        config = FederationConfig.from_file(args.config) if args.config else None
        if config is not None and not args.verbose:
            logging.getLogger().setLevel(getattr(logging, config.log_level.upper(), logging.INFO))
        commands[args.command](args, config)
    except (FederationError, ValueError, OSError, yaml.YAMLError) as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
