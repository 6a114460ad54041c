"""Fetch account keys and reconcile them into the authorized_keys file."""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Protocol, TextIO

from kanidm_sshkey_fetcher.authorized_keys import upsert_managed_block
from kanidm_sshkey_fetcher.client import build_client
from kanidm_sshkey_fetcher.config import EffectiveConfig
from kanidm_sshkey_fetcher.errors import (
    AccountKeysError,
    AuthenticationError,
    TransportError,
)

logger = logging.getLogger(__name__)


class IdentityClient(Protocol):
    def auth_anonymous(self) -> None: ...

    def get_account_ssh_pubkeys(self, account_id: str) -> list[str]: ...


@dataclass
class KeyCollection:
    keys: list[str] = field(default_factory=list)
    failures: list[tuple[str, Exception]] = field(default_factory=list)


@dataclass
class FetchResult:
    keys: list[str]
    failed_accounts: list[str]
    authenticated: bool
    written_path: Path | None = None


def collect_keys(client: IdentityClient, account_ids: Iterable[str]) -> KeyCollection:
    """Look up keys account by account, skipping accounts that fail."""
    collection = KeyCollection()
    for account_id in account_ids:
        try:
            pubkeys = client.get_account_ssh_pubkeys(account_id)
        except (AccountKeysError, TransportError) as exc:
            logger.debug("failed to get ssh pubkeys for account %s -- %s", account_id, exc)
            collection.failures.append((account_id, exc))
            continue
        collection.keys.extend(pubkeys)
    return collection


def authenticate(client: IdentityClient) -> bool:
    try:
        client.auth_anonymous()
    except TransportError as exc:
        logger.error("failed to connect to kanidm server: %s", exc)
        return False
    except AuthenticationError as exc:
        logger.error("error during authentication phase: %s", exc)
        return False
    return True


def run(
    config: EffectiveConfig,
    *,
    client_factory: Callable[[EffectiveConfig], IdentityClient] = build_client,
    stdout: TextIO = sys.stdout,
) -> FetchResult:
    """Run one fetch.

    Raises ``ClientBuildError`` or ``FileSyncError``; every other failure is
    tolerated so that as many keys as possible are delivered.
    """
    client = client_factory(config)
    try:
        authenticated = authenticate(client)
        collection = collect_keys(client, config.account_ids)
    finally:
        close = getattr(client, "close", None)
        if callable(close):
            close()

    for key in collection.keys:
        print(key, file=stdout)

    result = FetchResult(
        keys=collection.keys,
        failed_accounts=[account_id for account_id, _ in collection.failures],
        authenticated=authenticated,
    )
    if config.modify_file:
        result.written_path = upsert_managed_block(config.authorized_keys_path, collection.keys)
    return result
