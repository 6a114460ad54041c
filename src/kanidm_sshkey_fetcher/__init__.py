"""kanidm-sshkey-fetcher public surface."""

from kanidm_sshkey_fetcher.authorized_keys import (
    END_MARKER,
    START_MARKER,
    ParsedKeysFile,
    apply_managed_block,
    parse_managed_region,
    upsert_managed_block,
)
from kanidm_sshkey_fetcher.client import KanidmClient, build_client
from kanidm_sshkey_fetcher.config import (
    ConfigSource,
    EffectiveConfig,
    PartialConfig,
    load_effective_config,
    merge_configs,
    resolve,
)
from kanidm_sshkey_fetcher.errors import (
    AccountKeysError,
    AuthenticationError,
    ClientBuildError,
    ConfigError,
    FetcherError,
    FileSyncError,
    TransportError,
)
from kanidm_sshkey_fetcher.fetcher import FetchResult, collect_keys, run

__all__ = [
    "FetcherError",
    "ConfigError",
    "ClientBuildError",
    "AuthenticationError",
    "TransportError",
    "AccountKeysError",
    "FileSyncError",
    "ConfigSource",
    "PartialConfig",
    "EffectiveConfig",
    "merge_configs",
    "resolve",
    "load_effective_config",
    "KanidmClient",
    "build_client",
    "START_MARKER",
    "END_MARKER",
    "ParsedKeysFile",
    "parse_managed_region",
    "apply_managed_block",
    "upsert_managed_block",
    "FetchResult",
    "collect_keys",
    "run",
]
