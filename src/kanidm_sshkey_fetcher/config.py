"""Layered configuration for kanidm-sshkey-fetcher.

Configuration is gathered from built-in defaults, the system and user kanidm
client config files, an optional explicit config file, the environment and the
command line. Each source yields a :class:`PartialConfig`; :func:`merge_configs`
folds them into one value with these rules:

* scalar fields: the highest-precedence source that sets a value wins;
* ``account_ids``: concatenated across every source, duplicates kept;
* ``debug`` and ``modify_file``: logical OR across every source.
"""

from __future__ import annotations

import enum
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Iterable, Mapping

from kanidm_sshkey_fetcher.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CLIENT_CONFIG_PATH = Path("/etc/kanidm/config")
DEFAULT_CLIENT_CONFIG_PATH_HOME = Path("~/.config/kanidm")
DEFAULT_AUTHORIZED_KEYS_PATH = Path("~/.ssh/authorized_keys")
DEFAULT_CONNECT_TIMEOUT = 10.0

URL_ENV_VAR = "KANIDM_URL"
CA_PATH_ENV_VAR = "KANIDM_CA_PATH"

_OR_FIELDS = frozenset({"debug", "modify_file"})
_LIST_FIELDS = frozenset({"account_ids"})


class ConfigSource(enum.Enum):
    DEFAULT = "default"
    SYSTEM_FILE = "system file"
    USER_FILE = "user file"
    EXPLICIT_FILE = "explicit file"
    ENVIRONMENT = "environment"
    COMMAND_LINE = "command line"


@dataclass(frozen=True)
class PartialConfig:
    """Configuration supplied by one source. ``None`` means "not set"."""

    debug: bool | None = None
    server_address: str | None = None
    ca_path: Path | None = None
    account_ids: tuple[str, ...] = ()
    modify_file: bool | None = None
    authorized_keys_path: Path | None = None
    verify_ca: bool | None = None
    connect_timeout: float | None = None


@dataclass(frozen=True)
class EffectiveConfig:
    debug: bool = False
    server_address: str | None = None
    ca_path: Path | None = None
    account_ids: tuple[str, ...] = ()
    modify_file: bool = False
    authorized_keys_path: Path = field(
        default_factory=lambda: DEFAULT_AUTHORIZED_KEYS_PATH.expanduser()
    )
    verify_ca: bool = True
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT


def default_config() -> PartialConfig:
    return PartialConfig(
        debug=False,
        modify_file=False,
        authorized_keys_path=DEFAULT_AUTHORIZED_KEYS_PATH.expanduser(),
        verify_ca=True,
        connect_timeout=DEFAULT_CONNECT_TIMEOUT,
    )


def _load_toml(path: Path) -> dict[str, Any]:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"failed to read config file {path}: {exc}", path=path) from exc

    try:  # Python 3.11+
        import tomllib  # type: ignore[attr-defined]
        try:
            return tomllib.loads(raw)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"invalid TOML in {path}: {exc}", path=path) from exc
    except ModuleNotFoundError:
        try:
            import tomli
        except ModuleNotFoundError as exc:
            raise ConfigError("toml parser unavailable; install tomli for Python < 3.11") from exc
        try:
            return tomli.loads(raw)
        except tomli.TOMLDecodeError as exc:
            raise ConfigError(f"invalid TOML in {path}: {exc}", path=path) from exc


def _to_bool(value: Any, field_name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "1", "yes", "on"}:
            return True
        if lowered in {"false", "0", "no", "off"}:
            return False
    raise ConfigError(f"{field_name} must be a boolean")


def _to_str(value: Any, field_name: str) -> str:
    if not isinstance(value, str):
        raise ConfigError(f"{field_name} must be a string")
    stripped = value.strip()
    if not stripped:
        raise ConfigError(f"{field_name} must not be empty")
    return stripped


def _to_path(value: Any, field_name: str) -> Path:
    return Path(_to_str(value, field_name)).expanduser()


def _to_account_ids(value: Any, field_name: str) -> tuple[str, ...]:
    if isinstance(value, str):
        return (_to_str(value, field_name),)
    if not isinstance(value, list):
        raise ConfigError(f"{field_name} must be a list of strings")
    return tuple(_to_str(item, field_name) for item in value)


def _to_timeout(value: Any, field_name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{field_name} must be a number")
    if value <= 0:
        raise ConfigError(f"{field_name} must be greater than zero")
    return float(value)


def parse_config_mapping(source: Mapping[str, Any]) -> PartialConfig:
    """Build a :class:`PartialConfig` from a parsed config document.

    Keys the fetcher does not know about are ignored, so a stock kanidm
    client config (``verify_hostnames``, instance tables, ...) can be reused.
    """
    values: dict[str, Any] = {}

    if "debug" in source:
        values["debug"] = _to_bool(source["debug"], "debug")

    address = source.get("uri", source.get("addr"))
    if address is not None:
        values["server_address"] = _to_str(address, "uri")

    if "ca_path" in source:
        values["ca_path"] = _to_path(source["ca_path"], "ca_path")

    if "account_ids" in source:
        values["account_ids"] = _to_account_ids(source["account_ids"], "account_ids")

    if "modify_file" in source:
        values["modify_file"] = _to_bool(source["modify_file"], "modify_file")

    if "authorized_keys" in source:
        values["authorized_keys_path"] = _to_path(source["authorized_keys"], "authorized_keys")

    if "verify_ca" in source:
        values["verify_ca"] = _to_bool(source["verify_ca"], "verify_ca")

    if "connect_timeout" in source:
        values["connect_timeout"] = _to_timeout(source["connect_timeout"], "connect_timeout")

    return PartialConfig(**values)


def load_config_file(path: str | Path) -> PartialConfig:
    config_path = Path(path).expanduser()
    parsed = _load_toml(config_path)
    try:
        return parse_config_mapping(parsed)
    except ConfigError as exc:
        raise ConfigError(f"invalid config file {config_path}: {exc}", path=config_path) from exc


def load_optional_config_file(path: str | Path) -> PartialConfig | None:
    """Load a default config location, returning ``None`` if it is absent.

    A file that exists but cannot be parsed is still an error.
    """
    config_path = Path(path).expanduser()
    if not config_path.exists():
        logger.debug("config %s not present, skipping", config_path)
        return None
    logger.debug("attempting to use config %s", config_path)
    return load_config_file(config_path)


def config_from_env(environ: Mapping[str, str] | None = None) -> PartialConfig:
    env = os.environ if environ is None else environ
    values: dict[str, Any] = {}
    url = env.get(URL_ENV_VAR, "").strip()
    if url:
        values["server_address"] = url
    ca_path = env.get(CA_PATH_ENV_VAR, "").strip()
    if ca_path:
        values["ca_path"] = Path(ca_path).expanduser()
    return PartialConfig(**values)


def merge_configs(sources: Iterable[PartialConfig | None]) -> PartialConfig:
    """Fold partial configs given from highest to lowest precedence."""
    merged: dict[str, Any] = {f.name: None for f in fields(PartialConfig)}
    merged["account_ids"] = ()

    for source in sources:
        if source is None:
            continue
        for f in fields(PartialConfig):
            value = getattr(source, f.name)
            current = merged[f.name]
            if f.name in _LIST_FIELDS:
                merged[f.name] = current + tuple(value)
            elif f.name in _OR_FIELDS:
                if value is not None:
                    merged[f.name] = bool(current) or value
            elif current is None:
                merged[f.name] = value

    return PartialConfig(**merged)


def resolve(
    defaults: PartialConfig,
    system_file: PartialConfig | None,
    user_file: PartialConfig | None,
    explicit_file: PartialConfig | None,
    cli: PartialConfig,
    env: PartialConfig | None = None,
) -> EffectiveConfig:
    ordered = [
        (ConfigSource.COMMAND_LINE, cli),
        (ConfigSource.ENVIRONMENT, env),
        (ConfigSource.EXPLICIT_FILE, explicit_file),
        (ConfigSource.USER_FILE, user_file),
        (ConfigSource.SYSTEM_FILE, system_file),
        (ConfigSource.DEFAULT, defaults),
    ]
    for source, partial in ordered:
        if partial is not None:
            logger.debug("config from %s: %s", source.value, partial)
    merged = merge_configs(partial for _, partial in ordered)

    fallback = EffectiveConfig()
    resolved: dict[str, Any] = {}
    for f in fields(EffectiveConfig):
        value = getattr(merged, f.name)
        resolved[f.name] = getattr(fallback, f.name) if value is None else value
    return EffectiveConfig(**resolved)


def load_effective_config(
    cli: PartialConfig,
    *,
    explicit_path: str | Path | None = None,
    system_path: str | Path = DEFAULT_CLIENT_CONFIG_PATH,
    user_path: str | Path = DEFAULT_CLIENT_CONFIG_PATH_HOME,
    environ: Mapping[str, str] | None = None,
) -> EffectiveConfig:
    explicit_file = load_config_file(explicit_path) if explicit_path else None
    system_file = load_optional_config_file(system_path)
    user_file = load_optional_config_file(user_path)
    return resolve(
        default_config(),
        system_file,
        user_file,
        explicit_file,
        cli,
        env=config_from_env(environ),
    )
