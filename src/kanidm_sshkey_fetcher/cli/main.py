"""Command-line interface for kanidm-sshkey-fetcher."""

from __future__ import annotations

import argparse
import logging
import re
import sys
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version
from pathlib import Path
from typing import Sequence

from kanidm_sshkey_fetcher.client import build_client
from kanidm_sshkey_fetcher.config import (
    DEFAULT_CLIENT_CONFIG_PATH,
    DEFAULT_CLIENT_CONFIG_PATH_HOME,
    PartialConfig,
    load_effective_config,
)
from kanidm_sshkey_fetcher.errors import ClientBuildError, ConfigError, FileSyncError
from kanidm_sshkey_fetcher.fetcher import run

EXIT_SUCCESS = 0
EXIT_CONFIG_ERROR = 1
EXIT_CLIENT_ERROR = 2
EXIT_FILE_ERROR = 3

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_LOGGERS = ("kanidm_sshkey_fetcher", "urllib3")


def _version() -> str:
    try:
        return pkg_version("kanidm-sshkey-fetcher")
    except PackageNotFoundError:
        return "0.0.0+local"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kanidm-sshkey-fetcher",
        description="Fetch SSH public keys of kanidm accounts into authorized_keys",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"kanidm-sshkey-fetcher {_version()}",
    )
    parser.add_argument("-d", "--debug", action="store_true", default=None)
    parser.add_argument(
        "-H",
        "--url",
        dest="server_address",
        default=None,
        help="The address of the kanidm server to connect to",
    )
    parser.add_argument(
        "-C",
        "--ca",
        dest="ca_path",
        default=None,
        help="The certificate file to use",
    )
    parser.add_argument(
        "-c",
        "--config",
        dest="config_path",
        default=None,
        help=(
            "The configuration file to use, read in addition to "
            f"{DEFAULT_CLIENT_CONFIG_PATH} and {DEFAULT_CLIENT_CONFIG_PATH_HOME}"
        ),
    )
    parser.add_argument(
        "-m",
        "--modify-file",
        action="store_true",
        default=None,
        help="Write the fetched keys into the managed block of the authorized keys file",
    )
    parser.add_argument(
        "-f",
        "--authorized-keys",
        dest="authorized_keys_path",
        default=None,
        help="The authorized keys file to update (default: ~/.ssh/authorized_keys)",
    )
    parser.add_argument(
        "account_ids",
        nargs="*",
        default=[],
        help="The account ids to fetch, space separated",
    )
    return parser


def _cli_config(args: argparse.Namespace) -> PartialConfig:
    return PartialConfig(
        debug=args.debug,
        server_address=args.server_address,
        ca_path=Path(args.ca_path).expanduser() if args.ca_path else None,
        account_ids=tuple(args.account_ids),
        modify_file=args.modify_file,
        authorized_keys_path=(
            Path(args.authorized_keys_path).expanduser() if args.authorized_keys_path else None
        ),
    )


def _configure_logging(debug: bool, stderr) -> None:
    level = logging.DEBUG if debug else logging.WARNING
    for name in _LOGGERS:
        logger = logging.getLogger(name)
        for existing in [h for h in logger.handlers if getattr(h, "_fetcher_cli", False)]:
            logger.removeHandler(existing)
        if name == "urllib3" and not debug:
            continue
        handler = logging.StreamHandler(stderr)
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        handler._fetcher_cli = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
        logger.setLevel(level)


def _sanitize_error_text(value: str) -> str:
    return re.sub(r"(?i)(bearer\s+)(\S+)", r"\1[REDACTED]", value)


def _print_error(stderr, prefix: str, message: str, *, code: int) -> int:
    print(f"{prefix}: {_sanitize_error_text(message)}", file=stderr)
    return code


def main(argv: Sequence[str] | None = None, *, stdout=sys.stdout, stderr=sys.stderr) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(bool(args.debug), stderr)

    try:
        config = load_effective_config(
            _cli_config(args),
            explicit_path=args.config_path,
            system_path=DEFAULT_CLIENT_CONFIG_PATH,
            user_path=DEFAULT_CLIENT_CONFIG_PATH_HOME,
        )
    except ConfigError as exc:
        return _print_error(stderr, "config error", str(exc), code=EXIT_CONFIG_ERROR)

    _configure_logging(config.debug, stderr)

    try:
        result = run(config, client_factory=build_client, stdout=stdout)
    except ClientBuildError as exc:
        return _print_error(stderr, "client error", str(exc), code=EXIT_CLIENT_ERROR)
    except FileSyncError as exc:
        return _print_error(stderr, "file error", str(exc), code=EXIT_FILE_ERROR)

    if result.written_path is not None:
        logging.getLogger(__name__).debug(
            "updated %s with %d keys", result.written_path, len(result.keys)
        )
    return EXIT_SUCCESS


if __name__ == "__main__":
    raise SystemExit(main())
