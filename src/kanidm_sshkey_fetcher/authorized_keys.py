"""Managed block maintenance for authorized_keys files.

Keys written by the fetcher live between two marker lines::

    # Managed Keys by kanidm_sshkey_fetcher
    ssh-ed25519 AAAA... alice@example
    <blank line>
    # End of Managed Keys by kanidm_sshkey_fetcher

Everything outside the markers belongs to the user and is preserved byte for
byte. The content between the markers is replaced wholesale on every sync.
"""

from __future__ import annotations

import logging
import os
import stat
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from kanidm_sshkey_fetcher.errors import FileSyncError

logger = logging.getLogger(__name__)

START_MARKER = "# Managed Keys by kanidm_sshkey_fetcher"
END_MARKER = "# End of Managed Keys by kanidm_sshkey_fetcher"

NEW_FILE_MODE = 0o600


@dataclass(frozen=True)
class ParsedKeysFile:
    """An authorized_keys file split around its managed region.

    ``prefix`` ends with the start marker line (including its line break),
    ``suffix`` begins with the end marker line. When no well-formed region
    exists ``region`` is ``None``, ``prefix`` holds the whole content and
    ``suffix`` is empty.
    """

    prefix: str
    region: str | None
    suffix: str

    @property
    def has_region(self) -> bool:
        return self.region is not None


def _find_line(lines: list[str], marker: str, begin: int = 0) -> int | None:
    for index in range(begin, len(lines)):
        line = lines[index]
        if line.rstrip("\r\n") == marker:
            return index
    return None


def parse_managed_region(content: str) -> ParsedKeysFile:
    lines = content.splitlines(keepends=True)
    start = _find_line(lines, START_MARKER)
    end = None if start is None else _find_line(lines, END_MARKER, start + 1)

    if start is None or end is None:
        return ParsedKeysFile(prefix=content, region=None, suffix="")

    return ParsedKeysFile(
        prefix="".join(lines[: start + 1]),
        region="".join(lines[start + 1 : end]),
        suffix="".join(lines[end:]),
    )


def render_key_block(key_lines: Iterable[str]) -> str:
    return "".join(f"{key}\n" for key in key_lines) + "\n"


def apply_managed_block(content: str, key_lines: Iterable[str]) -> str:
    """Return ``content`` with its managed region set to ``key_lines``."""
    block = render_key_block(key_lines)
    parsed = parse_managed_region(content)
    if parsed.has_region:
        return parsed.prefix + block + parsed.suffix

    # Appended form matches what an in-place replacement renders, so the
    # next sync leaves the file unchanged.
    return f"{content}\n{START_MARKER}\n{block}{END_MARKER}\n"


def read_authorized_keys(path: str | Path) -> str:
    keys_path = Path(path)
    try:
        with keys_path.open(encoding="utf-8", newline="") as handle:
            return handle.read()
    except FileNotFoundError:
        return ""
    except (OSError, UnicodeDecodeError) as exc:
        raise FileSyncError(f"failed to read {keys_path}: {exc}") from exc


def _atomic_write(path: Path, content: str) -> None:
    try:
        mode = stat.S_IMODE(path.stat().st_mode)
    except FileNotFoundError:
        mode = NEW_FILE_MODE

    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def upsert_managed_block(path: str | Path, key_lines: Iterable[str]) -> Path:
    """Write ``key_lines`` into the managed region of the file at ``path``.

    The parent directory is created if missing. The file is replaced via a
    temporary file and rename, so readers never observe a partial write.
    """
    keys_path = Path(path).expanduser()
    keys = list(key_lines)

    try:
        keys_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise FileSyncError(f"failed to create directory {keys_path.parent}: {exc}") from exc

    current = read_authorized_keys(keys_path)
    updated = apply_managed_block(current, keys)

    try:
        _atomic_write(keys_path, updated)
    except OSError as exc:
        raise FileSyncError(f"failed to write {keys_path}: {exc}") from exc

    logger.debug("wrote %d managed keys to %s", len(keys), keys_path)
    return keys_path
