"""Disk helpers shared by the settings store, chat histories and note loading.

Chat histories are rewritten on every turn, so writes go through a temporary
sibling file that replaces the target in one step. Notes handed to the
assistant may come from other editors, so reads sniff byte-order marks and
fold Windows or classic Mac line endings into ``\\n``.
"""

from __future__ import annotations

import codecs
import locale
import os
import tempfile
from pathlib import Path

__all__ = [
    "data_dir",
    "read_text",
    "write_text",
]

HOME_ENV_VAR = "NOTEPAL_HOME"

# UTF-32 marks must be tested first: the UTF-32-LE mark begins with the UTF-16-LE one.
_BYTE_ORDER_MARKS: tuple[tuple[bytes, str], ...] = (
    (codecs.BOM_UTF8, "utf-8-sig"),
    (codecs.BOM_UTF32_LE, "utf-32-le"),
    (codecs.BOM_UTF32_BE, "utf-32-be"),
    (codecs.BOM_UTF16_LE, "utf-16-le"),
    (codecs.BOM_UTF16_BE, "utf-16-be"),
)
_LINE_ENDINGS = frozenset({"\n", "\r\n", "\r"})


def data_dir(base_dir: Path | str | None = None) -> Path:
    """Directory holding ``settings.json``, the ``chats/`` folder and ``logs/``.

    An explicit ``base_dir`` wins, then ``$NOTEPAL_HOME``, then ``~/.notepal``.
    """

    chosen = base_dir or os.environ.get(HOME_ENV_VAR) or Path.home() / ".notepal"
    return Path(chosen).expanduser()


def read_text(
    path: Path | str,
    *,
    encoding: str | None = None,
    errors: str = "strict",
    normalize_newlines: bool = True,
) -> str:
    """Decode ``path`` into a string.

    Args:
        path: File to read.
        encoding: Forces a codec instead of sniffing one from the bytes.
        errors: Codec error policy passed to :meth:`bytes.decode`.
        normalize_newlines: Fold ``\\r\\n`` and bare ``\\r`` into ``\\n``.
    """

    payload = Path(path).read_bytes()
    text = payload.decode(encoding or _sniff_encoding(payload), errors=errors)
    text = text.removeprefix("\ufeff")
    if normalize_newlines:
        text = _unify_line_endings(text)
    return text


def write_text(
    path: Path | str,
    content: str,
    *,
    encoding: str = "utf-8",
    newline: str = "\n",
    atomic: bool = True,
) -> Path:
    """Persist ``content`` with ``newline`` line endings and return the target path."""

    if newline not in _LINE_ENDINGS:
        raise ValueError(f"Unsupported newline policy: {newline!r}")
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    body = _unify_line_endings(content)
    if newline != "\n":
        body = body.replace("\n", newline)

    if atomic:
        _replace_atomically(target, body, encoding)
    else:
        with target.open("w", encoding=encoding, newline="") as handle:
            _flush_to_disk(handle, body)
    return target


# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------


def _replace_atomically(target: Path, body: str, encoding: str) -> None:
    fd, scratch = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
    scratch_path = Path(scratch)
    try:
        with os.fdopen(fd, "w", encoding=encoding, newline="") as handle:
            _flush_to_disk(handle, body)
        os.replace(scratch_path, target)
    except BaseException:
        scratch_path.unlink(missing_ok=True)
        raise


def _flush_to_disk(handle, body: str) -> None:
    handle.write(body)
    handle.flush()
    os.fsync(handle.fileno())


def _sniff_encoding(payload: bytes) -> str:
    for mark, codec in _BYTE_ORDER_MARKS:
        if payload.startswith(mark):
            return codec

    candidates = dict.fromkeys(["utf-8", locale.getpreferredencoding(False) or "utf-8", "latin-1"])
    for codec in candidates:
        try:
            payload.decode(codec)
        except UnicodeDecodeError:
            continue
        return codec
    return "utf-8"


def _unify_line_endings(text: str) -> str:
    if "\r" in text:
        text = text.replace("\r\n", "\n").replace("\r", "\n")
    return text
