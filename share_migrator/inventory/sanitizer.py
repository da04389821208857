"""File name sanitization for names that Azure Files / Windows reject.

Invalid characters are ``< > : " / \\ | ? *`` and control characters. Each
one is replaced with a configurable replacement character, runs of the
replacement are collapsed, and trailing replacements, spaces and dots are
stripped from the stem::

    >>> sanitize_name("bad<name>.txt")
    'bad_name.txt'
"""

import re
from pathlib import Path
from typing import Optional

INVALID_CHARS = frozenset('<>:"/\\|?*') | frozenset(chr(c) for c in range(32))

# Undecodable bytes (POSIX) and unpaired UTF-16 halves (Windows) surface as
# surrogate code points and cannot be stored in Azure Files names
_SURROGATE_RANGE = ("\ud800", "\udfff")

RESERVED_NAMES = frozenset(
    ["CON", "PRN", "AUX", "NUL"]
    + [f"COM{i}" for i in range(1, 10)]
    + [f"LPT{i}" for i in range(1, 10)]
)

_TRAILING_STRIP = " ."


def validate_replacement_char(replacement: str) -> None:
    """Raise ``ValueError`` unless ``replacement`` is one valid character."""
    if len(replacement) != 1:
        raise ValueError("Replacement must be exactly one character")
    if _is_invalid_char(replacement) or replacement in _TRAILING_STRIP:
        raise ValueError(f"Replacement character {replacement!r} is itself invalid")


def _split_extension(name: str):
    # Leading-dot names (".profile") have no extension
    dot = name.rfind(".")
    if dot <= 0:
        return name, ""
    return name[:dot], name[dot:]


def sanitize_name(name: str, replacement: str = "_") -> str:
    """Return a name safe for Windows/Azure Files.

    Args:
        name: Single path component (no separators are expected, any found
            are replaced like the other invalid characters)
        replacement: Replacement character

    Returns:
        The sanitized name. Names that are already valid are returned unchanged.
    """
    validate_replacement_char(replacement)

    replaced = "".join(replacement if _is_invalid_char(ch) else ch for ch in name)
    if replaced == name and not _needs_trailing_fix(name) and not _is_reserved(name):
        return name

    collapsed = re.sub(re.escape(replacement) + "{2,}", replacement, replaced)
    stem, ext = _split_extension(collapsed)
    stem = stem.rstrip(replacement + _TRAILING_STRIP)
    ext = ext.rstrip(replacement + _TRAILING_STRIP)
    if ext == ".":
        ext = ""
    if not stem:
        stem = replacement

    if _is_reserved(stem):
        stem = stem + replacement
    return stem + ext


def _is_invalid_char(ch: str) -> bool:
    return ch in INVALID_CHARS or _SURROGATE_RANGE[0] <= ch <= _SURROGATE_RANGE[1]


def _needs_trailing_fix(name: str) -> bool:
    return name != name.rstrip(_TRAILING_STRIP)


def _is_reserved(name: str) -> bool:
    stem = name.split(".", 1)[0]
    return stem.upper() in RESERVED_NAMES


def unique_target(directory: Path, name: str) -> Path:
    """Return ``directory/name``, adding `` (n)`` before the extension on conflicts."""
    candidate = directory / name
    if not candidate.exists():
        return candidate
    stem, ext = _split_extension(name)
    counter = 1
    while True:
        candidate = directory / f"{stem} ({counter}){ext}"
        if not candidate.exists():
            return candidate
        counter += 1


def rename_entry(path: Path, new_name: str) -> Path:
    """Rename ``path`` inside its directory, avoiding collisions.

    Returns:
        The new path

    Raises:
        OSError: If the rename fails
    """
    target = unique_target(path.parent, new_name)
    path.rename(target)
    return target


def sanitized_or_none(name: str, replacement: str = "_") -> Optional[str]:
    """The sanitized name, or ``None`` if the name is already valid."""
    new_name = sanitize_name(name, replacement)
    return None if new_name == name else new_name
