"""Ecosystem-specific package name normalization."""

from __future__ import annotations

_PYPI_SEPARATORS = frozenset("-_.")


def npm(name: str) -> str:
    """Lowercase an npm name, keeping any scope prefix intact."""
    return name.strip().lower()


def pypi(name: str) -> str:
    """PEP 503 normalization: lowercase and collapse separator runs to '-'."""
    chars: list[str] = []
    prev_sep = False
    for ch in name.strip().lower():
        if ch in _PYPI_SEPARATORS or ch.isspace():
            if not prev_sep:
                chars.append("-")
                prev_sep = True
            continue
        chars.append(ch)
        prev_sep = False
    return "".join(chars).strip("-")