"""Parsing of ``KEY=VALUE`` secret assignments.

Secrets usually reach the SDK as command-line style assignments or the
lines of an env file.  Both are folded into one ordered
:class:`~cvm_deploy.core.types.SecretEntry` list where the last
assignment of a key wins but keeps the position of its first
appearance.
"""
from __future__ import annotations

from collections.abc import Iterable

from cvm_deploy.core.types import SecretEntry


def parse_assignment(line: str) -> tuple[str, str] | None:
    """Split one ``KEY=VALUE`` line, or return ``None`` if it is not one.

    Blank lines, ``#`` comments, lines without ``=`` and assignments with
    an empty key or an empty value are ignored.  Everything after the
    first ``=`` is the value, so values may contain ``=`` themselves.
    """
    stripped = line.strip()
    if not stripped or stripped.startswith("#") or "=" not in stripped:
        return None
    key, _, value = stripped.partition("=")
    key = key.strip()
    value = value.strip()
    if not key or not value:
        return None
    return key, value


def parse_env_lines(*sources: Iterable[str]) -> list[SecretEntry]:
    """Fold one or more sequences of assignment lines into secret entries.

    Later sources override earlier ones, so passing
    ``(cli_assignments, env_file_lines)`` lets the file win.
    """
    merged: dict[str, str] = {}
    for source in sources:
        for line in source:
            parsed = parse_assignment(line)
            if parsed is not None:
                key, value = parsed
                merged[key] = value
    return [SecretEntry(key=key, value=value) for key, value in merged.items()]


def parse_env_text(text: str) -> list[SecretEntry]:
    """Parse the content of an env file."""
    return parse_env_lines(text.splitlines())
