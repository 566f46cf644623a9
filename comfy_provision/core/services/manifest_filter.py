"""
L1 Domain — requirements-file filtering (pure).

ComfyUI's requirements.txt lists ``torch`` unpinned. Installing it as-is
on a server whose framework is not at the pinned build lets pip pull
the newest torch from PyPI, so the framework lines are removed first.

Lines are matched by canonical distribution name (``packaging``), so
removing ``torch`` leaves ``torchsde`` alone.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

from packaging.requirements import InvalidRequirement, Requirement
from packaging.utils import canonicalize_name

logger = logging.getLogger(__name__)


def requirement_name(line: str) -> str | None:
    """Canonical distribution name of one requirements line.

    Blank lines, comments, pip options (``-r``, ``--index-url``) and
    lines ``packaging`` cannot parse (URLs, local paths) give None.
    """
    text = line.split(" #", 1)[0].strip()
    if not text or text.startswith("#") or text.startswith("-"):
        return None
    try:
        return canonicalize_name(Requirement(text).name)
    except InvalidRequirement:
        return None


def filter_requirements(text: str, exclude: Iterable[str]) -> tuple[str, list[str]]:
    """Drop lines naming any distribution in ``exclude``.

    Returns:
        (filtered text, removed lines). Every other line, comments and
        options included, is kept verbatim.
    """
    excluded = {canonicalize_name(name) for name in exclude}
    kept: list[str] = []
    removed: list[str] = []

    for line in text.splitlines():
        name = requirement_name(line)
        if name is not None and name in excluded:
            removed.append(line.strip())
        else:
            kept.append(line)

    filtered = "\n".join(kept)
    if kept and text.endswith("\n"):
        filtered += "\n"
    return filtered, removed


def write_filtered(source: Path, dest: Path, exclude: Iterable[str]) -> list[str]:
    """Write a filtered copy of ``source`` to ``dest``; return removed lines."""
    filtered, removed = filter_requirements(source.read_text(encoding="utf-8"), exclude)
    dest.write_text(filtered, encoding="utf-8")
    if removed:
        logger.info("Filtered from %s: %s", source.name, ", ".join(removed))
    return removed
