"""
L1 Domain — Version comparison (pure).

Decides whether a detected package version satisfies a required one.
No I/O, no subprocess.

Versions are compared as integer tokens, not strings. A required
version with fewer components is a prefix: ``2.7`` is satisfied by
``2.7.0`` and ``2.7.5`` but not by ``2.70.1``. Anything after the
numeric part (``+cu128``, ``rc1``, ``.dev2025``) is ignored; build
tags are checked separately with :func:`build_matches`.
"""

from __future__ import annotations

import re
from enum import StrEnum

_NUMERIC_HEAD = re.compile(r"^\s*[vV]?(\d+(?:\.\d+)*)")

MAX_COMPONENTS = 3


class VersionCheck(StrEnum):
    """Result of comparing a detected version against a requirement."""

    SATISFIED = "satisfied"
    UPGRADE_REQUIRED = "upgrade-required"
    NOT_INSTALLED = "not-installed"


def strip_suffix(version: str) -> str:
    """Numeric dotted head of a version string.

    >>> strip_suffix("2.7.0+cu128")
    '2.7.0'
    >>> strip_suffix("3.3.1rc1")
    '3.3.1'

    Returns an empty string when there is no leading number.
    """
    match = _NUMERIC_HEAD.match(version)
    return match.group(1) if match else ""


def parse_version(version: str | None) -> tuple[int, ...] | None:
    """Parse up to three integer components, or None if unparseable.

    The tuple keeps only the components actually written, so callers
    can tell ``2.7`` from ``2.7.0``. Padding happens at comparison.
    """
    if not version:
        return None
    head = strip_suffix(version)
    if not head:
        return None
    return tuple(int(part) for part in head.split(".")[:MAX_COMPONENTS])


def _pad(parts: tuple[int, ...], length: int) -> tuple[int, ...]:
    return parts + (0,) * (length - len(parts))


def compare_versions(
    detected: str | None,
    required: str | None,
    policy: str = "pin",
) -> VersionCheck:
    """Compare a detected version against a required one.

    Args:
        detected: Version reported by the import probe; None when the
            import failed.
        required: Version the spec asks for; None or empty accepts any.
        policy: ``pin`` (prefix must match exactly) or ``minimum``
            (prefix match or anything newer).

    Returns:
        The VersionCheck verdict.

    Raises:
        ValueError: If ``required`` is given but has no numeric part,
            or ``policy`` is unknown.
    """
    if policy not in ("pin", "minimum"):
        raise ValueError(f"Unknown version policy: {policy!r}")

    if detected is None:
        return VersionCheck.NOT_INSTALLED

    if not required:
        return VersionCheck.SATISFIED

    req = parse_version(required)
    if req is None:
        raise ValueError(f"Unparseable required version: {required!r}")

    det = parse_version(detected)
    if det is None:
        return VersionCheck.UPGRADE_REQUIRED

    # Compare only as many components as the requirement names;
    # a shorter detected version is zero-padded.
    width = len(req)
    head = _pad(det, width)[:width]

    if head == req:
        return VersionCheck.SATISFIED
    if policy == "minimum" and _pad(det, MAX_COMPONENTS) > _pad(req, MAX_COMPONENTS):
        return VersionCheck.SATISFIED
    return VersionCheck.UPGRADE_REQUIRED


def build_matches(detected: str | None, required: str | None) -> bool:
    """Whether a detected build tag (e.g. CUDA ``12.8``) meets the requirement.

    No requirement always matches. A missing detected build never does.
    """
    if not required:
        return True
    if detected is None:
        return False
    if parse_version(required) is None:
        return detected.strip() == required.strip()
    return compare_versions(detected, required, "pin") == VersionCheck.SATISFIED
