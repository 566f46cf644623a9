"""
Marker file persistence — atomic read/write for ProvisionMarker.

The marker lives at ``<workspace>/.provisioned`` and is overwritten by
every run. It is JSON by default; the ``text`` format keeps the
``Key: value`` layout older tooling greps for. Reading accepts either.

Writes are atomic (temp file in the same directory, then rename) so a
run killed mid-write never leaves a half marker behind.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from comfy_provision.core.models.report import ProvisionMarker

logger = logging.getLogger(__name__)

# text-format key → marker field
_TEXT_KEYS = {
    "Script version": "script_version",
    "Last provisioned": "provisioned_at",
    "PyTorch": "torch_version",
    "CUDA": "cuda_version",
    "Triton": "triton_version",
    "Frontend": "frontend_version",
}


def save_marker(marker: ProvisionMarker, path: Path, fmt: str = "json") -> None:
    """Write the marker atomically.

    Args:
        marker: What to persist.
        path: Target file.
        fmt: ``json`` or ``text``.
    """
    if fmt == "text":
        content = marker.render_text()
    else:
        content = json.dumps(marker.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n"

    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".provisioned_", suffix=".tmp")
    tmp = Path(tmp_path)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(content)
        tmp.replace(path)
    except Exception:
        tmp.unlink(missing_ok=True)
        logger.error("Failed to write marker to %s", path)
        raise
    logger.info("Marker written to %s", path)


def load_marker(path: Path) -> ProvisionMarker | None:
    """Read a marker back, or None if there is none or it is unreadable."""
    if not path.is_file():
        logger.debug("No marker at %s", path)
        return None

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        logger.warning("Cannot read marker %s: %s", path, e)
        return None

    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return parse_text_marker(raw)

    try:
        return ProvisionMarker.model_validate(data)
    except Exception as e:
        logger.warning("Corrupt marker %s: %s", path, e)
        return None


def parse_text_marker(raw: str) -> ProvisionMarker | None:
    """Parse the ``Key: value`` marker format."""
    fields: dict[str, object] = {}
    for line in raw.splitlines():
        key, sep, value = line.partition(":")
        if not sep:
            continue
        key, value = key.strip(), value.strip()

        if key in _TEXT_KEYS:
            fields[_TEXT_KEYS[key]] = None if value == "FAILED" else value
        elif key == "pip":
            fields["pip_accessible"] = value != "FAILED"
            fields["pip_version"] = None if value == "FAILED" else value
        elif key == "CUDA available":
            fields["cuda_available"] = None if value == "unknown" else value.lower() == "true"
        elif key == "All verified":
            fields["all_verified"] = value.lower() == "true"
        elif key == "Failed nodes":
            fields["failed_plugins"] = [] if value == "None" else value.split()
        elif key == "Degraded nodes":
            fields["degraded_plugins"] = value.split()
        elif key == "Drift corrected":
            fields["drift_corrected"] = value.lower() == "true"

    if not fields:
        return None
    return ProvisionMarker.model_validate(fields)
