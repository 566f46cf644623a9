"""
Cache clearing — pip's wheel cache and ComfyUI's frontend caches.

Run when the framework was already at its pin: nothing else in the
run will rebuild these, and a stale web cache keeps serving the old
frontend after a version change.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from comfy_provision.adapters.languages.python import PythonEnvironment

logger = logging.getLogger(__name__)


def cache_dirs(workspace: Path, comfyui_root: Path) -> list[Path]:
    """Directories cleared on a converged framework."""
    return [
        workspace / ".cache" / "pip",
        comfyui_root / "web" / "cache",
        comfyui_root / ".cache",
    ]


def clear_caches(env: PythonEnvironment, workspace: Path, comfyui_root: Path) -> list[Path]:
    """Purge pip's cache and delete the cache directories that exist.

    Returns:
        The directories removed.
    """
    receipt = env.cache_purge()
    if receipt.failed:
        logger.debug("pip cache purge: %s", (receipt.error or "").strip()[-200:])

    removed: list[Path] = []
    for path in cache_dirs(workspace, comfyui_root):
        if not path.is_dir():
            continue
        try:
            shutil.rmtree(path)
        except OSError as e:
            logger.warning("Could not clear %s: %s", path, e)
            continue
        removed.append(path)

    if removed:
        logger.info("Cleared caches: %s", ", ".join(str(p) for p in removed))
    return removed
