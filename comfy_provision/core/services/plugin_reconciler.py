"""
L3/L4 — Plugin reconciler: ComfyUI custom-node directories.

Per configured plugin::

    absent    → clone → health check → installed | failed
    present   → health check → already-satisfied | unhealthy
    unhealthy → delete → clone once → health check → repaired | failed

Non-critical plugins whose manifest will not install are ``degraded``:
left in place, retried once, never reported healthy.

Before any of that the plugin root is swept of hidden directories and
``__pycache__`` trees. A stray ``.ipynb_checkpoints`` or ``.git`` in
custom_nodes is enough for ComfyUI to skip loading every plugin.
"""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from comfy_provision.adapters.vcs.git import GitClient
from comfy_provision.core.models.report import Outcome, ReconciliationReport
from comfy_provision.core.models.spec import PluginSpec
from comfy_provision.core.services.package_installer import PackageInstaller

logger = logging.getLogger(__name__)

IMPORT_MARKER = "__init__.py"


class Health(StrEnum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class HealthResult:
    status: Health
    reason: str = ""

    @property
    def healthy(self) -> bool:
        return self.status == Health.HEALTHY


def _is_stray(name: str) -> bool:
    return name.startswith(".") or name == "__pycache__"


class PluginReconciler:
    """Reconcile plugin directories under one plugin root.

    Args:
        root: The ``custom_nodes`` directory.
        installer: Installs plugin manifests.
        git: Clones plugin sources.
        excluded: Directory names never health-checked or installed.
        report: Outcomes are recorded here when given.
        manifest_retries: Extra manifest attempts for non-critical plugins.
    """

    def __init__(
        self,
        root: str | Path,
        installer: PackageInstaller,
        git: GitClient,
        *,
        excluded: Iterable[str] = (),
        report: ReconciliationReport | None = None,
        manifest_retries: int = 1,
    ) -> None:
        self.root = Path(root)
        self.installer = installer
        self.git = git
        self.excluded = set(excluded)
        self.report = report
        self.manifest_retries = manifest_retries

    def path_of(self, plugin: PluginSpec) -> Path:
        """Plugin directory; a relative ``path`` is taken from the plugin root."""
        if not plugin.path:
            return self.root / plugin.name
        return self.root / plugin.path

    def is_excluded(self, name: str) -> bool:
        return name in self.excluded

    # ── Stray sweep ─────────────────────────────────────────────

    def clean_plugin_root(self) -> list[Path]:
        """Delete hidden top-level directories and every ``__pycache__``.

        Returns:
            The paths that were removed.
        """
        if not self.root.is_dir():
            return []

        removed: list[Path] = []

        for entry in sorted(self.root.iterdir()):
            if entry.name.startswith(".") and (entry.is_dir() or entry.is_symlink()):
                if _remove(entry):
                    removed.append(entry)

        # top-down walk; pruning a removed cache keeps os.walk out of it
        for dirpath, dirnames, _files in os.walk(self.root):
            for name in list(dirnames):
                if name == "__pycache__":
                    path = Path(dirpath) / name
                    if _remove(path):
                        removed.append(path)
                    dirnames.remove(name)

        if removed:
            logger.info("Removed %d stray directories from %s", len(removed), self.root)
            for path in removed:
                logger.debug("  removed %s", path)
        return removed

    # ── Health ──────────────────────────────────────────────────

    def health_check(self, plugin: PluginSpec, critical: bool | None = None) -> HealthResult:
        """Decide whether a plugin directory is usable.

        The required marker is checked before ``__init__.py`` is created,
        so a plugin whose marker *is* ``__init__.py`` fails when it is
        missing instead of being papered over.
        """
        critical = plugin.critical if critical is None else critical
        path = self.path_of(plugin)

        if not path.is_dir():
            return HealthResult(Health.UNHEALTHY, f"{path} is not a directory")

        if plugin.marker and not (path / plugin.marker).exists():
            return HealthResult(Health.UNHEALTHY, f"required file {plugin.marker} missing")

        init = path / IMPORT_MARKER
        if not init.exists():
            logger.info("Creating missing %s in %s", IMPORT_MARKER, plugin.name)
            init.touch()

        manifest = path / plugin.manifest
        if manifest.is_file():
            retries = 0 if critical else self.manifest_retries
            receipt = self.installer.install_manifest(manifest, retries=retries)
            if receipt.failed:
                status = Health.UNHEALTHY if critical else Health.DEGRADED
                return HealthResult(status, f"{plugin.manifest} failed to install")

        return HealthResult(Health.HEALTHY)

    # ── Reconciliation ──────────────────────────────────────────

    def ensure(self, plugin: PluginSpec) -> Outcome:
        """Bring one configured plugin to a healthy state if possible."""
        path = self.path_of(plugin)

        if not path.exists():
            logger.info("%s not present", plugin.name)
            return self._clone_and_verify(plugin, Outcome.INSTALLED)

        health = self.health_check(plugin)
        if health.healthy:
            logger.info("✓ %s healthy", plugin.name)
            return self._record(plugin.name, Outcome.ALREADY_SATISFIED)
        if health.status == Health.DEGRADED:
            logger.warning("⚠ %s degraded: %s", plugin.name, health.reason)
            return self._record(plugin.name, Outcome.DEGRADED, health.reason)

        logger.warning("%s unhealthy: %s", plugin.name, health.reason)
        if not plugin.url:
            logger.error("✗ %s has no source to re-clone from", plugin.name)
            return self._record(plugin.name, Outcome.FAILED, health.reason)

        if not _remove(path):
            return self._record(plugin.name, Outcome.FAILED, f"could not delete {path}")
        return self._clone_and_verify(plugin, Outcome.REPAIRED)

    def discover(self, known: Iterable[PluginSpec] = ()) -> list[PluginSpec]:
        """Every other plugin directory under the root, as non-critical specs."""
        if not self.root.is_dir():
            return []

        taken = {self.path_of(p).resolve() for p in known}
        found: list[PluginSpec] = []
        for entry in sorted(self.root.iterdir()):
            if not entry.is_dir() or _is_stray(entry.name):
                continue
            if self.is_excluded(entry.name):
                logger.debug("Skipping excluded directory %s", entry.name)
                continue
            if entry.resolve() in taken:
                continue
            found.append(PluginSpec(name=entry.name, path=str(entry), critical=False))
        return found

    def reconcile_all(self, plugins: Iterable[PluginSpec]) -> dict[str, Outcome]:
        """Sweep strays, reconcile ``plugins``, then health-check the rest."""
        plugins = list(plugins)
        self.root.mkdir(parents=True, exist_ok=True)
        self.clean_plugin_root()

        outcomes: dict[str, Outcome] = {}
        for plugin in plugins:
            if self.is_excluded(plugin.name):
                logger.info("Skipping excluded plugin %s", plugin.name)
                continue
            outcomes[plugin.name] = self.ensure(plugin)

        others = self.discover(plugins)
        if others:
            logger.info("Checking %d other plugin directories", len(others))
        for plugin in others:
            health = self.health_check(plugin, critical=False)
            if health.healthy:
                outcome = self._record(plugin.name, Outcome.ALREADY_SATISFIED)
            elif health.status == Health.DEGRADED:
                logger.warning("⚠ %s degraded: %s", plugin.name, health.reason)
                outcome = self._record(plugin.name, Outcome.DEGRADED, health.reason)
            else:
                outcome = self._record(plugin.name, Outcome.FAILED, health.reason)
            outcomes[plugin.name] = outcome

        return outcomes

    # ── Internals ───────────────────────────────────────────────

    def _clone_and_verify(self, plugin: PluginSpec, success: Outcome) -> Outcome:
        if not plugin.url:
            return self._record(plugin.name, Outcome.FAILED, "missing and no source url")

        path = self.path_of(plugin)
        path.parent.mkdir(parents=True, exist_ok=True)
        receipt = self.git.clone(plugin.url, path)
        if receipt.failed:
            return self._record(plugin.name, Outcome.FAILED, "clone failed")

        health = self.health_check(plugin)
        if health.healthy:
            logger.info("✓ %s %s", plugin.name, success.value)
            return self._record(plugin.name, success)
        if health.status == Health.DEGRADED:
            logger.warning("⚠ %s degraded: %s", plugin.name, health.reason)
            return self._record(plugin.name, Outcome.DEGRADED, health.reason)

        logger.error("✗ %s still unhealthy after fresh clone: %s", plugin.name, health.reason)
        return self._record(plugin.name, Outcome.FAILED, health.reason)

    def _record(self, name: str, outcome: Outcome, message: str = "") -> Outcome:
        if self.report is not None:
            self.report.record(name, outcome, kind="plugin", message=message)
        return outcome


def _remove(path: Path) -> bool:
    """Delete a file, symlink or directory tree. Logs and returns False on error."""
    try:
        if path.is_symlink() or path.is_file():
            path.unlink()
        else:
            shutil.rmtree(path)
    except OSError as e:
        logger.warning("Could not remove %s: %s", path, e)
        return False
    return True
