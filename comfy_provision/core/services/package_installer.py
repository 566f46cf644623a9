"""
L3/L4 — Package installer: reconcile one DependencySpec.

Probe first, install only on a gap. On a converged environment
``ensure`` issues zero pip commands, which is what makes re-running a
provisioning pass cheap and safe.

A failed pip invocation is never raised. It is logged, the spec is
re-probed, and the outcome says ``failed``.
"""

from __future__ import annotations

import logging
from pathlib import Path

from comfy_provision.adapters.languages.python import ProbeResult, PythonEnvironment
from comfy_provision.core.models.receipt import Receipt
from comfy_provision.core.models.report import Outcome, ReconciliationReport
from comfy_provision.core.models.spec import DependencySpec
from comfy_provision.core.services.version_compare import (
    VersionCheck,
    build_matches,
    compare_versions,
)

logger = logging.getLogger(__name__)


class PackageInstaller:
    """Reconcile dependency specs against a Python environment.

    Args:
        env: The target venv.
        report: When given, every ``ensure`` / ``force_reinstall``
            records its outcome here.
    """

    def __init__(
        self,
        env: PythonEnvironment,
        report: ReconciliationReport | None = None,
    ) -> None:
        self.env = env
        self.report = report

    # ── Detection ───────────────────────────────────────────────

    def probe(self, spec: DependencySpec) -> ProbeResult:
        return self.env.probe(spec.import_name, spec.build_attr, spec.name)

    def check(self, spec: DependencySpec) -> tuple[VersionCheck, ProbeResult]:
        """Compare what is installed against the spec without changing anything."""
        found = self.probe(spec)
        if not found.ok:
            return VersionCheck.NOT_INSTALLED, found

        if spec.version and found.version is None:
            # Importable but reports no version: cannot prove the pin holds.
            return VersionCheck.UPGRADE_REQUIRED, found

        verdict = compare_versions(found.version or "", spec.version, spec.policy)
        if verdict == VersionCheck.SATISFIED and not build_matches(found.build, spec.build):
            logger.info(
                "%s %s has build %s, need %s",
                spec.name, found.version, found.build, spec.build,
            )
            verdict = VersionCheck.UPGRADE_REQUIRED
        return verdict, found

    # ── Reconciliation ──────────────────────────────────────────

    def ensure(self, spec: DependencySpec) -> Outcome:
        """Bring one spec to its desired state.

        Returns:
            ``already-satisfied`` (no pip call), ``installed`` (was
            absent), ``repaired`` (was at the wrong version) or ``failed``.
        """
        verdict, before = self.check(spec)

        if verdict == VersionCheck.SATISFIED:
            logger.info("✓ %s %s already satisfied", spec.name, before.version or "")
            return self._record(spec, Outcome.ALREADY_SATISFIED, before.version)

        mismatch = verdict == VersionCheck.UPGRADE_REQUIRED
        if mismatch:
            logger.info(
                "%s %s does not satisfy %s (%s), reinstalling",
                spec.name, before.version, spec.version, spec.policy,
            )
            if spec.uninstall:
                self.env.uninstall(spec.uninstall)
        else:
            logger.info("%s not installed, installing %s", spec.name, " ".join(spec.install_args))

        receipt = self._install(spec, force_reinstall=mismatch, no_deps=spec.no_deps)
        if receipt.failed:
            logger.warning("pip install for %s failed: %s", spec.name, _last_line(receipt.error))

        verdict, after = self.check(spec)
        if verdict == VersionCheck.SATISFIED:
            outcome = Outcome.REPAIRED if mismatch else Outcome.INSTALLED
            logger.info("✓ %s %s %s", spec.name, after.version or "", outcome.value)
            return self._record(spec, outcome, after.version)

        logger.error(
            "✗ %s still %s after install (found %s)",
            spec.name, verdict.value, after.version or after.error,
        )
        return self._record(
            spec, Outcome.FAILED, after.version,
            message=_last_line(receipt.error) or after.error or verdict.value,
        )

    def force_reinstall(self, spec: DependencySpec, no_deps: bool = False) -> Outcome:
        """Uninstall and reinstall ``spec`` regardless of what is there."""
        logger.info("Force-reinstalling %s%s", spec.name, " (--no-deps)" if no_deps else "")
        if spec.uninstall:
            self.env.uninstall(spec.uninstall)
        receipt = self._install(spec, force_reinstall=True, no_deps=no_deps or spec.no_deps)

        verdict, after = self.check(spec)
        if verdict == VersionCheck.SATISFIED:
            return self._record(spec, Outcome.REPAIRED, after.version)
        return self._record(
            spec, Outcome.FAILED, after.version,
            message=_last_line(receipt.error) or after.error or verdict.value,
        )

    def install_manifest(self, path: str | Path, retries: int = 0) -> Receipt:
        """``pip install -r path``, retried up to ``retries`` more times."""
        receipt = self.env.install_requirements(path)
        attempt = 0
        while receipt.failed and attempt < retries:
            attempt += 1
            logger.info("Retrying %s (attempt %d/%d)", path, attempt + 1, retries + 1)
            receipt = self.env.install_requirements(path)
        if receipt.failed:
            logger.warning("Manifest %s failed: %s", path, _last_line(receipt.error))
        return receipt

    # ── Internals ───────────────────────────────────────────────

    def _install(self, spec: DependencySpec, *, force_reinstall: bool, no_deps: bool) -> Receipt:
        return self.env.install(
            spec.install_args,
            index_url=spec.index_url,
            extra_index_url=spec.extra_index_url,
            no_deps=no_deps,
            force_reinstall=force_reinstall,
        )

    def _record(
        self,
        spec: DependencySpec,
        outcome: Outcome,
        version: str | None,
        message: str = "",
    ) -> Outcome:
        if self.report is not None:
            self.report.record(
                spec.name, outcome, kind="dependency", version=version, message=message,
            )
        return outcome


def _last_line(text: str | None) -> str:
    if not text:
        return ""
    lines = [ln for ln in text.strip().splitlines() if ln.strip()]
    # pip puts the useful part at the end
    return lines[-1][:300] if lines else ""
