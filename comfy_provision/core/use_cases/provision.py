"""
Provision use case — one full reconciliation pass over the server.

This is the top-level orchestrator. It stops ComfyUI, makes pip
usable, brings the framework, auxiliary packages, ComfyUI's own
requirements, the frontend and the plugins to their desired state,
verifies the critical imports, writes the marker, and starts ComfyUI
again.

Only two conditions abort the run: the venv is missing, or pip cannot
be repaired. Both leave the service stopped, because starting it into
a broken environment just produces a restart loop. Everything else is
recorded in the report and the service is started regardless.

Steps known to disturb the environment (framework install, ComfyUI
requirements, frontend) are followed by ``_check_postconditions``:
pip must still answer and the framework must still be at its pin.
"""

from __future__ import annotations

import logging
import tempfile
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from comfy_provision import __version__
from comfy_provision.adapters.base import CommandRunner
from comfy_provision.adapters.languages.python import ProbeResult, PythonEnvironment
from comfy_provision.adapters.process.supervisor import Supervisor
from comfy_provision.adapters.shell.command import SubprocessRunner
from comfy_provision.adapters.vcs.git import GitClient
from comfy_provision.core.errors import EnvironmentNotFoundError, ProvisionError
from comfy_provision.core.models.config import ProvisionConfig
from comfy_provision.core.models.report import (
    Outcome,
    ProvisionMarker,
    ReconciliationReport,
)
from comfy_provision.core.persistence.marker_file import save_marker
from comfy_provision.core.services.cache_cleanup import clear_caches
from comfy_provision.core.services.manifest_filter import write_filtered
from comfy_provision.core.services.package_installer import PackageInstaller
from comfy_provision.core.services.pip_repair import Fetcher, PipRepair, RepairResult
from comfy_provision.core.services.plugin_reconciler import PluginReconciler
from comfy_provision.core.services.version_compare import VersionCheck

logger = logging.getLogger(__name__)

APP_MANIFEST_ENTRY = "comfyui-requirements"


@dataclass
class ProvisionResult:
    """Result of a provisioning run."""

    report: ReconciliationReport = field(default_factory=ReconciliationReport)
    marker: ProvisionMarker | None = None
    marker_path: Path | None = None
    pip: RepairResult | None = None
    fatal: bool = False
    error: str | None = None
    service_stopped: bool = False
    service_restarted: bool = False
    drift_corrected: bool = False
    pip_conflicts: list[str] = field(default_factory=list)
    duration_s: float = 0.0

    @property
    def ok(self) -> bool:
        """No fatal abort and nothing recorded as failed."""
        return not self.fatal and self.report.ok

    @property
    def exit_code(self) -> int:
        return 1 if self.fatal else 0

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "ok": self.ok,
            "fatal": self.fatal,
            "service_stopped": self.service_stopped,
            "service_restarted": self.service_restarted,
            "drift_corrected": self.drift_corrected,
            "duration_s": round(self.duration_s, 1),
            "summary": self.report.summary(),
            "outcomes": {
                name: {
                    "kind": e.kind,
                    "outcome": e.outcome.value,
                    "version": e.version,
                    "message": e.message,
                }
                for name, e in self.report.entries.items()
            },
        }
        if self.error:
            result["error"] = self.error
        if self.pip:
            result["pip"] = self.pip.to_dict()
        if self.pip_conflicts:
            result["pip_conflicts"] = self.pip_conflicts
        if self.marker_path:
            result["marker_path"] = str(self.marker_path)
        if self.marker:
            result["marker"] = self.marker.model_dump(mode="json")
        return result


class Provisioner:
    """Wires the adapters and services for one run.

    Args:
        config: What the server should look like.
        runner: Executes every external command (default: subprocess).
        sleeper: Used for the post-stop grace period.
        fetcher: Downloads get-pip.py when pip needs a full reinstall.
    """

    def __init__(
        self,
        config: ProvisionConfig,
        runner: CommandRunner | None = None,
        *,
        sleeper: Callable[[float], None] | None = None,
        fetcher: Fetcher | None = None,
    ) -> None:
        self.config = config
        self.runner = runner or SubprocessRunner(default_timeout=config.timeouts.install)
        self.sleeper = sleeper or time.sleep
        self.report = ReconciliationReport()

        envcfg = config.environment
        timeouts = config.timeouts
        self.env = PythonEnvironment(
            self.runner,
            envcfg.venv_path,
            python=envcfg.interpreter,
            pip=envcfg.pip,
            install_timeout=timeouts.install,
            probe_timeout=timeouts.probe,
        )
        self.installer = PackageInstaller(self.env, report=self.report)
        self.pip_repair = PipRepair(self.env, get_pip_url=config.get_pip_url, fetcher=fetcher)
        self.supervisor = Supervisor(
            self.runner,
            config.service.name,
            control=config.service.control,
            timeout=timeouts.service,
        )
        self.plugins = PluginReconciler(
            envcfg.plugins_root,
            self.installer,
            GitClient(self.runner, timeout=timeouts.clone),
            excluded=config.excluded_plugins,
            report=self.report,
            manifest_retries=config.plugin_manifest_retries,
        )

    # ── Entry point ─────────────────────────────────────────────

    def run(self) -> ProvisionResult:
        """Execute every step in order. Raises nothing it can record."""
        result = ProvisionResult(report=self.report)
        start = time.monotonic()
        logger.info("comfy-provision %s starting", __version__)

        result.service_stopped = self._stop_service()

        fatal = False
        try:
            self._activate_environment()

            logger.info("── Checking pip ──")
            result.pip = self.pip_repair.require()

            logger.info("── Framework ──")
            self._reconcile_framework(result)

            logger.info("── Dependencies ──")
            for spec in self.config.all_dependencies:
                self.installer.ensure(spec)

            logger.info("── ComfyUI requirements ──")
            self._reconcile_app_manifest()
            self._check_postconditions(result, "ComfyUI requirements")

            logger.info("── Frontend ──")
            self._reconcile_frontend()
            self._check_postconditions(result, "frontend")

            if self.config.pip_check:
                self._pip_check(result)

            logger.info("── Plugins ──")
            self.plugins.reconcile_all(self.config.plugins)

            logger.info("── Verification ──")
            verified = self._verify_imports()
            runtime = self._verify_runtime()

            result.marker = self._build_marker(result, verified, runtime)
            result.marker_path = self._write_marker(result.marker)

        except ProvisionError as e:
            fatal = True
            result.fatal = True
            result.error = str(e)
            logger.error("✗ Provisioning aborted: %s", e)
            logger.error("%s left stopped", self.config.service.name)

        finally:
            if not fatal:
                result.service_restarted = self._start_service()
            result.duration_s = time.monotonic() - start

        self._log_summary(result)
        return result

    # ── (a) / (l) service ───────────────────────────────────────

    def _stop_service(self) -> bool:
        receipt = self.supervisor.stop()
        if receipt.status == "skipped":
            logger.info("%s was not running", self.config.service.name)
        elif receipt.failed:
            logger.warning(
                "Could not stop %s: %s", self.config.service.name, (receipt.error or "").strip(),
            )
        grace = self.config.service.stop_grace_seconds
        if grace > 0:
            self.sleeper(grace)
        return not receipt.failed

    def _start_service(self) -> bool:
        if not self.config.service.restart:
            logger.info("Service restart disabled, leaving %s stopped", self.config.service.name)
            return False
        receipt = self.supervisor.start()
        if receipt.failed:
            logger.error(
                "Could not start %s: %s", self.config.service.name, (receipt.error or "").strip(),
            )
            return False
        return True

    # ── (b) environment ─────────────────────────────────────────

    def _activate_environment(self) -> None:
        if not self.env.is_activatable():
            raise EnvironmentNotFoundError(str(self.env.venv_path))
        logger.info("Using venv %s (python: %s)", self.env.venv_path, self.env.python)

    # ── (d) framework ───────────────────────────────────────────

    def _reconcile_framework(self, result: ProvisionResult) -> None:
        outcome = self.installer.ensure(self.config.framework)
        if outcome != Outcome.ALREADY_SATISFIED and self.config.unrestored_uninstalls:
            logger.warning(
                "Removed with %s and not reinstalled by any spec: %s",
                self.config.framework.name, ", ".join(self.config.unrestored_uninstalls),
            )
        if outcome == Outcome.ALREADY_SATISFIED and self.config.clear_caches:
            clear_caches(
                self.env,
                self.config.environment.workspace_path,
                self.config.environment.comfyui_root,
            )
        # a CUDA-index torch install can take pip down with it
        self._check_postconditions(result, "framework", framework_drift=False)

    # ── (f) ComfyUI requirements ────────────────────────────────

    def _reconcile_app_manifest(self) -> None:
        path = self.config.app_manifest_path
        if not path.is_file():
            logger.warning("No %s at %s", self.config.app_manifest, path.parent)
            return

        framework = self.config.framework
        verdict, _ = self.installer.check(framework)
        if verdict == VersionCheck.SATISFIED:
            receipt = self.installer.install_manifest(path)
        else:
            # keep pip from "fixing" an off-pin framework with the newest release
            logger.info("Framework not at its pin, installing %s without it", path.name)
            with tempfile.TemporaryDirectory(prefix="comfy-provision-") as tmp:
                filtered = Path(tmp) / path.name
                try:
                    write_filtered(path, filtered, framework.package_names)
                except (OSError, UnicodeDecodeError) as e:
                    logger.error("Cannot filter %s: %s", path, e)
                    self.report.record(
                        APP_MANIFEST_ENTRY, Outcome.FAILED, kind="manifest",
                        message=f"cannot filter {path.name}: {e}"[:300],
                    )
                    return
                receipt = self.installer.install_manifest(filtered)

        message = ""
        if receipt.failed:
            outcome = Outcome.FAILED
            lines = (receipt.error or "").strip().splitlines()
            message = lines[-1][:300] if lines else "install failed"
        elif "Successfully installed" in receipt.output:
            outcome = Outcome.INSTALLED
        else:
            outcome = Outcome.ALREADY_SATISFIED
        self.report.record(APP_MANIFEST_ENTRY, outcome, kind="manifest", message=message)

    # ── (g) frontend ────────────────────────────────────────────

    def _reconcile_frontend(self) -> None:
        frontend = self.config.frontend
        outcome = self.installer.ensure(frontend)
        if outcome == Outcome.FAILED:
            logger.warning("%s did not verify, forcing a clean reinstall", frontend.name)
            self.installer.force_reinstall(frontend, no_deps=True)

    # ── Post-conditions ─────────────────────────────────────────

    def _check_postconditions(
        self,
        result: ProvisionResult,
        step: str,
        *,
        framework_drift: bool = True,
    ) -> None:
        """Assert the invariants a risky step may have broken.

        Raises:
            PipUnrepairableError: pip is gone and cannot be brought back.
        """
        logger.debug("Post-conditions after %s", step)
        result.pip = self.pip_repair.require()

        if not framework_drift:
            return

        framework = self.config.framework
        baseline = self.report.outcome_of(framework.name)
        if baseline is None or not baseline.ok:
            # never reached its pin; nothing to drift from
            return

        verdict, found = self.installer.check(framework)
        if verdict == VersionCheck.SATISFIED:
            return

        logger.warning(
            "%s drifted to %s after %s, reverting to %s",
            framework.name, found.version or "nothing", step, framework.version,
        )
        outcome = self.installer.force_reinstall(framework)
        if outcome == Outcome.REPAIRED:
            result.drift_corrected = True
        result.pip = self.pip_repair.require()
        for spec in self.config.framework_restorers:
            self.installer.ensure(spec)

    def _pip_check(self, result: ProvisionResult) -> None:
        receipt = self.env.check()
        if receipt.ok:
            logger.info("✓ pip check: no broken requirements")
            return
        conflicts = [
            ln.strip() for ln in f"{receipt.output}\n{receipt.error or ''}".splitlines()
            if ln.strip()
        ]
        result.pip_conflicts = conflicts
        self.report.metadata["pip_conflicts"] = conflicts
        logger.warning("pip check reported %d problems", len(conflicts))
        for line in conflicts[:20]:
            logger.warning("  %s", line)

    # ── (j) verification ────────────────────────────────────────

    def _verify_imports(self) -> dict[str, bool]:
        verified: dict[str, bool] = {}
        for module in self.config.critical_imports:
            probe = self.env.probe(module)
            verified[module] = probe.ok
            if probe.ok:
                logger.info("✓ %s %s", module, probe.version or "")
            else:
                logger.error("✗ %s: %s", module, probe.error or "import failed")
        return verified

    def _verify_runtime(self) -> ProbeResult:
        """Probe the framework once more, calling its runtime check."""
        framework = self.config.framework
        found = self.env.probe(
            framework.import_name, framework.build_attr, framework.name,
            check=framework.runtime_check,
        )
        if found.ok and framework.runtime_check:
            if found.check:
                logger.info("✓ %s.%s()", framework.import_name, framework.runtime_check)
            else:
                logger.warning(
                    "%s.%s() is false: %s",
                    framework.import_name, framework.runtime_check,
                    found.error or "no usable device",
                )
        return found

    # ── (k) marker ──────────────────────────────────────────────

    def _build_marker(
        self,
        result: ProvisionResult,
        verified: dict[str, bool],
        framework: ProbeResult,
    ) -> ProvisionMarker:
        has_check = framework.ok and bool(self.config.framework.runtime_check)

        triton_spec = self.config.get_dependency("triton")
        triton = (
            self.installer.probe(triton_spec) if triton_spec else self.env.probe("triton")
        )
        frontend = self.installer.probe(self.config.frontend)

        return ProvisionMarker(
            script_version=__version__,
            torch_version=framework.version if framework.ok else None,
            cuda_version=framework.build if framework.ok else None,
            cuda_available=framework.check if has_check else None,
            triton_version=triton.version if triton.ok else None,
            frontend_version=frontend.version if frontend.ok else None,
            pip_accessible=bool(result.pip and result.pip.ok),
            pip_version=result.pip.version if result.pip else None,
            all_verified=bool(verified) and all(verified.values()),
            verified=verified,
            failed_plugins=self.report.names_with(Outcome.FAILED, kind="plugin"),
            degraded_plugins=self.report.names_with(Outcome.DEGRADED, kind="plugin"),
            drift_corrected=result.drift_corrected,
            outcomes={name: e.outcome.value for name, e in self.report.entries.items()},
        )

    def _write_marker(self, marker: ProvisionMarker) -> Path | None:
        path = self.config.marker_path
        try:
            save_marker(marker, path, fmt=self.config.marker_format)
        except OSError as e:
            logger.error("Could not write marker %s: %s", path, e)
            return None
        return path

    def _log_summary(self, result: ProvisionResult) -> None:
        counts = ", ".join(f"{k}={v}" for k, v in result.report.summary().items() if v)
        logger.info("Outcomes: %s", counts or "none")
        if result.report.failed:
            logger.warning("Failed: %s", ", ".join(result.report.failed))
        if result.fatal:
            logger.error("Provisioning aborted after %.0fs", result.duration_s)
        else:
            logger.info("Provisioning finished in %.0fs", result.duration_s)


def provision(
    config: ProvisionConfig,
    runner: CommandRunner | None = None,
    *,
    sleeper: Callable[[float], None] | None = None,
    fetcher: Fetcher | None = None,
) -> ProvisionResult:
    """Run a full provisioning pass.

    Args:
        config: Loaded provisioning config.
        runner: Command runner (default: real subprocesses).
        sleeper: Grace-period sleep function.
        fetcher: get-pip.py downloader.

    Returns:
        ProvisionResult. ``exit_code`` is 1 only after a fatal abort.
    """
    return Provisioner(config, runner, sleeper=sleeper, fetcher=fetcher).run()
