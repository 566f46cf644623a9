"""
Check use case — probe every dependency without installing anything.

Answers "what would a provisioning run change?" using the same
comparison the installer uses.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from comfy_provision.adapters.base import CommandRunner
from comfy_provision.adapters.languages.python import PythonEnvironment
from comfy_provision.adapters.shell.command import SubprocessRunner
from comfy_provision.core.models.config import ProvisionConfig
from comfy_provision.core.models.spec import DependencySpec
from comfy_provision.core.services.package_installer import PackageInstaller
from comfy_provision.core.services.version_compare import VersionCheck

logger = logging.getLogger(__name__)


@dataclass
class DependencyStatus:
    name: str
    required: str | None
    detected: str | None
    build: str | None
    verdict: VersionCheck
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "required": self.required,
            "detected": self.detected,
            "build": self.build,
            "verdict": self.verdict.value,
            "error": self.error,
        }


@dataclass
class CheckResult:
    """Per-dependency verdicts for the configured environment."""

    dependencies: list[DependencyStatus] = field(default_factory=list)
    error: str | None = None

    @property
    def converged(self) -> bool:
        """True when a run would install nothing."""
        return not self.error and all(
            d.verdict == VersionCheck.SATISFIED for d in self.dependencies
        )

    def to_dict(self) -> dict:
        result: dict = {"converged": self.converged}
        if self.error:
            result["error"] = self.error
        result["dependencies"] = [d.to_dict() for d in self.dependencies]
        return result


def check_dependencies(
    config: ProvisionConfig,
    runner: CommandRunner | None = None,
) -> CheckResult:
    """Compare every configured dependency against the venv."""
    envcfg = config.environment
    env = PythonEnvironment(
        runner or SubprocessRunner(default_timeout=config.timeouts.probe),
        envcfg.venv_path,
        python=envcfg.interpreter,
        pip=envcfg.pip,
        probe_timeout=config.timeouts.probe,
    )
    if not env.is_activatable():
        return CheckResult(error=f"Virtual environment not found at {envcfg.venv_path}")

    installer = PackageInstaller(env)
    specs: list[DependencySpec] = [config.framework, *config.all_dependencies, config.frontend]

    result = CheckResult()
    for spec in specs:
        verdict, found = installer.check(spec)
        logger.debug("%s: %s (%s)", spec.name, verdict.value, found.version)
        result.dependencies.append(
            DependencyStatus(
                name=spec.name,
                required=spec.version,
                detected=found.version if found.ok else None,
                build=found.build,
                verdict=verdict,
                error=None if found.ok else found.error,
            ),
        )
    return result
