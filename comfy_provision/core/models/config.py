"""
ProvisionConfig — everything a run needs to know, loaded once.

Paths, the service name, the declarative dependency and plugin
lists, and the handful of knobs (timeouts, marker format) that the
older per-version shell scripts hardcoded differently each time.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from packaging.utils import canonicalize_name
from pydantic import BaseModel, Field

from comfy_provision.core.config.defaults import (
    DEFAULT_CRITICAL_IMPORTS,
    DEFAULT_EXCLUDED_PLUGINS,
    DEFAULT_SERVICE,
    DEFAULT_VENV_PATH,
    DEFAULT_WORKSPACE,
    GET_PIP_URL,
    default_dependencies,
    default_framework,
    default_frontend,
    default_plugins,
)
from comfy_provision.core.models.spec import DependencySpec, PluginSpec


class EnvironmentConfig(BaseModel):
    """Where the target virtualenv and the ComfyUI checkout live."""

    venv_path: str = DEFAULT_VENV_PATH
    workspace: str = DEFAULT_WORKSPACE
    comfyui_path: str | None = None     # default: <workspace>/ComfyUI
    python: str | None = None           # explicit interpreter; default: <venv>/bin/python
    pip: str | None = None              # explicit pip executable; default: python -m pip

    @property
    def venv(self) -> Path:
        return Path(self.venv_path)

    @property
    def activate_script(self) -> Path:
        return self.venv / "bin" / "activate"

    @property
    def workspace_path(self) -> Path:
        return Path(self.workspace)

    @property
    def comfyui_root(self) -> Path:
        if self.comfyui_path:
            return Path(self.comfyui_path)
        return self.workspace_path / "ComfyUI"

    @property
    def plugins_root(self) -> Path:
        return self.comfyui_root / "custom_nodes"

    @property
    def interpreter(self) -> str:
        return self.python or str(self.venv / "bin" / "python")


class ServiceConfig(BaseModel):
    """The supervised ComfyUI process."""

    name: str = DEFAULT_SERVICE
    control: str = "supervisorctl"
    stop_grace_seconds: float = 2.0
    restart: bool = True


class TimeoutConfig(BaseModel):
    """Per-command timeouts in seconds."""

    install: int = 1800
    probe: int = 60
    clone: int = 600
    service: int = 60


class ProvisionConfig(BaseModel):
    """Root provisioning configuration — loaded from provision.yml."""

    version: int = 1

    environment: EnvironmentConfig = Field(default_factory=EnvironmentConfig)
    service: ServiceConfig = Field(default_factory=ServiceConfig)
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)

    framework: DependencySpec = Field(default_factory=default_framework)
    dependencies: list[DependencySpec] = Field(default_factory=default_dependencies)
    extra_dependencies: list[DependencySpec] = Field(default_factory=list)  # appended to the above
    frontend: DependencySpec = Field(default_factory=default_frontend)
    app_manifest: str = "requirements.txt"

    plugins: list[PluginSpec] = Field(default_factory=default_plugins)
    excluded_plugins: list[str] = Field(
        default_factory=lambda: list(DEFAULT_EXCLUDED_PLUGINS),
    )
    plugin_manifest_retries: int = 1

    critical_imports: list[str] = Field(
        default_factory=lambda: list(DEFAULT_CRITICAL_IMPORTS),
    )

    clear_caches: bool = True
    pip_check: bool = True
    get_pip_url: str = GET_PIP_URL

    marker_file: str = ".provisioned"
    marker_format: Literal["json", "text"] = "json"

    @property
    def marker_path(self) -> Path:
        path = Path(self.marker_file)
        if path.is_absolute():
            return path
        return self.environment.workspace_path / path

    @property
    def app_manifest_path(self) -> Path:
        return self.environment.comfyui_root / self.app_manifest

    @property
    def all_dependencies(self) -> list[DependencySpec]:
        return [*self.dependencies, *self.extra_dependencies]

    @property
    def framework_restorers(self) -> list[DependencySpec]:
        """Dependencies that put back something the framework reinstall removes."""
        removed = {canonicalize_name(n) for n in self.framework.uninstall}
        return [
            dep for dep in self.all_dependencies
            if removed & {canonicalize_name(n) for n in dep.package_names}
        ]

    @property
    def unrestored_uninstalls(self) -> list[str]:
        """Packages the framework reinstall removes that no spec installs again."""
        covered = {
            canonicalize_name(n)
            for spec in (self.framework, *self.all_dependencies)
            for n in spec.package_names
        }
        return [n for n in self.framework.uninstall if canonicalize_name(n) not in covered]

    def get_dependency(self, name: str) -> DependencySpec | None:
        """Look up an auxiliary dependency by distribution name."""
        for dep in self.all_dependencies:
            if dep.name == name:
                return dep
        return None

    def get_plugin(self, name: str) -> PluginSpec | None:
        for plugin in self.plugins:
            if plugin.name == name:
                return plugin
        return None
