"""
Spec models — declarative descriptions of desired state.

A DependencySpec says "this importable module must exist at this
version". A PluginSpec says "this plugin must be cloned from here
and pass its health check". Both are loaded once per run from
the provisioning config and never mutated.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, field_validator

from comfy_provision.core.services.version_compare import parse_version


class DependencySpec(BaseModel):
    """A Python package the environment must provide.

    ``version`` may carry a build suffix (``2.7.0+cu128``); the
    comparator ignores it, the build requirement is expressed
    separately through ``build_attr`` / ``build``.
    """

    name: str                           # distribution name, e.g. "torch"
    module: str = ""                    # import probe; defaults to name
    version: str | None = None          # required version (None = any)
    policy: Literal["pin", "minimum"] = "pin"

    packages: list[str] = Field(default_factory=list)  # pip requirement strings
    index_url: str | None = None
    extra_index_url: str | None = None
    no_deps: bool = False

    build_attr: str | None = None       # dotted attribute on the module, e.g. "version.cuda"
    build: str | None = None            # required prefix of that attribute
    runtime_check: str | None = None    # dotted callable reported after install, e.g. "cuda.is_available"

    uninstall: list[str] = Field(default_factory=list)  # removed before a clean reinstall
    critical: bool = False

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("dependency name must not be empty")
        return v.strip()

    @field_validator("version")
    @classmethod
    def _version_has_number(cls, v: str | None) -> str | None:
        if v is not None and v.strip() and parse_version(v) is None:
            raise ValueError(f"version must start with a number, got {v!r}")
        return v

    @property
    def import_name(self) -> str:
        """Module name used by the import probe."""
        return self.module or self.name.replace("-", "_")

    @property
    def install_args(self) -> list[str]:
        """Requirement strings handed to pip."""
        if self.packages:
            return list(self.packages)
        if self.version:
            return [f"{self.name}=={self.version}"]
        return [self.name]

    @property
    def package_names(self) -> list[str]:
        """Bare distribution names covered by this spec."""
        names = []
        for req in self.install_args:
            bare = req
            for sep in ("==", ">=", "<=", "~=", "!=", ">", "<", "[", ";", " "):
                bare = bare.split(sep, 1)[0]
            names.append(bare.strip())
        return names


class PluginSpec(BaseModel):
    """A ComfyUI custom-node directory the server must have."""

    name: str
    url: str | None = None              # remote repository; None = cannot be re-cloned
    path: str | None = None             # default: <plugins_root>/<name>
    marker: str | None = None           # file that must exist for the plugin to count
    manifest: str = "requirements.txt"
    critical: bool = True

    @field_validator("name")
    @classmethod
    def _name_is_directory(cls, v: str) -> str:
        v = v.strip()
        if not v or "/" in v or v in (".", ".."):
            raise ValueError(f"invalid plugin name: {v!r}")
        return v
