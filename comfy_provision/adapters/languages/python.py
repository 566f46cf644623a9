"""
Python environment adapter — the target virtualenv's interpreter and pip.

Everything runs through the venv interpreter as a subprocess, never
in-process: the provisioner's own interpreter is not the one being
provisioned, and importing torch here would pin whatever it found.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path

from comfy_provision.adapters.base import CommandRunner
from comfy_provision.core.models.receipt import Receipt

logger = logging.getLogger(__name__)

# Runs inside the target interpreter.
# argv: module, build attribute, distribution, optional callable to invoke.
_PROBE_SCRIPT = """\
import importlib, json, sys
name, attr, dist = sys.argv[1], sys.argv[2], sys.argv[3]
call = sys.argv[4] if len(sys.argv) > 4 else ""
out = {"ok": False, "version": None, "build": None, "check": None, "error": None}
try:
    mod = importlib.import_module(name)
except Exception as e:
    out["error"] = "%s: %s" % (type(e).__name__, e)
else:
    out["ok"] = True
    ver = getattr(mod, "__version__", None)
    if ver is None:
        try:
            from importlib.metadata import version
            ver = version(dist or name)
        except Exception:
            ver = None
    out["version"] = None if ver is None else str(ver)
    if attr:
        obj = mod
        for part in attr.split("."):
            obj = getattr(obj, part, None)
        out["build"] = None if obj is None else str(obj)
    if call:
        fn = mod
        for part in call.split("."):
            fn = getattr(fn, part, None)
        try:
            out["check"] = bool(fn())
        except Exception as e:
            out["check"] = False
            out["error"] = "%s: %s" % (type(e).__name__, e)
print(json.dumps(out))
"""


@dataclass
class ProbeResult:
    """What an import probe found in the target interpreter."""

    ok: bool
    version: str | None = None
    build: str | None = None
    check: bool | None = None           # result of the optional callable
    error: str | None = None

    @classmethod
    def parse(cls, receipt: Receipt) -> ProbeResult:
        """Decode the probe script's JSON line from a receipt."""
        if not receipt.ok:
            return cls(ok=False, error=receipt.error or "probe failed")
        lines = [ln for ln in receipt.output.splitlines() if ln.strip()]
        if not lines:
            return cls(ok=False, error="probe produced no output")
        try:
            data = json.loads(lines[-1])
        except json.JSONDecodeError:
            return cls(ok=False, error=f"unreadable probe output: {lines[-1][:200]}")
        if not isinstance(data, dict):
            return cls(ok=False, error="unreadable probe output")
        return cls(
            ok=bool(data.get("ok")),
            version=data.get("version"),
            build=data.get("build"),
            check=data.get("check"),
            error=data.get("error"),
        )


class PythonEnvironment:
    """The interpreter and pip of one virtualenv.

    Args:
        runner: Executes the commands.
        venv_path: Virtualenv root; exported as ``VIRTUAL_ENV``.
        python: Interpreter path (default ``<venv>/bin/python``).
        pip: Explicit pip executable. Default is ``python -m pip``.
        install_timeout: Seconds for pip installs and bootstrap scripts.
        probe_timeout: Seconds for probes and quick pip queries.
    """

    def __init__(
        self,
        runner: CommandRunner,
        venv_path: str | Path,
        *,
        python: str | None = None,
        pip: str | None = None,
        install_timeout: float = 1800,
        probe_timeout: float = 60,
    ) -> None:
        self.runner = runner
        self.venv_path = Path(venv_path)
        self.python = python or str(self.venv_path / "bin" / "python")
        self._pip = pip
        self.install_timeout = install_timeout
        self.probe_timeout = probe_timeout

    # ── Environment ─────────────────────────────────────────────

    @property
    def bin_dir(self) -> Path:
        return self.venv_path / "bin"

    @property
    def activate_script(self) -> Path:
        return self.bin_dir / "activate"

    def is_activatable(self) -> bool:
        """Whether the venv exists (has a ``bin/activate``)."""
        return self.activate_script.is_file()

    def is_available(self) -> bool:
        return Path(self.python).exists() or shutil.which(self.python) is not None

    def env(self) -> dict[str, str]:
        """What sourcing ``bin/activate`` would export."""
        path = os.environ.get("PATH", "")
        return {
            "VIRTUAL_ENV": str(self.venv_path),
            "PATH": f"{self.bin_dir}{os.pathsep}{path}" if path else str(self.bin_dir),
            "PIP_DISABLE_PIP_VERSION_CHECK": "1",
        }

    @property
    def pip_command(self) -> list[str]:
        if self._pip:
            return [self._pip]
        return [self.python, "-m", "pip"]

    def _run(self, command: list[str], timeout: float, cwd: str | None = None) -> Receipt:
        return self.runner.run(command, timeout=timeout, cwd=cwd, env=self.env())

    # ── Interpreter ─────────────────────────────────────────────

    def probe(
        self,
        module: str,
        build_attr: str | None = None,
        distribution: str | None = None,
        *,
        check: str | None = None,
    ) -> ProbeResult:
        """Import ``module`` in the venv and report its version.

        ``check`` names a dotted callable on the module (``cuda.is_available``)
        whose truth value is reported as ``ProbeResult.check``.
        """
        command = [self.python, "-c", _PROBE_SCRIPT, module, build_attr or "", distribution or ""]
        if check:
            command.append(check)
        receipt = self._run(command, timeout=self.probe_timeout)
        result = ProbeResult.parse(receipt)
        logger.debug(
            "probe %s → ok=%s version=%s build=%s check=%s",
            module, result.ok, result.version, result.build, result.check,
        )
        return result

    def run_script(self, script: str | Path, *args: str) -> Receipt:
        return self._run([self.python, str(script), *args], timeout=self.install_timeout)

    def ensurepip(self) -> Receipt:
        return self._run([self.python, "-m", "ensurepip", "--upgrade"], timeout=self.install_timeout)

    # ── pip ─────────────────────────────────────────────────────

    def pip(self, *args: str, timeout: float | None = None) -> Receipt:
        """Run ``pip <args>`` in the venv."""
        return self._run(
            [*self.pip_command, *args],
            timeout=timeout if timeout is not None else self.install_timeout,
        )

    def pip_version(self) -> Receipt:
        return self.pip("--version", timeout=self.probe_timeout)

    def install(
        self,
        requirements: list[str],
        *,
        index_url: str | None = None,
        extra_index_url: str | None = None,
        no_deps: bool = False,
        force_reinstall: bool = False,
    ) -> Receipt:
        """``pip install --no-cache-dir`` the given requirement strings."""
        args = ["install", "--no-cache-dir"]
        if force_reinstall:
            args.append("--force-reinstall")
        if no_deps:
            args.append("--no-deps")
        args.extend(requirements)
        if index_url:
            args.extend(["--index-url", index_url])
        if extra_index_url:
            args.extend(["--extra-index-url", extra_index_url])
        return self.pip(*args)

    def install_requirements(self, path: str | Path) -> Receipt:
        return self.pip("install", "--no-cache-dir", "-r", str(path))

    def uninstall(self, packages: list[str]) -> Receipt:
        return self.pip("uninstall", "-y", *packages)

    def check(self) -> Receipt:
        """``pip check`` — dependency conflicts in the installed set."""
        return self.pip("check", timeout=self.probe_timeout)

    def cache_purge(self) -> Receipt:
        return self.pip("cache", "purge", timeout=self.probe_timeout)
