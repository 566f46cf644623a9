"""
L4 — pip self-repair.

Installing torch from the CUDA index has been seen to leave pip
unimportable in the venv. Every install depends on pip, so it is
checked before anything else and again after each risky step.

Three attempts, each only if the previous one did not bring pip back:

    1. ``python -m pip --version``            already fine
    2. ``python -m ensurepip --upgrade``      bundled wheel
    3. download get-pip.py, run ``--force-reinstall``

If pip still does not answer, provisioning cannot continue.
"""

from __future__ import annotations

import logging
import re
import tempfile
import urllib.request
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from comfy_provision.adapters.languages.python import PythonEnvironment
from comfy_provision.core.config.defaults import GET_PIP_URL
from comfy_provision.core.errors import PipUnrepairableError

logger = logging.getLogger(__name__)

Fetcher = Callable[[str, Path], None]

_PIP_VERSION = re.compile(r"^pip\s+(\S+)")


def download_file(url: str, dest: Path, timeout: int = 60) -> None:
    """Download ``url`` to ``dest``. Raises on any network or HTTP error."""
    req = urllib.request.Request(url, headers={"User-Agent": "comfy-provision/1.0"})
    with urllib.request.urlopen(req, timeout=timeout) as resp:
        dest.write_bytes(resp.read())


@dataclass
class RepairResult:
    """How pip was brought back, if it was."""

    ok: bool
    method: str | None = None           # probe, ensurepip, get-pip
    version: str | None = None
    attempts: list[str] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "method": self.method,
            "version": self.version,
            "attempts": self.attempts,
            "error": self.error,
        }


class PipRepair:
    """Probe pip and repair it in place.

    Args:
        env: The target venv.
        get_pip_url: Where the bootstrap installer is fetched from.
        fetcher: ``(url, dest)`` download function; swapped out in tests.
    """

    def __init__(
        self,
        env: PythonEnvironment,
        *,
        get_pip_url: str = GET_PIP_URL,
        fetcher: Fetcher | None = None,
    ) -> None:
        self.env = env
        self.get_pip_url = get_pip_url
        self.fetcher = fetcher or download_file

    def probe(self) -> str | None:
        """pip's version if it answers, else None."""
        receipt = self.env.pip_version()
        if not receipt.ok:
            return None
        match = _PIP_VERSION.match(receipt.output.strip())
        return match.group(1) if match else (receipt.output.strip() or "unknown")

    def repair(self) -> RepairResult:
        """Run the attempt ladder. Never raises."""
        attempts: list[str] = []

        # ── 1. Already working ──
        attempts.append("probe")
        version = self.probe()
        if version:
            logger.debug("pip %s OK", version)
            return RepairResult(ok=True, method="probe", version=version, attempts=attempts)

        logger.warning("pip not accessible, attempting repair")

        # ── 2. ensurepip ──
        attempts.append("ensurepip")
        receipt = self.env.ensurepip()
        if receipt.failed:
            logger.info("ensurepip failed: %s", (receipt.error or "").strip()[-200:])
        version = self.probe()
        if version:
            logger.info("pip %s restored via ensurepip", version)
            return RepairResult(ok=True, method="ensurepip", version=version, attempts=attempts)

        # ── 3. get-pip.py ──
        attempts.append("get-pip")
        error = self._run_get_pip()
        version = self.probe()
        if version:
            logger.info("pip %s restored via get-pip.py", version)
            return RepairResult(ok=True, method="get-pip", version=version, attempts=attempts)

        logger.error("pip could not be repaired (tried: %s)", ", ".join(attempts))
        return RepairResult(ok=False, attempts=attempts, error=error or "pip still not accessible")

    def require(self) -> RepairResult:
        """Repair, raising when pip cannot be brought back.

        Raises:
            PipUnrepairableError: All three attempts failed.
        """
        result = self.repair()
        if not result.ok:
            raise PipUnrepairableError(result.attempts, result.error or "")
        return result

    def _run_get_pip(self) -> str | None:
        """Fetch and run get-pip.py; return an error string on failure."""
        with tempfile.TemporaryDirectory(prefix="comfy-provision-") as tmp:
            script = Path(tmp) / "get-pip.py"
            try:
                self.fetcher(self.get_pip_url, script)
            except Exception as e:
                logger.error("Could not download %s: %s", self.get_pip_url, e)
                return f"download failed: {e}"

            receipt = self.env.run_script(script, "--force-reinstall")
            if receipt.failed:
                logger.error("get-pip.py failed: %s", (receipt.error or "").strip()[-200:])
                return receipt.error
        return None
