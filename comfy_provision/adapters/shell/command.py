"""
Subprocess runner — the one place ``subprocess.run`` is called.

Every pip, git and supervisorctl invocation in a provisioning run goes
through here, so timeouts, environment layering and output capture
are handled once.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import time
from collections.abc import Mapping

from comfy_provision.adapters.base import CommandRunner
from comfy_provision.core.models.receipt import Receipt

logger = logging.getLogger(__name__)

# Cap on captured output kept in a receipt; pip can print megabytes.
_MAX_OUTPUT = 64_000


def _tail(text: str, limit: int = _MAX_OUTPUT) -> str:
    text = text.strip()
    if len(text) <= limit:
        return text
    return "…" + text[-limit:]


class SubprocessRunner(CommandRunner):
    """Run argv commands with ``subprocess.run`` and capture output.

    Args:
        default_timeout: Used when ``run`` gets no timeout.
        base_env: Variables applied to every command (under per-call ``env``).
    """

    def __init__(
        self,
        default_timeout: float = 300,
        base_env: Mapping[str, str] | None = None,
    ) -> None:
        self._default_timeout = default_timeout
        self._base_env = dict(base_env or {})

    @property
    def name(self) -> str:
        return "subprocess"

    def is_available(self) -> bool:
        return shutil.which("sh") is not None

    def run(
        self,
        command: list[str],
        *,
        timeout: float | None = None,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> Receipt:
        timeout = timeout if timeout is not None else self._default_timeout

        full_env = os.environ.copy()
        full_env.update(self._base_env)
        if env:
            full_env.update(env)

        logger.debug("Executing: %s (cwd=%s, timeout=%ss)", " ".join(command), cwd, timeout)
        start = time.monotonic()

        try:
            result = subprocess.run(
                command,
                cwd=cwd,
                env=full_env,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            return Receipt.failure(
                adapter=self.name,
                command=command,
                error=f"Command timed out after {timeout}s",
                duration_ms=int((time.monotonic() - start) * 1000),
                metadata={"timeout": timeout},
            )
        except FileNotFoundError:
            return Receipt.failure(
                adapter=self.name,
                command=command,
                error=f"Executable not found: {command[0]}",
                return_code=127,
            )
        except OSError as e:
            return Receipt.failure(
                adapter=self.name,
                command=command,
                error=f"Command execution error: {e}",
            )

        elapsed_ms = int((time.monotonic() - start) * 1000)
        output = _tail(result.stdout or "")
        stderr = _tail(result.stderr or "")

        if result.returncode == 0:
            return Receipt.success(
                adapter=self.name,
                command=command,
                output=output,
                duration_ms=elapsed_ms,
                return_code=0,
                metadata={"stderr": stderr} if stderr else {},
            )

        logger.debug("Command failed (rc=%d): %s", result.returncode, stderr[-500:])
        return Receipt.failure(
            adapter=self.name,
            command=command,
            error=stderr or f"Command exited with code {result.returncode}",
            output=output,
            duration_ms=elapsed_ms,
            return_code=result.returncode,
        )
