"""
Supervisor adapter — start and stop the served application.

Wraps ``supervisorctl <verb> <service>``. The exit code of
supervisorctl is unreliable across versions, so the output text is
inspected too.
"""

from __future__ import annotations

import logging
import shutil

from comfy_provision.adapters.base import CommandRunner
from comfy_provision.core.models.receipt import Receipt

logger = logging.getLogger(__name__)

_ALREADY = ("not running", "already started", "already running")


class Supervisor:
    """Control one supervisord program.

    Args:
        runner: Executes supervisorctl.
        service: Program name in the supervisord config.
        control: The supervisorctl executable.
        timeout: Seconds allowed per command.
    """

    def __init__(
        self,
        runner: CommandRunner,
        service: str,
        *,
        control: str = "supervisorctl",
        timeout: float = 60,
    ) -> None:
        self.runner = runner
        self.service = service
        self.control = control
        self.timeout = timeout

    def is_available(self) -> bool:
        return shutil.which(self.control) is not None

    def _ctl(self, verb: str) -> Receipt:
        receipt = self.runner.run([self.control, verb, self.service], timeout=self.timeout)
        text = f"{receipt.output}\n{receipt.error or ''}".lower()

        if any(marker in text for marker in _ALREADY):
            return Receipt.skip(
                adapter=receipt.adapter,
                command=receipt.command,
                reason=(receipt.error or receipt.output).strip(),
                return_code=receipt.return_code,
            )
        if receipt.ok and "error" in text:
            return receipt.model_copy(
                update={"status": "failed", "error": receipt.output or "supervisorctl error"},
            )
        return receipt

    def stop(self) -> Receipt:
        """Stop the service. Already stopped comes back as ``skipped``."""
        logger.info("Stopping %s", self.service)
        return self._ctl("stop")

    def start(self) -> Receipt:
        """Start the service. Already running comes back as ``skipped``."""
        logger.info("Starting %s", self.service)
        return self._ctl("start")

    def status(self) -> Receipt:
        return self.runner.run([self.control, "status", self.service], timeout=self.timeout)
