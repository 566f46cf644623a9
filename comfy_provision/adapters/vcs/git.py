"""
Git adapter — fetch plugin sources.

Only cloning is needed: a broken plugin is deleted and cloned fresh,
never repaired in place with pull or reset.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from comfy_provision.adapters.base import CommandRunner
from comfy_provision.core.models.receipt import Receipt

logger = logging.getLogger(__name__)


class GitClient:
    """Clone repositories through a CommandRunner.

    Args:
        runner: Executes the git commands.
        timeout: Seconds allowed per clone.
        depth: Shallow-clone depth; None for full history.
    """

    def __init__(
        self,
        runner: CommandRunner,
        *,
        timeout: float = 600,
        depth: int | None = None,
        executable: str = "git",
    ) -> None:
        self.runner = runner
        self.timeout = timeout
        self.depth = depth
        self.executable = executable

    def is_available(self) -> bool:
        return shutil.which(self.executable) is not None

    def clone(self, url: str, dest: str | Path) -> Receipt:
        """Clone ``url`` into ``dest``. ``dest`` must not already exist."""
        command = [self.executable, "clone"]
        if self.depth:
            command.extend(["--depth", str(self.depth)])
        command.extend([url, str(dest)])

        logger.info("Cloning %s → %s", url, dest)
        receipt = self.runner.run(
            command,
            timeout=self.timeout,
            # keep git from blocking on a credential prompt for a moved repo
            env={"GIT_TERMINAL_PROMPT": "0"},
        )
        if receipt.failed:
            logger.warning("Clone of %s failed: %s", url, (receipt.error or "")[:300])
        return receipt
