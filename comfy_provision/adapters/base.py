"""
Runner base — the contract between services and external commands.

Services never call ``subprocess`` themselves. They hand an argv list
to a CommandRunner and get a Receipt back, which lets tests swap in
a scripted runner or a simulated environment.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping

from comfy_provision.core.models.receipt import Receipt


class CommandRunner(ABC):
    """Abstract base class for command runners.

    Runners perform external side effects and return receipts.
    They NEVER raise for a failing command: a non-zero exit, a
    timeout or a missing executable is a failed Receipt.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The runner identifier (e.g. 'subprocess', 'mock')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether commands can be run at all. Fast, never raises."""

    @abstractmethod
    def run(
        self,
        command: list[str],
        *,
        timeout: float | None = None,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> Receipt:
        """Run ``command`` and return its receipt.

        Args:
            command: argv list, never a shell string.
            timeout: Seconds before the command is killed.
            cwd: Working directory.
            env: Variables layered over the current environment.
        """

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
