"""
Mock runner — scripted test double for the CommandRunner contract.

Returns success for everything unless a response is registered for a
command prefix. Prefixes match whole argv tokens and the longest one
wins, so a test can fail ``pip install torch==2.7.0`` while every
other pip call succeeds.
"""

from __future__ import annotations

from collections.abc import Mapping

from comfy_provision.adapters.base import CommandRunner
from comfy_provision.core.models.receipt import Receipt


class MockRunner(CommandRunner):
    """Universal mock runner for testing."""

    def __init__(
        self,
        runner_name: str = "mock",
        available: bool = True,
        default_output: str = "",
    ):
        self._name = runner_name
        self._available = available
        self._default_output = default_output
        self._responses: dict[tuple[str, ...], list[Receipt]] = {}
        self._call_log: list[list[str]] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_log(self) -> list[list[str]]:
        """Every command this mock has received, in order."""
        return self._call_log

    @property
    def call_count(self) -> int:
        return len(self._call_log)

    def is_available(self) -> bool:
        return self._available

    def calls_matching(self, *prefix: str) -> list[list[str]]:
        """Commands whose argv starts with ``prefix``."""
        return [c for c in self._call_log if tuple(c[: len(prefix)]) == prefix]

    def set_response(self, prefix: list[str] | tuple[str, ...], *receipts: Receipt) -> None:
        """Queue responses for commands starting with ``prefix``.

        With several receipts they are returned in order; the last one
        repeats once the queue is down to it.
        """
        self._responses[tuple(prefix)] = list(receipts)

    def set_output(self, prefix: list[str] | tuple[str, ...], output: str) -> None:
        """Configure commands starting with ``prefix`` to succeed with ``output``."""
        self.set_response(prefix, Receipt.success(self._name, list(prefix), output=output))

    def set_failure(
        self,
        prefix: list[str] | tuple[str, ...],
        error: str = "Mock failure",
        return_code: int = 1,
    ) -> None:
        """Configure commands starting with ``prefix`` to fail."""
        self.set_response(
            prefix,
            Receipt.failure(self._name, list(prefix), error=error, return_code=return_code),
        )

    def run(
        self,
        command: list[str],
        *,
        timeout: float | None = None,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> Receipt:
        self._call_log.append(list(command))

        match = None
        for prefix in self._responses:
            if tuple(command[: len(prefix)]) == prefix:
                if match is None or len(prefix) > len(match):
                    match = prefix

        if match is not None:
            queue = self._responses[match]
            receipt = queue.pop(0) if len(queue) > 1 else queue[0]
            return receipt.model_copy(update={"command": list(command)})

        return Receipt.success(
            adapter=self._name,
            command=command,
            output=self._default_output,
            return_code=0,
            metadata={"mock": True},
        )

    def reset(self) -> None:
        """Clear call log and scripted responses."""
        self._call_log.clear()
        self._responses.clear()
