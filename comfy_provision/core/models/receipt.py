"""
Receipt model — the result of one external command.

Adapters run commands and return Receipts. Never exceptions.
A non-zero exit, a timeout or a missing executable all come back
as a failed Receipt carrying whatever output was captured.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class Receipt(BaseModel):
    """Outcome of a single command execution.

    ``output`` holds stdout (trimmed), ``error`` holds stderr or a
    synthesized message when the command could not run at all.
    """

    adapter: str
    command: list[str] = Field(default_factory=list)
    status: Literal["ok", "skipped", "failed"] = "ok"

    started_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0
    return_code: int | None = None

    output: str = ""
    error: str | None = None

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """Whether the command succeeded."""
        return self.status == "ok"

    @property
    def failed(self) -> bool:
        """Whether the command failed."""
        return self.status == "failed"

    @property
    def command_line(self) -> str:
        """The command as a single display string."""
        return " ".join(self.command)

    @classmethod
    def success(
        cls,
        adapter: str,
        command: list[str],
        output: str = "",
        **kwargs: Any,
    ) -> Receipt:
        """Create a success receipt."""
        return cls(
            adapter=adapter,
            command=list(command),
            status="ok",
            output=output,
            **kwargs,
        )

    @classmethod
    def failure(
        cls,
        adapter: str,
        command: list[str],
        error: str,
        **kwargs: Any,
    ) -> Receipt:
        """Create a failure receipt."""
        return cls(
            adapter=adapter,
            command=list(command),
            status="failed",
            error=error,
            **kwargs,
        )

    @classmethod
    def skip(
        cls,
        adapter: str,
        command: list[str],
        reason: str = "",
        **kwargs: Any,
    ) -> Receipt:
        """Create a skip receipt."""
        return cls(
            adapter=adapter,
            command=list(command),
            status="skipped",
            output=reason,
            **kwargs,
        )
