"""
Reconciliation report and provisioning marker.

The report is created empty at the start of a run, receives exactly
one entry per spec, and is folded into the ProvisionMarker that gets
written to ``<workspace>/.provisioned`` at the end.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


def _flag(value: bool | None) -> str:
    return "unknown" if value is None else str(value).lower()


class Outcome(StrEnum):
    """Terminal state of one reconciled spec."""

    ALREADY_SATISFIED = "already-satisfied"
    INSTALLED = "installed"
    REPAIRED = "repaired"
    DEGRADED = "degraded"
    FAILED = "failed"

    @property
    def ok(self) -> bool:
        """Whether the spec ended in a usable state."""
        return self in (Outcome.ALREADY_SATISFIED, Outcome.INSTALLED, Outcome.REPAIRED)


class ReportEntry(BaseModel):
    """One line of the reconciliation report."""

    name: str
    kind: str = "dependency"            # dependency, manifest, plugin
    outcome: Outcome
    version: str | None = None
    message: str = ""


class ReconciliationReport(BaseModel):
    """Accumulated result of a provisioning run."""

    started_at: str = Field(default_factory=_now_iso)
    entries: dict[str, ReportEntry] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def record(
        self,
        name: str,
        outcome: Outcome,
        *,
        kind: str = "dependency",
        version: str | None = None,
        message: str = "",
    ) -> ReportEntry:
        """Record (or overwrite) the outcome for a spec."""
        entry = ReportEntry(
            name=name, kind=kind, outcome=outcome, version=version, message=message,
        )
        self.entries[name] = entry
        return entry

    def outcome_of(self, name: str) -> Outcome | None:
        entry = self.entries.get(name)
        return entry.outcome if entry else None

    def names_with(self, outcome: Outcome, kind: str | None = None) -> list[str]:
        """Names of entries with the given outcome, in insertion order."""
        return [
            e.name for e in self.entries.values()
            if e.outcome == outcome and (kind is None or e.kind == kind)
        ]

    @property
    def failed(self) -> list[str]:
        return self.names_with(Outcome.FAILED)

    @property
    def succeeded(self) -> list[str]:
        return [e.name for e in self.entries.values() if e.outcome.ok]

    @property
    def ok(self) -> bool:
        """True when nothing ended in ``failed``."""
        return not self.failed

    def summary(self) -> dict[str, int]:
        """Count of entries per outcome."""
        counts = {o.value: 0 for o in Outcome}
        for entry in self.entries.values():
            counts[entry.outcome.value] += 1
        return counts


class ProvisionMarker(BaseModel):
    """Persisted status record — one per run, overwritten each time."""

    schema_version: int = 1
    script_version: str = ""
    provisioned_at: str = Field(default_factory=_now_iso)

    torch_version: str | None = None
    cuda_version: str | None = None
    cuda_available: bool | None = None  # None: never probed
    triton_version: str | None = None
    frontend_version: str | None = None

    pip_accessible: bool = False
    pip_version: str | None = None

    all_verified: bool = False
    verified: dict[str, bool] = Field(default_factory=dict)

    failed_plugins: list[str] = Field(default_factory=list)
    degraded_plugins: list[str] = Field(default_factory=list)
    drift_corrected: bool = False

    outcomes: dict[str, str] = Field(default_factory=dict)

    def render_text(self) -> str:
        """Human-readable ``Key: value`` form of the marker."""
        failed = " ".join(self.failed_plugins) if self.failed_plugins else "None"
        lines = [
            f"Script version: {self.script_version}",
            f"Last provisioned: {self.provisioned_at}",
            f"PyTorch: {self.torch_version or 'FAILED'}",
            f"CUDA: {self.cuda_version or 'FAILED'}",
            f"CUDA available: {_flag(self.cuda_available)}",
            f"Triton: {self.triton_version or 'FAILED'}",
            f"Frontend: {self.frontend_version or 'FAILED'}",
            f"pip: {self.pip_version if self.pip_accessible else 'FAILED'}",
            f"All verified: {str(self.all_verified).lower()}",
            f"Failed nodes: {failed}",
        ]
        if self.degraded_plugins:
            lines.append(f"Degraded nodes: {' '.join(self.degraded_plugins)}")
        if self.drift_corrected:
            lines.append("Drift corrected: true")
        return "\n".join(lines) + "\n"
