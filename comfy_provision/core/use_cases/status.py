"""
Status use case — read back what the last run recorded.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from comfy_provision.core.models.config import ProvisionConfig
from comfy_provision.core.models.report import ProvisionMarker
from comfy_provision.core.persistence.marker_file import load_marker


@dataclass
class StatusResult:
    """The marker of the last provisioning run, if any."""

    marker: ProvisionMarker | None = None
    marker_path: Path | None = None
    error: str | None = None

    @property
    def provisioned(self) -> bool:
        return self.marker is not None

    def to_dict(self) -> dict:
        result: dict = {"marker_path": str(self.marker_path) if self.marker_path else None}
        if self.error:
            result["error"] = self.error
            return result
        result["provisioned"] = self.provisioned
        if self.marker:
            result["marker"] = self.marker.model_dump(mode="json")
        return result


def get_status(config: ProvisionConfig) -> StatusResult:
    """Load the marker the config points at."""
    path = config.marker_path
    marker = load_marker(path)
    if marker is None:
        return StatusResult(
            marker_path=path,
            error=f"No readable marker at {path}; the server has not been provisioned",
        )
    return StatusResult(marker=marker, marker_path=path)
