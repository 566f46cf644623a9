"""
Domain models — Pydantic types for provisioning.

Spec, receipt and report types are re-exported here:

    from comfy_provision.core.models import DependencySpec, Receipt, Outcome

``ProvisionConfig`` lives in ``comfy_provision.core.models.config`` and
is imported from there, since it pulls in the built-in defaults.
"""

from comfy_provision.core.models.receipt import Receipt
from comfy_provision.core.models.report import (
    Outcome,
    ProvisionMarker,
    ReconciliationReport,
    ReportEntry,
)
from comfy_provision.core.models.spec import DependencySpec, PluginSpec

__all__ = [
    "DependencySpec",
    "Outcome",
    "PluginSpec",
    "ProvisionMarker",
    "Receipt",
    "ReconciliationReport",
    "ReportEntry",
]
