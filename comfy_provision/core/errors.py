"""
Provisioning errors.

Only conditions that end a run are raised. Everything else (a failed
install, a broken plugin) is recorded in the reconciliation report
and the run carries on.
"""

from __future__ import annotations


class ProvisionError(Exception):
    """Base class for errors that abort provisioning."""


class EnvironmentNotFoundError(ProvisionError):
    """The target virtualenv does not exist (no ``bin/activate``)."""

    def __init__(self, venv_path: str) -> None:
        self.venv_path = venv_path
        super().__init__(f"Virtual environment not found at {venv_path}")


class PipUnrepairableError(ProvisionError):
    """Every pip repair strategy was tried and pip is still unusable."""

    def __init__(self, attempts: list[str], detail: str = "") -> None:
        self.attempts = attempts
        self.detail = detail
        msg = "pip could not be repaired"
        if attempts:
            msg += f" (tried: {', '.join(attempts)})"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)
