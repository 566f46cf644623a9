"""Adapters — bindings for the external tools provisioning drives.

Public re-exports for convenient access.
"""

from comfy_provision.adapters.base import CommandRunner
from comfy_provision.adapters.mock import MockRunner
from comfy_provision.adapters.shell.command import SubprocessRunner

__all__ = [
    "CommandRunner",
    "MockRunner",
    "SubprocessRunner",
]
