"""ComfyUI provisioning — reconcile a GPU server's runtime stack and plugins."""

__version__ = "1.5.0"
