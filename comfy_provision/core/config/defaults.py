"""
Built-in provisioning defaults.

The pinned stack that the server is known to run: PyTorch 2.7.0 built
for CUDA 12.8, Triton 3.3.1, SageAttention, and the frontend pinned at
1.32.1 (later frontends hide nodes). A ``provision.yml`` overrides any
of these.
"""

from __future__ import annotations

from comfy_provision.core.models.spec import DependencySpec, PluginSpec

DEFAULT_VENV_PATH = "/opt/environments/python/comfyui"
DEFAULT_WORKSPACE = "/workspace"
DEFAULT_SERVICE = "comfyui"

GET_PIP_URL = "https://bootstrap.pypa.io/get-pip.py"
PYTORCH_INDEX_CU128 = "https://download.pytorch.org/whl/cu128"


def default_framework() -> DependencySpec:
    """PyTorch pinned to 2.7.0 with its CUDA 12.8 companions."""
    return DependencySpec(
        name="torch",
        version="2.7.0+cu128",
        policy="pin",
        packages=[
            "torch==2.7.0+cu128",
            "torchvision==0.22.0+cu128",
            "torchaudio==2.7.0+cu128",
        ],
        index_url=PYTORCH_INDEX_CU128,
        build_attr="version.cuda",
        build="12.8",
        runtime_check="cuda.is_available",
        # xformers wheels are built against one torch ABI; a stale one breaks imports.
        # Nothing reinstalls it unless provision.yml lists it under extra_dependencies.
        uninstall=["torch", "torchvision", "torchaudio", "xformers"],
        critical=True,
    )


def default_dependencies() -> list[DependencySpec]:
    """Auxiliary packages reconciled after the framework."""
    return [
        DependencySpec(name="triton", version="3.3.1", no_deps=True),
        DependencySpec(name="sageattention"),
        DependencySpec(name="av"),
        DependencySpec(name="pydantic-settings", module="pydantic_settings"),
        DependencySpec(name="accelerate"),
        DependencySpec(name="requirements-parser", module="requirements"),
        DependencySpec(name="alembic"),
        DependencySpec(name="segment-anything", module="segment_anything"),
        DependencySpec(name="toml"),
        DependencySpec(name="piexif"),
        DependencySpec(name="deepdiff"),
        DependencySpec(name="torchdiffeq"),
    ]


def default_frontend() -> DependencySpec:
    return DependencySpec(
        name="comfyui-frontend-package",
        module="comfyui_frontend_package",
        version="1.32.1",
        policy="pin",
        uninstall=["comfyui-frontend-package"],
    )


def default_plugins() -> list[PluginSpec]:
    return [
        PluginSpec(
            name="ComfyUI-Manager",
            url="https://github.com/ltdrdata/ComfyUI-Manager.git",
            marker="__init__.py",
            critical=True,
        ),
        PluginSpec(
            name="ComfyUI-MMAudio",
            url="https://github.com/FuouM/ComfyUI-MMAudio.git",
            critical=False,
        ),
    ]


# A model-weights folder that ships inside custom_nodes but is not a plugin.
DEFAULT_EXCLUDED_PLUGINS: list[str] = ["NSFW_MMaudio"]

DEFAULT_CRITICAL_IMPORTS: list[str] = [
    "torch",
    "torchvision",
    "torchaudio",
    "av",
    "comfyui_frontend_package",
    "toml",
    "piexif",
    "deepdiff",
]
