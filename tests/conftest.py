"""
Shared test fixtures and configuration.
"""

from pathlib import Path

import pytest

from comfy_provision.core.config.defaults import default_plugins
from comfy_provision.core.models.config import (
    EnvironmentConfig,
    ProvisionConfig,
    ServiceConfig,
)
from tests.simulated_env import SimulatedEnv

MANAGER_URL = "https://github.com/ltdrdata/ComfyUI-Manager.git"
MMAUDIO_URL = "https://github.com/FuouM/ComfyUI-MMAudio.git"

COMFYUI_REQUIREMENTS = "torch\ntorchsde\ntorchvision\ntorchaudio\nnumpy>=1.25.0\neinops\n"

# What a fully provisioned venv has installed
CONVERGED_PACKAGES = {
    "torch": "2.7.0+cu128",
    "torchvision": "0.22.0+cu128",
    "torchaudio": "2.7.0+cu128",
    "triton": "3.3.1",
    "sageattention": "1.0.6",
    "av": "14.0.1",
    "pydantic-settings": "2.6.1",
    "accelerate": "1.2.1",
    "requirements-parser": "0.11.0",
    "alembic": "1.14.0",
    "segment-anything": "1.0",
    "toml": "0.10.2",
    "piexif": "1.1.3",
    "deepdiff": "8.1.1",
    "torchdiffeq": "0.2.5",
    "comfyui-frontend-package": "1.32.1",
    "torchsde": "0.2.6",
    "numpy": "1.26.4",
    "einops": "0.8.0",
    "gitpython": "3.1.43",
}


@pytest.fixture
def venv(tmp_path: Path) -> Path:
    """A directory that looks like a virtualenv (has bin/activate)."""
    path = tmp_path / "venv"
    (path / "bin").mkdir(parents=True)
    (path / "bin" / "activate").write_text("# activate\n")
    return path


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """Workspace with a ComfyUI checkout and an empty custom_nodes."""
    path = tmp_path / "workspace"
    comfy = path / "ComfyUI"
    (comfy / "custom_nodes").mkdir(parents=True)
    (comfy / "requirements.txt").write_text(COMFYUI_REQUIREMENTS)
    return path


@pytest.fixture
def config(venv: Path, workspace: Path) -> ProvisionConfig:
    """Built-in defaults pointed at the temporary venv and workspace."""
    return ProvisionConfig(
        environment=EnvironmentConfig(venv_path=str(venv), workspace=str(workspace)),
        service=ServiceConfig(stop_grace_seconds=0),
    )


@pytest.fixture
def plugins_root(config: ProvisionConfig) -> Path:
    return config.environment.plugins_root


@pytest.fixture
def sim(config: ProvisionConfig) -> SimulatedEnv:
    """Fresh server: pip works, nothing installed, both plugin repos reachable."""
    env = SimulatedEnv(python=config.environment.interpreter)
    env.repos[MANAGER_URL] = {"__init__.py": "", "requirements.txt": "GitPython\n"}
    env.repos[MMAUDIO_URL] = {"nodes.py": "", "requirements.txt": "einops\n"}
    return env


@pytest.fixture
def converged_sim(sim: SimulatedEnv, plugins_root: Path) -> SimulatedEnv:
    """A server that a previous run already brought to the desired state."""
    for dist, version in CONVERGED_PACKAGES.items():
        sim.install(dist, version)
    for plugin in default_plugins():
        path = plugins_root / plugin.name
        path.mkdir(parents=True)
        (path / "__init__.py").write_text("")
        for rel, content in sim.repos[plugin.url].items():
            (path / rel).write_text(content)
    return sim


@pytest.fixture
def fake_fetch():
    """get-pip.py downloader that writes a stub instead of using the network."""
    fetched: list[str] = []

    def fetch(url: str, dest: Path) -> None:
        fetched.append(url)
        dest.write_text("# get-pip stub\n")

    fetch.calls = fetched
    return fetch
