"""
Tests for the plugin reconciler — sweep, health check, clone/repair.
"""

from pathlib import Path

import pytest

from comfy_provision.adapters.languages.python import PythonEnvironment
from comfy_provision.adapters.vcs.git import GitClient
from comfy_provision.core.models.report import Outcome, ReconciliationReport
from comfy_provision.core.models.spec import PluginSpec
from comfy_provision.core.services.package_installer import PackageInstaller
from comfy_provision.core.services.plugin_reconciler import Health, PluginReconciler

URL = "https://example.org/acme/ComfyUI-Acme.git"


@pytest.fixture
def report() -> ReconciliationReport:
    return ReconciliationReport()


@pytest.fixture
def reconciler(sim, venv: Path, plugins_root: Path, report) -> PluginReconciler:
    env = PythonEnvironment(sim, venv, python=sim.python)
    sim.repos[URL] = {"__init__.py": "", "nodes.py": "", "requirements.txt": "einops\n"}
    return PluginReconciler(
        plugins_root,
        PackageInstaller(env),
        GitClient(sim),
        excluded=["NSFW_MMaudio"],
        report=report,
    )


def _plugin_dir(root: Path, name: str, *, init: bool = True, manifest: str | None = None) -> Path:
    path = root / name
    path.mkdir(parents=True)
    if init:
        (path / "__init__.py").write_text("")
    if manifest is not None:
        (path / "requirements.txt").write_text(manifest)
    return path


class TestCleanPluginRoot:
    """Stray directories go before anything else looks at the root."""

    def test_removes_hidden_and_pycache(self, reconciler, plugins_root):
        (plugins_root / ".git" / "objects").mkdir(parents=True)
        (plugins_root / ".ipynb_checkpoints").mkdir()
        (plugins_root / ".cache").mkdir()
        plugin = _plugin_dir(plugins_root, "ComfyUI-Acme")
        (plugin / "__pycache__").mkdir()
        (plugin / "sub" / "__pycache__").mkdir(parents=True)
        (plugins_root / "__pycache__").mkdir()

        removed = reconciler.clean_plugin_root()

        assert len(removed) == 6
        assert sorted(p.name for p in plugins_root.iterdir()) == ["ComfyUI-Acme"]
        assert not (plugin / "__pycache__").exists()
        assert not (plugin / "sub" / "__pycache__").exists()
        assert (plugin / "sub").is_dir()

    def test_keeps_hidden_files_inside_plugins(self, reconciler, plugins_root):
        plugin = _plugin_dir(plugins_root, "ComfyUI-Acme")
        (plugin / ".git").mkdir()
        (plugins_root / ".DS_Store").write_text("")

        reconciler.clean_plugin_root()

        assert (plugin / ".git").is_dir()
        assert (plugins_root / ".DS_Store").is_file()

    def test_missing_root(self, sim, venv, tmp_path):
        env = PythonEnvironment(sim, venv, python=sim.python)
        rec = PluginReconciler(tmp_path / "nope", PackageInstaller(env), GitClient(sim))
        assert rec.clean_plugin_root() == []


class TestPathOf:
    def test_default_is_name_under_root(self, reconciler, plugins_root):
        assert reconciler.path_of(PluginSpec(name="ComfyUI-Acme")) == plugins_root / "ComfyUI-Acme"

    def test_relative_path_is_under_root(self, reconciler, plugins_root):
        plugin = PluginSpec(name="ComfyUI-Acme", path="vendor/acme")
        assert reconciler.path_of(plugin) == plugins_root / "vendor" / "acme"

    def test_absolute_path_kept(self, reconciler, tmp_path):
        plugin = PluginSpec(name="ComfyUI-Acme", path=str(tmp_path / "elsewhere"))
        assert reconciler.path_of(plugin) == tmp_path / "elsewhere"


class TestHealthCheck:
    def test_missing_init_is_created(self, reconciler, plugins_root, sim):
        path = _plugin_dir(plugins_root, "ComfyUI-Acme", init=False)
        result = reconciler.health_check(PluginSpec(name="ComfyUI-Acme"))
        assert result.healthy
        assert (path / "__init__.py").is_file()
        assert sim.install_calls == []

    def test_missing_directory(self, reconciler):
        result = reconciler.health_check(PluginSpec(name="ComfyUI-Acme"))
        assert result.status == Health.UNHEALTHY

    def test_required_marker_checked_before_init_is_created(self, reconciler, plugins_root):
        path = _plugin_dir(plugins_root, "ComfyUI-Manager", init=False)
        result = reconciler.health_check(PluginSpec(name="ComfyUI-Manager", marker="__init__.py"))
        assert result.status == Health.UNHEALTHY
        assert "__init__.py" in result.reason
        assert not (path / "__init__.py").exists()

    def test_manifest_installed(self, reconciler, plugins_root, sim):
        _plugin_dir(plugins_root, "ComfyUI-Acme", manifest="einops\n")
        assert reconciler.health_check(PluginSpec(name="ComfyUI-Acme")).healthy
        assert sim.version_of("einops") == "1.0.0"

    def test_failing_manifest_critical_is_unhealthy(self, reconciler, plugins_root, sim):
        path = _plugin_dir(plugins_root, "ComfyUI-Acme", manifest="einops\n")
        sim.failing_manifests.add(str(path / "requirements.txt"))

        result = reconciler.health_check(PluginSpec(name="ComfyUI-Acme", critical=True))

        assert result.status == Health.UNHEALTHY
        assert len(sim.install_calls) == 1

    def test_failing_manifest_non_critical_is_degraded_after_retry(
        self, reconciler, plugins_root, sim,
    ):
        path = _plugin_dir(plugins_root, "ComfyUI-Acme", manifest="einops\n")
        sim.failing_manifests.add(str(path / "requirements.txt"))

        result = reconciler.health_check(PluginSpec(name="ComfyUI-Acme", critical=False))

        assert result.status == Health.DEGRADED
        assert len(sim.install_calls) == 2


class TestEnsure:
    """Per-plugin state machine."""

    def test_absent_is_cloned(self, reconciler, plugins_root, sim, report):
        outcome = reconciler.ensure(PluginSpec(name="ComfyUI-Acme", url=URL))
        assert outcome == Outcome.INSTALLED
        assert (plugins_root / "ComfyUI-Acme" / "nodes.py").is_file()
        assert report.entries["ComfyUI-Acme"].kind == "plugin"

    def test_present_and_healthy(self, reconciler, plugins_root, sim):
        _plugin_dir(plugins_root, "ComfyUI-Acme")
        outcome = reconciler.ensure(PluginSpec(name="ComfyUI-Acme", url=URL))
        assert outcome == Outcome.ALREADY_SATISFIED
        assert sim.clone_calls == []

    def test_clone_failure_is_failed(self, reconciler, sim):
        sim.failing_clones.add(URL)
        outcome = reconciler.ensure(PluginSpec(name="ComfyUI-Acme", url=URL))
        assert outcome == Outcome.FAILED

    def test_unhealthy_is_recloned(self, reconciler, plugins_root, sim):
        # broken checkout: marker missing
        path = _plugin_dir(plugins_root, "ComfyUI-Acme", init=False)
        (path / "stale.py").write_text("")

        outcome = reconciler.ensure(PluginSpec(name="ComfyUI-Acme", url=URL, marker="__init__.py"))

        assert outcome == Outcome.REPAIRED
        assert len(sim.clone_calls) == 1
        assert not (path / "stale.py").exists()
        assert (path / "nodes.py").is_file()

    def test_unhealthy_after_reclone_fails_once(self, reconciler, plugins_root, sim):
        path = _plugin_dir(plugins_root, "ComfyUI-Acme", manifest="einops\n")
        sim.failing_manifests.add(str(path / "requirements.txt"))

        outcome = reconciler.ensure(PluginSpec(name="ComfyUI-Acme", url=URL, critical=True))

        assert outcome == Outcome.FAILED
        assert len(sim.clone_calls) == 1

    def test_unhealthy_without_source(self, reconciler, plugins_root, sim):
        _plugin_dir(plugins_root, "Local", init=False)
        outcome = reconciler.ensure(PluginSpec(name="Local", marker="__init__.py"))
        assert outcome == Outcome.FAILED
        assert (plugins_root / "Local").is_dir()
        assert sim.clone_calls == []

    def test_non_critical_manifest_failure_is_degraded_in_place(
        self, reconciler, plugins_root, sim,
    ):
        path = _plugin_dir(plugins_root, "ComfyUI-Acme", manifest="einops\n")
        sim.failing_manifests.add(str(path / "requirements.txt"))

        outcome = reconciler.ensure(PluginSpec(name="ComfyUI-Acme", url=URL, critical=False))

        assert outcome == Outcome.DEGRADED
        assert sim.clone_calls == []


class TestReconcileAll:
    def test_sweep_then_configured_then_discovered(self, reconciler, plugins_root, sim, report):
        (plugins_root / ".ipynb_checkpoints").mkdir()
        _plugin_dir(plugins_root, "was-node-suite", init=False)
        _plugin_dir(plugins_root, "NSFW_MMaudio", init=False)

        outcomes = reconciler.reconcile_all([PluginSpec(name="ComfyUI-Acme", url=URL)])

        assert outcomes == {
            "ComfyUI-Acme": Outcome.INSTALLED,
            "was-node-suite": Outcome.ALREADY_SATISFIED,
        }
        assert not (plugins_root / ".ipynb_checkpoints").exists()
        assert (plugins_root / "was-node-suite" / "__init__.py").is_file()
        # excluded: untouched and unreported
        assert not (plugins_root / "NSFW_MMaudio" / "__init__.py").exists()
        assert "NSFW_MMaudio" not in report.entries
        assert ".ipynb_checkpoints" not in report.entries

    def test_excluded_configured_plugin_is_skipped(self, reconciler, sim):
        outcomes = reconciler.reconcile_all([PluginSpec(name="NSFW_MMaudio", url=URL)])
        assert outcomes == {}
        assert sim.clone_calls == []

    def test_discovered_failing_manifest_is_degraded(self, reconciler, plugins_root, sim):
        path = _plugin_dir(plugins_root, "comfy-mtb", manifest="einops\n")
        sim.failing_manifests.add(str(path / "requirements.txt"))

        outcomes = reconciler.reconcile_all([])

        assert outcomes == {"comfy-mtb": Outcome.DEGRADED}
        assert path.is_dir()

    def test_creates_missing_root(self, sim, venv, tmp_path):
        env = PythonEnvironment(sim, venv, python=sim.python)
        root = tmp_path / "ComfyUI" / "custom_nodes"
        rec = PluginReconciler(root, PackageInstaller(env), GitClient(sim))
        assert rec.reconcile_all([]) == {}
        assert root.is_dir()
