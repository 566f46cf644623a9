"""
Tests for the runner contract, mock runner, and the command adapters.
"""

import json
import sys
from pathlib import Path

from comfy_provision.adapters.languages.python import ProbeResult, PythonEnvironment
from comfy_provision.adapters.mock import MockRunner
from comfy_provision.adapters.process.supervisor import Supervisor
from comfy_provision.adapters.shell.command import SubprocessRunner
from comfy_provision.adapters.vcs.git import GitClient
from comfy_provision.core.models.receipt import Receipt

# ── Receipt ──────────────────────────────────────────────────────────


class TestReceipt:
    def test_success(self):
        r = Receipt.success("mock", ["pip", "check"], output="fine")
        assert r.ok and not r.failed
        assert r.command_line == "pip check"

    def test_failure(self):
        r = Receipt.failure("mock", ["git", "clone"], error="nope", return_code=128)
        assert r.failed
        assert r.return_code == 128

    def test_skip_is_neither(self):
        r = Receipt.skip("mock", ["supervisorctl", "stop", "comfyui"], reason="not running")
        assert not r.ok and not r.failed
        assert r.status == "skipped"


# ── Mock Runner ──────────────────────────────────────────────────────


class TestMockRunner:
    def test_default_success(self):
        mock = MockRunner()
        receipt = mock.run(["echo", "hi"])
        assert receipt.ok
        assert receipt.metadata == {"mock": True}
        assert mock.call_count == 1

    def test_longest_prefix_wins(self):
        mock = MockRunner()
        mock.set_output(["pip"], "generic")
        mock.set_failure(["pip", "install", "torch==2.7.0"], "no wheel")

        assert mock.run(["pip", "install", "torch==2.7.0"]).failed
        assert mock.run(["pip", "install", "torch==2.7.0", "--no-deps"]).failed
        assert mock.run(["pip", "install", "einops"]).output == "generic"

    def test_prefix_matches_whole_tokens(self):
        mock = MockRunner()
        mock.set_failure(["pip", "install", "torch"], "no wheel")
        assert mock.run(["pip", "install", "torchsde"]).ok
        assert mock.run(["pip", "install", "torch"]).failed

    def test_queued_responses(self):
        mock = MockRunner()
        mock.set_response(
            ["pip", "--version"],
            Receipt.failure("mock", [], error="broken"),
            Receipt.success("mock", [], output="pip 24.0 from /x"),
        )
        assert mock.run(["pip", "--version"]).failed
        assert mock.run(["pip", "--version"]).ok
        # last one repeats
        assert mock.run(["pip", "--version"]).ok

    def test_response_carries_actual_command(self):
        mock = MockRunner()
        mock.set_output(["git"], "")
        assert mock.run(["git", "clone", "u", "d"]).command == ["git", "clone", "u", "d"]

    def test_calls_matching_and_reset(self):
        mock = MockRunner()
        mock.run(["git", "clone", "a", "b"])
        mock.run(["pip", "check"])
        assert mock.calls_matching("git") == [["git", "clone", "a", "b"]]
        mock.reset()
        assert mock.call_count == 0

    def test_unavailable(self):
        assert not MockRunner(available=False).is_available()


# ── Subprocess Runner ────────────────────────────────────────────────


class TestSubprocessRunner:
    def test_success(self):
        receipt = SubprocessRunner().run([sys.executable, "-c", "print('hi')"])
        assert receipt.ok
        assert receipt.output == "hi"
        assert receipt.return_code == 0

    def test_nonzero_exit(self):
        receipt = SubprocessRunner().run(
            [sys.executable, "-c", "import sys; sys.stderr.write('bad\\n'); sys.exit(3)"],
        )
        assert receipt.failed
        assert receipt.return_code == 3
        assert receipt.error == "bad"

    def test_missing_executable(self):
        receipt = SubprocessRunner().run(["definitely-not-a-real-binary-xyz"])
        assert receipt.failed
        assert receipt.return_code == 127
        assert "not found" in receipt.error

    def test_timeout(self):
        receipt = SubprocessRunner().run(
            [sys.executable, "-c", "import time; time.sleep(5)"], timeout=0.2,
        )
        assert receipt.failed
        assert "timed out" in receipt.error

    def test_env_layering(self):
        runner = SubprocessRunner(base_env={"A": "base", "B": "base"})
        receipt = runner.run(
            [sys.executable, "-c", "import os; print(os.environ['A'], os.environ['B'])"],
            env={"B": "call"},
        )
        assert receipt.output == "base call"


# ── Python environment ───────────────────────────────────────────────


class TestPythonEnvironment:
    def test_env_puts_venv_first(self, venv: Path):
        env = PythonEnvironment(MockRunner(), venv).env()
        assert env["VIRTUAL_ENV"] == str(venv)
        assert env["PATH"].startswith(str(venv / "bin"))
        assert env["PIP_DISABLE_PIP_VERSION_CHECK"] == "1"

    def test_activatable(self, venv: Path, tmp_path: Path):
        assert PythonEnvironment(MockRunner(), venv).is_activatable()
        assert not PythonEnvironment(MockRunner(), tmp_path / "nope").is_activatable()

    def test_install_args(self, venv: Path):
        mock = MockRunner()
        env = PythonEnvironment(mock, venv)
        env.install(
            ["torch==2.7.0+cu128"],
            index_url="https://download.pytorch.org/whl/cu128",
            no_deps=True,
            force_reinstall=True,
        )
        python = str(venv / "bin" / "python")
        assert mock.call_log == [[
            python, "-m", "pip", "install", "--no-cache-dir", "--force-reinstall", "--no-deps",
            "torch==2.7.0+cu128", "--index-url", "https://download.pytorch.org/whl/cu128",
        ]]

    def test_explicit_pip(self, venv: Path):
        mock = MockRunner()
        PythonEnvironment(mock, venv, pip="/opt/pip").uninstall(["xformers"])
        assert mock.call_log == [["/opt/pip", "uninstall", "-y", "xformers"]]

    def test_probe_command(self, venv: Path):
        mock = MockRunner()
        mock.set_output(
            [str(venv / "bin" / "python"), "-c"],
            json.dumps({"ok": True, "version": "2.7.0+cu128", "build": "12.8", "error": None}),
        )
        result = PythonEnvironment(mock, venv).probe("torch", "version.cuda", "torch")
        assert result.ok
        assert result.version == "2.7.0+cu128"
        assert result.build == "12.8"
        assert mock.call_log[0][3:] == ["torch", "version.cuda", "torch"]

    def test_probe_with_check(self, venv: Path):
        mock = MockRunner()
        mock.set_output(
            [str(venv / "bin" / "python"), "-c"],
            json.dumps({"ok": True, "version": "2.7.0+cu128", "build": "12.8", "check": False}),
        )
        result = PythonEnvironment(mock, venv).probe(
            "torch", "version.cuda", "torch", check="cuda.is_available",
        )
        assert result.check is False
        assert mock.call_log[0][-1] == "cuda.is_available"


class TestProbeResult:
    def test_failed_command(self):
        result = ProbeResult.parse(Receipt.failure("mock", [], error="No such file"))
        assert not result.ok
        assert result.error == "No such file"

    def test_last_line_is_json(self):
        out = "some warning from an import\n" + json.dumps({"ok": False, "error": "ImportError: x"})
        result = ProbeResult.parse(Receipt.success("mock", [], output=out))
        assert not result.ok
        assert result.error == "ImportError: x"

    def test_garbage(self):
        result = ProbeResult.parse(Receipt.success("mock", [], output="Segmentation fault"))
        assert not result.ok
        assert "unreadable" in result.error

    def test_empty(self):
        result = ProbeResult.parse(Receipt.success("mock", [], output=""))
        assert not result.ok


# ── Git ──────────────────────────────────────────────────────────────


class TestGitClient:
    def test_clone_command(self, tmp_path: Path):
        mock = MockRunner()
        GitClient(mock).clone("https://example.org/x.git", tmp_path / "x")
        assert mock.call_log == [["git", "clone", "https://example.org/x.git", str(tmp_path / "x")]]

    def test_shallow(self, tmp_path: Path):
        mock = MockRunner()
        GitClient(mock, depth=1).clone("u", tmp_path / "x")
        assert mock.call_log[0][:4] == ["git", "clone", "--depth", "1"]

    def test_failure_is_returned(self, tmp_path: Path):
        mock = MockRunner()
        mock.set_failure(["git", "clone"], "fatal: repository not found", 128)
        assert GitClient(mock).clone("u", tmp_path / "x").failed


# ── Supervisor ───────────────────────────────────────────────────────


class TestSupervisor:
    def test_stop(self):
        mock = MockRunner()
        mock.set_output(["supervisorctl", "stop"], "comfyui: stopped")
        receipt = Supervisor(mock, "comfyui").stop()
        assert receipt.ok
        assert mock.call_log == [["supervisorctl", "stop", "comfyui"]]

    def test_already_stopped_is_skipped(self):
        mock = MockRunner()
        mock.set_failure(["supervisorctl", "stop"], "comfyui: ERROR (not running)")
        receipt = Supervisor(mock, "comfyui").stop()
        assert receipt.status == "skipped"

    def test_already_started_is_skipped(self):
        mock = MockRunner()
        mock.set_output(["supervisorctl", "start"], "comfyui: ERROR (already started)")
        assert Supervisor(mock, "comfyui").start().status == "skipped"

    def test_error_text_with_zero_exit_is_failure(self):
        mock = MockRunner()
        mock.set_output(["supervisorctl", "start"], "comfyui: ERROR (no such process)")
        receipt = Supervisor(mock, "comfyui").start()
        assert receipt.failed
        assert "no such process" in receipt.error

    def test_custom_control(self):
        mock = MockRunner()
        Supervisor(mock, "comfy", control="/usr/bin/supervisorctl").status()
        assert mock.call_log == [["/usr/bin/supervisorctl", "status", "comfy"]]
