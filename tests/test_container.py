"""
Tests for the container sandbox. The container engine is FakeRunner.
"""

import pytest
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

NAME = "hammer-container-default"


@pytest.fixture
def sandbox(runner, tmp_path):
    from hammer.container import ContainerSandbox
    return ContainerSandbox(name=NAME, bin_dir=tmp_path / "bin", runner=runner)


def _exec_argv(*argv):
    return ["podman", "exec", "-e", "DEBIAN_FRONTEND=noninteractive", NAME, *argv]


class TestEnsure:

    @pytest.mark.unit
    def test_creates_missing_container(self, sandbox, runner):
        sandbox.ensure()

        assert runner.commands("podman", "run") == [
            ["podman", "run", "-d", "--name", NAME, "debian:stable", "sleep", "infinity"]
        ]
        assert sandbox.exists()

    @pytest.mark.unit
    def test_existing_container_reused(self, sandbox, runner):
        runner.containers.append(NAME)

        sandbox.ensure()

        assert runner.commands("podman", "run") == []

    @pytest.mark.unit
    def test_exists_filters_by_exact_name(self, sandbox, runner):
        runner.containers.append(NAME)
        assert sandbox.exists()
        assert runner.calls[-1] == [
            "podman", "ps", "-a", "--filter", f"name=^{NAME}$", "--format", "{{.Names}}",
        ]

    @pytest.mark.unit
    def test_create_failure(self, sandbox, runner):
        from common.exceptions import ContainerCreateFailedError

        runner.fail("podman", "run", stderr="Error: image not known")

        with pytest.raises(ContainerCreateFailedError) as excinfo:
            sandbox.ensure()
        assert excinfo.value.details["stderr"] == "Error: image not known"


class TestPackages:

    @pytest.mark.unit
    def test_install_sequence(self, sandbox, runner, tmp_path):
        exported = sandbox.install("vim")

        assert exported == tmp_path / "bin" / "vim"
        engine_calls = [c for c in runner.calls if c[1] in ("exec", "cp")]
        assert engine_calls == [
            _exec_argv("apt-get", "update"),
            _exec_argv("apt-get", "install", "-y", "vim"),
            ["podman", "cp", f"{NAME}:/usr/bin/vim", str(tmp_path / "bin")],
        ]

    @pytest.mark.unit
    def test_export_failure_is_ignored(self, sandbox, runner):
        runner.fail("podman", "cp", stderr="Error: no such file")

        assert sandbox.install("libssl-dev") is None

    @pytest.mark.unit
    def test_update_failure(self, sandbox, runner):
        from common.exceptions import UpdateFailedError

        runner.fail("podman", "exec", arg="update", stderr="E: Could not resolve deb.debian.org")

        with pytest.raises(UpdateFailedError) as excinfo:
            sandbox.install("vim")

        assert "Could not resolve" in excinfo.value.message
        assert runner.commands("podman", "cp") == []

    @pytest.mark.unit
    def test_install_failure(self, sandbox, runner):
        from common.exceptions import PackageOpFailedError

        runner.fail("podman", "exec", arg="install", stderr="E: Unable to locate package nope")

        with pytest.raises(PackageOpFailedError) as excinfo:
            sandbox.install("nope")

        assert excinfo.value.details["package"] == "nope"
        assert runner.commands("podman", "cp") == []

    @pytest.mark.unit
    def test_remove(self, sandbox, runner):
        sandbox.remove("vim")

        assert runner.calls[-1] == _exec_argv("apt-get", "remove", "-y", "vim")
        assert runner.commands("podman", "cp") == []

    @pytest.mark.unit
    def test_custom_tool(self, runner, tmp_path):
        from hammer.container import ContainerSandbox

        runner.containers.append(NAME)
        sandbox = ContainerSandbox(name=NAME, tool="docker", bin_dir=tmp_path, runner=runner)

        sandbox.update()

        assert runner.calls[-1][:2] == ["docker", "exec"]


class TestPrune:

    @pytest.mark.unit
    def test_prune(self, sandbox, runner):
        sandbox.prune()
        assert runner.calls == [["podman", "system", "prune", "-f"]]

    @pytest.mark.unit
    def test_prune_failure(self, sandbox, runner):
        from common.exceptions import PruneFailedError

        runner.fail("podman", "system", "prune")

        with pytest.raises(PruneFailedError):
            sandbox.prune()
