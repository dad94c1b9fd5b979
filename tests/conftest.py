"""
Pytest configuration and shared fixtures for Hammer tests.

Provides a fake command runner that emulates btrfs, mount, umount,
chroot and podman against a temporary directory tree.
"""

import logging
import os
import shutil
import pytest
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Callable, Dict, List, Optional
import sys

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from hammer.runner import CommandResult


BASE_SUBVOLUME_ID = "256"
TODAY = date(2025, 1, 15)


# ============ Fake command runner ============

@dataclass
class FailureRule:
    matches: Callable[[List[str]], bool]
    returncode: int = 1
    stderr: str = "simulated failure"
    remaining: Optional[int] = None


class FakeRunner:
    """
    Emulates the external tools Hammer drives.

    Subvolumes are real directories under tmp_path, tracked with an id
    and ro flag; mounts are tracked as a list of target paths.
    """

    def __init__(self):
        self.calls: List[List[str]] = []
        self.envs: List[Optional[dict]] = []
        self.subvolumes: Dict[str, dict] = {}
        self.default_id: Optional[str] = None
        self.mounts: List[str] = []
        self.mounts_seen_by_chroot: List[List[str]] = []
        self.containers: List[str] = []
        self.kernel_version = "6.1.0-18-amd64"
        self._next_id = int(BASE_SUBVOLUME_ID) + 1
        self._rules: List[FailureRule] = []

    # -- configuration -------------------------------------------------

    def fail(self, *prefix, stderr="simulated failure", returncode=1, times=None,
             arg=None, contains=None):
        """
        Fail commands whose argv starts with ``prefix``.

        ``arg`` additionally requires an exact argument, ``contains`` a
        substring of any argument. ``times`` limits how often the rule fires.
        """
        def matches(argv):
            if argv[:len(prefix)] != list(prefix):
                return False
            if arg is not None and arg not in argv:
                return False
            return contains is None or any(contains in a for a in argv)
        self._rules.append(FailureRule(matches, returncode, stderr, times))

    def add_subvolume(self, path: Path, readonly: bool = True) -> str:
        path.mkdir(parents=True, exist_ok=True)
        subvol_id = str(self._next_id) if self.subvolumes else BASE_SUBVOLUME_ID
        if subvol_id != BASE_SUBVOLUME_ID:
            self._next_id += 1
        self.subvolumes[str(path)] = {"id": subvol_id, "ro": readonly}
        return subvol_id

    # -- queries -------------------------------------------------------

    def commands(self, *prefix) -> List[List[str]]:
        return [c for c in self.calls if c[:len(prefix)] == list(prefix)]

    def is_sealed(self, path) -> bool:
        return self.subvolumes[str(path)]["ro"]

    def id_of(self, path) -> str:
        return self.subvolumes[str(path)]["id"]

    # -- execution -----------------------------------------------------

    def run(self, argv, timeout=None, env=None) -> CommandResult:
        argv = [str(a) for a in argv]
        self.calls.append(argv)
        self.envs.append(dict(env) if env else None)

        for rule in self._rules:
            if rule.remaining == 0 or not rule.matches(argv):
                continue
            if rule.remaining is not None:
                rule.remaining -= 1
            return CommandResult(argv, rule.returncode, "", rule.stderr)

        handler = getattr(self, f"_run_{argv[0]}", None)
        if handler is None:
            return CommandResult(argv, 127, "", f"{argv[0]}: command not found")
        return handler(argv)

    def _ok(self, argv, stdout=""):
        return CommandResult(argv, 0, stdout, "")

    def _err(self, argv, stderr, code=1):
        return CommandResult(argv, code, "", stderr)

    def _run_btrfs(self, argv):
        args = argv[1:]
        if args[:2] == ["subvolume", "snapshot"]:
            readonly = "-r" in args
            src, dst = [a for a in args[2:] if a != "-r"]
            if src not in self.subvolumes:
                return self._err(argv, f"ERROR: Not a Btrfs subvolume: {src}")
            if os.path.lexists(dst):
                return self._err(argv, f"ERROR: target path already exists: {dst}")
            Path(dst).mkdir(parents=True)
            self.subvolumes[dst] = {"id": str(self._next_id), "ro": readonly}
            self._next_id += 1
            return self._ok(argv, f"Create a snapshot of '{src}' in '{dst}'\n")

        if args[:2] == ["subvolume", "show"]:
            info = self.subvolumes.get(args[2])
            if info is None:
                return self._err(argv, f"ERROR: Not a Btrfs subvolume: {args[2]}")
            name = Path(args[2]).name
            return self._ok(
                argv,
                f"{name}\n\tName: \t\t\t{name}\n\tSubvolume ID: \t\t{info['id']}\n\tGeneration: \t\t42\n",
            )

        if args[:2] == ["subvolume", "set-default"]:
            self.default_id = args[2]
            return self._ok(argv)

        if args[:2] == ["filesystem", "show"]:
            return self._ok(argv, "Label: 'root'  uuid: 6f1c0e1a-0000-4000-8000-000000000000\n")

        if args[:2] == ["subvolume", "get-default"]:
            return self._ok(argv, f"ID {self.default_id} gen 42 top level 5 path deployments\n")

        if args[:2] == ["subvolume", "delete"]:
            if args[2] not in self.subvolumes:
                return self._err(argv, f"ERROR: Not a Btrfs subvolume: {args[2]}")
            shutil.rmtree(args[2])
            del self.subvolumes[args[2]]
            return self._ok(argv, f"Delete subvolume '{args[2]}'\n")

        if args[:3] == ["property", "set", "-ts"]:
            info = self.subvolumes.get(args[3])
            if info is None:
                return self._err(argv, "ERROR: object is not a btrfs object")
            info["ro"] = args[5] == "true"
            return self._ok(argv)

        if args[:3] == ["property", "get", "-ts"]:
            info = self.subvolumes.get(args[3])
            if info is None:
                return self._err(argv, "ERROR: object is not a btrfs object")
            return self._ok(argv, f"ro={'true' if info['ro'] else 'false'}\n")

        return self._err(argv, f"unsupported btrfs call: {args}")

    def _run_mount(self, argv):
        self.mounts.append(argv[-1])
        return self._ok(argv)

    def _run_umount(self, argv):
        target = argv[-1]
        if target not in self.mounts:
            return self._err(argv, f"umount: {target}: not mounted.", 32)
        self.mounts.remove(target)
        return self._ok(argv)

    def _run_chroot(self, argv):
        self.mounts_seen_by_chroot.append(list(self.mounts))
        if "dpkg-query" in argv[-1]:
            return self._ok(argv, f"{self.kernel_version}\n")
        return self._ok(argv, "Reading package lists... Done\n")

    def _run_podman(self, argv):
        args = argv[1:]
        if args[0] == "ps":
            return self._ok(argv, "".join(f"{c}\n" for c in self.containers))
        if args[0] == "run":
            self.containers.append(args[args.index("--name") + 1])
            return self._ok(argv, "0123456789abcdef\n")
        return self._ok(argv)

    _run_docker = _run_podman


# ============ Host fixtures ============

@dataclass
class FakeHost:
    """A btrfs top directory with a sealed ``base`` as current deployment."""
    top: Path
    runner: FakeRunner
    config: object
    store: object
    harness: object
    selector: object
    sandbox: object
    engine: object
    progress: List[tuple] = field(default_factory=list)

    @property
    def deployments(self) -> Path:
        return self.config.deployments_dir

    @property
    def base(self) -> Path:
        return self.top / "base"

    @property
    def pointer(self) -> Path:
        return self.config.current_pointer

    def current(self) -> Path:
        return Path(os.readlink(self.pointer))

    def add_deployment(self, name: str, sealed: bool = True) -> Path:
        path = self.deployments / name
        self.runner.add_subvolume(path, readonly=sealed)
        return path

    def point_current_at(self, path: Path):
        if os.path.lexists(self.pointer):
            os.unlink(self.pointer)
        os.symlink(path, self.pointer)


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo setup_logging() calls made by CLI tests."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def host(tmp_path: Path, runner: FakeRunner) -> FakeHost:
    """Fully wired engine against a fake btrfs volume."""
    from hammer.boot import BootSelector
    from hammer.chroot import ChrootHarness
    from hammer.config import HammerConfig
    from hammer.container import ContainerSandbox
    from hammer.deployment import DeploymentEngine
    from hammer.snapshot import SnapshotStore

    top = tmp_path / "btrfs-root"
    config = HammerConfig(
        btrfs_top=top,
        lock_file=tmp_path / "run" / "hammer.lock",
        export_bin_dir=tmp_path / "home" / ".local" / "bin",
    )
    config.deployments_dir.mkdir(parents=True)

    base = top / "base"
    runner.add_subvolume(base, readonly=True)
    runner.default_id = BASE_SUBVOLUME_ID
    os.symlink(base, config.current_pointer)

    store = SnapshotStore(config.deployments_dir, config.current_pointer, runner)
    harness = ChrootHarness(runner)
    selector = BootSelector(store, runner, config.volume_root)
    sandbox = ContainerSandbox(
        name=config.container_name,
        image=config.container_image,
        tool=config.container_tool,
        bin_dir=config.export_bin_dir,
        runner=runner,
    )
    engine = DeploymentEngine(
        store, harness, selector,
        config=config,
        sandbox=sandbox,
        clock=lambda: TODAY,
    )

    fake = FakeHost(top, runner, config, store, harness, selector, sandbox, engine)
    engine.set_progress_callback(lambda status, message: fake.progress.append((status, message)))
    return fake


# ============ Marker Configuration ============

def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line(
        "markers", "unit: fast unit tests with no external deps"
    )
