"""
Pytest configuration and shared fixtures for live-installer tests.

Nothing here touches real disks or firmware: every component gets a
FakeExecutor that records argv and returns scripted results.
"""

from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

from live_installer.errors import CommandError
from live_installer.lib.command import CmdResult, CommandExecutor
from live_installer.template import ImageTemplate


class FakeExecutor(CommandExecutor):
    """Records every command; answers from rules matched by substring."""

    def __init__(self, missing: Sequence[str] = ()) -> None:
        super().__init__(dry_run=False)
        self.calls: List[List[str]] = []
        self.which_calls: List[str] = []
        self.missing = set(missing)
        self._rules: List[Tuple[str, int, str, str]] = []

    def on(self, pattern: str, *, stdout: str = "", returncode: int = 0, stderr: str = "") -> "FakeExecutor":
        # Later rules take precedence.
        self._rules.insert(0, (pattern, returncode, stdout, stderr))
        return self

    def respond(self, argv: List[str]) -> CmdResult:
        line = " ".join(argv)
        for pattern, rc, out, err in self._rules:
            if pattern in line:
                return CmdResult(argv=argv, returncode=rc, stdout=out, stderr=err)
        return CmdResult(argv=argv, returncode=0, stdout="", stderr="")

    def run(self, argv, *, check=True, env=None, cwd=None, input_text=None, readonly=False) -> CmdResult:
        argv = list(argv)
        self.calls.append(argv)
        result = self.respond(argv)
        if check and result.returncode != 0:
            raise CommandError(argv, result.returncode, result.stderr)
        return result

    def which(self, command: str) -> Optional[str]:
        self.which_calls.append(command)
        return None if command in self.missing else f"/usr/bin/{command}"

    def commands(self, name: str) -> List[List[str]]:
        return [c for c in self.calls if c and c[0] == name]


class FakeFirmware(FakeExecutor):
    """FakeExecutor with a stateful efibootmgr."""

    def __init__(self, entries: Optional[Dict[str, str]] = None, order: Optional[List[str]] = None) -> None:
        super().__init__()
        self.entries: Dict[str, str] = dict(entries or {})
        self.order: List[str] = list(order if order is not None else self.entries)
        self.list_fails = False

    def render(self) -> str:
        lines = ["BootCurrent: 0000", "Timeout: 1 seconds"]
        if self.order:
            lines.append("BootOrder: " + ",".join(self.order))
        for num, label in self.entries.items():
            lines.append(f"Boot{num}* {label}\tHD(1,GPT,abc)/File(\\EFI\\BOOT\\BOOTX64.EFI)")
        return "\n".join(lines) + "\n"

    def respond(self, argv: List[str]) -> CmdResult:
        if not argv or argv[0] != "efibootmgr":
            return super().respond(argv)

        if argv == ["efibootmgr"]:
            if self.list_fails:
                return CmdResult(argv=argv, returncode=2, stdout="", stderr="EFI variables are not supported")
            return CmdResult(argv=argv, returncode=0, stdout=self.render(), stderr="")

        if "-B" in argv:
            num = argv[argv.index("-b") + 1]
            self.entries.pop(num, None)
            self.order = [n for n in self.order if n != num]
        elif "--create" in argv:
            num = "%04X" % (max([int(n, 16) for n in self.entries] or [-1]) + 1)
            self.entries[num] = argv[argv.index("--label") + 1]
            self.order.append(num)
        elif "-o" in argv:
            self.order = argv[argv.index("-o") + 1].split(",")
        return CmdResult(argv=argv, returncode=0, stdout=self.render(), stderr="")


RPM_PROFILE = """\
x86_64:
  dist: "azl3"
  arch: "x86_64"
  pkgType: "rpm"
  chrootenvConfigFile: "chrootenvconfigs/chrootenv_x86_64.yml"
  releaseVersion: "3.0"
"""

CHROOTENV = """\
essential:
  - filesystem
packages:
  - bash
  - rpm
"""


def write_profile(root: Path, os_family: str = "azure-linux", dist: str = "3.0", body: str = RPM_PROFILE) -> Path:
    config_dir = root / "osv" / os_family / dist
    config_dir.mkdir(parents=True, exist_ok=True)
    (config_dir / "config.yml").write_text(body, encoding="utf-8")
    return config_dir


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def config_root(tmp_path: Path) -> Path:
    """Config root with a valid azure-linux 3.0 x86_64 rpm profile."""
    root = tmp_path / "config"
    config_dir = write_profile(root)
    envs = config_dir / "chrootenvconfigs"
    envs.mkdir()
    (envs / "chrootenv_x86_64.yml").write_text(CHROOTENV, encoding="utf-8")
    return root


@pytest.fixture
def repo_dir(tmp_path: Path) -> Path:
    repo = tmp_path / "repo"
    repo.mkdir()
    for name in ("filesystem-1.1-1.azl3.x86_64.rpm", "bash-5.2-1.azl3.x86_64.rpm", "rpm-4.18-1.azl3.x86_64.rpm"):
        (repo / name).write_bytes(b"")
    return repo


@pytest.fixture
def disk(tmp_path: Path) -> Path:
    """Stand-in for a block device node."""
    dev = tmp_path / "sda"
    dev.write_bytes(b"")
    return dev


def make_template(disk_path: str = "/dev/sda", boot_type: str = "efi", partitions=None) -> ImageTemplate:
    if partitions is None:
        partitions = [
            {"id": "boot", "type": "esp", "fsType": "fat32", "start": "1MiB", "end": "513MiB", "mountPoint": "/boot/efi"},
            {"id": "rootfs", "type": "linux-root-amd64", "fsType": "ext4", "start": "513MiB", "end": "0", "mountPoint": "/"},
        ]
    return ImageTemplate.model_validate(
        {
            "image": {"name": "edge-image", "version": "1.0"},
            "target": {"os": "azure-linux", "dist": "3.0", "arch": "x86_64"},
            "disk": {"path": disk_path, "partitions": partitions},
            "systemConfig": {"hostname": "edge-node", "bootloader": {"bootType": boot_type}},
        }
    )


@pytest.fixture
def template(disk: Path) -> ImageTemplate:
    return make_template(str(disk))
