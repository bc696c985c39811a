"""In-target system configuration: user accounts and the bootloader.

Runs against the mounted target root after the installation root has been
copied, with /dev, /proc and /sys bound into it. Firmware boot entries are
not touched here; BootManager owns NVRAM.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import List, Optional

from ..errors import CommandError, ExecutionError
from ..template import ImageTemplate, UserConfig
from .chroot import chroot_cmd
from .command import CommandExecutor

logger = logging.getLogger(__name__)

_GRUB_EFI_TARGETS = {
    "x86_64": "x86_64-efi",
    "amd64": "x86_64-efi",
    "aarch64": "arm64-efi",
    "arm64": "arm64-efi",
}
_LEGACY_ARCHES = {"x86_64", "amd64"}

_GRUB_PROVIDERS = {"grub", "grub2"}
_SYSTEMD_BOOT_PROVIDERS = {"systemd-boot", "sd-boot"}

_CMDLINE_RE = re.compile(r"^#*[ \t]*GRUB_CMDLINE_LINUX=.*$", re.MULTILINE)


class SystemConfigurator:
    def __init__(self, executor: CommandExecutor, log: Optional[logging.Logger] = None) -> None:
        self.executor = executor
        self.log = log or logger

    def configure(self, template: ImageTemplate, target_root: str) -> None:
        self.create_users(template.system_config.users, target_root)
        self.install_bootloader(template, target_root)

    # -- users ---------------------------------------------------------

    def create_users(self, users: List[UserConfig], target_root: str) -> None:
        for user in users:
            argv = ["useradd", "-m", "-s", user.shell]
            if user.home:
                argv += ["-d", user.home]
            if user.groups:
                argv += ["-G", ",".join(user.groups)]
            argv.append(user.name)
            try:
                chroot_cmd(self.executor, target_root, argv)
                if user.password:
                    # Already-hashed passwords ("$6$...") are passed through.
                    hashed = user.password.startswith("$")
                    chroot_cmd(
                        self.executor,
                        target_root,
                        ["chpasswd", "-e"] if hashed else ["chpasswd"],
                        input_text=f"{user.name}:{user.password}\n",
                    )
            except CommandError as e:
                raise ExecutionError(f"failed to create user {user.name}: {e}") from e

            if user.sudo:
                self._write_sudoers(user.name, target_root)
            self.log.info("Created user %s", user.name)

    def _write_sudoers(self, name: str, target_root: str) -> None:
        path = Path(target_root) / "etc/sudoers.d" / name
        if self.executor.dry_run:
            self.log.info("Would write %s", path)
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(f"{name} ALL=(ALL) ALL\n", encoding="utf-8")
        os.chmod(path, 0o440)

    # -- bootloader ----------------------------------------------------

    def install_bootloader(self, template: ImageTemplate, target_root: str) -> None:
        provider = template.system_config.bootloader.provider
        if provider in _GRUB_PROVIDERS:
            self._install_grub(template, target_root)
        elif provider in _SYSTEMD_BOOT_PROVIDERS:
            self._install_systemd_boot(template, target_root)
        else:
            raise ExecutionError(f"unsupported bootloader provider: {provider}")
        self.log.info("Bootloader %s installed (%s)", provider, template.boot_type)

    def _esp_mount_point(self, template: ImageTemplate) -> str:
        esp = template.esp_partition()
        if esp is None or not esp.mount_point:
            raise ExecutionError("EFI boot requires an 'esp' partition with a mount point")
        return esp.mount_point

    def _grub_prefix(self, template: ImageTemplate, target_root: str) -> str:
        # Fedora-family targets ship grub2-*, Debian-family ship grub-*.
        for prefix in ("grub2", "grub"):
            for bindir in ("usr/sbin", "usr/bin", "sbin", "bin"):
                if (Path(target_root) / bindir / f"{prefix}-install").exists():
                    return prefix
        return "grub2" if template.system_config.bootloader.provider == "grub2" else "grub"

    def _install_grub(self, template: ImageTemplate, target_root: str) -> None:
        arch = template.target.arch
        prefix = self._grub_prefix(template, target_root)

        if template.is_efi:
            target = _GRUB_EFI_TARGETS.get(arch)
            if target is None:
                raise ExecutionError(f"unsupported architecture for EFI bootloader: {arch}")
            # Installs to the removable path (\EFI\BOOT\BOOT*.EFI) that the boot entry points at.
            argv = [
                f"{prefix}-install",
                f"--target={target}",
                f"--efi-directory={self._esp_mount_point(template)}",
                "--removable",
                "--no-nvram",
            ]
        else:
            if arch not in _LEGACY_ARCHES:
                raise ExecutionError(f"legacy boot is not supported on {arch}")
            argv = [f"{prefix}-install", "--target=i386-pc", template.disk.path]

        self._write_grub_cmdline(template.system_config.kernel.cmdline, target_root)
        try:
            chroot_cmd(self.executor, target_root, argv)
            chroot_cmd(self.executor, target_root, [f"{prefix}-mkconfig", "-o", f"/boot/{prefix}/grub.cfg"])
        except CommandError as e:
            raise ExecutionError(f"failed to install bootloader: {e}") from e

    def _write_grub_cmdline(self, cmdline: str, target_root: str) -> None:
        if not cmdline:
            return
        path = Path(target_root) / "etc/default/grub"
        line = f'GRUB_CMDLINE_LINUX="{cmdline}"'
        if self.executor.dry_run:
            self.log.info("Would set %s in %s", line, path)
            return

        current = path.read_text(encoding="utf-8") if path.exists() else ""
        if _CMDLINE_RE.search(current):
            updated = _CMDLINE_RE.sub(lambda _: line, current)
        else:
            updated = current + ("" if not current or current.endswith("\n") else "\n") + line + "\n"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(updated, encoding="utf-8")

    def _install_systemd_boot(self, template: ImageTemplate, target_root: str) -> None:
        if not template.is_efi:
            raise ExecutionError("systemd-boot requires EFI boot")

        cmdline = template.system_config.kernel.cmdline
        if cmdline:
            path = Path(target_root) / "etc/kernel/cmdline"
            if self.executor.dry_run:
                self.log.info("Would write %s", path)
            else:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(cmdline + "\n", encoding="utf-8")

        try:
            chroot_cmd(
                self.executor,
                target_root,
                ["bootctl", "install", f"--esp-path={self._esp_mount_point(template)}", "--no-variables"],
            )
        except CommandError as e:
            raise ExecutionError(f"failed to install bootloader: {e}") from e
