from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Sequence

from .command import CmdResult, CommandExecutor

logger = logging.getLogger(__name__)

_BIND_DIRS = ("/dev", "/proc", "/sys")


def chroot_cmd(
    executor: CommandExecutor,
    chroot_root: str,
    argv: Sequence[str],
    *,
    check: bool = True,
    input_text: Optional[str] = None,
) -> CmdResult:
    """Run a command inside the installation root."""

    return executor.run(["chroot", chroot_root, *argv], check=check, input_text=input_text)


def mount_chroot_binds(executor: CommandExecutor, chroot_root: str) -> None:
    # Minimal bind mounts for rpm scriptlets, initramfs and bootloader tooling.
    # Callers pair this with umount_chroot_binds in a finally block.
    for src in _BIND_DIRS:
        dst = f"{chroot_root}{src}"
        if not executor.dry_run:
            Path(dst).mkdir(parents=True, exist_ok=True)
        executor.run(["mount", "--bind", src, dst])


def umount_chroot_binds(executor: CommandExecutor, chroot_root: str) -> None:
    for src in reversed(_BIND_DIRS):
        r = executor.run(["umount", "-lf", f"{chroot_root}{src}"], check=False)
        if not r.ok:
            logger.warning("Failed to unmount %s%s: %s", chroot_root, src, r.stderr.strip())


def bind_mount(executor: CommandExecutor, src: str, dst: str) -> None:
    if not executor.dry_run:
        Path(dst).mkdir(parents=True, exist_ok=True)
    executor.run(["mount", "--bind", src, dst])


def umount(executor: CommandExecutor, path: str) -> None:
    r = executor.run(["umount", "-lf", path], check=False)
    if not r.ok:
        logger.warning("Failed to unmount %s: %s", path, r.stderr.strip())
