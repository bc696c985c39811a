from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Paths:
    config_root: str = "/usr/share/live-installer/config"
    work_dir: str = "/tmp/live-installer"
    target_mount: str = "/mnt/target"
    log_default: str = "/var/log/live-installer.log"

    @property
    def chroot_build_dir(self) -> str:
        return f"{self.work_dir}/chrootbuild"


PATHS = Paths()

# Label used for every firmware boot entry this installer creates.
BOOT_ENTRY_LABEL = "Edge OS"
