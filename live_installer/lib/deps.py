from __future__ import annotations

import logging
from typing import Dict, List, Optional

from ..errors import DependencyError
from .command import CommandExecutor

logger = logging.getLogger(__name__)

# command -> package providing it
_DISK_TOOLS = {
    "sgdisk": "gdisk",
    "wipefs": "util-linux",
    "blockdev": "util-linux",
    "blkid": "util-linux",
    "partprobe": "parted",
    "mkfs.ext4": "e2fsprogs",
    "mkfs.vfat": "dosfstools",
    "rsync": "rsync",
    "efibootmgr": "efibootmgr",
    "chroot": "coreutils",
}

_RPM_TOOLS = {**_DISK_TOOLS, "rpm": "rpm"}
_DEB_TOOLS = {**_DISK_TOOLS, "mmdebstrap": "mmdebstrap"}

DEPENDENCIES: Dict[str, Dict[str, str]] = {
    "azure-linux": _RPM_TOOLS,
    "edge-microvisor-toolkit": _RPM_TOOLS,
    "wind-river-elxr": _DEB_TOOLS,
    "ubuntu": _DEB_TOOLS,
}


class DependencyChecker:
    """Read-only check that the host has the tools a target OS needs."""

    def __init__(self, executor: CommandExecutor, log: Optional[logging.Logger] = None) -> None:
        self.executor = executor
        self.log = log or logger

    def check(self, os_family: str) -> None:
        required = DEPENDENCIES.get(os_family)
        if required is None:
            raise DependencyError(f"unsupported target OS for dependency check: {os_family}")

        missing: List[str] = []
        for cmd, pkg in required.items():
            if self.executor.which(cmd) is None:
                self.log.error("Host command %s not found (provided by package %s)", cmd, pkg)
                missing.append(f"command '{cmd}' (package '{pkg}')")

        if missing:
            raise DependencyError(f"missing host dependencies for {os_family}: {', '.join(missing)}")

        self.log.info("All %d host dependencies present for %s", len(required), os_family)
